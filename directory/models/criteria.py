"""
Backend-agnostic search criteria.

Criteria objects only carry values. Which backend attribute a field maps to,
and whether the field honours ``*`` as a prefix wildcard, is decided by the
field maps in ``directory.query.predicates``.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


@dataclass
class _CriteriaBase:
    custom_attributes: Dict[str, str] = field(default_factory=dict)
    custom_filter: Optional[str] = None

    def with_attribute(self, name: str, value: str):
        self.custom_attributes[name] = value
        return self

    def with_custom_filter(self, raw_filter: str):
        """Append a raw backend filter term. It is not escaped."""
        self.custom_filter = raw_filter
        return self

    @property
    def has_criteria(self) -> bool:
        return any(
            isinstance(value, bool) or bool(value) for value in vars(self).values()
        )


@dataclass
class UserSearchCriteria(_CriteriaBase):
    """
    Search criteria for users.

    Name-like fields accept ``*`` to request a prefix match, for example
    ``UserSearchCriteria().with_display_name("Jo*")``.
    """

    username: Optional[str] = None
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    office: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    member_of_group: Optional[str] = None
    member_of_any_group: List[str] = field(default_factory=list)
    is_enabled: Optional[bool] = None

    def with_username(self, username: str) -> "UserSearchCriteria":
        self.username = username
        return self

    def with_display_name(self, display_name: str) -> "UserSearchCriteria":
        self.display_name = display_name
        return self

    def with_first_name(self, first_name: str) -> "UserSearchCriteria":
        self.first_name = first_name
        return self

    def with_last_name(self, last_name: str) -> "UserSearchCriteria":
        self.last_name = last_name
        return self

    def with_email(self, email: str) -> "UserSearchCriteria":
        self.email = email
        return self

    def in_department(self, department: str) -> "UserSearchCriteria":
        self.department = department
        return self

    def with_job_title(self, job_title: str) -> "UserSearchCriteria":
        self.job_title = job_title
        return self

    def at_company(self, company: str) -> "UserSearchCriteria":
        self.company = company
        return self

    def in_city(self, city: str) -> "UserSearchCriteria":
        self.city = city
        return self

    def in_country(self, country: str) -> "UserSearchCriteria":
        self.country = country
        return self

    def in_group(self, group_dn: str) -> "UserSearchCriteria":
        self.member_of_group = group_dn
        return self

    def in_any_group(self, group_dns: Iterable[str]) -> "UserSearchCriteria":
        self.member_of_any_group = list(group_dns)
        return self

    def enabled_only(self, enabled: bool = True) -> "UserSearchCriteria":
        self.is_enabled = enabled
        return self


@dataclass
class GroupSearchCriteria(_CriteriaBase):
    """Search criteria for groups."""

    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    email: Optional[str] = None
    is_security_group: Optional[bool] = None
    is_mail_enabled: Optional[bool] = None
    managed_by: Optional[str] = None
    has_member: Optional[str] = None
    member_of_group: Optional[str] = None

    def with_name(self, name: str) -> "GroupSearchCriteria":
        self.name = name
        return self

    def with_display_name(self, display_name: str) -> "GroupSearchCriteria":
        self.display_name = display_name
        return self

    def with_description(self, description: str) -> "GroupSearchCriteria":
        self.description = description
        return self

    def with_email(self, email: str) -> "GroupSearchCriteria":
        self.email = email
        return self

    def security_groups_only(self, security: bool = True) -> "GroupSearchCriteria":
        self.is_security_group = security
        return self

    def mail_enabled_only(self, mail_enabled: bool = True) -> "GroupSearchCriteria":
        self.is_mail_enabled = mail_enabled
        return self

    def managed_by_dn(self, manager_dn: str) -> "GroupSearchCriteria":
        self.managed_by = manager_dn
        return self

    def containing_member(self, member_dn: str) -> "GroupSearchCriteria":
        self.has_member = member_dn
        return self

    def in_group(self, group_dn: str) -> "GroupSearchCriteria":
        self.member_of_group = group_dn
        return self


@dataclass
class ComputerSearchCriteria(_CriteriaBase):
    """Search criteria for computers and registered devices."""

    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    dns_host_name: Optional[str] = None
    operating_system: Optional[str] = None
    operating_system_version: Optional[str] = None
    location: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_managed: Optional[bool] = None
    is_compliant: Optional[bool] = None
    trust_type: Optional[str] = None
    managed_by: Optional[str] = None
    member_of_group: Optional[str] = None

    def with_name(self, name: str) -> "ComputerSearchCriteria":
        self.name = name
        return self

    def with_display_name(self, display_name: str) -> "ComputerSearchCriteria":
        self.display_name = display_name
        return self

    def with_dns_host_name(self, dns_host_name: str) -> "ComputerSearchCriteria":
        self.dns_host_name = dns_host_name
        return self

    def with_operating_system(self, operating_system: str) -> "ComputerSearchCriteria":
        self.operating_system = operating_system
        return self

    def with_operating_system_version(self, version: str) -> "ComputerSearchCriteria":
        self.operating_system_version = version
        return self

    def at_location(self, location: str) -> "ComputerSearchCriteria":
        self.location = location
        return self

    def enabled_only(self, enabled: bool = True) -> "ComputerSearchCriteria":
        self.is_enabled = enabled
        return self

    def managed_only(self, managed: bool = True) -> "ComputerSearchCriteria":
        self.is_managed = managed
        return self

    def compliant_only(self, compliant: bool = True) -> "ComputerSearchCriteria":
        self.is_compliant = compliant
        return self

    def with_trust_type(self, trust_type: str) -> "ComputerSearchCriteria":
        self.trust_type = trust_type
        return self

    def in_group(self, group_dn: str) -> "ComputerSearchCriteria":
        self.member_of_group = group_dn
        return self
