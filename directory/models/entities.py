from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class DirectoryType(Enum):
    """Directory backends the service can talk to."""

    AZURE_AD = "azure_ad"
    OPEN_LDAP = "openldap"
    APPLE_DIRECTORY = "apple"

    def __str__(self) -> str:
        return self.name


@dataclass
class LdapUser:
    """A user account projected from any backend."""

    username: str = ""
    id: Optional[str] = None
    user_principal_name: Optional[str] = None
    distinguished_name: Optional[str] = None
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    mobile_phone: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    company: Optional[str] = None
    office: Optional[str] = None
    manager: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_locked_out: Optional[bool] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    last_logon: Optional[datetime] = None
    password_expires_at: Optional[datetime] = None
    groups: List[str] = field(default_factory=list)
    custom_attributes: Dict[str, Any] = field(default_factory=dict)
    directory_type: Optional[DirectoryType] = None


@dataclass
class LdapGroup:
    """A group projected from any backend."""

    name: str = ""
    id: Optional[str] = None
    distinguished_name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    email: Optional[str] = None
    group_type: Optional[str] = None
    group_scope: Optional[str] = None
    is_security_group: Optional[bool] = None
    is_mail_enabled: Optional[bool] = None
    managed_by: Optional[str] = None
    organizational_unit: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    member_count: Optional[int] = None
    members: List[str] = field(default_factory=list)
    member_of: List[str] = field(default_factory=list)
    custom_attributes: Dict[str, Any] = field(default_factory=dict)
    directory_type: Optional[DirectoryType] = None


@dataclass
class LdapComputer:
    """A computer or registered device projected from any backend."""

    name: str = ""
    id: Optional[str] = None
    distinguished_name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    dns_host_name: Optional[str] = None
    operating_system: Optional[str] = None
    operating_system_version: Optional[str] = None
    ip_addresses: List[str] = field(default_factory=list)
    mac_addresses: List[str] = field(default_factory=list)
    location: Optional[str] = None
    managed_by: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_managed: Optional[bool] = None
    is_compliant: Optional[bool] = None
    trust_type: Optional[str] = None
    created_at: Optional[datetime] = None
    last_logon: Optional[datetime] = None
    member_of: List[str] = field(default_factory=list)
    custom_attributes: Dict[str, Any] = field(default_factory=dict)
    directory_type: Optional[DirectoryType] = None
