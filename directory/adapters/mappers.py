"""
Projections from raw backend records to domain entities.

LDAP records are ldap3 response entries (``{'dn': ..., 'attributes': ...}``).
Graph records are decoded JSON objects. Missing source values become None;
only the non-nullable ``username``/``name`` fields default to "".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..config import LdapOptions
from ..models.entities import DirectoryType, LdapComputer, LdapGroup, LdapUser

logger = logging.getLogger(__name__)


# LDAP


def _attributes(record: Dict[str, Any]) -> Dict[str, Any]:
    return {name.lower(): value for name, value in (record.get("attributes") or {}).items()}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def ldap_values(attributes: Dict[str, Any], name: str) -> List[str]:
    value = attributes.get(name.lower())
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [text for text in (_text(item) for item in value) if text]


def ldap_value(attributes: Dict[str, Any], *names: str) -> Optional[str]:
    """First value of the first attribute that has one."""
    for name in names:
        values = ldap_values(attributes, name)
        if values:
            return values[0]
    return None


def parse_generalized_time(value: Any) -> Optional[datetime]:
    """Parse an LDAP GeneralizedTime such as ``20240131120000Z``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = _text(value).strip()
    for pattern in ("%Y%m%d%H%M%SZ", "%Y%m%d%H%M%S.%fZ", "%Y%m%d%H%MZ"):
        try:
            return datetime.strptime(text, pattern).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    logger.debug(f"Unparseable GeneralizedTime value: {text}")
    return None


def _custom_attributes(attributes: Dict[str, Any], names: Iterable[str]) -> Dict[str, Any]:
    custom = {}
    for name in names:
        values = ldap_values(attributes, name)
        if len(values) == 1:
            custom[name] = values[0]
        elif values:
            custom[name] = values
    return custom


def ldap_user_attributes(options: LdapOptions) -> List[str]:
    names = [
        options.unique_id_attribute,
        options.username_attribute,
        options.display_name_attribute,
        options.first_name_attribute,
        options.last_name_attribute,
        options.email_attribute,
        options.group_membership_attribute,
        "telephoneNumber", "mobile", "title", "departmentNumber", "ou", "o",
        "physicalDeliveryOfficeName", "manager", "street", "postalAddress", "l",
        "st", "postalCode", "c", "createTimestamp", "modifyTimestamp",
    ]
    names.extend(options.custom_attributes)
    return list(dict.fromkeys(names))


def map_ldap_user(record: Dict[str, Any], options: LdapOptions, directory_type: DirectoryType) -> LdapUser:
    attributes = _attributes(record)
    return LdapUser(
        directory_type=directory_type,
        id=ldap_value(attributes, options.unique_id_attribute),
        username=ldap_value(attributes, options.username_attribute) or "",
        distinguished_name=record.get("dn"),
        display_name=ldap_value(attributes, options.display_name_attribute),
        first_name=ldap_value(attributes, options.first_name_attribute),
        last_name=ldap_value(attributes, options.last_name_attribute),
        email=ldap_value(attributes, options.email_attribute),
        phone_number=ldap_value(attributes, "telephoneNumber"),
        mobile_phone=ldap_value(attributes, "mobile"),
        job_title=ldap_value(attributes, "title"),
        department=ldap_value(attributes, "departmentNumber", "ou"),
        company=ldap_value(attributes, "o"),
        office=ldap_value(attributes, "physicalDeliveryOfficeName"),
        manager=ldap_value(attributes, "manager"),
        street_address=ldap_value(attributes, "street", "postalAddress"),
        city=ldap_value(attributes, "l"),
        state=ldap_value(attributes, "st"),
        postal_code=ldap_value(attributes, "postalCode"),
        country=ldap_value(attributes, "c"),
        created_at=parse_generalized_time(ldap_value(attributes, "createTimestamp")),
        modified_at=parse_generalized_time(ldap_value(attributes, "modifyTimestamp")),
        groups=ldap_values(attributes, options.group_membership_attribute),
        custom_attributes=_custom_attributes(attributes, options.custom_attributes),
    )


def ldap_group_attributes(options: LdapOptions) -> List[str]:
    names = [
        options.unique_id_attribute, "cn", "displayName", "description", "mail",
        "owner", options.group_member_attribute, options.group_membership_attribute,
        "createTimestamp", "modifyTimestamp",
    ]
    names.extend(options.custom_attributes)
    return list(dict.fromkeys(names))


def map_ldap_group(record: Dict[str, Any], options: LdapOptions, directory_type: DirectoryType) -> LdapGroup:
    attributes = _attributes(record)
    members = ldap_values(attributes, options.group_member_attribute)
    email = ldap_value(attributes, "mail")
    return LdapGroup(
        directory_type=directory_type,
        id=ldap_value(attributes, options.unique_id_attribute),
        name=ldap_value(attributes, "cn") or "",
        distinguished_name=record.get("dn"),
        display_name=ldap_value(attributes, "displayName", "cn"),
        description=ldap_value(attributes, "description"),
        email=email,
        is_mail_enabled=bool(email),
        managed_by=ldap_value(attributes, "owner"),
        created_at=parse_generalized_time(ldap_value(attributes, "createTimestamp")),
        modified_at=parse_generalized_time(ldap_value(attributes, "modifyTimestamp")),
        members=members,
        member_count=len(members),
        member_of=ldap_values(attributes, options.group_membership_attribute),
        custom_attributes=_custom_attributes(attributes, options.custom_attributes),
    )


def ldap_computer_attributes(options: LdapOptions) -> List[str]:
    names = [
        options.unique_id_attribute, "cn", "displayName", "description",
        "ipHostNumber", "macAddress", "l", "owner", "serialNumber",
        options.group_membership_attribute, "createTimestamp",
    ]
    names.extend(options.custom_attributes)
    return list(dict.fromkeys(names))


def map_ldap_computer(record: Dict[str, Any], options: LdapOptions, directory_type: DirectoryType) -> LdapComputer:
    attributes = _attributes(record)
    return LdapComputer(
        directory_type=directory_type,
        id=ldap_value(attributes, options.unique_id_attribute),
        name=ldap_value(attributes, "cn") or "",
        distinguished_name=record.get("dn"),
        display_name=ldap_value(attributes, "displayName", "cn"),
        description=ldap_value(attributes, "description"),
        ip_addresses=ldap_values(attributes, "ipHostNumber"),
        mac_addresses=ldap_values(attributes, "macAddress"),
        location=ldap_value(attributes, "l"),
        managed_by=ldap_value(attributes, "owner"),
        created_at=parse_generalized_time(ldap_value(attributes, "createTimestamp")),
        member_of=ldap_values(attributes, options.group_membership_attribute),
        custom_attributes=_custom_attributes(attributes, options.custom_attributes),
    )


# Microsoft Graph


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a Graph ISO 8601 timestamp such as ``2024-01-31T12:00:00Z``."""
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    # fromisoformat only accepts up to 6 fractional digits
    if "." in text:
        head, _, tail = text.partition(".")
        zone_start = len(tail)
        for index, ch in enumerate(tail):
            if not ch.isdigit():
                zone_start = index
                break
        digits, zone = tail[:zone_start], tail[zone_start:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{zone}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable Graph timestamp: {value}")
        return None


def map_graph_user(record: Dict[str, Any]) -> LdapUser:
    phones = record.get("businessPhones") or []
    return LdapUser(
        directory_type=DirectoryType.AZURE_AD,
        id=record.get("id"),
        username=record.get("mailNickname") or record.get("userPrincipalName") or "",
        user_principal_name=record.get("userPrincipalName"),
        display_name=record.get("displayName"),
        first_name=record.get("givenName"),
        last_name=record.get("surname"),
        email=record.get("mail"),
        phone_number=phones[0] if phones else None,
        mobile_phone=record.get("mobilePhone"),
        job_title=record.get("jobTitle"),
        department=record.get("department"),
        company=record.get("companyName"),
        office=record.get("officeLocation"),
        street_address=record.get("streetAddress"),
        city=record.get("city"),
        state=record.get("state"),
        postal_code=record.get("postalCode"),
        country=record.get("country"),
        is_enabled=record.get("accountEnabled"),
        created_at=parse_graph_datetime(record.get("createdDateTime")),
    )


def graph_group_type(record: Dict[str, Any]) -> Optional[str]:
    if "Unified" in (record.get("groupTypes") or []):
        return "Unified"
    if record.get("securityEnabled") and not record.get("mailEnabled"):
        return "Security"
    if record.get("mailEnabled"):
        return "MailEnabled"
    return None


def map_graph_group(record: Dict[str, Any]) -> LdapGroup:
    return LdapGroup(
        directory_type=DirectoryType.AZURE_AD,
        id=record.get("id"),
        name=record.get("mailNickname") or record.get("displayName") or "",
        display_name=record.get("displayName"),
        description=record.get("description"),
        email=record.get("mail"),
        group_type=graph_group_type(record),
        is_security_group=record.get("securityEnabled"),
        is_mail_enabled=record.get("mailEnabled"),
        created_at=parse_graph_datetime(record.get("createdDateTime")),
    )


def map_graph_device(record: Dict[str, Any]) -> LdapComputer:
    return LdapComputer(
        directory_type=DirectoryType.AZURE_AD,
        id=record.get("deviceId") or record.get("id"),
        name=record.get("displayName") or "",
        display_name=record.get("displayName"),
        operating_system=record.get("operatingSystem"),
        operating_system_version=record.get("operatingSystemVersion"),
        is_enabled=record.get("accountEnabled"),
        is_managed=record.get("isManaged"),
        is_compliant=record.get("isCompliant"),
        trust_type=record.get("trustType"),
        last_logon=parse_graph_datetime(record.get("approximateLastSignInDateTime")),
    )
