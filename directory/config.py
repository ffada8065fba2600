import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

from .exceptions import DirectoryConfigurationError
from .models.entities import DirectoryType

load_dotenv()

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


class LdapSecurityMode(Enum):
    NONE = "none"
    SSL = "ssl"
    START_TLS = "start_tls"


# Azure app credentials. Exactly one is chosen when options are built.


@dataclass
class ClientSecretAuth:
    client_secret: str


@dataclass
class CertificateAuth:
    certificate_path: str
    certificate_password: Optional[str] = None


@dataclass
class ManagedIdentityAuth:
    # None selects the system-assigned identity
    client_id: Optional[str] = None


AzureCredential = Union[ClientSecretAuth, CertificateAuth, ManagedIdentityAuth]


def _require(config: Dict[str, Any], required_keys: List[str]) -> None:
    if not isinstance(config, dict):
        raise TypeError("Configuration must be a dictionary")
    missing_keys = [key for key in required_keys if not config.get(key)]
    if missing_keys:
        raise DirectoryConfigurationError(f"Missing required configuration keys: {missing_keys}")


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return list(value)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def resolve_azure_credential(config: Dict[str, Any]) -> AzureCredential:
    """
    Pick the Azure credential variant named by ``auth_mode``.

    The mode is explicit. Missing fields for the chosen mode are an error,
    there is no fallback to another mode.

    Raises:
        DirectoryConfigurationError: Unknown mode or missing fields.
    """
    mode = (config.get("auth_mode") or "client_secret").lower()

    if mode == "client_secret":
        _require(config, ["client_secret"])
        return ClientSecretAuth(config["client_secret"])
    if mode == "certificate":
        _require(config, ["certificate_path"])
        return CertificateAuth(config["certificate_path"], config.get("certificate_password"))
    if mode == "managed_identity":
        return ManagedIdentityAuth(config.get("managed_identity_client_id"))

    raise DirectoryConfigurationError(f"Unsupported Azure auth_mode: {mode}")


@dataclass
class AzureAdOptions:
    """Settings for the Microsoft Graph backend."""

    tenant_id: str
    client_id: str
    credential: AzureCredential
    graph_base_url: str = GRAPH_BASE_URL
    authority_host: str = "https://login.microsoftonline.com"
    scopes: List[str] = field(default_factory=lambda: [GRAPH_DEFAULT_SCOPE])
    delegated_scopes: List[str] = field(default_factory=lambda: ["User.Read"])
    user_select: List[str] = field(
        default_factory=lambda: [
            "id", "displayName", "givenName", "surname", "mail", "userPrincipalName",
            "mailNickname", "jobTitle", "department", "companyName", "officeLocation",
            "mobilePhone", "businessPhones", "streetAddress", "city", "state",
            "postalCode", "country", "accountEnabled", "createdDateTime",
        ]
    )
    group_select: List[str] = field(
        default_factory=lambda: [
            "id", "displayName", "mailNickname", "description", "mail",
            "securityEnabled", "mailEnabled", "groupTypes", "createdDateTime",
        ]
    )
    device_select: List[str] = field(
        default_factory=lambda: [
            "id", "deviceId", "displayName", "operatingSystem", "operatingSystemVersion",
            "accountEnabled", "isManaged", "isCompliant", "trustType",
            "approximateLastSignInDateTime",
        ]
    )
    batch_size: int = 999
    connect_timeout: float = 30.0
    operation_timeout: float = 60.0

    @property
    def authority(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"

    @classmethod
    def from_mapping(cls, config: Dict[str, Any]) -> "AzureAdOptions":
        """
        Build options from a plain dictionary.

        Required keys: 'tenant_id', 'client_id', plus the fields needed by
        'auth_mode' ('client_secret' by default, 'certificate' or
        'managed_identity').

        Raises:
            TypeError: If config is not a dictionary.
            DirectoryConfigurationError: If required keys are missing.
        """
        _require(config, ["tenant_id", "client_id"])
        options = cls(
            tenant_id=config["tenant_id"],
            client_id=config["client_id"],
            credential=resolve_azure_credential(config),
        )
        for key in ("graph_base_url", "authority_host"):
            if config.get(key):
                setattr(options, key, config[key])
        for key in ("scopes", "delegated_scopes", "user_select", "group_select", "device_select"):
            if config.get(key):
                setattr(options, key, _as_list(config[key]))
        for key in ("connect_timeout", "operation_timeout"):
            if config.get(key):
                setattr(options, key, float(config[key]))
        if config.get("batch_size"):
            options.batch_size = int(config["batch_size"])
        return options


@dataclass
class LdapOptions:
    """Settings shared by the LDAP-family backends."""

    host: str
    base_dn: str
    port: int = 389
    bind_dn: Optional[str] = None
    bind_password: Optional[str] = None
    keyring_service: Optional[str] = None
    security_mode: LdapSecurityMode = LdapSecurityMode.NONE
    validate_certificate: bool = True
    user_object_class: str = "inetOrgPerson"
    username_attribute: str = "uid"
    email_attribute: str = "mail"
    display_name_attribute: str = "cn"
    first_name_attribute: str = "givenName"
    last_name_attribute: str = "sn"
    unique_id_attribute: str = "entryUUID"
    group_membership_attribute: str = "memberOf"
    group_object_class: str = "groupOfNames"
    group_member_attribute: str = "member"
    computer_object_class: str = "device"
    user_search_filter: Optional[str] = None
    email_search_filter: Optional[str] = None
    page_size: int = 500
    connect_timeout: float = 30.0
    operation_timeout: float = 60.0
    custom_attributes: List[str] = field(default_factory=list)

    @property
    def use_ssl(self) -> bool:
        return self.security_mode == LdapSecurityMode.SSL

    def user_filter_template(self) -> str:
        """Filter for one user by username, with ``{0}`` for the escaped value."""
        return self.user_search_filter or (
            f"(&(objectClass={self.user_object_class})({self.username_attribute}={{0}}))"
        )

    def email_filter_template(self) -> str:
        return self.email_search_filter or (
            f"(&(objectClass={self.user_object_class})({self.email_attribute}={{0}}))"
        )

    @classmethod
    def from_mapping(cls, config: Dict[str, Any]):
        """
        Build options from a plain dictionary.

        Required keys: 'host', 'base_dn'. Every other dataclass field may be
        given under its own name.

        Raises:
            TypeError: If config is not a dictionary.
            DirectoryConfigurationError: If required keys are missing or a
                value has the wrong shape.
        """
        _require(config, ["host", "base_dn"])
        known = set(cls.__dataclass_fields__)
        unknown = sorted(key for key in config if key not in known)
        if unknown:
            logger.debug(f"Ignoring unknown LDAP configuration keys: {unknown}")

        values = {key: value for key, value in config.items() if key in known and value is not None}
        try:
            if "port" in values:
                values["port"] = int(values["port"])
            if "page_size" in values:
                values["page_size"] = int(values["page_size"])
            for key in ("connect_timeout", "operation_timeout"):
                if key in values:
                    values[key] = float(values[key])
            if "security_mode" in values and not isinstance(values["security_mode"], LdapSecurityMode):
                values["security_mode"] = LdapSecurityMode(str(values["security_mode"]).lower())
        except ValueError as e:
            raise DirectoryConfigurationError(f"Invalid LDAP configuration value: {e}") from e
        if "validate_certificate" in values:
            values["validate_certificate"] = _as_bool(values["validate_certificate"], True)
        if "custom_attributes" in values:
            values["custom_attributes"] = _as_list(values["custom_attributes"])
        return cls(**values)


@dataclass
class OpenLdapOptions(LdapOptions):
    """OpenLDAP defaults: inetOrgPerson users, groupOfNames groups."""
    pass


@dataclass
class AppleDirectoryOptions(LdapOptions):
    """Apple Open Directory defaults."""

    user_object_class: str = "apple-user"
    unique_id_attribute: str = "apple-generateduid"
    group_object_class: str = "apple-group"
    group_member_attribute: str = "memberUid"
    computer_object_class: str = "apple-computer"


BackendOptions = Union[AzureAdOptions, OpenLdapOptions, AppleDirectoryOptions]


class DirectoryConfig:
    """Centralized directory configuration management."""

    @staticmethod
    def get_backend() -> DirectoryType:
        backend = os.getenv("DIRECTORY_BACKEND", "openldap").lower()
        try:
            return DirectoryType(backend)
        except ValueError:
            raise DirectoryConfigurationError(f"Unsupported directory backend: {backend}")

    @staticmethod
    def get_config(backend: Optional[DirectoryType] = None) -> Dict[str, Any]:
        """Get backend configuration from environment variables."""
        backend = backend or DirectoryConfig.get_backend()

        base_config = {
            "connect_timeout": os.getenv("DIRECTORY_CONNECT_TIMEOUT", "30"),
            "operation_timeout": os.getenv("DIRECTORY_OPERATION_TIMEOUT", "60"),
        }

        if backend == DirectoryType.AZURE_AD:
            base_config.update({
                "tenant_id": os.getenv("AZURE_TENANT_ID"),
                "client_id": os.getenv("AZURE_CLIENT_ID"),
                "auth_mode": os.getenv("AZURE_AUTH_MODE", "client_secret"),
                "client_secret": os.getenv("AZURE_CLIENT_SECRET"),
                "certificate_path": os.getenv("AZURE_CERTIFICATE_PATH"),
                "certificate_password": os.getenv("AZURE_CERTIFICATE_PASSWORD"),
                "managed_identity_client_id": os.getenv("AZURE_MANAGED_IDENTITY_CLIENT_ID"),
                "graph_base_url": os.getenv("AZURE_GRAPH_BASE_URL", GRAPH_BASE_URL),
            })
        else:
            base_config.update({
                "host": os.getenv("LDAP_HOST"),
                "port": os.getenv("LDAP_PORT"),
                "base_dn": os.getenv("LDAP_BASE_DN"),
                "bind_dn": os.getenv("LDAP_BIND_DN"),
                "bind_password": os.getenv("LDAP_BIND_PASSWORD"),
                "keyring_service": os.getenv("LDAP_KEYRING_SERVICE"),
                "security_mode": os.getenv("LDAP_SECURITY_MODE"),
                "validate_certificate": os.getenv("LDAP_VALIDATE_CERTIFICATE"),
                "page_size": os.getenv("LDAP_PAGE_SIZE"),
            })

        return base_config

    @staticmethod
    def get_options(backend: Optional[DirectoryType] = None) -> BackendOptions:
        """Build typed options for a backend from the environment."""
        backend = backend or DirectoryConfig.get_backend()
        config = DirectoryConfig.get_config(backend)

        if backend == DirectoryType.AZURE_AD:
            return AzureAdOptions.from_mapping(config)
        if backend == DirectoryType.APPLE_DIRECTORY:
            return AppleDirectoryOptions.from_mapping(config)
        return OpenLdapOptions.from_mapping(config)

    @staticmethod
    def get_example_configs() -> Dict[str, Dict[str, str]]:
        """Example environment settings for every backend."""
        return {
            "azure_ad": {
                "DIRECTORY_BACKEND": "azure_ad",
                "AZURE_TENANT_ID": "your_tenant_id",
                "AZURE_CLIENT_ID": "your_client_id",
                "AZURE_AUTH_MODE": "client_secret",
                "AZURE_CLIENT_SECRET": "your_client_secret",
            },
            "azure_ad_managed_identity": {
                "DIRECTORY_BACKEND": "azure_ad",
                "AZURE_TENANT_ID": "your_tenant_id",
                "AZURE_CLIENT_ID": "your_client_id",
                "AZURE_AUTH_MODE": "managed_identity",
            },
            "openldap": {
                "DIRECTORY_BACKEND": "openldap",
                "LDAP_HOST": "ldap.example.com",
                "LDAP_PORT": "389",
                "LDAP_BASE_DN": "dc=example,dc=com",
                "LDAP_BIND_DN": "cn=admin,dc=example,dc=com",
                "LDAP_KEYRING_SERVICE": "directory-services-hub",
                "LDAP_SECURITY_MODE": "start_tls",
            },
            "apple": {
                "DIRECTORY_BACKEND": "apple",
                "LDAP_HOST": "od.example.com",
                "LDAP_PORT": "636",
                "LDAP_BASE_DN": "dc=od,dc=example,dc=com",
                "LDAP_SECURITY_MODE": "ssl",
            },
        }
