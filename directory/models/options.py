from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional


class AuthenticationMode(Enum):
    """Ways a caller can prove its identity to a directory."""

    SIMPLE = "simple"
    ANONYMOUS = "anonymous"
    KERBEROS = "kerberos"
    NTLM = "ntlm"
    NEGOTIATE = "negotiate"
    INTEGRATED_WINDOWS = "integrated_windows"
    CERTIFICATE = "certificate"
    SASL_PLAIN = "sasl_plain"
    SASL_EXTERNAL = "sasl_external"
    SASL_DIGEST_MD5 = "sasl_digest_md5"
    SASL_GSSAPI = "sasl_gssapi"
    DEVICE_CODE = "device_code"
    INTERACTIVE_BROWSER = "interactive_browser"

    def __str__(self) -> str:
        return self.name


@dataclass
class AuthenticationOptions:
    """
    Credentials and behaviour for a single authenticate() call.

    Attributes:
        mode: Authentication mode to use.
        username: Login name, DN or UPN depending on the backend.
        password: Password for password-based modes.
        domain: Optional realm or domain hint.
        certificate_path: PEM/PFX path for certificate based modes.
        certificate_password: Password protecting the certificate file.
        include_groups: Resolve group names into the result.
        timeout: Seconds to wait for the bind or token request.
    """

    mode: AuthenticationMode = AuthenticationMode.SIMPLE
    username: Optional[str] = None
    password: Optional[str] = None
    domain: Optional[str] = None
    certificate_path: Optional[str] = None
    certificate_password: Optional[str] = None
    include_groups: bool = False
    timeout: float = 30.0

    def validate(self) -> None:
        """
        Check that the fields required by the selected mode are present.

        Raises:
            ValueError: If a required field is missing.
        """
        if self.mode in (AuthenticationMode.SIMPLE, AuthenticationMode.SASL_PLAIN):
            if not self.username:
                raise ValueError(f"username is required for {self.mode} authentication")
            if not self.password:
                raise ValueError(f"password is required for {self.mode} authentication")
        elif self.mode in (AuthenticationMode.CERTIFICATE, AuthenticationMode.SASL_EXTERNAL):
            if not self.certificate_path:
                raise ValueError(
                    f"certificate_path is required for {self.mode} authentication"
                )
        elif self.mode == AuthenticationMode.SASL_DIGEST_MD5:
            if not self.username or not self.password:
                raise ValueError(
                    "username and password are required for SASL DIGEST-MD5 authentication"
                )


@dataclass
class DeviceCodeInfo:
    """Instructions shown to the user during the device code flow."""

    user_code: str
    verification_uri: str
    message: str
    expires_on: Optional[datetime] = None


class ObjectType(Enum):
    USER = "user"
    COMPUTER = "computer"
    GROUP = "group"


def _looks_like_dn(value: str) -> bool:
    return "=" in value


@dataclass
class AccountOptions:
    """Identifies the account targeted by enable/disable/unlock operations."""

    distinguished_name: Optional[str] = None
    username: Optional[str] = None
    object_type: ObjectType = ObjectType.USER

    @classmethod
    def for_user(cls, username_or_dn: str) -> "AccountOptions":
        if _looks_like_dn(username_or_dn):
            return cls(distinguished_name=username_or_dn, object_type=ObjectType.USER)
        return cls(username=username_or_dn, object_type=ObjectType.USER)

    @classmethod
    def for_computer(cls, name_or_dn: str) -> "AccountOptions":
        if _looks_like_dn(name_or_dn):
            return cls(distinguished_name=name_or_dn, object_type=ObjectType.COMPUTER)
        return cls(username=name_or_dn, object_type=ObjectType.COMPUTER)

    @property
    def target(self) -> str:
        return self.distinguished_name or self.username or ""

    def validate(self) -> None:
        if not self.distinguished_name and not self.username:
            raise ValueError("Either distinguished_name or username must be provided")


@dataclass
class GroupMembershipOptions:
    """Which group to change and which members to add or remove."""

    group_distinguished_name: Optional[str] = None
    group_name: Optional[str] = None
    member_distinguished_name: Optional[str] = None
    member_username: Optional[str] = None
    member_distinguished_names: List[str] = field(default_factory=list)
    continue_on_error: bool = False

    def for_group_dn(self, dn: str) -> "GroupMembershipOptions":
        self.group_distinguished_name = dn
        return self

    def for_group(self, name: str) -> "GroupMembershipOptions":
        self.group_name = name
        return self

    def with_member_dn(self, dn: str) -> "GroupMembershipOptions":
        self.member_distinguished_name = dn
        return self

    def with_member(self, username: str) -> "GroupMembershipOptions":
        self.member_username = username
        return self

    def with_members(self, member_dns: Iterable[str]) -> "GroupMembershipOptions":
        self.member_distinguished_names = list(member_dns)
        return self

    def with_continue_on_error(self, continue_on_error: bool = True) -> "GroupMembershipOptions":
        self.continue_on_error = continue_on_error
        return self

    @property
    def group(self) -> str:
        return self.group_distinguished_name or self.group_name or ""

    @property
    def is_batch_operation(self) -> bool:
        return len(self.member_distinguished_names) > 1

    def all_member_dns(self) -> List[str]:
        if self.member_distinguished_names:
            return list(self.member_distinguished_names)
        if self.member_distinguished_name:
            return [self.member_distinguished_name]
        return []

    def validate(self) -> None:
        if not self.group_distinguished_name and not self.group_name:
            raise ValueError("Either group_distinguished_name or group_name must be provided")
        if not (
            self.member_distinguished_name
            or self.member_username
            or self.member_distinguished_names
        ):
            raise ValueError(
                "At least one member must be given via member_distinguished_name, "
                "member_username or member_distinguished_names"
            )


@dataclass
class PasswordOptions:
    """Password change or administrative reset for one account."""

    distinguished_name: Optional[str] = None
    username: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    is_administrative_reset: bool = False
    must_change_at_next_logon: bool = False

    def for_user_dn(self, dn: str) -> "PasswordOptions":
        self.distinguished_name = dn
        return self

    def for_username(self, username: str) -> "PasswordOptions":
        self.username = username
        return self

    def with_password_change(self, current_password: str, new_password: str) -> "PasswordOptions":
        self.current_password = current_password
        self.new_password = new_password
        self.is_administrative_reset = False
        return self

    def with_administrative_reset(self, new_password: str) -> "PasswordOptions":
        self.new_password = new_password
        self.is_administrative_reset = True
        return self

    def require_change_at_next_logon(self) -> "PasswordOptions":
        self.must_change_at_next_logon = True
        return self

    @property
    def target(self) -> str:
        return self.distinguished_name or self.username or ""

    def validate_for_change(self) -> None:
        if not self.distinguished_name and not self.username:
            raise ValueError("Either distinguished_name or username must be provided")
        if not self.new_password:
            raise ValueError("new_password is required")
        if not self.is_administrative_reset and not self.current_password:
            raise ValueError(
                "current_password is required for a non-administrative password change"
            )
