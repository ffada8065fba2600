from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .entities import DirectoryType
from .options import AuthenticationMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthenticationResult:
    """Outcome of an authenticate() call. Failures are values, not exceptions."""

    is_authenticated: bool
    authentication_mode: AuthenticationMode
    directory_type: DirectoryType
    username: Optional[str] = None
    user_distinguished_name: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    groups: List[str] = field(default_factory=list)
    authenticated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    token: Optional[str] = None

    @classmethod
    def success(
        cls,
        username: str,
        mode: AuthenticationMode,
        directory_type: DirectoryType,
        **details,
    ) -> "AuthenticationResult":
        return cls(
            is_authenticated=True,
            authentication_mode=mode,
            directory_type=directory_type,
            username=username,
            authenticated_at=_utcnow(),
            **details,
        )

    @classmethod
    def failure(
        cls,
        error_message: str,
        error_code: Optional[str],
        mode: AuthenticationMode,
        directory_type: DirectoryType,
        username: Optional[str] = None,
    ) -> "AuthenticationResult":
        return cls(
            is_authenticated=False,
            authentication_mode=mode,
            directory_type=directory_type,
            username=username,
            error_message=error_message,
            error_code=error_code,
        )

    @classmethod
    def not_supported(
        cls, mode: AuthenticationMode, directory_type: DirectoryType
    ) -> "AuthenticationResult":
        return cls.failure(
            f"Authentication mode '{mode}' is not supported by {directory_type}.",
            "NotSupported",
            mode,
            directory_type,
        )

    @property
    def is_not_supported(self) -> bool:
        return self.error_code == "NotSupported"


class ManagementOperation(Enum):
    ENABLE_ACCOUNT = "EnableAccount"
    DISABLE_ACCOUNT = "DisableAccount"
    UNLOCK_ACCOUNT = "UnlockAccount"
    ADD_TO_GROUP = "AddToGroup"
    REMOVE_FROM_GROUP = "RemoveFromGroup"
    MOVE_OBJECT = "MoveObject"
    RENAME_OBJECT = "RenameObject"
    CHANGE_PASSWORD = "ChangePassword"
    RESET_PASSWORD = "ResetPassword"
    FORCE_PASSWORD_CHANGE = "ForcePasswordChange"
    SET_PASSWORD_NEVER_EXPIRES = "SetPasswordNeverExpires"
    CLEAR_PASSWORD_NEVER_EXPIRES = "ClearPasswordNeverExpires"
    SET_ACCOUNT_EXPIRATION = "SetAccountExpiration"
    CLEAR_ACCOUNT_EXPIRATION = "ClearAccountExpiration"
    MODIFY_ATTRIBUTE = "ModifyAttribute"
    DELETE_OBJECT = "DeleteObject"

    def __str__(self) -> str:
        return self.value


@dataclass
class ManagementResult:
    """Outcome of a management operation."""

    is_success: bool
    operation: ManagementOperation
    target_distinguished_name: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    details: Optional[str] = None
    is_not_supported: bool = False
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def success(
        cls,
        operation: ManagementOperation,
        target_dn: Optional[str] = None,
        details: Optional[str] = None,
    ) -> "ManagementResult":
        return cls(
            is_success=True,
            operation=operation,
            target_distinguished_name=target_dn,
            details=details,
        )

    @classmethod
    def failure(
        cls,
        operation: ManagementOperation,
        error_message: str,
        error_code: Optional[int] = None,
        target_dn: Optional[str] = None,
    ) -> "ManagementResult":
        return cls(
            is_success=False,
            operation=operation,
            target_distinguished_name=target_dn,
            error_code=error_code,
            error_message=error_message,
        )

    @classmethod
    def not_supported(
        cls,
        operation: ManagementOperation,
        directory_type: DirectoryType,
        details: Optional[str] = None,
    ) -> "ManagementResult":
        return cls(
            is_success=False,
            operation=operation,
            error_message=f"Operation '{operation}' is not supported by {directory_type}.",
            details=details,
            is_not_supported=True,
        )


@dataclass
class GroupMembershipBatchResult:
    """Per-member outcomes of a batch add/remove."""

    results: List[ManagementResult] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.is_success)

    @property
    def failure_count(self) -> int:
        return self.total_count - self.success_count

    @property
    def is_full_success(self) -> bool:
        return self.failure_count == 0

    @property
    def is_partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0
