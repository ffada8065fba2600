import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type, TypeVar, Union

from ..exceptions import DirectoryNotSupportedError, DirectoryOperationError, DirectoryServiceError
from ..metrics import MetricsRecorder, get_default_recorder
from ..models.criteria import ComputerSearchCriteria, GroupSearchCriteria, UserSearchCriteria
from ..models.entities import DirectoryType, LdapComputer, LdapGroup, LdapUser
from ..models.options import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    DeviceCodeInfo,
    GroupMembershipOptions,
    PasswordOptions,
)
from ..models.paging import PagedResult
from ..models.results import (
    AuthenticationResult,
    GroupMembershipBatchResult,
    ManagementOperation,
    ManagementResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DeviceCodeCallback = Callable[[DeviceCodeInfo], Union[None, Awaitable[None]]]


class BaseDirectoryAdapter(ABC):
    """
    Abstract base class for directory service adapters.

    Every backend exposes the same asynchronous contract: lookups, raw and
    criteria searches, paginated listings, credential checks, multi-mode
    authentication and account management. Lookups return None when the
    entry does not exist. Backend faults surface as DirectoryOperationError.
    Management operations a backend cannot perform return a "not supported"
    ManagementResult rather than raising.
    """

    directory_type: DirectoryType
    #: Vendor exceptions wrapped into DirectoryOperationError by _execute.
    backend_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, operation_timeout: float, metrics: Optional[MetricsRecorder] = None):
        self.operation_timeout = operation_timeout
        self.metrics = metrics or get_default_recorder()

    @property
    def backend_label(self) -> str:
        return self.directory_type.value

    # Execution helpers

    async def _execute(self, operation: str, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Run one public operation with timeout, metrics and error wrapping.

        Cancellation propagates unchanged. A timeout only abandons this
        operation; the shared connection stays as it is.

        Args:
            operation: Operation name for logs, metrics and errors.
            awaitable: The operation body.
            timeout: Overrides operation_timeout, for user-interactive flows.
        """
        timeout = self.operation_timeout if timeout is None else timeout
        with self.metrics.track(self.backend_label, operation):
            try:
                return await asyncio.wait_for(awaitable, timeout=timeout)
            except asyncio.TimeoutError as e:
                logger.error(f"{self.backend_label} {operation} timed out after {timeout}s")
                raise DirectoryOperationError(operation, f"timed out after {timeout}s") from e
            except DirectoryServiceError:
                raise
            except self.backend_errors as e:
                logger.error(f"{self.backend_label} {operation} failed: {e}")
                raise DirectoryOperationError(operation, str(e)) from e

    async def _run_blocking(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking vendor call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _not_supported(self, operation: ManagementOperation) -> ManagementResult:
        logger.debug(f"{operation} is not supported by {self.directory_type}")
        return ManagementResult.not_supported(operation, self.directory_type)

    # Lifecycle

    @abstractmethod
    async def connect(self) -> None:
        """Establish the shared connection ahead of the first call."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the shared connection."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # Users

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[LdapUser]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[LdapUser]:
        pass

    @abstractmethod
    async def search_users(self, search_filter: str, max_results: int = 100) -> List[LdapUser]:
        """Search with a raw backend filter (LDAP filter or OData $filter)."""
        pass

    @abstractmethod
    async def search_users_paged(
        self, criteria: UserSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapUser]:
        pass

    @abstractmethod
    async def get_all_users(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapUser]:
        pass

    @abstractmethod
    async def get_group_members(
        self, group: str, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapUser]:
        """Members of a group given by DN/id or by name."""
        pass

    @abstractmethod
    async def get_user_groups(self, username: str) -> List[str]:
        pass

    @abstractmethod
    async def validate_credentials(self, username: str, password: str) -> bool:
        """True when the password is correct, False for bad credentials."""
        pass

    # Groups

    @abstractmethod
    async def get_group_by_name(self, name: str) -> Optional[LdapGroup]:
        pass

    @abstractmethod
    async def get_group_by_dn(self, dn_or_id: str) -> Optional[LdapGroup]:
        pass

    @abstractmethod
    async def search_groups(self, search_filter: str, max_results: int = 100) -> List[LdapGroup]:
        pass

    @abstractmethod
    async def search_groups_paged(
        self, criteria: GroupSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapGroup]:
        pass

    @abstractmethod
    async def get_all_groups(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapGroup]:
        pass

    # Computers

    @abstractmethod
    async def get_computer_by_name(self, name: str) -> Optional[LdapComputer]:
        pass

    @abstractmethod
    async def get_computer_by_dn(self, dn_or_id: str) -> Optional[LdapComputer]:
        pass

    @abstractmethod
    async def search_computers(self, search_filter: str, max_results: int = 100) -> List[LdapComputer]:
        pass

    @abstractmethod
    async def search_computers_paged(
        self, criteria: ComputerSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapComputer]:
        pass

    @abstractmethod
    async def get_all_computers(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapComputer]:
        pass

    # Authentication

    @abstractmethod
    async def authenticate(self, options: AuthenticationOptions) -> AuthenticationResult:
        pass

    @abstractmethod
    def get_supported_authentication_modes(self) -> List[AuthenticationMode]:
        pass

    async def authenticate_with_device_code(
        self, callback: DeviceCodeCallback
    ) -> AuthenticationResult:
        raise DirectoryNotSupportedError(str(AuthenticationMode.DEVICE_CODE), self.directory_type)

    async def authenticate_with_interactive_browser(self) -> AuthenticationResult:
        raise DirectoryNotSupportedError(
            str(AuthenticationMode.INTERACTIVE_BROWSER), self.directory_type
        )

    # Management. Backends override what they support.

    def get_supported_management_operations(self) -> List[ManagementOperation]:
        return []

    async def enable_account(self, account: AccountOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.ENABLE_ACCOUNT)

    async def disable_account(self, account: AccountOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.DISABLE_ACCOUNT)

    async def unlock_account(self, account: AccountOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.UNLOCK_ACCOUNT)

    async def add_to_group(self, options: GroupMembershipOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.ADD_TO_GROUP)

    async def remove_from_group(self, options: GroupMembershipOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.REMOVE_FROM_GROUP)

    async def change_password(self, options: PasswordOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.CHANGE_PASSWORD)

    async def reset_password(self, options: PasswordOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.RESET_PASSWORD)

    async def force_password_change(self, account: AccountOptions) -> ManagementResult:
        return self._not_supported(ManagementOperation.FORCE_PASSWORD_CHANGE)

    async def set_password_never_expires(
        self, account: AccountOptions, never_expires: bool = True
    ) -> ManagementResult:
        operation = (
            ManagementOperation.SET_PASSWORD_NEVER_EXPIRES
            if never_expires
            else ManagementOperation.CLEAR_PASSWORD_NEVER_EXPIRES
        )
        return self._not_supported(operation)

    async def add_to_group_batch(self, options: GroupMembershipOptions) -> GroupMembershipBatchResult:
        return await self._membership_batch(options, self.add_to_group)

    async def remove_from_group_batch(self, options: GroupMembershipOptions) -> GroupMembershipBatchResult:
        return await self._membership_batch(options, self.remove_from_group)

    async def _membership_batch(
        self,
        options: GroupMembershipOptions,
        single: Callable[[GroupMembershipOptions], Awaitable[ManagementResult]],
    ) -> GroupMembershipBatchResult:
        """
        Apply a membership change member by member.

        Stops at the first failure unless continue_on_error is set. A
        not-supported result always stops the batch.
        """
        options.validate()
        batch = GroupMembershipBatchResult()
        member_dns = options.all_member_dns()
        if not member_dns and options.member_username:
            member_dns = [None]

        for member_dn in member_dns:
            member_options = replace(options, member_distinguished_names=[])
            if member_dn is not None:
                member_options.member_distinguished_name = member_dn
                member_options.member_username = None
            result = await single(member_options)
            batch.results.append(result)
            if result.is_not_supported:
                break
            if not result.is_success and not options.continue_on_error:
                logger.warning(f"Stopping membership batch after failure on {member_dn}: {result.error_message}")
                break

        logger.info(
            f"Membership batch on {options.group}: {batch.success_count}/{batch.total_count} succeeded"
        )
        return batch

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.directory_type})"
