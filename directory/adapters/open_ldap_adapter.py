import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from ldap3 import MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE
from ldap3.core.results import (
    RESULT_ATTRIBUTE_OR_VALUE_EXISTS,
    RESULT_INVALID_CREDENTIALS,
    RESULT_NO_SUCH_ATTRIBUTE,
    RESULT_SUCCESS,
)

from ..config import OpenLdapOptions
from ..metrics import MetricsRecorder
from ..models.entities import DirectoryType
from ..models.options import GroupMembershipOptions, PasswordOptions
from ..models.results import ManagementOperation, ManagementResult
from .ldap_adapter import LdapDirectoryAdapter, unpack_result

logger = logging.getLogger(__name__)

# (result code, description) of a write on a fresh connection
WriteOutcome = Tuple[int, str]


class OpenLdapAdapter(LdapDirectoryAdapter):
    """
    OpenLDAP backend.

    Supports group membership changes on the configured member attribute and
    password change/reset through the RFC 3062 password modify extended
    operation. Account enable/disable/unlock have no standard OpenLDAP
    representation and report "not supported".
    """

    directory_type = DirectoryType.OPEN_LDAP

    def __init__(self, options: OpenLdapOptions, metrics: Optional[MetricsRecorder] = None):
        super().__init__(options, metrics)

    def get_supported_management_operations(self) -> List[ManagementOperation]:
        return [
            ManagementOperation.ADD_TO_GROUP,
            ManagementOperation.REMOVE_FROM_GROUP,
            ManagementOperation.CHANGE_PASSWORD,
            ManagementOperation.RESET_PASSWORD,
        ]

    # Blocking write primitives, each on its own connection

    def _modify(self, dn: str, changes: Dict[str, Any]) -> WriteOutcome:
        connection = self._admin_connection()
        try:
            _, result, _ = unpack_result(connection, connection.modify(dn, changes))
            return result.get("result", RESULT_SUCCESS), result.get("description", "")
        finally:
            connection.unbind()

    def _change_own_password(self, user_dn: str, current_password: str, new_password: str) -> WriteOutcome:
        connection = self._open_connection(user_dn, current_password)
        try:
            bound, result, _ = unpack_result(connection, connection.bind())
            if not bound:
                return result.get("result", RESULT_INVALID_CREDENTIALS), result.get("description", "")
            connection.extend.standard.modify_password(user_dn, current_password, new_password)
            result = connection.result or {}
            return result.get("result", RESULT_SUCCESS), result.get("description", "")
        finally:
            connection.unbind()

    def _reset_password(self, user_dn: str, new_password: str, must_change: bool) -> Tuple[int, str, Optional[str]]:
        connection = self._admin_connection()
        try:
            connection.extend.standard.modify_password(user_dn, None, new_password)
            result = connection.result or {}
            code = result.get("result", RESULT_SUCCESS)
            if code != RESULT_SUCCESS or not must_change:
                return code, result.get("description", ""), None

            # pwdReset needs the ppolicy overlay; the reset itself already succeeded
            connection.modify(user_dn, {"pwdReset": [(MODIFY_REPLACE, ["TRUE"])]})
            reset_result = connection.result or {}
            if reset_result.get("result", RESULT_SUCCESS) != RESULT_SUCCESS:
                detail = f"Password reset, but pwdReset could not be set: {reset_result.get('description')}"
                logger.warning(detail)
                return code, result.get("description", ""), detail
            return code, result.get("description", ""), "User must change password at next logon"
        finally:
            connection.unbind()

    # Group membership

    async def add_to_group(self, options: GroupMembershipOptions) -> ManagementResult:
        return await self._execute("add_to_group", self._change_membership(options, MODIFY_ADD))

    async def remove_from_group(self, options: GroupMembershipOptions) -> ManagementResult:
        return await self._execute("remove_from_group", self._change_membership(options, MODIFY_DELETE))

    async def _change_membership(self, options: GroupMembershipOptions, change: str) -> ManagementResult:
        operation = ManagementOperation.ADD_TO_GROUP if change == MODIFY_ADD else ManagementOperation.REMOVE_FROM_GROUP
        try:
            options.validate()
        except ValueError as e:
            return ManagementResult.failure(operation, str(e))

        group_dn = await self._resolve_group_dn(options.group)
        if not group_dn:
            return ManagementResult.failure(operation, f"Group '{options.group}' not found")

        member_dns = options.all_member_dns()
        member_dn = member_dns[0] if member_dns else await self._resolve_user_dn(options.member_username)
        if not member_dn:
            return ManagementResult.failure(operation, f"Member '{options.member_username}' not found", target_dn=group_dn)

        code, description = await self._run_blocking(
            self._modify, group_dn, {self.options.group_member_attribute: [(change, [member_dn])]}
        )
        if code == RESULT_SUCCESS:
            logger.info(f"{operation}: {member_dn} -> {group_dn}")
            return ManagementResult.success(operation, group_dn, details=member_dn)
        if change == MODIFY_ADD and code == RESULT_ATTRIBUTE_OR_VALUE_EXISTS:
            return ManagementResult.success(operation, group_dn, details=f"{member_dn} is already a member")
        if change == MODIFY_DELETE and code == RESULT_NO_SUCH_ATTRIBUTE:
            return ManagementResult.success(operation, group_dn, details=f"{member_dn} was not a member")

        logger.warning(f"{operation} on {group_dn} failed: {code} {description}")
        return ManagementResult.failure(operation, description or "Modify failed", code, group_dn)

    # Passwords

    async def change_password(self, options: PasswordOptions) -> ManagementResult:
        async def run():
            operation = ManagementOperation.CHANGE_PASSWORD
            try:
                options.validate_for_change()
            except ValueError as e:
                return ManagementResult.failure(operation, str(e))
            if options.is_administrative_reset:
                return await self._reset(options)

            user_dn = await self._resolve_user_dn(options.target)
            if not user_dn:
                return ManagementResult.failure(operation, f"User '{options.target}' not found")

            code, description = await self._run_blocking(
                self._change_own_password, user_dn, options.current_password, options.new_password
            )
            if code == RESULT_SUCCESS:
                logger.info(f"Password changed for {user_dn}")
                return ManagementResult.success(operation, user_dn)
            if code == RESULT_INVALID_CREDENTIALS:
                return ManagementResult.failure(operation, "Current password is incorrect", code, user_dn)
            return ManagementResult.failure(operation, description or "Password change failed", code, user_dn)

        return await self._execute("change_password", run())

    async def reset_password(self, options: PasswordOptions) -> ManagementResult:
        reset_options = replace(options, is_administrative_reset=True)

        async def run():
            try:
                reset_options.validate_for_change()
            except ValueError as e:
                return ManagementResult.failure(ManagementOperation.RESET_PASSWORD, str(e))
            return await self._reset(reset_options)

        return await self._execute("reset_password", run())

    async def _reset(self, options: PasswordOptions) -> ManagementResult:
        operation = ManagementOperation.RESET_PASSWORD
        user_dn = await self._resolve_user_dn(options.target)
        if not user_dn:
            return ManagementResult.failure(operation, f"User '{options.target}' not found")

        code, description, detail = await self._run_blocking(
            self._reset_password, user_dn, options.new_password, options.must_change_at_next_logon
        )
        if code == RESULT_SUCCESS:
            logger.info(f"Password reset for {user_dn}")
            return ManagementResult.success(operation, user_dn, details=detail)
        return ManagementResult.failure(operation, description or "Password reset failed", code, user_dn)
