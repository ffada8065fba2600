import time
import unittest
from unittest.mock import MagicMock, patch

from ldap3 import AUTO_BIND_TLS_BEFORE_BIND, MODIFY_ADD, MODIFY_DELETE, SAFE_SYNC
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPStartTLSError
from prometheus_client import CollectorRegistry

from directory.adapters.apple_directory_adapter import AppleDirectoryAdapter
from directory.adapters.connection import ConnectionState
from directory.adapters.open_ldap_adapter import OpenLdapAdapter
from directory.config import AppleDirectoryOptions, LdapSecurityMode, OpenLdapOptions
from directory.exceptions import (
    DirectoryConfigurationError,
    DirectoryConnectionError,
    DirectoryNotSupportedError,
    DirectoryOperationError,
)
from directory.metrics import MetricsRecorder
from directory.models.criteria import UserSearchCriteria
from directory.models.options import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    GroupMembershipOptions,
    PasswordOptions,
)
from directory.models.results import ManagementOperation

PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
USER_DN = "uid=jdoe,ou=people,dc=example,dc=com"
GROUP_DN = "cn=staff,ou=groups,dc=example,dc=com"


def entry(dn, **attributes):
    return {"type": "searchResEntry", "dn": dn, "attributes": attributes}


def search_result(entries, cookie=None, code=0, description="success"):
    """Shape of a SAFE_SYNC search return value."""
    result = {"result": code, "description": description, "message": ""}
    if cookie is not None:
        result["controls"] = {PAGED_RESULTS_OID: {"value": {"size": 0, "cookie": cookie}}}
    return True, result, entries, None


def write_connection(code=0, description="success", bound=True):
    """Fresh SYNC connection: operations return bools, results live on the connection."""
    connection = MagicMock()
    connection.bind.return_value = bound
    connection.modify.return_value = code == 0
    connection.result = {"result": code, "description": description}
    connection.response = []
    return connection


JDOE = entry(USER_DN, uid=["jdoe"], cn=["John Doe"], mail=["jdoe@example.com"], entryUUID="u-1",
             memberOf=[GROUP_DN])


class LdapAdapterTestCase(unittest.IsolatedAsyncioTestCase):

    adapter_class = OpenLdapAdapter
    options_class = OpenLdapOptions

    def setUp(self):
        self.logger_mock = patch('directory.adapters.ldap_adapter.logger').start()
        self.registry = CollectorRegistry()
        self.options = self.options_class(
            "ldap.example.com",
            "dc=example,dc=com",
            bind_dn="cn=admin,dc=example,dc=com",
            bind_password="admin-secret",
            page_size=2,
        )
        self.adapter = self.adapter_class(self.options, MetricsRecorder(self.registry))

        self.shared = MagicMock()
        self.shared.search.return_value = search_result([JDOE])
        self.adapter._create_shared_connection = MagicMock(return_value=self.shared)

        self.fresh = write_connection()
        self.adapter._open_connection = MagicMock(return_value=self.fresh)
        self.admin = write_connection()
        self.adapter._admin_connection = MagicMock(return_value=self.admin)

    def tearDown(self):
        patch.stopall()

    def search_filters(self):
        return [c.kwargs["search_filter"] for c in self.shared.search.call_args_list]


class TestLdapLookups(LdapAdapterTestCase):
    """Test cases for lookups and searches on the shared connection."""

    async def test_get_user_by_username(self):
        user = await self.adapter.get_user_by_username("jdoe")

        self.assertEqual(user.username, "jdoe")
        self.assertEqual(user.distinguished_name, USER_DN)
        self.assertEqual(user.groups, [GROUP_DN])
        call = self.shared.search.call_args
        self.assertEqual(call.kwargs["search_filter"], "(&(objectClass=inetOrgPerson)(uid=jdoe))")
        self.assertEqual(call.kwargs["search_base"], "dc=example,dc=com")
        self.assertEqual(call.kwargs["size_limit"], 1)
        self.adapter._create_shared_connection.assert_called_once_with("admin-secret")

    async def test_username_is_escaped(self):
        await self.adapter.get_user_by_username("j*doe)")
        self.assertEqual(self.search_filters()[0], "(&(objectClass=inetOrgPerson)(uid=j\\2adoe\\29))")

    async def test_not_found_is_none(self):
        self.shared.search.return_value = search_result([])
        self.assertIsNone(await self.adapter.get_user_by_email("nobody@example.com"))

    async def test_missing_base_is_none(self):
        self.shared.search.return_value = search_result([], code=32, description="noSuchObject")
        self.assertIsNone(await self.adapter.get_group_by_dn("cn=gone,dc=example,dc=com"))

    async def test_referrals_are_skipped(self):
        self.shared.search.return_value = search_result(
            [{"type": "searchResRef", "uri": ["ldap://other/"]}, JDOE]
        )
        users = await self.adapter.search_users("(uid=j*)")
        self.assertEqual([user.username for user in users], ["jdoe"])

    async def test_search_error_is_wrapped(self):
        self.shared.search.return_value = search_result([], code=1, description="operationsError")
        with self.assertRaises(DirectoryOperationError) as context:
            await self.adapter.search_users("(uid=*)")
        self.assertEqual(context.exception.operation, "search_users")
        self.assertIsInstance(context.exception.__cause__, LDAPException)

    async def test_raw_filter_is_parenthesized(self):
        await self.adapter.search_groups("cn=staff", max_results=5)
        self.assertEqual(self.search_filters()[0], "(cn=staff)")
        self.assertEqual(self.shared.search.call_args.kwargs["size_limit"], 5)

    async def test_empty_raw_filter_rejected(self):
        with self.assertRaises(ValueError):
            await self.adapter.search_users("  ")

    async def test_get_user_groups(self):
        self.assertEqual(await self.adapter.get_user_groups("jdoe"), [GROUP_DN])
        self.shared.search.return_value = search_result([])
        self.assertEqual(await self.adapter.get_user_groups("nobody"), [])

    async def test_get_group_members_by_name(self):
        group = entry(GROUP_DN, cn=["staff"])
        self.shared.search.side_effect = [search_result([group]), search_result([JDOE])]

        result = await self.adapter.get_group_members("staff")

        self.assertEqual([user.username for user in result.items], ["jdoe"])
        filters = self.search_filters()
        self.assertEqual(filters[0], "(&(objectClass=groupOfNames)(|(cn=staff)(displayName=staff)))")
        self.assertEqual(filters[1], f"(&(objectClass=inetOrgPerson)(memberOf={GROUP_DN}))")

    async def test_get_group_members_unknown_group(self):
        self.shared.search.return_value = search_result([])
        result = await self.adapter.get_group_members("nope", page=2, page_size=5)
        self.assertEqual(result.items, [])
        self.assertEqual(result.total_count, 0)
        self.assertEqual(result.page, 2)

    async def test_get_computer_by_name(self):
        self.shared.search.return_value = search_result([entry("cn=lab-01,dc=example,dc=com", cn=["lab-01"])])
        computer = await self.adapter.get_computer_by_name("lab-01")
        self.assertEqual(computer.name, "lab-01")
        self.assertEqual(self.search_filters()[0], "(&(objectClass=device)(cn=lab-01))")


class TestLdapPaging(LdapAdapterTestCase):
    """Test cases for paged-results cookie handling."""

    async def test_paged_results_cookie_is_followed(self):
        users = [entry(f"uid=u{i},dc=example,dc=com", uid=[f"u{i}"]) for i in range(3)]
        self.shared.search.side_effect = [
            search_result(users[:2], cookie=b"page-2"),
            search_result(users[2:], cookie=b""),
        ]

        result = await self.adapter.search_users_paged(UserSearchCriteria().with_username("u*"), page=2, page_size=2)

        self.assertEqual([user.username for user in result.items], ["u2"])
        self.assertEqual(result.total_count, 3)
        first, second = self.shared.search.call_args_list
        self.assertEqual(first.kwargs["paged_size"], 2)
        self.assertIsNone(first.kwargs["paged_cookie"])
        self.assertEqual(second.kwargs["paged_cookie"], b"page-2")
        self.assertEqual(first.kwargs["search_filter"], "(&(objectClass=inetOrgPerson)(uid=u*))")

    async def test_get_all_users_filters_on_object_class_only(self):
        await self.adapter.get_all_users()
        self.assertEqual(self.search_filters()[0], "(&(objectClass=inetOrgPerson))")


class TestLdapConnection(LdapAdapterTestCase):
    """Test cases for shared connection handling."""

    async def test_connection_failure_is_wrapped(self):
        self.adapter._create_shared_connection.side_effect = LDAPSocketOpenError("unreachable")
        with self.assertRaises(DirectoryConnectionError) as context:
            await self.adapter.get_user_by_username("jdoe")
        self.assertIsInstance(context.exception.__cause__, LDAPSocketOpenError)

        # the next call retries
        self.adapter._create_shared_connection.side_effect = None
        self.assertIsNotNone(await self.adapter.get_user_by_username("jdoe"))

    async def test_bind_password_from_keyring(self):
        self.adapter.options.bind_password = None
        self.adapter.options.keyring_service = "directory-services-hub"
        with patch('directory.adapters.ldap_adapter.keyring') as mock_keyring:
            mock_keyring.get_password.return_value = "from-keyring"
            await self.adapter.connect()

        mock_keyring.get_password.assert_called_once_with("directory-services-hub", "cn=admin,dc=example,dc=com")
        self.adapter._create_shared_connection.assert_called_once_with("from-keyring")

    async def test_missing_bind_password(self):
        self.adapter.options.bind_password = None
        with self.assertRaises(DirectoryConnectionError) as context:
            await self.adapter.connect()
        self.assertIsInstance(context.exception.__cause__, DirectoryConfigurationError)

    async def test_operation_timeout_keeps_connection(self):
        await self.adapter.connect()
        self.adapter.operation_timeout = 0.05

        def slow_search(**kwargs):
            time.sleep(0.3)
            return search_result([])

        self.shared.search.side_effect = slow_search
        with self.assertRaises(DirectoryOperationError) as context:
            await self.adapter.get_user_by_username("jdoe")
        self.assertIn("timed out", str(context.exception))
        self.assertEqual(self.adapter._connection.state, ConnectionState.READY)

    async def test_close(self):
        await self.adapter.connect()
        async with self.adapter:
            pass
        self.shared.unbind.assert_called_once()
        self.assertEqual(self.adapter._connection.state, ConnectionState.UNCONNECTED)

    def test_shared_connection_settings(self):
        options = OpenLdapOptions("ldap.example.com", "dc=example,dc=com", bind_dn="cn=admin",
                                  security_mode=LdapSecurityMode.START_TLS)
        adapter = OpenLdapAdapter(options, MetricsRecorder(CollectorRegistry()))
        with patch('directory.adapters.ldap_adapter.Server') as mock_server, \
                patch('directory.adapters.ldap_adapter.Connection') as mock_connection:
            adapter._create_shared_connection("pw")

        mock_server.assert_called_once()
        kwargs = mock_connection.call_args.kwargs
        self.assertEqual(kwargs["client_strategy"], SAFE_SYNC)
        self.assertEqual(kwargs["auto_bind"], AUTO_BIND_TLS_BEFORE_BIND)
        self.assertTrue(kwargs["read_only"])
        self.assertEqual(kwargs["user"], "cn=admin")

    def test_fresh_connection_unbound_when_start_tls_fails(self):
        options = OpenLdapOptions("ldap.example.com", "dc=example,dc=com", security_mode=LdapSecurityMode.START_TLS)
        adapter = OpenLdapAdapter(options, MetricsRecorder(CollectorRegistry()))
        with patch('directory.adapters.ldap_adapter.Server'), \
                patch('directory.adapters.ldap_adapter.Connection') as mock_connection:
            mock_connection.return_value.start_tls.side_effect = LDAPStartTLSError("handshake failed")
            with self.assertRaises(LDAPStartTLSError):
                adapter._open_connection("uid=jdoe,dc=example,dc=com", "secret")

        mock_connection.return_value.open.assert_called_once()
        mock_connection.return_value.unbind.assert_called_once()

    def test_fresh_connection_left_open_on_success(self):
        options = OpenLdapOptions("ldap.example.com", "dc=example,dc=com", security_mode=LdapSecurityMode.START_TLS)
        adapter = OpenLdapAdapter(options, MetricsRecorder(CollectorRegistry()))
        with patch('directory.adapters.ldap_adapter.Server'), \
                patch('directory.adapters.ldap_adapter.Connection') as mock_connection:
            connection = adapter._open_connection("uid=jdoe,dc=example,dc=com", "secret")

        self.assertIs(connection, mock_connection.return_value)
        connection.start_tls.assert_called_once()
        connection.unbind.assert_not_called()


class TestLdapAuthentication(LdapAdapterTestCase):
    """Test cases for credential checks and authenticate()."""

    async def test_validate_credentials(self):
        self.assertTrue(await self.adapter.validate_credentials("jdoe", "secret"))
        self.adapter._open_connection.assert_called_once_with(USER_DN, "secret", "SIMPLE", None, None)
        self.fresh.unbind.assert_called_once()

    async def test_validate_credentials_wrong_password(self):
        self.fresh.bind.return_value = False
        self.fresh.result = {"result": 49, "description": "invalidCredentials"}
        self.assertFalse(await self.adapter.validate_credentials("jdoe", "wrong"))

    async def test_validate_credentials_empty_password_never_binds(self):
        self.assertFalse(await self.adapter.validate_credentials("jdoe", ""))
        self.adapter._open_connection.assert_not_called()

    async def test_validate_credentials_unknown_user(self):
        self.shared.search.return_value = search_result([])
        self.assertFalse(await self.adapter.validate_credentials("nobody", "secret"))

    async def test_other_bind_errors_are_faults(self):
        self.fresh.bind.return_value = False
        self.fresh.result = {"result": 52, "description": "unavailable"}
        with self.assertRaises(DirectoryOperationError):
            await self.adapter.validate_credentials("jdoe", "secret")

    async def test_authenticate_simple(self):
        options = AuthenticationOptions(AuthenticationMode.SIMPLE, "jdoe", "secret", include_groups=True)
        result = await self.adapter.authenticate(options)

        self.assertTrue(result.is_authenticated)
        self.assertEqual(result.user_distinguished_name, USER_DN)
        self.assertEqual(result.email, "jdoe@example.com")
        self.assertEqual(result.groups, [GROUP_DN])
        self.assertEqual(
            self.registry.get_sample_value(
                "directory_authentications_total",
                {"backend": "openldap", "mode": "simple", "outcome": "success"},
            ),
            1,
        )

    async def test_authenticate_invalid_credentials(self):
        self.fresh.bind.return_value = False
        self.fresh.result = {"result": 49, "description": "invalidCredentials"}
        result = await self.adapter.authenticate(AuthenticationOptions(AuthenticationMode.SIMPLE, "jdoe", "bad"))
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_code, "InvalidCredentials")

    async def test_authenticate_invalid_options(self):
        result = await self.adapter.authenticate(AuthenticationOptions(AuthenticationMode.SIMPLE, "jdoe"))
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_code, "InvalidOptions")

    async def test_authenticate_sasl_plain(self):
        options = AuthenticationOptions(AuthenticationMode.SASL_PLAIN, "jdoe", "secret")
        result = await self.adapter.authenticate(options)
        self.assertTrue(result.is_authenticated)
        self.adapter._open_connection.assert_called_once_with(None, None, "SASL", "PLAIN", (None, "jdoe", "secret"))

    async def test_authenticate_anonymous_rejected(self):
        self.fresh.bind.return_value = False
        self.fresh.result = {"result": 48, "description": "inappropriateAuthentication"}
        result = await self.adapter.authenticate(AuthenticationOptions(AuthenticationMode.ANONYMOUS))
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_code, "AnonymousBindRejected")

    async def test_unsupported_modes(self):
        for mode in (AuthenticationMode.NTLM, AuthenticationMode.SASL_GSSAPI, AuthenticationMode.CERTIFICATE):
            result = await self.adapter.authenticate(AuthenticationOptions(mode, "jdoe", "secret"))
            self.assertTrue(result.is_not_supported)

    async def test_interactive_flows_raise(self):
        with self.assertRaises(DirectoryNotSupportedError):
            await self.adapter.authenticate_with_device_code(lambda info: None)
        with self.assertRaises(DirectoryNotSupportedError):
            await self.adapter.authenticate_with_interactive_browser()


class TestOpenLdapManagement(LdapAdapterTestCase):
    """Test cases for OpenLDAP membership and password management."""

    def membership(self):
        return GroupMembershipOptions().for_group_dn(GROUP_DN).with_member_dn(USER_DN)

    async def test_add_to_group(self):
        result = await self.adapter.add_to_group(self.membership())

        self.assertTrue(result.is_success)
        self.admin.modify.assert_called_once_with(GROUP_DN, {"member": [(MODIFY_ADD, [USER_DN])]})
        self.admin.unbind.assert_called_once()

    async def test_add_existing_member_is_success(self):
        self.admin.modify.return_value = False
        self.admin.result = {"result": 20, "description": "attributeOrValueExists"}
        result = await self.adapter.add_to_group(self.membership())
        self.assertTrue(result.is_success)
        self.assertIn("already a member", result.details)

    async def test_remove_missing_member_is_success(self):
        self.admin.modify.return_value = False
        self.admin.result = {"result": 16, "description": "noSuchAttribute"}
        result = await self.adapter.remove_from_group(self.membership())
        self.assertTrue(result.is_success)
        self.admin.modify.assert_called_once_with(GROUP_DN, {"member": [(MODIFY_DELETE, [USER_DN])]})

    async def test_modify_failure(self):
        self.admin.modify.return_value = False
        self.admin.result = {"result": 50, "description": "insufficientAccessRights"}
        result = await self.adapter.add_to_group(self.membership())
        self.assertFalse(result.is_success)
        self.assertEqual(result.error_code, 50)
        self.assertEqual(result.error_message, "insufficientAccessRights")

    async def test_member_resolved_by_username(self):
        options = GroupMembershipOptions().for_group_dn(GROUP_DN).with_member("jdoe")
        result = await self.adapter.add_to_group(options)
        self.assertTrue(result.is_success)
        self.assertEqual(result.details, USER_DN)

    async def test_invalid_membership_options(self):
        result = await self.adapter.add_to_group(GroupMembershipOptions().for_group_dn(GROUP_DN))
        self.assertFalse(result.is_success)
        self.admin.modify.assert_not_called()

    async def test_batch_stops_on_first_failure(self):
        results =[{"result": 0}, {"result": 50, "description": "insufficientAccessRights"}, {"result": 0}]

        def modify(dn, changes):
            self.admin.result = results.pop(0)
            return self.admin.result["result"] == 0

        self.admin.modify.side_effect = modify
        options = GroupMembershipOptions().for_group_dn(GROUP_DN).with_members(["uid=a", "uid=b", "uid=c"])
        batch = await self.adapter.add_to_group_batch(options)

        self.assertEqual(batch.total_count, 2)
        self.assertEqual(batch.success_count, 1)
        self.assertTrue(batch.is_partial_success)

    async def test_batch_continue_on_error(self):
        def modify(dn, changes):
            member = changes["member"][0][1][0]
            self.admin.result = {"result": 50 if member == "uid=b" else 0, "description": "denied"}
            return self.admin.result["result"] == 0

        self.admin.modify.side_effect = modify
        options = (
            GroupMembershipOptions()
            .for_group_dn(GROUP_DN)
            .with_members(["uid=a", "uid=b", "uid=c"])
            .with_continue_on_error()
        )
        batch = await self.adapter.remove_from_group_batch(options)
        self.assertEqual(batch.total_count, 3)
        self.assertEqual(batch.failure_count, 1)

    async def test_change_password(self):
        options = PasswordOptions().for_user_dn(USER_DN).with_password_change("old", "new")
        result = await self.adapter.change_password(options)

        self.assertTrue(result.is_success)
        self.adapter._open_connection.assert_called_once_with(USER_DN, "old")
        self.fresh.extend.standard.modify_password.assert_called_once_with(USER_DN, "old", "new")

    async def test_change_password_wrong_current_password(self):
        self.fresh.bind.return_value = False
        self.fresh.result = {"result": 49, "description": "invalidCredentials"}
        options = PasswordOptions().for_user_dn(USER_DN).with_password_change("bad", "new")
        result = await self.adapter.change_password(options)
        self.assertFalse(result.is_success)
        self.assertEqual(result.error_message, "Current password is incorrect")
        self.fresh.extend.standard.modify_password.assert_not_called()

    async def test_reset_password_with_forced_change(self):
        options = PasswordOptions().for_username("jdoe").with_administrative_reset("new").require_change_at_next_logon()
        result = await self.adapter.reset_password(options)

        self.assertTrue(result.is_success)
        self.assertEqual(result.operation, ManagementOperation.RESET_PASSWORD)
        self.admin.extend.standard.modify_password.assert_called_once_with(USER_DN, None, "new")
        self.admin.modify.assert_called_once()
        self.assertIn("pwdReset", self.admin.modify.call_args.args[1])

    async def test_reset_password_does_not_modify_caller_options(self):
        options = PasswordOptions().for_username("jdoe").with_password_change("old", "new")
        await self.adapter.reset_password(options)
        self.assertFalse(options.is_administrative_reset)

    async def test_unsupported_operations(self):
        for call in (
            self.adapter.enable_account(AccountOptions.for_user("jdoe")),
            self.adapter.disable_account(AccountOptions.for_user("jdoe")),
            self.adapter.unlock_account(AccountOptions.for_user("jdoe")),
            self.adapter.force_password_change(AccountOptions.for_user("jdoe")),
            self.adapter.set_password_never_expires(AccountOptions.for_user("jdoe")),
        ):
            result = await call
            self.assertTrue(result.is_not_supported)
        self.assertEqual(
            self.adapter.get_supported_management_operations(),
            [
                ManagementOperation.ADD_TO_GROUP,
                ManagementOperation.REMOVE_FROM_GROUP,
                ManagementOperation.CHANGE_PASSWORD,
                ManagementOperation.RESET_PASSWORD,
            ],
        )


class TestAppleDirectoryAdapter(LdapAdapterTestCase):
    """Test cases for the Apple Open Directory backend."""

    adapter_class = AppleDirectoryAdapter
    options_class = AppleDirectoryOptions

    async def test_linear_scan_without_paged_control(self):
        users = [entry(f"uid=u{i},dc=example,dc=com", uid=[f"u{i}"]) for i in range(5)]
        self.shared.search.return_value = search_result(users)

        result = await self.adapter.get_all_users(page=2, page_size=2)

        self.assertEqual([user.username for user in result.items], ["u2", "u3"])
        self.assertEqual(result.total_count, 5)
        self.shared.search.assert_called_once()
        self.assertNotIn("paged_size", self.shared.search.call_args.kwargs)
        self.assertEqual(self.search_filters()[0], "(&(objectClass=apple-user))")

    async def test_management_not_supported(self):
        result = await self.adapter.add_to_group(
            GroupMembershipOptions().for_group_dn(GROUP_DN).with_member_dn(USER_DN)
        )
        self.assertTrue(result.is_not_supported)
        self.assertEqual(result.error_message, "Operation 'AddToGroup' is not supported by APPLE_DIRECTORY.")
        self.assertEqual(self.adapter.get_supported_management_operations(), [])

    async def test_batch_stops_after_not_supported(self):
        options = GroupMembershipOptions().for_group_dn(GROUP_DN).with_members(["uid=a", "uid=b"])
        batch = await self.adapter.add_to_group_batch(options)
        self.assertEqual(batch.total_count, 1)
        self.assertTrue(batch.results[0].is_not_supported)

    async def test_password_change_not_supported(self):
        options = PasswordOptions().for_username("jdoe").with_password_change("old", "new")
        self.assertTrue((await self.adapter.change_password(options)).is_not_supported)


if __name__ == '__main__':
    unittest.main()
