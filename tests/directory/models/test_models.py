import unittest

from directory.models.entities import DirectoryType, LdapComputer, LdapGroup, LdapUser
from directory.models.options import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    GroupMembershipOptions,
    ObjectType,
    PasswordOptions,
)
from directory.models.results import (
    AuthenticationResult,
    GroupMembershipBatchResult,
    ManagementOperation,
    ManagementResult,
)


class TestEntities(unittest.TestCase):

    def test_non_nullable_names_default_to_empty(self):
        self.assertEqual(LdapUser().username, "")
        self.assertEqual(LdapGroup().name, "")
        self.assertEqual(LdapComputer().name, "")
        self.assertEqual(LdapUser().groups, [])

    def test_directory_type_str(self):
        self.assertEqual(str(DirectoryType.OPEN_LDAP), "OPEN_LDAP")
        self.assertEqual(DirectoryType("azure_ad"), DirectoryType.AZURE_AD)


class TestAuthenticationOptions(unittest.TestCase):

    def test_simple_requires_username_and_password(self):
        with self.assertRaises(ValueError):
            AuthenticationOptions(AuthenticationMode.SIMPLE, username="jdoe").validate()
        with self.assertRaises(ValueError):
            AuthenticationOptions(AuthenticationMode.SIMPLE, password="secret").validate()
        AuthenticationOptions(AuthenticationMode.SIMPLE, "jdoe", "secret").validate()

    def test_certificate_requires_path(self):
        with self.assertRaises(ValueError):
            AuthenticationOptions(AuthenticationMode.CERTIFICATE).validate()
        AuthenticationOptions(AuthenticationMode.CERTIFICATE, certificate_path="/tmp/app.pfx").validate()

    def test_digest_requires_username_and_password(self):
        with self.assertRaises(ValueError):
            AuthenticationOptions(AuthenticationMode.SASL_DIGEST_MD5, username="jdoe").validate()

    def test_anonymous_needs_nothing(self):
        AuthenticationOptions(AuthenticationMode.ANONYMOUS).validate()


class TestManagementOptions(unittest.TestCase):

    def test_account_for_user_and_computer(self):
        by_name = AccountOptions.for_user("jdoe")
        self.assertEqual(by_name.username, "jdoe")
        self.assertIsNone(by_name.distinguished_name)

        by_dn = AccountOptions.for_user("uid=jdoe,ou=people,dc=example,dc=com")
        self.assertEqual(by_dn.distinguished_name, "uid=jdoe,ou=people,dc=example,dc=com")
        self.assertEqual(by_dn.target, by_dn.distinguished_name)

        computer = AccountOptions.for_computer("LAB-PC-01")
        self.assertEqual(computer.object_type, ObjectType.COMPUTER)

        with self.assertRaises(ValueError):
            AccountOptions().validate()

    def test_group_membership_validation(self):
        with self.assertRaises(ValueError):
            GroupMembershipOptions().with_member("jdoe").validate()
        with self.assertRaises(ValueError):
            GroupMembershipOptions().for_group("staff").validate()
        GroupMembershipOptions().for_group("staff").with_member("jdoe").validate()

    def test_group_membership_members(self):
        options = GroupMembershipOptions().for_group_dn("cn=staff,dc=x").with_members(["uid=a", "uid=b"])
        self.assertTrue(options.is_batch_operation)
        self.assertEqual(options.all_member_dns(), ["uid=a", "uid=b"])
        self.assertEqual(options.group, "cn=staff,dc=x")

        single = GroupMembershipOptions().for_group("staff").with_member_dn("uid=a")
        self.assertFalse(single.is_batch_operation)
        self.assertEqual(single.all_member_dns(), ["uid=a"])

    def test_password_change_requires_current_password(self):
        with self.assertRaises(ValueError):
            PasswordOptions().for_username("jdoe").with_password_change("", "new").validate_for_change()
        PasswordOptions().for_username("jdoe").with_password_change("old", "new").validate_for_change()

    def test_administrative_reset_needs_no_current_password(self):
        options = PasswordOptions().for_username("jdoe").with_administrative_reset("new")
        options.validate_for_change()
        self.assertTrue(options.is_administrative_reset)

    def test_password_requires_target_and_new_password(self):
        with self.assertRaises(ValueError):
            PasswordOptions().with_administrative_reset("new").validate_for_change()
        with self.assertRaises(ValueError):
            PasswordOptions().for_username("jdoe").with_administrative_reset("").validate_for_change()


class TestResults(unittest.TestCase):

    def test_management_not_supported(self):
        result = ManagementResult.not_supported(ManagementOperation.UNLOCK_ACCOUNT, DirectoryType.APPLE_DIRECTORY)
        self.assertFalse(result.is_success)
        self.assertTrue(result.is_not_supported)
        self.assertEqual(
            result.error_message, "Operation 'UnlockAccount' is not supported by APPLE_DIRECTORY."
        )

    def test_authentication_results(self):
        success = AuthenticationResult.success(
            "jdoe", AuthenticationMode.SIMPLE, DirectoryType.OPEN_LDAP, email="jdoe@example.com"
        )
        self.assertTrue(success.is_authenticated)
        self.assertEqual(success.email, "jdoe@example.com")
        self.assertIsNotNone(success.authenticated_at)

        failure = AuthenticationResult.failure(
            "Invalid credentials", "InvalidCredentials", AuthenticationMode.SIMPLE, DirectoryType.OPEN_LDAP
        )
        self.assertFalse(failure.is_authenticated)
        self.assertFalse(failure.is_not_supported)

        unsupported = AuthenticationResult.not_supported(AuthenticationMode.NTLM, DirectoryType.OPEN_LDAP)
        self.assertTrue(unsupported.is_not_supported)
        self.assertFalse(unsupported.is_authenticated)

    def test_batch_result_counts(self):
        batch = GroupMembershipBatchResult([
            ManagementResult.success(ManagementOperation.ADD_TO_GROUP, "cn=g"),
            ManagementResult.failure(ManagementOperation.ADD_TO_GROUP, "nope"),
        ])
        self.assertEqual(batch.total_count, 2)
        self.assertEqual(batch.success_count, 1)
        self.assertEqual(batch.failure_count, 1)
        self.assertTrue(batch.is_partial_success)
        self.assertFalse(batch.is_full_success)
        self.assertTrue(GroupMembershipBatchResult().is_full_success)


if __name__ == '__main__':
    unittest.main()
