import base64
import logging
import ssl
from typing import Any, Callable, Dict, List, Optional, Tuple

import keyring
from ldap3 import (
    ANONYMOUS,
    AUTO_BIND_NO_TLS,
    AUTO_BIND_TLS_BEFORE_BIND,
    BASE,
    DIGEST_MD5,
    NONE,
    PLAIN,
    SAFE_SYNC,
    SASL,
    SIMPLE,
    SUBTREE,
    SYNC,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import (
    RESULT_INVALID_CREDENTIALS,
    RESULT_NO_SUCH_OBJECT,
    RESULT_SIZE_LIMIT_EXCEEDED,
    RESULT_SUCCESS,
)

from ..config import LdapOptions, LdapSecurityMode
from ..exceptions import DirectoryConfigurationError
from ..metrics import MetricsRecorder
from ..models.criteria import ComputerSearchCriteria, GroupSearchCriteria, UserSearchCriteria
from ..models.entities import LdapComputer, LdapGroup, LdapUser
from ..models.options import AuthenticationMode, AuthenticationOptions
from ..models.paging import PagedResult, PageRequest
from ..models.results import AuthenticationResult
from ..paging.cursor import BatchSource, fetch_page
from ..query.ldap_filter import emit_ldap_filter, escape_ldap_filter
from ..query.predicates import AnyOf, FieldMap, Predicate, any_of, compile_predicates, text
from . import mappers
from .base_directory_adapter import BaseDirectoryAdapter
from .connection import ManagedConnection

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"

SearchBatch = Tuple[List[Dict[str, Any]], Optional[bytes]]


def unpack_result(connection: Connection, returned: Any) -> Tuple[bool, Dict[str, Any], List[Dict[str, Any]]]:
    """
    Normalize an ldap3 operation return value.

    Thread-safe strategies return ``(status, result, response, request)``;
    the plain SYNC strategy returns a bool and keeps the rest on the
    connection.
    """
    if isinstance(returned, tuple):
        return returned[0], returned[1] or {}, returned[2] or []
    return returned, connection.result or {}, connection.response or []


class LdapSearchBatches(BatchSource[SearchBatch, Any]):
    """
    Batch source for one LDAP search.

    With ``paged`` the RFC 2696 paged-results cookie is the continuation
    token. Without it the first batch is a full linear scan.
    """

    def __init__(
        self,
        adapter: "LdapDirectoryAdapter",
        search_filter: str,
        attributes: List[str],
        mapper: Callable[[Dict[str, Any]], Any],
        paged: bool,
    ):
        self._adapter = adapter
        self._search_filter = search_filter
        self._attributes = attributes
        self._mapper = mapper
        self.batch_size = adapter.options.page_size if paged else None

    async def execute_batch(self, continuation_token: Optional[str]) -> SearchBatch:
        connection = await self._adapter._connection.get()
        cookie = base64.b64decode(continuation_token) if continuation_token else None
        return await self._adapter._run_blocking(
            self._adapter._search,
            connection,
            self._search_filter,
            self._attributes,
            paged_size=self.batch_size,
            paged_cookie=cookie,
        )

    def items_of(self, response: SearchBatch) -> List[Dict[str, Any]]:
        return response[0]

    def continuation_token_of(self, response: SearchBatch) -> Optional[str]:
        cookie = response[1]
        if not cookie:
            return None
        return base64.b64encode(cookie).decode("ascii")

    def map_item(self, record: Dict[str, Any]) -> Any:
        return self._mapper(record)


class LdapDirectoryAdapter(BaseDirectoryAdapter):
    """
    ldap3-based adapter shared by the LDAP-family backends.

    Reads go through one shared, thread-safe (SAFE_SYNC) connection bound
    with the service account. Credential checks, user binds and writes
    always open a fresh connection so the shared bind identity never
    changes. Every blocking ldap3 call runs in the default executor.
    """

    backend_errors = (LDAPException,)
    #: Whether the server supports the paged-results control.
    supports_paged_results = True

    def __init__(self, options: LdapOptions, metrics: Optional[MetricsRecorder] = None):
        super().__init__(options.operation_timeout, metrics)
        self.options = options
        self._server: Optional[Server] = None
        self._connection = ManagedConnection(
            self.backend_label,
            self._open_shared_connection,
            self._close_shared_connection,
            options.connect_timeout,
            self.metrics,
        )
        logger.debug(f"{type(self).__name__} initialized for server: {options.host}:{options.port}")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(host='{self.options.host}', port={self.options.port}, "
            f"security_mode={self.options.security_mode.value}, base_dn='{self.options.base_dn}')"
        )

    # Connection handling

    def _get_bind_password(self) -> Optional[str]:
        """Configured bind password, else the one stored in the keyring."""
        if self.options.bind_password:
            return self.options.bind_password
        if not self.options.bind_dn or not self.options.keyring_service:
            return None
        try:
            password = keyring.get_password(self.options.keyring_service, self.options.bind_dn)
        except Exception as e:
            logger.warning(f"Could not retrieve password from keyring: {e}")
            return None
        if password:
            logger.debug("Using bind password from keyring")
        return password

    def _create_server(self) -> Server:
        if self._server is None:
            tls = None
            if self.options.security_mode != LdapSecurityMode.NONE:
                tls = Tls(
                    validate=ssl.CERT_REQUIRED if self.options.validate_certificate else ssl.CERT_NONE
                )
            self._server = Server(
                self.options.host,
                port=self.options.port,
                use_ssl=self.options.use_ssl,
                tls=tls,
                get_info=NONE,
                connect_timeout=int(self.options.connect_timeout),
            )
            logger.debug(f"LDAP server object created: {self.options.host}:{self.options.port}")
        return self._server

    def _create_shared_connection(self, password: Optional[str]) -> Connection:
        auto_bind = (
            AUTO_BIND_TLS_BEFORE_BIND
            if self.options.security_mode == LdapSecurityMode.START_TLS
            else AUTO_BIND_NO_TLS
        )
        return Connection(
            self._create_server(),
            user=self.options.bind_dn,
            password=password,
            authentication=SIMPLE if self.options.bind_dn else ANONYMOUS,
            client_strategy=SAFE_SYNC,
            auto_bind=auto_bind,
            read_only=True,
            raise_exceptions=False,
            receive_timeout=int(self.options.operation_timeout),
        )

    async def _open_shared_connection(self) -> Connection:
        password = self._get_bind_password()
        if self.options.bind_dn and not password:
            raise DirectoryConfigurationError(
                f"No bind password configured or stored for {self.options.bind_dn}"
            )
        return await self._run_blocking(self._create_shared_connection, password)

    async def _close_shared_connection(self, connection: Connection) -> None:
        await self._run_blocking(connection.unbind)

    def _open_connection(
        self,
        user: Optional[str] = None,
        password: Optional[str] = None,
        authentication: str = SIMPLE,
        sasl_mechanism: Optional[str] = None,
        sasl_credentials: Optional[tuple] = None,
    ) -> Connection:
        """Open a fresh, not yet bound, single-use connection."""
        connection = Connection(
            self._create_server(),
            user=user,
            password=password,
            authentication=authentication,
            sasl_mechanism=sasl_mechanism,
            sasl_credentials=sasl_credentials,
            client_strategy=SYNC,
            raise_exceptions=False,
            receive_timeout=int(self.options.operation_timeout),
        )
        try:
            connection.open()
            if self.options.security_mode == LdapSecurityMode.START_TLS:
                connection.start_tls()
        except Exception:
            connection.unbind()
            raise
        return connection

    def _bind_check(
        self,
        user: Optional[str],
        password: Optional[str],
        authentication: str = SIMPLE,
        sasl_mechanism: Optional[str] = None,
        sasl_credentials: Optional[tuple] = None,
    ) -> bool:
        """
        Try a bind on a fresh connection.

        Returns:
            bool: False for invalid credentials.

        Raises:
            LDAPException: For any other bind failure.
        """
        connection = self._open_connection(user, password, authentication, sasl_mechanism, sasl_credentials)
        try:
            bound, result, _ = unpack_result(connection, connection.bind())
            if bound:
                return True
            if result.get("result") == RESULT_INVALID_CREDENTIALS:
                logger.info(f"Invalid credentials for {user or 'anonymous'}")
                return False
            raise LDAPException(f"Bind failed: {result.get('description')} {result.get('message', '')}".strip())
        finally:
            connection.unbind()

    def _admin_connection(self) -> Connection:
        """Fresh connection bound with the service account, for writes."""
        connection = self._open_connection(self.options.bind_dn, self._get_bind_password())
        bound, result, _ = unpack_result(connection, connection.bind())
        if not bound:
            connection.unbind()
            raise LDAPException(f"Administrative bind failed: {result.get('description')}")
        return connection

    async def connect(self) -> None:
        await self._connection.get()

    async def close(self) -> None:
        await self._connection.close()

    # Search primitives

    def _search(
        self,
        connection: Connection,
        search_filter: str,
        attributes: List[str],
        search_base: Optional[str] = None,
        scope: str = SUBTREE,
        size_limit: int = 0,
        paged_size: Optional[int] = None,
        paged_cookie: Optional[bytes] = None,
    ) -> SearchBatch:
        """
        Run one search and return its entries and the paged-results cookie.

        Referrals are skipped. A missing base object yields no entries.

        Raises:
            LDAPException: If the server reports any other error.
        """
        search_kwargs = {
            "search_base": search_base or self.options.base_dn,
            "search_filter": search_filter,
            "search_scope": scope,
            "attributes": attributes,
            "size_limit": size_limit,
            "time_limit": int(self.options.operation_timeout),
        }
        if paged_size:
            search_kwargs["paged_size"] = paged_size
            search_kwargs["paged_cookie"] = paged_cookie

        logger.debug(f"Executing search: filter='{search_filter}', base='{search_kwargs['search_base']}'")
        _, result, response = unpack_result(connection, connection.search(**search_kwargs))

        code = result.get("result", RESULT_SUCCESS)
        if code == RESULT_NO_SUCH_OBJECT:
            return [], None
        if code not in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
            raise LDAPException(f"Search failed: {result.get('description')} {result.get('message', '')}".strip())

        entries = []
        skipped = 0
        for item in response:
            if item.get("type") == "searchResEntry":
                entries.append(item)
            else:
                skipped += 1
        if skipped:
            logger.debug(f"Skipped {skipped} referral(s)")

        controls = result.get("controls") or {}
        cookie = controls.get(PAGED_RESULTS_OID, {}).get("value", {}).get("cookie")
        return entries, cookie or None

    async def _find(
        self,
        search_filter: str,
        attributes: List[str],
        size_limit: int = 0,
        search_base: Optional[str] = None,
        scope: str = SUBTREE,
    ) -> List[Dict[str, Any]]:
        connection = await self._connection.get()
        entries, _ = await self._run_blocking(
            self._search, connection, search_filter, attributes,
            search_base=search_base, scope=scope, size_limit=size_limit,
        )
        return entries

    async def _find_one(self, search_filter: str, attributes: List[str], mapper, **kwargs):
        entries = await self._find(search_filter, attributes, size_limit=1, **kwargs)
        return mapper(entries[0]) if entries else None

    async def _paged(self, search_filter: str, attributes: List[str], mapper, page: int, page_size: int) -> PagedResult:
        request = PageRequest(page, page_size)
        source = LdapSearchBatches(self, search_filter, attributes, mapper, self.supports_paged_results)
        return await fetch_page(source, request)

    @staticmethod
    def _raw_filter(search_filter: str) -> str:
        search_filter = search_filter.strip()
        if not search_filter:
            raise ValueError("search_filter must be a non-empty string")
        return search_filter if search_filter.startswith("(") else f"({search_filter})"

    # Mapping

    def _map_user(self, record: Dict[str, Any]) -> LdapUser:
        return mappers.map_ldap_user(record, self.options, self.directory_type)

    def _map_group(self, record: Dict[str, Any]) -> LdapGroup:
        return mappers.map_ldap_group(record, self.options, self.directory_type)

    def _map_computer(self, record: Dict[str, Any]) -> LdapComputer:
        return mappers.map_ldap_computer(record, self.options, self.directory_type)

    # Criteria field maps

    def user_fields(self) -> FieldMap:
        options = self.options
        return {
            "username": text(options.username_attribute, wildcard=True),
            "display_name": text(options.display_name_attribute, wildcard=True),
            "first_name": text(options.first_name_attribute, wildcard=True),
            "last_name": text(options.last_name_attribute, wildcard=True),
            "email": text(options.email_attribute, wildcard=True),
            "department": text("departmentNumber"),
            "job_title": text("title", wildcard=True),
            "company": text("o"),
            "office": text("physicalDeliveryOfficeName", wildcard=True),
            "city": text("l"),
            "country": text("c"),
            "member_of_group": text(options.group_membership_attribute),
            "member_of_any_group": any_of(options.group_membership_attribute),
        }

    def group_fields(self) -> FieldMap:
        return {
            "name": text("cn", wildcard=True),
            "display_name": text("displayName", wildcard=True),
            "description": text("description", wildcard=True),
            "email": text("mail", wildcard=True),
            "managed_by": text("owner"),
            "has_member": text(self.options.group_member_attribute),
            "member_of_group": text(self.options.group_membership_attribute),
        }

    def computer_fields(self) -> FieldMap:
        return {
            "name": text("cn", wildcard=True),
            "display_name": text("displayName", wildcard=True),
            "description": text("description", wildcard=True),
            "location": text("l", wildcard=True),
            "managed_by": text("owner"),
            "member_of_group": text(self.options.group_membership_attribute),
        }

    def build_user_filter(self, criteria: UserSearchCriteria) -> str:
        return emit_ldap_filter(compile_predicates(criteria, self.user_fields()), self.options.user_object_class)

    def build_group_filter(self, criteria: GroupSearchCriteria) -> str:
        return emit_ldap_filter(compile_predicates(criteria, self.group_fields()), self.options.group_object_class)

    def build_computer_filter(self, criteria: ComputerSearchCriteria) -> str:
        return emit_ldap_filter(
            compile_predicates(criteria, self.computer_fields()), self.options.computer_object_class
        )

    # Users

    async def get_user_by_username(self, username: str) -> Optional[LdapUser]:
        search_filter = self.options.user_filter_template().format(escape_ldap_filter(username))
        return await self._execute(
            "get_user_by_username",
            self._find_one(search_filter, mappers.ldap_user_attributes(self.options), self._map_user),
        )

    async def get_user_by_email(self, email: str) -> Optional[LdapUser]:
        search_filter = self.options.email_filter_template().format(escape_ldap_filter(email))
        return await self._execute(
            "get_user_by_email",
            self._find_one(search_filter, mappers.ldap_user_attributes(self.options), self._map_user),
        )

    async def search_users(self, search_filter: str, max_results: int = 100) -> List[LdapUser]:
        async def run():
            entries = await self._find(
                self._raw_filter(search_filter), mappers.ldap_user_attributes(self.options), size_limit=max_results
            )
            return [self._map_user(entry) for entry in entries]

        return await self._execute("search_users", run())

    async def search_users_paged(
        self, criteria: UserSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapUser]:
        search_filter = self.build_user_filter(criteria)
        return await self._execute(
            "search_users_paged",
            self._paged(search_filter, mappers.ldap_user_attributes(self.options), self._map_user, page, page_size),
        )

    async def get_all_users(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapUser]:
        return await self.search_users_paged(UserSearchCriteria(), page, page_size)

    async def _resolve_group_dn(self, group: str) -> Optional[str]:
        if "=" in group:
            return group
        return await self._find_one(self._group_name_filter(group), ["cn"], lambda entry: entry.get("dn"))

    async def get_group_members(self, group: str, page: int = 1, page_size: int = 50) -> PagedResult[LdapUser]:
        request = PageRequest(page, page_size)

        async def run():
            group_dn = await self._resolve_group_dn(group)
            if not group_dn:
                logger.info(f"Group '{group}' not found")
                return PagedResult.empty(request.page_number, request.page_size)
            search_filter = emit_ldap_filter(
                [Predicate(self.options.group_membership_attribute, group_dn)], self.options.user_object_class
            )
            return await self._paged(
                search_filter, mappers.ldap_user_attributes(self.options), self._map_user, page, page_size
            )

        return await self._execute("get_group_members", run())

    async def get_user_groups(self, username: str) -> List[str]:
        search_filter = self.options.user_filter_template().format(escape_ldap_filter(username))

        async def run():
            user = await self._find_one(search_filter, mappers.ldap_user_attributes(self.options), self._map_user)
            return list(user.groups) if user else []

        return await self._execute("get_user_groups", run())

    async def _resolve_user_dn(self, username_or_dn: Optional[str]) -> Optional[str]:
        if not username_or_dn:
            return None
        if "=" in username_or_dn:
            return username_or_dn
        search_filter = self.options.user_filter_template().format(escape_ldap_filter(username_or_dn))
        return await self._find_one(search_filter, [self.options.username_attribute], lambda entry: entry.get("dn"))

    async def validate_credentials(self, username: str, password: str) -> bool:
        async def run():
            # An empty password would be an unauthenticated bind, which servers accept
            if not username or not password:
                return False
            user_dn = await self._resolve_user_dn(username)
            if not user_dn:
                return False
            return await self._run_blocking(self._bind_check, user_dn, password)

        return await self._execute("validate_credentials", run())

    # Groups

    def _group_name_filter(self, name: str) -> str:
        return emit_ldap_filter(
            [AnyOf((Predicate("cn", name), Predicate("displayName", name)))], self.options.group_object_class
        )

    async def get_group_by_name(self, name: str) -> Optional[LdapGroup]:
        return await self._execute(
            "get_group_by_name",
            self._find_one(self._group_name_filter(name), mappers.ldap_group_attributes(self.options), self._map_group),
        )

    async def get_group_by_dn(self, dn_or_id: str) -> Optional[LdapGroup]:
        return await self._execute(
            "get_group_by_dn",
            self._find_one(
                emit_ldap_filter([], self.options.group_object_class),
                mappers.ldap_group_attributes(self.options),
                self._map_group,
                search_base=dn_or_id,
                scope=BASE,
            ),
        )

    async def search_groups(self, search_filter: str, max_results: int = 100) -> List[LdapGroup]:
        async def run():
            entries = await self._find(
                self._raw_filter(search_filter), mappers.ldap_group_attributes(self.options), size_limit=max_results
            )
            return [self._map_group(entry) for entry in entries]

        return await self._execute("search_groups", run())

    async def search_groups_paged(
        self, criteria: GroupSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapGroup]:
        search_filter = self.build_group_filter(criteria)
        return await self._execute(
            "search_groups_paged",
            self._paged(search_filter, mappers.ldap_group_attributes(self.options), self._map_group, page, page_size),
        )

    async def get_all_groups(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapGroup]:
        return await self.search_groups_paged(GroupSearchCriteria(), page, page_size)

    # Computers

    async def get_computer_by_name(self, name: str) -> Optional[LdapComputer]:
        search_filter = emit_ldap_filter([Predicate("cn", name)], self.options.computer_object_class)
        return await self._execute(
            "get_computer_by_name",
            self._find_one(search_filter, mappers.ldap_computer_attributes(self.options), self._map_computer),
        )

    async def get_computer_by_dn(self, dn_or_id: str) -> Optional[LdapComputer]:
        return await self._execute(
            "get_computer_by_dn",
            self._find_one(
                emit_ldap_filter([], self.options.computer_object_class),
                mappers.ldap_computer_attributes(self.options),
                self._map_computer,
                search_base=dn_or_id,
                scope=BASE,
            ),
        )

    async def search_computers(self, search_filter: str, max_results: int = 100) -> List[LdapComputer]:
        async def run():
            entries = await self._find(
                self._raw_filter(search_filter), mappers.ldap_computer_attributes(self.options), size_limit=max_results
            )
            return [self._map_computer(entry) for entry in entries]

        return await self._execute("search_computers", run())

    async def search_computers_paged(
        self, criteria: ComputerSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapComputer]:
        search_filter = self.build_computer_filter(criteria)
        return await self._execute(
            "search_computers_paged",
            self._paged(
                search_filter, mappers.ldap_computer_attributes(self.options), self._map_computer, page, page_size
            ),
        )

    async def get_all_computers(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapComputer]:
        return await self.search_computers_paged(ComputerSearchCriteria(), page, page_size)

    # Authentication

    def get_supported_authentication_modes(self) -> List[AuthenticationMode]:
        return [
            AuthenticationMode.SIMPLE,
            AuthenticationMode.ANONYMOUS,
            AuthenticationMode.SASL_PLAIN,
            AuthenticationMode.SASL_DIGEST_MD5,
        ]

    async def authenticate(self, options: AuthenticationOptions) -> AuthenticationResult:
        result = await self._execute("authenticate", self._authenticate(options))
        self.metrics.record_authentication(self.backend_label, options.mode.value, result.is_authenticated)
        return result

    async def _authenticate(self, options: AuthenticationOptions) -> AuthenticationResult:
        mode = options.mode
        if mode not in self.get_supported_authentication_modes():
            # SASL EXTERNAL and GSSAPI are deliberately unimplemented
            return AuthenticationResult.not_supported(mode, self.directory_type)
        try:
            options.validate()
        except ValueError as e:
            return AuthenticationResult.failure(str(e), "InvalidOptions", mode, self.directory_type, options.username)

        if mode == AuthenticationMode.ANONYMOUS:
            try:
                await self._run_blocking(self._bind_check, None, None, ANONYMOUS)
            except LDAPException as e:
                return AuthenticationResult.failure(str(e), "AnonymousBindRejected", mode, self.directory_type)
            return AuthenticationResult.success("anonymous", mode, self.directory_type)

        if mode == AuthenticationMode.SIMPLE:
            user_dn = await self._resolve_user_dn(options.username)
            bound = bool(user_dn) and await self._run_blocking(self._bind_check, user_dn, options.password)
        elif mode == AuthenticationMode.SASL_PLAIN:
            bound = await self._run_blocking(
                self._bind_check, None, None, SASL, PLAIN, (None, options.username, options.password)
            )
        else:
            bound = await self._run_blocking(
                self._bind_check, None, None, SASL, DIGEST_MD5,
                (options.domain, options.username, options.password, None),
            )

        if not bound:
            return AuthenticationResult.failure(
                "Invalid credentials", "InvalidCredentials", mode, self.directory_type, options.username
            )

        user = None
        if "=" not in options.username:
            search_filter = self.options.user_filter_template().format(escape_ldap_filter(options.username))
            user = await self._find_one(search_filter, mappers.ldap_user_attributes(self.options), self._map_user)

        details = {}
        if user is not None:
            details = {
                "user_distinguished_name": user.distinguished_name,
                "user_id": user.id,
                "email": user.email,
                "display_name": user.display_name,
            }
            if options.include_groups:
                details["groups"] = list(user.groups)
        logger.info(f"Authenticated {options.username} with {mode}")
        return AuthenticationResult.success(options.username, mode, self.directory_type, **details)
