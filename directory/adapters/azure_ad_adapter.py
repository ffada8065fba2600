import inspect
import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import msal
import requests

from ..config import AzureAdOptions
from ..exceptions import GraphRequestError
from ..metrics import MetricsRecorder
from ..models.criteria import ComputerSearchCriteria, GroupSearchCriteria, UserSearchCriteria
from ..models.entities import DirectoryType, LdapComputer, LdapGroup, LdapUser
from ..models.options import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    DeviceCodeInfo,
    GroupMembershipOptions,
    ObjectType,
    PasswordOptions,
)
from ..models.paging import PagedResult, PageRequest
from ..models.results import AuthenticationResult, ManagementOperation, ManagementResult
from ..paging.cursor import BatchSource, fetch_page
from ..query.odata import emit_odata_filter
from ..query.predicates import AnyOf, FieldMap, Predicate, Term, boolean, compile_predicates, text
from . import mappers
from .base_directory_adapter import BaseDirectoryAdapter, DeviceCodeCallback
from .connection import ManagedConnection
from .credentials import (
    GraphCredential,
    build_confidential_app,
    build_public_app,
    certificate_credential,
    token_or_raise,
)
from .graph_client import GraphClient

logger = logging.getLogger(__name__)

# Advanced query headers, required for $count and for some $filter forms
ADVANCED_QUERY_HEADERS = {"ConsistencyLevel": "eventual"}

GUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

DEVICE_FLOW_TIMEOUT = 900.0
INTERACTIVE_TIMEOUT = 300.0


def is_object_id(value: str) -> bool:
    return bool(GUID_PATTERN.match(value or ""))


def _log_device_code(info: DeviceCodeInfo) -> None:
    logger.info(info.message or f"Go to {info.verification_uri} and enter code {info.user_code}")


class GraphQueryBatches(BatchSource[Dict[str, Any], Any]):
    """
    Batch source for one Graph collection query.

    The first batch asks for ``$count=true`` so the total is authoritative;
    following batches use the absolute ``@odata.nextLink``, which already
    carries every query option.
    """

    def __init__(
        self,
        adapter: "AzureAdAdapter",
        path: str,
        params: Dict[str, Any],
        mapper: Callable[[Dict[str, Any]], Any],
    ):
        self._adapter = adapter
        self._path = path
        self._params = params
        self._mapper = mapper
        self.batch_size = adapter.options.batch_size

    async def execute_batch(self, continuation_token: Optional[str]) -> Dict[str, Any]:
        client = await self._adapter._connection.get()
        if continuation_token:
            response = await self._adapter._run_blocking(
                client.get, continuation_token, None, ADVANCED_QUERY_HEADERS
            )
        else:
            response = await self._adapter._run_blocking(
                client.get, self._path, self._params, ADVANCED_QUERY_HEADERS
            )
        return response or {}

    def items_of(self, response: Dict[str, Any]) -> List[Dict[str, Any]]:
        return response.get("value", [])

    def continuation_token_of(self, response: Dict[str, Any]) -> Optional[str]:
        return response.get("@odata.nextLink")

    def total_count_of(self, response: Dict[str, Any]) -> Optional[int]:
        return response.get("@odata.count")

    def map_item(self, record: Dict[str, Any]) -> Any:
        return self._mapper(record)


class AzureAdAdapter(BaseDirectoryAdapter):
    """
    Azure AD backend over Microsoft Graph.

    Queries run as the application (client secret, certificate or managed
    identity credential). User-facing authentication uses msal public client
    flows: ROPC for SIMPLE, device code and interactive browser.

    Args:
        options: Graph backend settings.
        metrics: Recorder for query and connection metrics.
        credential: Token source exposing ``acquire_token(force_refresh)``;
            built from ``options.credential`` when omitted.
        session: requests session handed to the Graph client.
    """

    directory_type = DirectoryType.AZURE_AD
    backend_errors = (GraphRequestError, requests.RequestException)

    def __init__(
        self,
        options: AzureAdOptions,
        metrics: Optional[MetricsRecorder] = None,
        credential: Optional[Any] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(options.operation_timeout, metrics)
        self.options = options
        self._credential = credential
        self._session = session
        self._public_app: Optional[msal.PublicClientApplication] = None
        self._connection = ManagedConnection(
            self.backend_label,
            self._open_client,
            self._close_client,
            options.connect_timeout,
            self.metrics,
        )
        logger.debug(f"AzureAdAdapter initialized for tenant: {options.tenant_id}")

    def __repr__(self) -> str:
        return f"AzureAdAdapter(tenant_id='{self.options.tenant_id}', client_id='{self.options.client_id}')"

    # Connection handling

    async def _open_client(self) -> GraphClient:
        if self._credential is None:
            self._credential = GraphCredential(self.options)
        # Fail establishment early when the app credential is rejected
        await self._run_blocking(self._credential.acquire_token)
        return GraphClient(
            self.options.graph_base_url,
            self._credential.acquire_token,
            timeout=self.options.operation_timeout,
            session=self._session,
        )

    async def _close_client(self, client: GraphClient) -> None:
        client.close()

    async def connect(self) -> None:
        await self._connection.get()

    async def close(self) -> None:
        await self._connection.close()

    def _get_public_app(self) -> msal.PublicClientApplication:
        if self._public_app is None:
            self._public_app = build_public_app(self.options)
        return self._public_app

    # Request primitives

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        client = await self._connection.get()
        return await self._run_blocking(client.get, path, params, ADVANCED_QUERY_HEADERS)

    async def _get_or_none(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        try:
            return await self._get(path, params)
        except GraphRequestError as e:
            if e.status_code == 404:
                return None
            raise

    async def _list(
        self,
        path: str,
        select: List[str],
        search_filter: Optional[str] = None,
        max_results: int = 100,
    ) -> List[Dict[str, Any]]:
        """Collect up to max_results records, following nextLink."""
        params: Dict[str, Any] = {
            "$select": ",".join(select),
            "$top": min(max(max_results, 1), self.options.batch_size),
        }
        if search_filter:
            params["$filter"] = search_filter
            params["$count"] = "true"

        records: List[Dict[str, Any]] = []
        response = await self._get(path, params)
        while True:
            response = response or {}
            records.extend(response.get("value", []))
            next_link = response.get("@odata.nextLink")
            if len(records) >= max_results or not next_link:
                break
            response = await self._get(next_link)
        return records[:max_results]

    async def _first(self, path: str, select: List[str], terms: List[Term]) -> Optional[Dict[str, Any]]:
        records = await self._list(path, select, emit_odata_filter(terms), max_results=1)
        return records[0] if records else None

    async def _paged(
        self,
        path: str,
        select: List[str],
        search_filter: str,
        mapper: Callable[[Dict[str, Any]], Any],
        page: int,
        page_size: int,
    ) -> PagedResult:
        request = PageRequest(page, page_size)
        params: Dict[str, Any] = {
            "$select": ",".join(select),
            "$top": self.options.batch_size,
            "$count": "true",
        }
        if search_filter:
            params["$filter"] = search_filter
        return await fetch_page(GraphQueryBatches(self, path, params, mapper), request)

    # Criteria field maps

    def user_fields(self) -> FieldMap:
        return {
            "username": text("mailNickname", "userPrincipalName", wildcard=True),
            "display_name": text("displayName", wildcard=True),
            "first_name": text("givenName", wildcard=True),
            "last_name": text("surname", wildcard=True),
            "email": text("mail"),
            "department": text("department"),
            "job_title": text("jobTitle", wildcard=True),
            "company": text("companyName"),
            "office": text("officeLocation"),
            "city": text("city"),
            "country": text("country"),
            "is_enabled": boolean("accountEnabled"),
        }

    def group_fields(self) -> FieldMap:
        return {
            "name": text("displayName", wildcard=True),
            "display_name": text("displayName", wildcard=True),
            "description": text("description"),
            "email": text("mail"),
            "is_security_group": boolean("securityEnabled"),
            "is_mail_enabled": boolean("mailEnabled"),
        }

    def computer_fields(self) -> FieldMap:
        return {
            "name": text("displayName", wildcard=True),
            "display_name": text("displayName", wildcard=True),
            "operating_system": text("operatingSystem", wildcard=True),
            "operating_system_version": text("operatingSystemVersion"),
            "is_enabled": boolean("accountEnabled"),
            "is_managed": boolean("isManaged"),
            "is_compliant": boolean("isCompliant"),
            "trust_type": text("trustType"),
        }

    # Graph has no arbitrary-attribute filters, so custom attributes are not compiled

    def build_user_filter(self, criteria: UserSearchCriteria) -> str:
        return emit_odata_filter(compile_predicates(criteria, self.user_fields(), include_custom_attributes=False))

    def build_group_filter(self, criteria: GroupSearchCriteria) -> str:
        return emit_odata_filter(compile_predicates(criteria, self.group_fields(), include_custom_attributes=False))

    def build_computer_filter(self, criteria: ComputerSearchCriteria) -> str:
        return emit_odata_filter(
            compile_predicates(criteria, self.computer_fields(), include_custom_attributes=False)
        )

    # Users

    async def _find_user(self, username: str) -> Optional[Dict[str, Any]]:
        terms = [AnyOf((Predicate("userPrincipalName", username), Predicate("mailNickname", username)))]
        return await self._first("users", self.options.user_select, terms)

    async def get_user_by_username(self, username: str) -> Optional[LdapUser]:
        async def run():
            record = await self._find_user(username)
            return mappers.map_graph_user(record) if record else None

        return await self._execute("get_user_by_username", run())

    async def get_user_by_email(self, email: str) -> Optional[LdapUser]:
        async def run():
            terms = [AnyOf((Predicate("mail", email), Predicate("userPrincipalName", email)))]
            record = await self._first("users", self.options.user_select, terms)
            return mappers.map_graph_user(record) if record else None

        return await self._execute("get_user_by_email", run())

    async def search_users(self, search_filter: str, max_results: int = 100) -> List[LdapUser]:
        async def run():
            records = await self._list("users", self.options.user_select, search_filter, max_results)
            return [mappers.map_graph_user(record) for record in records]

        return await self._execute("search_users", run())

    async def search_users_paged(
        self, criteria: UserSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapUser]:
        search_filter = self.build_user_filter(criteria)
        return await self._execute(
            "search_users_paged",
            self._paged("users", self.options.user_select, search_filter, mappers.map_graph_user, page, page_size),
        )

    async def get_all_users(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapUser]:
        return await self.search_users_paged(UserSearchCriteria(), page, page_size)

    async def _resolve_user_id(self, user: Optional[str]) -> Optional[str]:
        """Object id or UPN usable in a users/{id} path."""
        if not user:
            return None
        if is_object_id(user) or "@" in user:
            return user
        record = await self._find_user(user)
        return record.get("id") if record else None

    async def _resolve_group_id(self, group: str) -> Optional[str]:
        if is_object_id(group):
            return group
        record = await self._first(
            "groups", ["id"], [AnyOf((Predicate("displayName", group), Predicate("mailNickname", group)))]
        )
        return record.get("id") if record else None

    async def get_group_members(self, group: str, page: int = 1, page_size: int = 50) -> PagedResult[LdapUser]:
        request = PageRequest(page, page_size)

        async def run():
            group_id = await self._resolve_group_id(group)
            if not group_id:
                logger.info(f"Group '{group}' not found")
                return PagedResult.empty(request.page_number, request.page_size)
            return await self._paged(
                f"groups/{group_id}/members/microsoft.graph.user",
                self.options.user_select,
                "",
                mappers.map_graph_user,
                page,
                page_size,
            )

        return await self._execute("get_group_members", run())

    async def _user_groups(self, username: str) -> List[str]:
        user_id = await self._resolve_user_id(username)
        if not user_id:
            return []
        records = await self._list(
            f"users/{user_id}/memberOf/microsoft.graph.group", ["displayName"], max_results=10000
        )
        return [record["displayName"] for record in records if record.get("displayName")]

    async def get_user_groups(self, username: str) -> List[str]:
        return await self._execute("get_user_groups", self._user_groups(username))

    def _acquire_by_password(self, username: str, password: str) -> Dict[str, Any]:
        return self._get_public_app().acquire_token_by_username_password(
            username, password, scopes=self.options.delegated_scopes
        )

    async def validate_credentials(self, username: str, password: str) -> bool:
        async def run():
            if not username or not password:
                return False
            result = await self._run_blocking(self._acquire_by_password, username, password)
            if "access_token" in result:
                return True
            if result.get("error") == "invalid_grant":
                logger.info(f"Invalid credentials for {username}")
                return False
            token_or_raise(result)

        return await self._execute("validate_credentials", run())

    # Groups

    async def get_group_by_name(self, name: str) -> Optional[LdapGroup]:
        async def run():
            terms = [AnyOf((Predicate("displayName", name), Predicate("mailNickname", name)))]
            record = await self._first("groups", self.options.group_select, terms)
            return mappers.map_graph_group(record) if record else None

        return await self._execute("get_group_by_name", run())

    async def get_group_by_dn(self, dn_or_id: str) -> Optional[LdapGroup]:
        async def run():
            if not is_object_id(dn_or_id):
                logger.debug(f"'{dn_or_id}' is not a Graph object id")
                return None
            record = await self._get_or_none(
                f"groups/{dn_or_id}", {"$select": ",".join(self.options.group_select)}
            )
            return mappers.map_graph_group(record) if record else None

        return await self._execute("get_group_by_dn", run())

    async def search_groups(self, search_filter: str, max_results: int = 100) -> List[LdapGroup]:
        async def run():
            records = await self._list("groups", self.options.group_select, search_filter, max_results)
            return [mappers.map_graph_group(record) for record in records]

        return await self._execute("search_groups", run())

    async def search_groups_paged(
        self, criteria: GroupSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapGroup]:
        search_filter = self.build_group_filter(criteria)
        return await self._execute(
            "search_groups_paged",
            self._paged("groups", self.options.group_select, search_filter, mappers.map_graph_group, page, page_size),
        )

    async def get_all_groups(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapGroup]:
        return await self.search_groups_paged(GroupSearchCriteria(), page, page_size)

    # Computers

    async def get_computer_by_name(self, name: str) -> Optional[LdapComputer]:
        async def run():
            record = await self._first("devices", self.options.device_select, [Predicate("displayName", name)])
            return mappers.map_graph_device(record) if record else None

        return await self._execute("get_computer_by_name", run())

    async def get_computer_by_dn(self, dn_or_id: str) -> Optional[LdapComputer]:
        async def run():
            if not is_object_id(dn_or_id):
                logger.debug(f"'{dn_or_id}' is not a Graph object id")
                return None
            record = await self._get_or_none(
                f"devices/{dn_or_id}", {"$select": ",".join(self.options.device_select)}
            )
            return mappers.map_graph_device(record) if record else None

        return await self._execute("get_computer_by_dn", run())

    async def search_computers(self, search_filter: str, max_results: int = 100) -> List[LdapComputer]:
        async def run():
            records = await self._list("devices", self.options.device_select, search_filter, max_results)
            return [mappers.map_graph_device(record) for record in records]

        return await self._execute("search_computers", run())

    async def search_computers_paged(
        self, criteria: ComputerSearchCriteria, page: int = 1, page_size: int = 50
    ) -> PagedResult[LdapComputer]:
        search_filter = self.build_computer_filter(criteria)
        return await self._execute(
            "search_computers_paged",
            self._paged(
                "devices", self.options.device_select, search_filter, mappers.map_graph_device, page, page_size
            ),
        )

    async def get_all_computers(self, page: int = 1, page_size: int = 50) -> PagedResult[LdapComputer]:
        return await self.search_computers_paged(ComputerSearchCriteria(), page, page_size)

    # Authentication

    def get_supported_authentication_modes(self) -> List[AuthenticationMode]:
        return [
            AuthenticationMode.SIMPLE,
            AuthenticationMode.CERTIFICATE,
            AuthenticationMode.DEVICE_CODE,
            AuthenticationMode.INTERACTIVE_BROWSER,
        ]

    def _token_result(
        self, result: Dict[str, Any], mode: AuthenticationMode, username: Optional[str] = None
    ) -> AuthenticationResult:
        if "access_token" not in result:
            return AuthenticationResult.failure(
                result.get("error_description") or "Authentication failed",
                result.get("error"),
                mode,
                self.directory_type,
                username,
            )

        claims = result.get("id_token_claims") or {}
        expires_in = result.get("expires_in")
        expires_at = None
        if expires_in:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        return AuthenticationResult.success(
            claims.get("preferred_username") or username,
            mode,
            self.directory_type,
            user_id=claims.get("oid"),
            display_name=claims.get("name"),
            email=claims.get("email"),
            token=result["access_token"],
            expires_at=expires_at,
        )

    async def authenticate(self, options: AuthenticationOptions) -> AuthenticationResult:
        mode = options.mode
        if mode == AuthenticationMode.DEVICE_CODE:
            return await self.authenticate_with_device_code(_log_device_code)
        if mode == AuthenticationMode.INTERACTIVE_BROWSER:
            return await self.authenticate_with_interactive_browser()

        result = await self._execute("authenticate", self._authenticate(options))
        self.metrics.record_authentication(self.backend_label, mode.value, result.is_authenticated)
        return result

    async def _authenticate(self, options: AuthenticationOptions) -> AuthenticationResult:
        mode = options.mode
        if mode not in self.get_supported_authentication_modes():
            return AuthenticationResult.not_supported(mode, self.directory_type)
        try:
            options.validate()
        except ValueError as e:
            return AuthenticationResult.failure(str(e), "InvalidOptions", mode, self.directory_type, options.username)

        if mode == AuthenticationMode.CERTIFICATE:
            return await self._authenticate_with_certificate(options)

        result = await self._run_blocking(self._acquire_by_password, options.username, options.password)
        auth_result = self._token_result(result, mode, options.username)
        if auth_result.is_authenticated:
            logger.info(f"Authenticated {auth_result.username} with {mode}")
            if options.include_groups:
                auth_result.groups = await self._user_groups(auth_result.user_id or options.username)
        return auth_result

    def _acquire_with_certificate(self, options: AuthenticationOptions) -> Dict[str, Any]:
        app = build_confidential_app(
            self.options, certificate_credential(options.certificate_path, options.certificate_password)
        )
        return app.acquire_token_for_client(scopes=self.options.scopes)

    async def _authenticate_with_certificate(self, options: AuthenticationOptions) -> AuthenticationResult:
        mode = AuthenticationMode.CERTIFICATE
        try:
            result = await self._run_blocking(self._acquire_with_certificate, options)
        except (OSError, ValueError) as e:
            return AuthenticationResult.failure(
                f"Could not load certificate: {e}", "InvalidCertificate", mode, self.directory_type, options.username
            )
        return self._token_result(result, mode, options.username or self.options.client_id)

    async def authenticate_with_device_code(self, callback: DeviceCodeCallback) -> AuthenticationResult:
        result = await self._execute(
            "authenticate_with_device_code", self._device_code_flow(callback), timeout=DEVICE_FLOW_TIMEOUT
        )
        self.metrics.record_authentication(
            self.backend_label, AuthenticationMode.DEVICE_CODE.value, result.is_authenticated
        )
        return result

    async def _device_code_flow(self, callback: DeviceCodeCallback) -> AuthenticationResult:
        mode = AuthenticationMode.DEVICE_CODE
        app = self._get_public_app()
        flow = await self._run_blocking(app.initiate_device_flow, scopes=self.options.delegated_scopes)
        if "user_code" not in flow:
            return AuthenticationResult.failure(
                flow.get("error_description") or "Could not start the device code flow",
                flow.get("error"),
                mode,
                self.directory_type,
            )

        expires_on = None
        if flow.get("expires_at"):
            expires_on = datetime.fromtimestamp(flow["expires_at"], tz=timezone.utc)
        info = DeviceCodeInfo(
            user_code=flow["user_code"],
            verification_uri=flow.get("verification_uri", ""),
            message=flow.get("message", ""),
            expires_on=expires_on,
        )
        outcome = callback(info)
        if inspect.isawaitable(outcome):
            await outcome

        result = await self._run_blocking(app.acquire_token_by_device_flow, flow)
        return self._token_result(result, mode)

    async def authenticate_with_interactive_browser(self) -> AuthenticationResult:
        mode = AuthenticationMode.INTERACTIVE_BROWSER

        async def run():
            result = await self._run_blocking(
                self._get_public_app().acquire_token_interactive,
                scopes=self.options.delegated_scopes,
                timeout=int(INTERACTIVE_TIMEOUT),
            )
            return self._token_result(result, mode)

        result = await self._execute("authenticate_with_interactive_browser", run(), timeout=INTERACTIVE_TIMEOUT + 5)
        self.metrics.record_authentication(self.backend_label, mode.value, result.is_authenticated)
        return result

    # Management

    def get_supported_management_operations(self) -> List[ManagementOperation]:
        return [
            ManagementOperation.ENABLE_ACCOUNT,
            ManagementOperation.DISABLE_ACCOUNT,
            ManagementOperation.ADD_TO_GROUP,
            ManagementOperation.REMOVE_FROM_GROUP,
            ManagementOperation.RESET_PASSWORD,
            ManagementOperation.FORCE_PASSWORD_CHANGE,
            ManagementOperation.SET_PASSWORD_NEVER_EXPIRES,
            ManagementOperation.CLEAR_PASSWORD_NEVER_EXPIRES,
        ]

    async def _resolve_account_path(self, account: AccountOptions) -> Optional[str]:
        if account.object_type == ObjectType.COMPUTER:
            if is_object_id(account.target):
                return f"devices/{account.target}"
            record = await self._first("devices", ["id"], [Predicate("displayName", account.target)])
            return f"devices/{record['id']}" if record else None
        user_id = await self._resolve_user_id(account.target)
        return f"users/{user_id}" if user_id else None

    async def _update(self, operation: ManagementOperation, path: str, body: Dict[str, Any],
                      details: Optional[str] = None) -> ManagementResult:
        client = await self._connection.get()
        try:
            await self._run_blocking(client.patch, path, body)
        except GraphRequestError as e:
            logger.warning(f"{operation} on {path} failed: {e}")
            return ManagementResult.failure(operation, e.message, e.status_code, path)
        logger.info(f"{operation}: {path}")
        return ManagementResult.success(operation, path, details=details)

    async def _update_account(
        self, operation: ManagementOperation, account: AccountOptions, body: Dict[str, Any]
    ) -> ManagementResult:
        try:
            account.validate()
        except ValueError as e:
            return ManagementResult.failure(operation, str(e))
        path = await self._resolve_account_path(account)
        if not path:
            return ManagementResult.failure(operation, f"Account '{account.target}' not found")
        return await self._update(operation, path, body)

    async def enable_account(self, account: AccountOptions) -> ManagementResult:
        return await self._execute(
            "enable_account",
            self._update_account(ManagementOperation.ENABLE_ACCOUNT, account, {"accountEnabled": True}),
        )

    async def disable_account(self, account: AccountOptions) -> ManagementResult:
        return await self._execute(
            "disable_account",
            self._update_account(ManagementOperation.DISABLE_ACCOUNT, account, {"accountEnabled": False}),
        )

    async def force_password_change(self, account: AccountOptions) -> ManagementResult:
        if account.object_type == ObjectType.COMPUTER:
            return self._not_supported(ManagementOperation.FORCE_PASSWORD_CHANGE)
        return await self._execute(
            "force_password_change",
            self._update_account(
                ManagementOperation.FORCE_PASSWORD_CHANGE,
                account,
                {"passwordProfile": {"forceChangePasswordNextSignIn": True}},
            ),
        )

    async def set_password_never_expires(
        self, account: AccountOptions, never_expires: bool = True
    ) -> ManagementResult:
        operation = (
            ManagementOperation.SET_PASSWORD_NEVER_EXPIRES
            if never_expires
            else ManagementOperation.CLEAR_PASSWORD_NEVER_EXPIRES
        )
        if account.object_type == ObjectType.COMPUTER:
            return self._not_supported(operation)
        policies = "DisablePasswordExpiration" if never_expires else "None"
        return await self._execute(
            "set_password_never_expires",
            self._update_account(operation, account, {"passwordPolicies": policies}),
        )

    async def reset_password(self, options: PasswordOptions) -> ManagementResult:
        reset_options = replace(options, is_administrative_reset=True)
        operation = ManagementOperation.RESET_PASSWORD

        async def run():
            try:
                reset_options.validate_for_change()
            except ValueError as e:
                return ManagementResult.failure(operation, str(e))
            user_id = await self._resolve_user_id(reset_options.target)
            if not user_id:
                return ManagementResult.failure(operation, f"User '{reset_options.target}' not found")
            profile = {
                "password": reset_options.new_password,
                "forceChangePasswordNextSignIn": reset_options.must_change_at_next_logon,
            }
            details = "User must change password at next logon" if reset_options.must_change_at_next_logon else None
            return await self._update(operation, f"users/{user_id}", {"passwordProfile": profile}, details)

        return await self._execute("reset_password", run())

    async def _membership_target(
        self, operation: ManagementOperation, options: GroupMembershipOptions
    ):
        """Resolve (group id, member id), or return a failure result."""
        try:
            options.validate()
        except ValueError as e:
            return ManagementResult.failure(operation, str(e))

        group_id = await self._resolve_group_id(options.group)
        if not group_id:
            return ManagementResult.failure(operation, f"Group '{options.group}' not found")

        member_dns = options.all_member_dns()
        member = member_dns[0] if member_dns else options.member_username
        member_id = member if is_object_id(member) else await self._resolve_user_id(member)
        if member_id and not is_object_id(member_id):
            record = await self._get_or_none(f"users/{member_id}", {"$select": "id"})
            member_id = record.get("id") if record else None
        if not member_id:
            return ManagementResult.failure(operation, f"Member '{member}' not found", target_dn=group_id)
        return group_id, member_id

    async def add_to_group(self, options: GroupMembershipOptions) -> ManagementResult:
        operation = ManagementOperation.ADD_TO_GROUP

        async def run():
            target = await self._membership_target(operation, options)
            if isinstance(target, ManagementResult):
                return target
            group_id, member_id = target
            client = await self._connection.get()
            body = {"@odata.id": f"{client.base_url}/directoryObjects/{member_id}"}
            try:
                await self._run_blocking(client.post, f"groups/{group_id}/members/$ref", body)
            except GraphRequestError as e:
                if e.status_code == 400 and "already exist" in (e.message or ""):
                    return ManagementResult.success(operation, group_id, details=f"{member_id} is already a member")
                logger.warning(f"{operation} on group {group_id} failed: {e}")
                return ManagementResult.failure(operation, e.message, e.status_code, group_id)
            logger.info(f"{operation}: {member_id} -> {group_id}")
            return ManagementResult.success(operation, group_id, details=member_id)

        return await self._execute("add_to_group", run())

    async def remove_from_group(self, options: GroupMembershipOptions) -> ManagementResult:
        operation = ManagementOperation.REMOVE_FROM_GROUP

        async def run():
            target = await self._membership_target(operation, options)
            if isinstance(target, ManagementResult):
                return target
            group_id, member_id = target
            client = await self._connection.get()
            try:
                await self._run_blocking(client.delete, f"groups/{group_id}/members/{member_id}/$ref")
            except GraphRequestError as e:
                if e.status_code == 404:
                    return ManagementResult.success(operation, group_id, details=f"{member_id} was not a member")
                logger.warning(f"{operation} on group {group_id} failed: {e}")
                return ManagementResult.failure(operation, e.message, e.status_code, group_id)
            logger.info(f"{operation}: {member_id} -> {group_id}")
            return ManagementResult.success(operation, group_id, details=member_id)

        return await self._execute("remove_from_group", run())
