import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..exceptions import GraphRequestError

# Set up logging
logger = logging.getLogger(__name__)

TokenProvider = Callable[[bool], str]


class GraphClient:
    """
    Minimal Microsoft Graph REST client.

    All methods are blocking and meant to be run in an executor. Successful
    responses return decoded JSON (or None for empty bodies); every other
    status raises GraphRequestError carrying the Graph error code.

    Attributes:
        base_url (str): Graph root, e.g. https://graph.microsoft.com/v1.0
        timeout (float): Per-request timeout in seconds.
        max_retries (int): Attempts for throttled (429/503) responses.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        timeout: float = 60.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()

    def _headers(self, force_refresh: bool = False, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._token_provider(force_refresh)}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def url_for(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Send a request, retrying throttled responses and refreshing the token once on 401.

        Args:
            method: HTTP verb.
            path: Path relative to base_url, or an absolute @odata.nextLink.
            params: Query string parameters.
            json: JSON body.
            headers: Extra headers, e.g. ConsistencyLevel.

        Raises:
            GraphRequestError: For any non-success status.
            requests.RequestException: For transport failures.
        """
        url = self.url_for(path)
        refreshed = False
        attempt = 0

        while True:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(refreshed, headers),
                timeout=self.timeout,
            )

            if response.status_code == 401 and not refreshed:
                logger.debug("401 from Graph, refreshing access token")
                refreshed = True
                continue

            if response.status_code in (429, 503) and attempt < self.max_retries - 1:
                retry_after = response.headers.get("Retry-After")
                sleep_time = int(retry_after) if retry_after and retry_after.isdigit() else 2 ** attempt
                logger.warning(
                    f"Graph throttled ({response.status_code}) on attempt {attempt + 1}/{self.max_retries}. "
                    f"Retrying in {sleep_time}s..."
                )
                time.sleep(sleep_time)
                attempt += 1
                continue

            return self._handle_response(response)

    def _handle_response(self, response: requests.Response) -> Optional[Dict[str, Any]]:
        if response.status_code in (200, 201):
            logger.debug(f"{response.status_code} | {response.request.method} {response.url}")
            if not response.content:
                return None
            return response.json()
        if response.status_code == 204:
            logger.debug(f"{response.status_code} | {response.request.method} {response.url}")
            return None

        error = {}
        try:
            body = response.json()
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                error = body["error"]
        except ValueError:
            logger.debug(f"Non-JSON error body from Graph: {response.text[:200]}")
        raise GraphRequestError(response.status_code, error.get("message", response.text), error.get("code"))

    def get(self, path: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        return self.request("GET", path, params=params, headers=headers)

    def post(self, path: str, data: Optional[Any] = None) -> Optional[Dict[str, Any]]:
        return self.request("POST", path, json=data)

    def patch(self, path: str, data: Any) -> Optional[Dict[str, Any]]:
        return self.request("PATCH", path, json=data)

    def delete(self, path: str) -> Optional[Dict[str, Any]]:
        return self.request("DELETE", path)

    def close(self) -> None:
        self.session.close()
