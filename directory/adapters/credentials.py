"""
msal token acquisition for the Graph backend.

The credential variant is chosen in configuration; this module only turns
the chosen variant into an msal client. There is no fallback between
variants.
"""

import logging
from typing import Any, Dict, Optional

import msal
import requests

from ..config import AzureAdOptions, CertificateAuth, ClientSecretAuth, ManagedIdentityAuth
from ..exceptions import DirectoryConfigurationError, GraphRequestError

logger = logging.getLogger(__name__)


def scope_to_resource(scope: str) -> str:
    """``https://graph.microsoft.com/.default`` -> ``https://graph.microsoft.com``"""
    return scope[: -len("/.default")] if scope.endswith("/.default") else scope


def certificate_credential(certificate_path: str, certificate_password: Optional[str]) -> Dict[str, Any]:
    credential = {"private_key_pfx_path": certificate_path}
    if certificate_password:
        credential["passphrase"] = certificate_password
    return credential


def build_confidential_app(
    options: AzureAdOptions, client_credential: Any, token_cache: Optional[msal.TokenCache] = None
) -> msal.ConfidentialClientApplication:
    return msal.ConfidentialClientApplication(
        options.client_id,
        authority=options.authority,
        client_credential=client_credential,
        token_cache=token_cache,
    )


def build_public_app(options: AzureAdOptions) -> msal.PublicClientApplication:
    """Public client for delegated user flows (ROPC, device code, browser)."""
    return msal.PublicClientApplication(options.client_id, authority=options.authority)


def token_or_raise(result: Optional[Dict[str, Any]]) -> str:
    """
    Extract the access token from an msal result.

    Raises:
        GraphRequestError: With status 401 when msal reports an error.
    """
    result = result or {}
    if "access_token" in result:
        return result["access_token"]
    raise GraphRequestError(
        401,
        result.get("error_description") or "Token acquisition failed",
        result.get("error"),
    )


class GraphCredential:
    """
    App-only token source for one AzureAdOptions.

    Tokens are cached by msal in a cache owned by this credential;
    ``acquire_token`` is blocking.
    """

    def __init__(self, options: AzureAdOptions):
        self.options = options
        self.token_cache = msal.TokenCache()
        credential = options.credential

        if isinstance(credential, ClientSecretAuth):
            self._app = build_confidential_app(options, credential.client_secret, self.token_cache)
            self.kind = "client_secret"
        elif isinstance(credential, CertificateAuth):
            self._app = build_confidential_app(
                options,
                certificate_credential(credential.certificate_path, credential.certificate_password),
                self.token_cache,
            )
            self.kind = "certificate"
        elif isinstance(credential, ManagedIdentityAuth):
            identity = (
                msal.UserAssignedManagedIdentity(client_id=credential.client_id)
                if credential.client_id
                else msal.SystemAssignedManagedIdentity()
            )
            self._app = msal.ManagedIdentityClient(
                identity, http_client=requests.Session(), token_cache=self.token_cache
            )
            self.kind = "managed_identity"
        else:
            raise DirectoryConfigurationError(f"Unsupported Azure credential: {type(credential).__name__}")

        logger.debug(f"Graph credential initialized ({self.kind}) for tenant {options.tenant_id}")

    def acquire_token(self, force_refresh: bool = False) -> str:
        """
        Return an app-only access token.

        Args:
            force_refresh: Drop cached access tokens first, used after Graph
                rejected the current one.
        """
        if force_refresh:
            self.evict_access_tokens()
        if self.kind == "managed_identity":
            result = self._app.acquire_token_for_client(resource=scope_to_resource(self.options.scopes[0]))
        else:
            result = self._app.acquire_token_for_client(scopes=self.options.scopes)
        return token_or_raise(result)

    def evict_access_tokens(self) -> int:
        """Remove every cached access token so msal must ask for a new one."""
        cached = list(self.token_cache.search(msal.TokenCache.CredentialType.ACCESS_TOKEN))
        for entry in cached:
            self.token_cache.remove_at(entry)
        logger.debug(f"Evicted {len(cached)} cached access token(s) for tenant {self.options.tenant_id}")
        return len(cached)
