"""
Directory Facade

Orchestrated access to several directory backends at once. Each backend is
reachable by name through ``facade[name]``, and ``all()`` runs the same
adapter method on every backend concurrently.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..config import AppleDirectoryOptions, AzureAdOptions, BackendOptions, OpenLdapOptions
from ..exceptions import DirectoryConfigurationError
from ..metrics import MetricsRecorder
from ..adapters.apple_directory_adapter import AppleDirectoryAdapter
from ..adapters.azure_ad_adapter import AzureAdAdapter
from ..adapters.base_directory_adapter import BaseDirectoryAdapter
from ..adapters.open_ldap_adapter import OpenLdapAdapter

logger = logging.getLogger(__name__)


def create_adapter(options: BackendOptions, metrics: Optional[MetricsRecorder] = None) -> BaseDirectoryAdapter:
    """
    Build the adapter matching an options object.

    Raises:
        DirectoryConfigurationError: For an unknown options type.
    """
    if isinstance(options, AzureAdOptions):
        return AzureAdAdapter(options, metrics)
    if isinstance(options, AppleDirectoryOptions):
        return AppleDirectoryAdapter(options, metrics)
    if isinstance(options, OpenLdapOptions):
        return OpenLdapAdapter(options, metrics)
    raise DirectoryConfigurationError(f"No adapter for options of type {type(options).__name__}")


class DirectoryFacade:
    """
    Directory facade over named backends.

    Unlike a single adapter, the facade does not fail as a whole when one
    backend fails: ``all()`` reports a per-backend error entry instead.

    Args:
        backends: Adapters keyed by a caller-chosen name, e.g. 'azure', 'openldap'.
    """

    def __init__(self, backends: Dict[str, BaseDirectoryAdapter]) -> None:
        if not backends:
            raise DirectoryConfigurationError("DirectoryFacade needs at least one backend")
        self.backends = dict(backends)
        logger.info(f"Directory Facade initialized with backends: {', '.join(self.backends)}")

    @classmethod
    def from_options(
        cls, options: Dict[str, BackendOptions], metrics: Optional[MetricsRecorder] = None
    ) -> "DirectoryFacade":
        return cls({name: create_adapter(value, metrics) for name, value in options.items()})

    def __getitem__(self, name: str) -> BaseDirectoryAdapter:
        return self.backends[name]

    async def all(self, method_name: str, *args, **kwargs) -> Dict[str, Any]:
        """
        Execute an adapter method on every backend concurrently.

        Args:
            method_name (str): Name of the adapter coroutine method to call
            *args: Positional arguments to pass to the method
            **kwargs: Keyword arguments to pass to the method

        Returns:
            Dict[str, Any]: Result per backend name. A backend that raised
            gets ``{'error': message, 'exception': exc}`` instead.

        Raises:
            AttributeError: If the method doesn't exist on one of the backends

        Examples:
            >>> await facade.all('get_user_by_username', 'jdoe')
            {'azure': LdapUser(...), 'openldap': LdapUser(...)}
        """
        logger.debug(f"Executing '{method_name}' on {len(self.backends)} directory backends")

        methods = {}
        for name, adapter in self.backends.items():
            method = getattr(adapter, method_name, None)
            if method is None or not callable(method):
                raise AttributeError(f"Method '{method_name}' not found on {name} backend")
            methods[name] = method

        outcomes = await asyncio.gather(
            *(method(*args, **kwargs) for method in methods.values()), return_exceptions=True
        )

        results = {}
        for name, outcome in zip(methods, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"{name} {method_name} failed: {outcome}")
                results[name] = {
                    'error': f"{name} method failed: {outcome}",
                    'exception': outcome,
                }
            else:
                results[name] = outcome
        return results

    async def connect(self) -> None:
        """Warm up every backend connection; the first failure is raised."""
        await asyncio.gather(*(adapter.connect() for adapter in self.backends.values()))

    async def close(self) -> None:
        logger.info("Closing Directory Facade connections")
        for name, adapter in self.backends.items():
            try:
                await adapter.close()
                logger.debug(f"{name} connection closed")
            except Exception as e:
                logger.warning(f"Error closing {name} connection: {e}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
