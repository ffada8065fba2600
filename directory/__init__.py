"""
Directory Services Hub
======================

One asynchronous interface for querying and managing users, groups and
computers across directory backends:
- Azure AD (Microsoft Graph)
- OpenLDAP
- Apple Open Directory

For more information, see the README.md file.
"""

from typing import Optional

from .adapters import (
    AppleDirectoryAdapter,
    AzureAdAdapter,
    BaseDirectoryAdapter,
    OpenLdapAdapter,
)
from .config import (
    AppleDirectoryOptions,
    AzureAdOptions,
    BackendOptions,
    CertificateAuth,
    ClientSecretAuth,
    DirectoryConfig,
    LdapSecurityMode,
    ManagedIdentityAuth,
    OpenLdapOptions,
)
from .exceptions import (
    DirectoryConfigurationError,
    DirectoryConnectionError,
    DirectoryNotSupportedError,
    DirectoryOperationError,
    DirectoryServiceError,
)
from .facade import DirectoryFacade, create_adapter
from .metrics import MetricsRecorder
from .models import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    AuthenticationResult,
    ComputerSearchCriteria,
    DeviceCodeInfo,
    DirectoryType,
    GroupMembershipBatchResult,
    GroupMembershipOptions,
    GroupSearchCriteria,
    LdapComputer,
    LdapGroup,
    LdapUser,
    ManagementOperation,
    ManagementResult,
    ObjectType,
    PagedResult,
    PageRequest,
    PasswordOptions,
    UserSearchCriteria,
)

__version__ = "0.1.0"


def create_directory_service(
    options: Optional[BackendOptions] = None, metrics: Optional[MetricsRecorder] = None
) -> BaseDirectoryAdapter:
    """
    Build a directory service.

    Args:
        options: Backend options. When omitted they are read from the
            environment (DIRECTORY_BACKEND and the backend's variables).
        metrics: Metrics recorder, the process-wide default when omitted.

    Raises:
        DirectoryConfigurationError: If the configuration is incomplete.
    """
    return create_adapter(options or DirectoryConfig.get_options(), metrics)


__all__ = [
    'AppleDirectoryAdapter',
    'AppleDirectoryOptions',
    'AzureAdAdapter',
    'AzureAdOptions',
    'BaseDirectoryAdapter',
    'CertificateAuth',
    'ClientSecretAuth',
    'DirectoryConfig',
    'DirectoryConfigurationError',
    'DirectoryConnectionError',
    'DirectoryFacade',
    'DirectoryNotSupportedError',
    'DirectoryOperationError',
    'DirectoryServiceError',
    'LdapSecurityMode',
    'ManagedIdentityAuth',
    'MetricsRecorder',
    'OpenLdapAdapter',
    'OpenLdapOptions',
    'create_adapter',
    'create_directory_service',
    'AccountOptions',
    'AuthenticationMode',
    'AuthenticationOptions',
    'AuthenticationResult',
    'ComputerSearchCriteria',
    'DeviceCodeInfo',
    'DirectoryType',
    'GroupMembershipBatchResult',
    'GroupMembershipOptions',
    'GroupSearchCriteria',
    'LdapComputer',
    'LdapGroup',
    'LdapUser',
    'ManagementOperation',
    'ManagementResult',
    'ObjectType',
    'PagedResult',
    'PageRequest',
    'PasswordOptions',
    'UserSearchCriteria',
]
