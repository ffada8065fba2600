from .apple_directory_adapter import AppleDirectoryAdapter
from .azure_ad_adapter import AzureAdAdapter
from .base_directory_adapter import BaseDirectoryAdapter
from .connection import ConnectionState, ManagedConnection
from .graph_client import GraphClient
from .ldap_adapter import LdapDirectoryAdapter
from .open_ldap_adapter import OpenLdapAdapter

__all__ = [
    'AppleDirectoryAdapter',
    'AzureAdAdapter',
    'BaseDirectoryAdapter',
    'ConnectionState',
    'GraphClient',
    'LdapDirectoryAdapter',
    'ManagedConnection',
    'OpenLdapAdapter',
]
