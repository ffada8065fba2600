from .criteria import ComputerSearchCriteria, GroupSearchCriteria, UserSearchCriteria
from .entities import DirectoryType, LdapComputer, LdapGroup, LdapUser
from .options import (
    AccountOptions,
    AuthenticationMode,
    AuthenticationOptions,
    DeviceCodeInfo,
    GroupMembershipOptions,
    ObjectType,
    PasswordOptions,
)
from .paging import PagedResult, PageRequest
from .results import (
    AuthenticationResult,
    GroupMembershipBatchResult,
    ManagementOperation,
    ManagementResult,
)

__all__ = [
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
