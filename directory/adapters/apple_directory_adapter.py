from typing import Optional

from ..config import AppleDirectoryOptions
from ..metrics import MetricsRecorder
from ..models.entities import DirectoryType
from .ldap_adapter import LdapDirectoryAdapter


class AppleDirectoryAdapter(LdapDirectoryAdapter):
    """
    Apple Open Directory backend.

    Open Directory does not honour the paged-results control reliably, so
    paginated calls scan the whole result set once and slice it in memory.
    Directory management is done through Apple tooling; every management
    operation reports "not supported".
    """

    directory_type = DirectoryType.APPLE_DIRECTORY
    supports_paged_results = False

    def __init__(self, options: AppleDirectoryOptions, metrics: Optional[MetricsRecorder] = None):
        super().__init__(options, metrics)
