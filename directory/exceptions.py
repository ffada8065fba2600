from typing import Optional


class DirectoryServiceError(Exception):
    """Base exception for directory service errors."""
    pass


class DirectoryConfigurationError(DirectoryServiceError):
    """Raised when backend options are missing or inconsistent."""
    pass


class DirectoryOperationError(DirectoryServiceError):
    """
    Raised when a backend operation fails.

    Transport and protocol errors coming from ldap3, requests or msal are
    wrapped in this type so callers never have to catch vendor exceptions.
    The original exception is available as ``__cause__``.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message


class DirectoryConnectionError(DirectoryOperationError):
    """Raised when the backend connection cannot be established."""
    pass


class DirectoryNotSupportedError(DirectoryServiceError):
    """Raised when a backend cannot perform the requested mode or operation."""

    def __init__(self, capability: str, directory_type: Optional[object] = None):
        backend = f" by {directory_type}" if directory_type is not None else ""
        super().__init__(f"'{capability}' is not supported{backend}.")
        self.capability = capability
        self.directory_type = directory_type


class GraphRequestError(Exception):
    """Raised by the Graph HTTP client for non-success responses."""

    def __init__(self, status_code: int, message: str, error_code: Optional[str] = None):
        super().__init__(f"{status_code} | {error_code or 'error'}: {message}")
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
