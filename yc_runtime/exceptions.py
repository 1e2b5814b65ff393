"""
Custom exceptions for the runtime services.
"""
from typing import Optional


class RuntimeServiceError(Exception):
    """Base exception for runtime service errors."""
    pass


class ConfigurationError(RuntimeServiceError):
    """Exception raised when environment configuration is invalid."""
    pass


class ManifestValidationError(RuntimeServiceError):
    """Exception raised when a deployment manifest fails validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        """
        Initialize manifest validation error.

        Args:
            message: Error message
            field: Dotted path of the offending manifest field
        """
        super().__init__(message)
        self.field = field
        self.message = message


class CacheWriteError(RuntimeServiceError):
    """Exception raised when a cache write, delete or revalidation fails."""

    def __init__(self, message: str, cache_key: Optional[str] = None):
        super().__init__(message)
        self.cache_key = cache_key


class MiddlewareExecutionError(RuntimeServiceError):
    """
    Exception raised when middleware code fails to run.

    The error name, code and message come from the JavaScript side, which
    lets the runner decide between the native fallback and failing open.
    """

    # Error codes Node sets on failed module resolution
    MODULE_NOT_FOUND_CODES = frozenset(['MODULE_NOT_FOUND', 'ERR_MODULE_NOT_FOUND'])
    # Explicit signal for an API the edge sandbox does not provide
    UNSUPPORTED_ERROR_NAME = 'UnsupportedError'
    UNSUPPORTED_ERROR_CODE = 'ERR_EDGE_UNSUPPORTED'

    def __init__(self, message: str, error_name: str = 'Error', error_code: Optional[str] = None):
        """
        Initialize middleware execution error.

        Args:
            message: Error message reported by the runtime
            error_name: JavaScript error constructor name (e.g. 'ReferenceError')
            error_code: Node error code, if the error carried one
        """
        super().__init__(message)
        self.error_name = error_name
        self.error_code = error_code
        self.message = message

    @property
    def capability_gap(self) -> bool:
        """Whether the failure points at a global, module or API the sandbox lacks."""
        if self.error_name == 'ReferenceError' and self.message.endswith('is not defined'):
            return True
        if self.error_code in self.MODULE_NOT_FOUND_CODES or self.message.startswith('Cannot find module'):
            return True
        return self.error_name == self.UNSUPPORTED_ERROR_NAME or self.error_code == self.UNSUPPORTED_ERROR_CODE


class MiddlewareTimeoutError(MiddlewareExecutionError):
    """Exception raised when middleware exceeds its execution timeout."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f'Middleware execution exceeded {timeout_seconds}s',
            error_name='TimeoutError'
        )
        self.timeout_seconds = timeout_seconds

    @property
    def capability_gap(self) -> bool:
        return False


class ImageRequestError(RuntimeServiceError):
    """Exception raised when an image optimization request cannot be served."""

    def __init__(self, message: str, status_code: int = 400, error_code: str = 'INVALID_IMAGE_REQUEST'):
        """
        Initialize image request error.

        Args:
            message: Error message returned to the client
            status_code: HTTP status of the error response
            error_code: Machine-readable error code
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
