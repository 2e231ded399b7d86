"""
Storage error taxonomy.

Every failure that leaves the storage layer is one of these kinds:
- ValidationError: malformed path/commit/range/parameters
- PathNotAllowedError: path outside the configured writable prefixes
- NotFoundError: path, commit or upload session absent
- ConflictError: target exists, upload chunks missing
- PayloadTooLargeError / UnsupportedTypeError: limits and allow-lists
- RangeNotSatisfiableError: carries the true total size
- InternalError: child-process or I/O failure, repository init failure

Each class carries the HTTP status the API layer renders it with.
"""


class StorageError(Exception):
    """Base exception for storage layer errors."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(StorageError):
    """Raised when request parameters are malformed."""
    status_code = 400


class PathNotAllowedError(StorageError):
    """Raised when a path is outside the allowed prefixes."""
    status_code = 403


class NotFoundError(StorageError):
    """Raised when a path, commit or session does not exist."""
    status_code = 404


class ConflictError(StorageError):
    """Raised when the target already exists or an upload is incomplete."""
    status_code = 409


class PayloadTooLargeError(StorageError):
    """Raised when content exceeds a configured size limit."""
    status_code = 413


class UnsupportedTypeError(StorageError):
    """Raised when a file type is not in the allow-list."""
    status_code = 415


class RangeNotSatisfiableError(StorageError):
    """Raised when a byte range cannot be served."""
    status_code = 416

    def __init__(self, total: int, message: str = ""):
        super().__init__(message or f"Range not satisfiable (size {total})")
        self.total = total


class InternalError(StorageError):
    """Raised on unexpected child-process or I/O failures."""
    status_code = 500


class RepositoryInitError(InternalError):
    """Raised when a repository cannot be initialized."""
    pass
