"""Error definitions for Hiraeth.

Every error raised by the lifecycle core derives from ``HiraethError`` and
carries the code and HTTP status the API layer renders.
"""


class HiraethError(Exception):
    """A lifecycle error with code, message, and HTTP status.

    Attributes:
        code: Stable error code string (e.g. "NotFound", "ChunkTooLarge").
        message: Human-readable error description.
        http_status: The HTTP status code to return.
    """

    def __init__(self, code: str, message: str, http_status: int = 400) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 400).
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status


class NotFound(HiraethError):
    """The object is absent or not visible to the caller.

    Used uniformly so that existence is never leaked to other principals.
    """

    def __init__(self, object_id: str = "") -> None:
        super().__init__(
            code="NotFound",
            message="The specified file does not exist.",
            http_status=404,
        )
        self.object_id = object_id


class InvalidTarget(HiraethError):
    """The operation targets an object in the wrong state or of another owner."""

    def __init__(self, message: str = "Metadata does not match") -> None:
        super().__init__(code="InvalidTarget", message=message, http_status=409)


class ChunkTooLarge(HiraethError):
    """A chunk exceeds the configured maximum chunk size."""

    def __init__(self, size: int = 0, limit: int = 0) -> None:
        message = "Chunk too large"
        if limit:
            message = f"Chunk too large: {size} bytes exceeds the {limit} byte limit"
        super().__init__(code="ChunkTooLarge", message=message, http_status=413)


class LifetimeExceeded(HiraethError):
    """The requested expiry is not in the future or beyond the policy maximum."""

    def __init__(self, message: str = "Duration too long") -> None:
        super().__init__(code="LifetimeExceeded", message=message, http_status=400)


class StorageError(HiraethError):
    """The metadata store failed to persist or query a row."""

    def __init__(self, message: str = "Metadata store failure") -> None:
        super().__init__(code="StorageError", message=message, http_status=500)


class BlobIOError(HiraethError):
    """Writing or removing a blob file failed."""

    def __init__(self, message: str = "Blob I/O failure") -> None:
        super().__init__(code="BlobIOError", message=message, http_status=500)


class InvalidArgument(HiraethError):
    """Malformed API input."""

    def __init__(self, message: str = "Malformed input") -> None:
        super().__init__(code="InvalidArgument", message=message, http_status=400)


class AccessDenied(HiraethError):
    """Credentials are missing, wrong, or insufficient."""

    def __init__(self, message: str = "Access Denied", http_status: int = 403) -> None:
        super().__init__(code="AccessDenied", message=message, http_status=http_status)
