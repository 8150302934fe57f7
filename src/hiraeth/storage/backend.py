"""Abstract blob storage protocol for Hiraeth."""

from typing import AsyncIterator, BinaryIO, Protocol


class BlobReader(Protocol):
    """An open blob that streams its content once."""

    size: int

    def head(self, length: int = ...) -> bytes:
        """Return the leading bytes of the blob."""
        ...

    def __aiter__(self) -> AsyncIterator[bytes]:
        ...

    def close(self) -> None:
        ...


class BlobStore(Protocol):
    """Protocol defining the blob storage interface.

    Every object has at most one blob, addressed by the object id. Blobs of
    pending uploads grow by appends only; committed blobs are immutable.
    """

    async def init(self) -> None:
        """Initialize the backend (create directories, clean temp files)."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    async def put(self, object_id: str, data: bytes | BinaryIO) -> int:
        """Atomically write a whole blob.

        Returns:
            The number of bytes written.

        Raises:
            BlobIOError: If the filesystem write fails.
        """
        ...

    async def append(self, object_id: str, data: bytes) -> int:
        """Append bytes to a blob, creating it if needed.

        Returns:
            The size of the blob after the append.

        Raises:
            BlobIOError: If the filesystem write fails.
        """
        ...

    async def get(self, object_id: str) -> bytes:
        """Read a whole blob."""
        ...

    async def open(self, object_id: str) -> BlobReader:
        """Open a blob for streaming.

        Raises:
            FileNotFoundError: If the blob does not exist.
        """
        ...

    async def delete(self, object_id: str) -> bool:
        """Remove a blob. Idempotent; returns whether a file was removed.

        Raises:
            BlobIOError: If removal fails for a reason other than absence.
        """
        ...

    async def exists(self, object_id: str) -> bool:
        """Check whether a blob exists."""
        ...

    async def size(self, object_id: str) -> int:
        """Return the blob size in bytes."""
        ...

    async def list_ids(self) -> set[str]:
        """Return the ids of all stored blobs."""
        ...
