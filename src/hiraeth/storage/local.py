"""Local filesystem blob store for Hiraeth.

Implements the BlobStore protocol using the local filesystem. Each blob is
stored as ``{root}/{object_id}``.

Crash-only design:
    - Single-shot writes use the temp-fsync-rename pattern.
    - Appends are fsync'd before returning.
    - Startup cleans orphan ``.tmp.`` files from interrupted writes.
"""

import logging
import os
import shutil
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO

from hiraeth.errors import BlobIOError

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024

_TMP_MARKER = ".tmp."

# Enough leading bytes for content type detection.
_HEAD_SIZE = 8192


class LocalBlobReader:
    """An open blob file.

    Iterating yields the content in 64 KB chunks and closes the file at the
    end. ``close()`` is safe to call more than once.

    Attributes:
        size: Blob size in bytes at open time.
    """

    def __init__(self, fh: BinaryIO) -> None:
        self._fh = fh
        self.size = os.fstat(fh.fileno()).st_size

    def head(self, length: int = _HEAD_SIZE) -> bytes:
        """Return the first ``length`` bytes without moving the read position."""
        return os.pread(self._fh.fileno(), length, 0)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = self._fh.read(_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self._fh.close()


class LocalBlobStore:
    """Blob store that persists one file per object in a data directory.

    Attributes:
        root: The data directory.
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the local blob store.

        Args:
            root: Data directory path.
        """
        self.root = Path(root)

    def path(self, object_id: str) -> Path:
        """Return the filesystem path for a blob.

        Raises:
            ValueError: If the id would escape the data directory.
        """
        if not object_id or Path(object_id).name != object_id or object_id.startswith("."):
            raise ValueError(f"invalid object id: {object_id!r}")
        return self.root / object_id

    async def init(self) -> None:
        """Create the data directory and clean up orphan temp files."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BlobIOError(f"Unable to create data directory {self.root}: {exc}") from exc

        self._clean_temp_files()

        logger.info("Local blob store initialized at %s", self.root)

    def _clean_temp_files(self) -> None:
        """Remove orphan temp files left by interrupted atomic writes."""
        count = 0
        for entry in self.root.iterdir():
            if _TMP_MARKER in entry.name and entry.is_file():
                try:
                    entry.unlink()
                    count += 1
                except OSError:
                    logger.warning("Unable to remove orphan temp file %s", entry)
        if count > 0:
            logger.info("Cleaned %d orphan temp files on startup", count)

    async def close(self) -> None:
        """No-op for local filesystem backend."""
        pass

    async def put(self, object_id: str, data: bytes | BinaryIO) -> int:
        """Atomically write a whole blob (temp file -> fsync -> rename).

        Args:
            object_id: The object id.
            data: Raw bytes, or a binary file object to copy from.

        Returns:
            The number of bytes written.
        """
        path = self.path(object_id)
        tmp = path.with_name(f"{path.name}{_TMP_MARKER}{uuid.uuid4().hex[:8]}")
        try:
            with open(tmp, "wb") as fh:
                if isinstance(data, (bytes, bytearray)):
                    fh.write(data)
                else:
                    shutil.copyfileobj(data, fh, _CHUNK_SIZE)
                fh.flush()
                os.fsync(fh.fileno())
                written = fh.tell()
            tmp.rename(path)
        except OSError as exc:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.warning("Unable to remove temp file %s", tmp)
            raise BlobIOError(f"Unable to save file {object_id}: {exc}") from exc

        return written

    async def append(self, object_id: str, data: bytes) -> int:
        """Append bytes to a blob, creating it if it does not exist.

        Returns:
            The size of the blob after the append.
        """
        path = self.path(object_id)
        try:
            with open(path, "ab") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
                return fh.tell()
        except OSError as exc:
            raise BlobIOError(f"Unable to append chunk to {object_id}: {exc}") from exc

    async def get(self, object_id: str) -> bytes:
        """Read a whole blob.

        Raises:
            FileNotFoundError: If the blob does not exist.
        """
        return self.path(object_id).read_bytes()

    async def open(self, object_id: str) -> LocalBlobReader:
        """Open a blob for streaming.

        The file is opened here, before any response is started, so a blob
        removed afterwards still streams in full.

        Raises:
            FileNotFoundError: If the blob does not exist.
        """
        return LocalBlobReader(open(self.path(object_id), "rb"))

    async def delete(self, object_id: str) -> bool:
        """Remove a blob.

        A missing file is success, since a prior fire or manual delete may
        already have removed it.

        Returns:
            True if a file was removed, False if it was already absent.
        """
        try:
            self.path(object_id).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise BlobIOError(f"Unable to remove file {object_id}: {exc}") from exc
        return True

    async def exists(self, object_id: str) -> bool:
        return self.path(object_id).is_file()

    async def size(self, object_id: str) -> int:
        return self.path(object_id).stat().st_size

    async def list_ids(self) -> set[str]:
        """Return the ids of all blobs, ignoring temp files."""
        return {
            entry.name
            for entry in self.root.iterdir()
            if entry.is_file() and _TMP_MARKER not in entry.name and not entry.name.startswith(".")
        }
