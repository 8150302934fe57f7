"""Abstract object store protocol for Hiraeth."""

from typing import Protocol

from hiraeth.metadata.models import StoredObject, User


class ObjectStore(Protocol):
    """Protocol defining the object store interface.

    The store is the durable registry of every object's identity, name,
    access secret, status and expiry. It owns no timers. All methods must be
    safe under concurrent callers; conflicting writes to the same row are
    serialized by the engine.
    """

    async def init_db(self) -> None:
        """Initialize the schema. Must be idempotent."""
        ...

    async def close(self) -> None:
        """Close the database connection and release resources."""
        ...

    # -- Object operations -----------------------------------------------------

    async def create_pending(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
    ) -> str:
        """Insert a pending row under a freshly allocated id.

        Returns:
            The new object id.

        Raises:
            StorageError: On id collision or persistence failure.
        """
        ...

    async def create_committed(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
        object_id: str | None = None,
    ) -> str:
        """Insert a committed row (single-shot upload path).

        ``object_id`` lets the caller pre-allocate the id so the blob can be
        written before the row exists.
        """
        ...

    async def commit(self, object_id: str, owner_id: int) -> StoredObject:
        """Transition a pending row owned by ``owner_id`` to committed.

        Raises:
            NotFound: If no such pending row owned by the principal exists.
        """
        ...

    async def rename(self, object_id: str, owner_id: int, display_name: str) -> None:
        """Update the display name of a committed row owned by ``owner_id``.

        Raises:
            NotFound: If the id/owner pair does not match a committed row.
        """
        ...

    async def get(self, object_id: str) -> StoredObject | None:
        """Return the row in any status, or None."""
        ...

    async def get_for_download(self, object_id: str) -> StoredObject:
        """Return a committed row.

        Raises:
            NotFound: If the row is absent or still pending.
        """
        ...

    async def list_committed(self, owner_id: int) -> list[StoredObject]:
        """List the committed rows owned by a principal."""
        ...

    async def delete(self, object_id: str) -> bool:
        """Delete a row. Idempotent; returns whether a row was removed."""
        ...

    async def all_committed(self) -> list[tuple[str, float]]:
        """Return ``(id, expiry)`` for every committed row."""
        ...

    async def all_pending(self) -> list[str]:
        """Return the id of every pending row."""
        ...

    async def all_ids(self) -> set[str]:
        """Return the id of every row regardless of status."""
        ...

    # -- User operations -------------------------------------------------------

    async def create_user(self, name: str, password_hash: str) -> int:
        """Insert a principal and return its id.

        Raises:
            StorageError: If the name is taken or persistence fails.
        """
        ...

    async def get_user(self, user_id: int) -> User | None:
        """Look up a principal by id."""
        ...

    async def get_user_by_name(self, name: str) -> User | None:
        """Look up a principal by name."""
        ...

    async def delete_user(self, name: str) -> bool:
        """Delete a principal and cascade to their object rows."""
        ...

    async def list_users(self) -> list[User]:
        """List all principals ordered by name."""
        ...
