"""SQLite-backed object store for Hiraeth.

Implements the ObjectStore protocol using aiosqlite for async access.
All tables use CREATE TABLE IF NOT EXISTS for schema idempotency. A single
connection is shared, so statements are serialized by aiosqlite's worker
thread; state transitions are single conditional UPDATE/DELETE statements.
"""

import logging
import time
import uuid
from typing import Any

import aiosqlite

from hiraeth.errors import NotFound, StorageError
from hiraeth.metadata.models import ObjectStatus, StoredObject, User

logger = logging.getLogger(__name__)

_OBJECT_COLUMNS = "id, display_name, owner_id, expiry, status, access_secret, created_at"


class SQLiteObjectStore:
    """Object store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite object store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous, enables foreign keys,
        and sets a 5-second busy timeout. Idempotent; safe to call on every
        startup.
        """
        if self._db is None:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA synchronous = NORMAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create all tables and indexes if they do not already exist."""
        assert self._db is not None

        async with self._db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ) as cursor:
            if await cursor.fetchone() is not None:
                return

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id        INTEGER PRIMARY KEY AUTOINCREMENT,
                name      TEXT NOT NULL UNIQUE,
                password  TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS objects (
                id             TEXT PRIMARY KEY,
                display_name   TEXT NOT NULL,
                owner_id       INTEGER NOT NULL,
                expiry         REAL NOT NULL,
                status         TEXT NOT NULL DEFAULT 'pending',
                access_secret  TEXT,
                created_at     REAL NOT NULL,

                FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_objects_owner_status
                ON objects(owner_id, status);
            CREATE INDEX IF NOT EXISTS idx_objects_status
                ON objects(status);

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at REAL NOT NULL
            );
        """)

        await self._db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (1, ?)",
            (time.time(),),
        )
        await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _write(self, operation: str, sql: str, params: tuple) -> int:
        """Execute and commit a single write statement.

        Returns:
            The number of rows affected.

        Raises:
            StorageError: If SQLite reports any error.
        """
        assert self._db is not None
        try:
            cursor = await self._db.execute(sql, params)
            await self._db.commit()
        except aiosqlite.Error as exc:
            logger.exception("SQLite error in %s", operation)
            raise StorageError(f"{operation} failed: {exc}") from exc
        return cursor.rowcount

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[Any]:
        assert self._db is not None
        try:
            async with self._db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            logger.exception("SQLite error in query")
            raise StorageError(f"query failed: {exc}") from exc

    async def _fetchone(self, sql: str, params: tuple = ()) -> Any:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # -- Object operations -----------------------------------------------------

    async def _insert(
        self,
        object_id: str,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None,
        status: ObjectStatus,
    ) -> str:
        await self._write(
            "insert object",
            f"""INSERT INTO objects ({_OBJECT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                object_id,
                display_name,
                owner_id,
                expiry,
                status.value,
                access_secret,
                time.time(),
            ),
        )
        return object_id

    async def create_pending(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
    ) -> str:
        """Insert a pending row under a fresh UUID4 id.

        Raises:
            StorageError: On id collision or persistence failure.
        """
        return await self._insert(
            str(uuid.uuid4()), owner_id, display_name, expiry, access_secret, ObjectStatus.PENDING
        )

    async def create_committed(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
        object_id: str | None = None,
    ) -> str:
        """Insert a committed row, optionally under a pre-allocated id."""
        return await self._insert(
            object_id or str(uuid.uuid4()),
            owner_id,
            display_name,
            expiry,
            access_secret,
            ObjectStatus.COMMITTED,
        )

    async def commit(self, object_id: str, owner_id: int) -> StoredObject:
        """Transition a pending row owned by ``owner_id`` to committed.

        The conditional UPDATE guards against committing another user's
        object or one that is already committed.

        Raises:
            NotFound: If no such pending row exists.
        """
        changed = await self._write(
            "commit object",
            "UPDATE objects SET status = ? WHERE id = ? AND owner_id = ? AND status = ?",
            (ObjectStatus.COMMITTED.value, object_id, owner_id, ObjectStatus.PENDING.value),
        )
        if changed == 0:
            raise NotFound(object_id)
        obj = await self.get(object_id)
        if obj is None:
            raise NotFound(object_id)
        return obj

    async def rename(self, object_id: str, owner_id: int, display_name: str) -> None:
        """Update the display name of a committed row owned by ``owner_id``.

        Raises:
            NotFound: If the id/owner pair does not match a committed row.
        """
        changed = await self._write(
            "rename object",
            "UPDATE objects SET display_name = ? WHERE id = ? AND owner_id = ? AND status = ?",
            (display_name, object_id, owner_id, ObjectStatus.COMMITTED.value),
        )
        if changed == 0:
            raise NotFound(object_id)

    async def get(self, object_id: str) -> StoredObject | None:
        """Return the row in any status, or None."""
        row = await self._fetchone(
            f"SELECT {_OBJECT_COLUMNS} FROM objects WHERE id = ?", (object_id,)
        )
        if row is None:
            return None
        return StoredObject.from_row(row)

    async def get_for_download(self, object_id: str) -> StoredObject:
        """Return a committed row.

        Raises:
            NotFound: If the row is absent or still pending.
        """
        row = await self._fetchone(
            f"SELECT {_OBJECT_COLUMNS} FROM objects WHERE id = ? AND status = ?",
            (object_id, ObjectStatus.COMMITTED.value),
        )
        if row is None:
            raise NotFound(object_id)
        return StoredObject.from_row(row)

    async def list_committed(self, owner_id: int) -> list[StoredObject]:
        """List the committed rows owned by a principal, oldest first."""
        rows = await self._fetchall(
            f"""SELECT {_OBJECT_COLUMNS} FROM objects
                WHERE owner_id = ? AND status = ?
                ORDER BY created_at""",
            (owner_id, ObjectStatus.COMMITTED.value),
        )
        return [StoredObject.from_row(r) for r in rows]

    async def delete(self, object_id: str) -> bool:
        """Delete a row. Deleting a missing id is not an error."""
        changed = await self._write(
            "delete object", "DELETE FROM objects WHERE id = ?", (object_id,)
        )
        return changed > 0

    async def all_committed(self) -> list[tuple[str, float]]:
        """Return ``(id, expiry)`` for every committed row."""
        rows = await self._fetchall(
            "SELECT id, expiry FROM objects WHERE status = ?",
            (ObjectStatus.COMMITTED.value,),
        )
        return [(r["id"], r["expiry"]) for r in rows]

    async def all_pending(self) -> list[str]:
        """Return the id of every pending row."""
        rows = await self._fetchall(
            "SELECT id FROM objects WHERE status = ?", (ObjectStatus.PENDING.value,)
        )
        return [r["id"] for r in rows]

    async def all_ids(self) -> set[str]:
        """Return the id of every row regardless of status."""
        rows = await self._fetchall("SELECT id FROM objects")
        return {r["id"] for r in rows}

    # -- User operations -------------------------------------------------------

    async def create_user(self, name: str, password_hash: str) -> int:
        """Insert a principal and return its id.

        Raises:
            StorageError: If the name is taken or persistence fails.
        """
        assert self._db is not None
        try:
            cursor = await self._db.execute(
                "INSERT INTO users (name, password) VALUES (?, ?)", (name, password_hash)
            )
            await self._db.commit()
        except aiosqlite.IntegrityError as exc:
            raise StorageError(f"user {name!r} already exists") from exc
        except aiosqlite.Error as exc:
            logger.exception("SQLite error in create_user %s", name)
            raise StorageError(f"create user failed: {exc}") from exc
        return cursor.lastrowid

    async def get_user(self, user_id: int) -> User | None:
        """Look up a principal by id."""
        row = await self._fetchone(
            "SELECT id, name, password FROM users WHERE id = ?", (user_id,)
        )
        return User(**dict(row)) if row is not None else None

    async def get_user_by_name(self, name: str) -> User | None:
        """Look up a principal by name."""
        row = await self._fetchone(
            "SELECT id, name, password FROM users WHERE name = ?", (name,)
        )
        return User(**dict(row)) if row is not None else None

    async def delete_user(self, name: str) -> bool:
        """Delete a principal; their object rows are removed by cascade."""
        changed = await self._write(
            "delete user", "DELETE FROM users WHERE name = ?", (name,)
        )
        return changed > 0

    async def list_users(self) -> list[User]:
        """List all principals ordered by name."""
        rows = await self._fetchall("SELECT id, name, password FROM users ORDER BY name")
        return [User(**dict(r)) for r in rows]
