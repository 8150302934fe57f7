"""Data model types for Hiraeth metadata.

These dataclasses represent the entities kept in the object store: stored
objects (pending or committed uploads) and the principals that own them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ObjectStatus(str, Enum):
    """Upload state of a stored object."""

    PENDING = "pending"
    COMMITTED = "committed"


@dataclass
class StoredObject:
    """Metadata for a stored object.

    Attributes:
        id: Opaque unique identifier; also the blob filename.
        display_name: User-supplied file name.
        owner_id: ID of the creating principal.
        expiry: Absolute expiry instant in UNIX seconds.
        status: Pending while chunks are being uploaded, committed afterwards.
        access_secret: Optional bcrypt hash gating third-party download.
        created_at: Row creation instant in UNIX seconds.
    """

    id: str
    display_name: str
    owner_id: int
    expiry: float
    status: ObjectStatus = ObjectStatus.PENDING
    access_secret: str | None = None
    created_at: float = 0.0

    @property
    def committed(self) -> bool:
        return self.status is ObjectStatus.COMMITTED

    @property
    def protected(self) -> bool:
        return self.access_secret is not None

    @classmethod
    def from_row(cls, row: Any) -> StoredObject:
        """Build an instance from a mapping-like database row."""
        return cls(
            id=row["id"],
            display_name=row["display_name"],
            owner_id=row["owner_id"],
            expiry=row["expiry"],
            status=ObjectStatus(row["status"]),
            access_secret=row["access_secret"],
            created_at=row["created_at"],
        )


@dataclass
class User:
    """A principal that can own objects.

    Attributes:
        id: Integer primary key.
        name: Unique login name.
        password: bcrypt hash of the login password.
    """

    id: int
    name: str
    password: str
