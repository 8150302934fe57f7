"""Object store backends for Hiraeth."""

from typing import TYPE_CHECKING

from hiraeth.metadata.models import ObjectStatus, StoredObject, User
from hiraeth.metadata.store import ObjectStore

if TYPE_CHECKING:
    from hiraeth.config import MetadataConfig

__all__ = [
    "create_object_store",
    "ObjectStatus",
    "ObjectStore",
    "StoredObject",
    "User",
]


def create_object_store(config: "MetadataConfig") -> ObjectStore:
    """Create an object store instance based on configuration.

    Args:
        config: The metadata configuration.

    Returns:
        An object store implementing the ObjectStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "sqlite":
        from hiraeth.metadata.sqlite import SQLiteObjectStore

        return SQLiteObjectStore(config.sqlite.path)

    elif engine == "memory":
        from hiraeth.metadata.memory import MemoryObjectStore

        return MemoryObjectStore()

    else:
        raise ValueError(f"Unknown metadata engine: {engine}")
