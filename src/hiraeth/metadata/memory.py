"""In-memory object store for Hiraeth.

Useful for testing and ephemeral deployments. Data is lost on restart, so
startup recovery has nothing to re-arm.
"""

import time
import uuid
from dataclasses import replace

from hiraeth.errors import NotFound, StorageError
from hiraeth.metadata.models import ObjectStatus, StoredObject, User


class MemoryObjectStore:
    """In-memory object store using Python dicts.

    Every method runs without awaiting, so each one is atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._users: dict[int, User] = {}
        self._next_user_id = 1

    async def init_db(self) -> None:
        pass

    async def close(self) -> None:
        self._objects.clear()
        self._users.clear()

    def _insert(self, obj: StoredObject) -> str:
        if obj.id in self._objects:
            raise StorageError(f"object id collision: {obj.id}")
        self._objects[obj.id] = obj
        return obj.id

    async def create_pending(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
    ) -> str:
        return self._insert(
            StoredObject(
                id=str(uuid.uuid4()),
                display_name=display_name,
                owner_id=owner_id,
                expiry=expiry,
                status=ObjectStatus.PENDING,
                access_secret=access_secret,
                created_at=time.time(),
            )
        )

    async def create_committed(
        self,
        owner_id: int,
        display_name: str,
        expiry: float,
        access_secret: str | None = None,
        object_id: str | None = None,
    ) -> str:
        return self._insert(
            StoredObject(
                id=object_id or str(uuid.uuid4()),
                display_name=display_name,
                owner_id=owner_id,
                expiry=expiry,
                status=ObjectStatus.COMMITTED,
                access_secret=access_secret,
                created_at=time.time(),
            )
        )

    async def commit(self, object_id: str, owner_id: int) -> StoredObject:
        obj = self._objects.get(object_id)
        if obj is None or obj.owner_id != owner_id or obj.committed:
            raise NotFound(object_id)
        obj = replace(obj, status=ObjectStatus.COMMITTED)
        self._objects[object_id] = obj
        return obj

    async def rename(self, object_id: str, owner_id: int, display_name: str) -> None:
        obj = self._objects.get(object_id)
        if obj is None or obj.owner_id != owner_id or not obj.committed:
            raise NotFound(object_id)
        self._objects[object_id] = replace(obj, display_name=display_name)

    async def get(self, object_id: str) -> StoredObject | None:
        return self._objects.get(object_id)

    async def get_for_download(self, object_id: str) -> StoredObject:
        obj = self._objects.get(object_id)
        if obj is None or not obj.committed:
            raise NotFound(object_id)
        return obj

    async def list_committed(self, owner_id: int) -> list[StoredObject]:
        return [o for o in self._objects.values() if o.owner_id == owner_id and o.committed]

    async def delete(self, object_id: str) -> bool:
        return self._objects.pop(object_id, None) is not None

    async def all_committed(self) -> list[tuple[str, float]]:
        return [(o.id, o.expiry) for o in self._objects.values() if o.committed]

    async def all_pending(self) -> list[str]:
        return [o.id for o in self._objects.values() if not o.committed]

    async def all_ids(self) -> set[str]:
        return set(self._objects)

    async def create_user(self, name: str, password_hash: str) -> int:
        if any(u.name == name for u in self._users.values()):
            raise StorageError(f"user {name!r} already exists")
        user_id = self._next_user_id
        self._next_user_id += 1
        self._users[user_id] = User(id=user_id, name=name, password=password_hash)
        return user_id

    async def get_user(self, user_id: int) -> User | None:
        return self._users.get(user_id)

    async def get_user_by_name(self, name: str) -> User | None:
        for user in self._users.values():
            if user.name == name:
                return user
        return None

    async def delete_user(self, name: str) -> bool:
        user = await self.get_user_by_name(name)
        if user is None:
            return False
        del self._users[user.id]
        for object_id in [o.id for o in self._objects.values() if o.owner_id == user.id]:
            del self._objects[object_id]
        return True

    async def list_users(self) -> list[User]:
        return sorted(self._users.values(), key=lambda u: u.name)
