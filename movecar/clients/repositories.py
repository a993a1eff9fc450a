"""Repositories mapping domain records onto the keyed store."""

import json
import logging
from datetime import timedelta
from typing import List, Optional

from ..config import settings
from ..models.internal_models import MoveRequest, Owner, User, UserSession, utcnow
from .kv_store import KeyValueStore, create_store

logger = logging.getLogger(__name__)

OWNER_NAMESPACE = "owner"
REQUEST_NAMESPACE = "request"
USER_NAMESPACE = "user"
USER_PHONE_NAMESPACE = "user_phone"
USER_OWNERS_NAMESPACE = "user_owners"
SESSION_NAMESPACE = "session"


class OwnerRepository:
    """Repository for Owner records."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def save(self, owner: Owner) -> Owner:
        await self.store.put(OWNER_NAMESPACE, owner.id, owner.model_dump_json())
        return owner

    async def get(self, owner_id: str) -> Optional[Owner]:
        data = await self.store.get(OWNER_NAMESPACE, owner_id)
        return Owner.model_validate_json(data) if data else None

    async def exists(self, owner_id: str) -> bool:
        return await self.store.exists(OWNER_NAMESPACE, owner_id)

    async def delete(self, owner_id: str) -> None:
        await self.store.delete(OWNER_NAMESPACE, owner_id)
        logger.info(f"Deleted owner {owner_id}")


class RequestRepository:
    """Repository for MoveRequest records.

    Requests expire a fixed window after creation; rewrites keep the original
    deadline rather than extending it.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.request_ttl_seconds

    def _remaining_ttl(self, request: MoveRequest) -> int:
        deadline = request.created_at + timedelta(seconds=self.ttl_seconds)
        return max(int((deadline - utcnow()).total_seconds()), 1)

    async def save(self, request: MoveRequest) -> MoveRequest:
        await self.store.put(
            REQUEST_NAMESPACE,
            request.id,
            request.model_dump_json(),
            ttl=self._remaining_ttl(request)
        )
        return request

    async def get(self, request_id: str) -> Optional[MoveRequest]:
        data = await self.store.get(REQUEST_NAMESPACE, request_id)
        return MoveRequest.model_validate_json(data) if data else None

    async def exists(self, request_id: str) -> bool:
        return await self.store.exists(REQUEST_NAMESPACE, request_id)


class UserRepository:
    """Repository for User accounts and their secondary indexes."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def create(self, user: User) -> User:
        """Store the user and its phone index entry."""
        await self.store.put(USER_NAMESPACE, user.id, user.model_dump_json())
        await self.store.put(USER_PHONE_NAMESPACE, user.phone, user.id)
        logger.info(f"Created user {user.id}")
        return user

    async def get(self, user_id: str) -> Optional[User]:
        data = await self.store.get(USER_NAMESPACE, user_id)
        return User.model_validate_json(data) if data else None

    async def exists(self, user_id: str) -> bool:
        return await self.store.exists(USER_NAMESPACE, user_id)

    async def get_by_phone(self, phone: str) -> Optional[User]:
        user_id = await self.store.get(USER_PHONE_NAMESPACE, phone)
        if not user_id:
            return None
        return await self.get(user_id)

    async def phone_exists(self, phone: str) -> bool:
        return await self.store.exists(USER_PHONE_NAMESPACE, phone)

    async def list_owner_ids(self, user_id: str) -> List[str]:
        data = await self.store.get(USER_OWNERS_NAMESPACE, user_id)
        return json.loads(data) if data else []

    async def add_owner(self, user_id: str, owner_id: str) -> None:
        owner_ids = await self.list_owner_ids(user_id)
        if owner_id not in owner_ids:
            owner_ids.append(owner_id)
            await self.store.put(USER_OWNERS_NAMESPACE, user_id, json.dumps(owner_ids))

    async def remove_owner(self, user_id: str, owner_id: str) -> None:
        owner_ids = await self.list_owner_ids(user_id)
        if owner_id in owner_ids:
            owner_ids.remove(owner_id)
            await self.store.put(USER_OWNERS_NAMESPACE, user_id, json.dumps(owner_ids))


class SessionRepository:
    """Repository for bearer sessions with lazy expiry."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def create(self, session: UserSession) -> UserSession:
        ttl = max(int((session.expires_at - utcnow()).total_seconds()), 1)
        await self.store.put(SESSION_NAMESPACE, session.token, session.model_dump_json(), ttl=ttl)
        return session

    async def get(self, token: str) -> Optional[UserSession]:
        """Return the session if present and unexpired; stale entries are deleted."""
        data = await self.store.get(SESSION_NAMESPACE, token)
        if not data:
            return None

        session = UserSession.model_validate_json(data)
        if session.is_expired():
            await self.store.delete(SESSION_NAMESPACE, token)
            return None
        return session

    async def delete(self, token: str) -> None:
        await self.store.delete(SESSION_NAMESPACE, token)


class DatabaseManager:
    """High-level database manager that coordinates repositories."""

    def __init__(self, store: Optional[KeyValueStore] = None):
        """Initialize database manager with a store and repositories."""
        self.store = store or create_store()
        self.owners = OwnerRepository(self.store)
        self.requests = RequestRepository(self.store)
        self.users = UserRepository(self.store)
        self.sessions = SessionRepository(self.store)

    async def health_check(self) -> bool:
        """Check overall store health."""
        return await self.store.health_check()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    """
    Get the global database manager instance.

    Returns:
        DatabaseManager: The global database manager instance
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager
