"""Client modules for storage and external push integrations."""

from movecar.clients.kv_store import (
    KeyValueStore,
    InMemoryKeyValueStore,
    SupabaseKeyValueStore,
    create_store
)

from movecar.clients.repositories import (
    OwnerRepository,
    RequestRepository,
    UserRepository,
    SessionRepository,
    DatabaseManager,
    get_db
)

from movecar.clients.push_client import (
    NotificationDispatcher,
    get_dispatcher
)

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SupabaseKeyValueStore",
    "create_store",
    "OwnerRepository",
    "RequestRepository",
    "UserRepository",
    "SessionRepository",
    "DatabaseManager",
    "get_db",
    "NotificationDispatcher",
    "get_dispatcher"
]
