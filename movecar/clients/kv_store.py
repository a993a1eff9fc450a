"""
Keyed store backends.

The store holds opaque serialized blobs addressed by ``(namespace, key)`` with
an optional time-to-live. Expiry is absolute wall-clock time fixed at write
time and is enforced passively: a read past expiry returns nothing and removes
the stale entry.

Two backends are provided:
- ``InMemoryKeyValueStore`` for single-process deployments and tests
- ``SupabaseKeyValueStore`` backed by a Supabase table::

      create table kv_store (
          namespace  text not null,
          key        text not null,
          value      text not null,
          expires_at timestamptz,
          primary key (namespace, key)
      );
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from supabase import create_client, Client
from postgrest.exceptions import APIError

from ..config import settings
from ..errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Contract shared by all keyed store backends."""

    @abstractmethod
    async def put(self, namespace: str, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Write ``value``; ``ttl`` is seconds until expiry, None for no expiry."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[str]:
        """Return the stored value or None when absent or expired."""

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        """Remove the entry; deleting a missing key is not an error."""

    async def exists(self, namespace: str, key: str) -> bool:
        return await self.get(namespace, key) is not None

    async def health_check(self) -> bool:
        return True


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Safe for a single event loop, not across processes."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[Tuple[str, str], Tuple[str, Optional[float]]] = {}
        self._clock = clock

    async def put(self, namespace: str, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[(namespace, key)] = (value, expires_at)

    async def get(self, namespace: str, key: str) -> Optional[str]:
        entry = self._entries.get((namespace, key))
        if entry is None:
            return None

        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[(namespace, key)]
            return None

        return value

    async def delete(self, namespace: str, key: str) -> None:
        self._entries.pop((namespace, key), None)

    def clear(self) -> None:
        """Drop every entry (for testing)."""
        self._entries.clear()


class SupabaseKeyValueStore(KeyValueStore):
    """Store backed by a Supabase (PostgREST) table."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, table: Optional[str] = None):
        """Initialize with configuration; the client is created lazily."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_anon_key
        self._table = table or settings.supabase_table

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    def _rows(self):
        return self.client.table(self._table)

    async def put(self, namespace: str, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = None
        if ttl is not None:
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat()

        try:
            self._rows().upsert(
                {"namespace": namespace, "key": key, "value": value, "expires_at": expires_at},
                on_conflict="namespace,key"
            ).execute()
        except APIError as e:
            logger.error(f"Database error writing {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to write {namespace} record")
        except Exception as e:
            logger.error(f"Unexpected error writing {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to write {namespace} record")

    async def get(self, namespace: str, key: str) -> Optional[str]:
        try:
            result = (
                self._rows()
                .select("value, expires_at")
                .eq("namespace", namespace)
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except APIError as e:
            logger.error(f"Database error reading {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to read {namespace} record")
        except Exception as e:
            logger.error(f"Unexpected error reading {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to read {namespace} record")

        if not result.data:
            return None

        row = result.data[0]
        if row.get("expires_at"):
            expires_at = datetime.fromisoformat(row["expires_at"].replace('Z', '+00:00'))
            if datetime.now(timezone.utc) >= expires_at:
                await self.delete(namespace, key)
                return None

        return row["value"]

    async def delete(self, namespace: str, key: str) -> None:
        try:
            self._rows().delete().eq("namespace", namespace).eq("key", key).execute()
        except APIError as e:
            logger.error(f"Database error deleting {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to delete {namespace} record")
        except Exception as e:
            logger.error(f"Unexpected error deleting {namespace}:{key}: {e}")
            raise StoreUnavailableError(f"Failed to delete {namespace} record")

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            self._rows().select("key", count="exact").limit(0).execute()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def create_store() -> KeyValueStore:
    """Build the store selected by ``STORE_BACKEND``."""
    if settings.store_backend == "supabase":
        logger.info(f"Using Supabase keyed store (table {settings.supabase_table})")
        return SupabaseKeyValueStore()
    logger.info("Using in-memory keyed store")
    return InMemoryKeyValueStore()
