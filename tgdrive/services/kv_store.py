"""KV index over Redis or an in-process fallback map"""

import fnmatch
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from tgdrive.exceptions import KVStoreError
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)


LEGACY_SHORT_LINK_PATTERN = "short:*"

# Keys holding file or short link records; only these may carry double-encoded JSON
RECORD_KEY_PREFIXES = ("file:", "files:", "short:")


def file_list_key(chat_id: str) -> str:
    return f"files:{chat_id}"


def file_key(file_id: str) -> str:
    return f"file:{file_id}"


def legacy_short_link_key(short_id: str) -> str:
    return f"short:{short_id}"


def serialize(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def holds_records(key: str) -> bool:
    return key.startswith(RECORD_KEY_PREFIXES)


def deserialize(raw: Optional[str], unwrap_nested: bool = False) -> Any:
    """
    Decode a stored value

    Args:
        raw: Serialized value as read from the backend
        unwrap_nested: Also decode record entries that were JSON-encoded twice
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    value = json.loads(raw)
    if unwrap_nested and isinstance(value, str) and value[:1] in ("{", "["):
        try:
            value = json.loads(value)
        except ValueError:
            pass
    return value


class KVStore(ABC):
    """
    Uniform key/value interface used by every index consumer.

    Values are JSON serialized transparently; callers always pass and receive
    native structures. List operations follow Redis semantics: list_push
    prepends and list_range end indexes are inclusive (-1 = last element).
    """

    backend: str = "abstract"

    @property
    def is_remote(self) -> bool:
        return self.backend == "redis"

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def list_push(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        ...

    @abstractmethod
    async def list_remove(self, key: str, value: Any) -> int:
        ...

    @abstractmethod
    async def scan_keys(self, pattern: str) -> List[str]:
        ...

    async def close(self) -> None:
        return None


class RedisKVStore(KVStore):
    """KV index stored in Redis (durable, shared between processes)"""

    backend = "redis"

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str, token: Optional[str] = None) -> "RedisKVStore":
        client = redis.Redis.from_url(url, password=token, decode_responses=True)
        return cls(client)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            await self.client.set(key, serialize(value), ex=ttl if ttl else None)
        except RedisError as e:
            raise KVStoreError(f"Redis SET {key} failed: {e}") from e

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            raise KVStoreError(f"Redis GET {key} failed: {e}") from e
        try:
            return deserialize(raw, holds_records(key))
        except ValueError:
            logger.warning(f"Dropping undecodable value at {key}")
            await self.delete(key)
            return None

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except RedisError as e:
            raise KVStoreError(f"Redis DEL {key} failed: {e}") from e

    async def list_push(self, key: str, value: Any) -> None:
        try:
            await self.client.lpush(key, serialize(value))
        except RedisError as e:
            raise KVStoreError(f"Redis LPUSH {key} failed: {e}") from e

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        try:
            items = await self.client.lrange(key, start, end)
        except RedisError as e:
            raise KVStoreError(f"Redis LRANGE {key} failed: {e}") from e
        values = []
        for item in items:
            try:
                values.append(deserialize(item, holds_records(key)))
            except ValueError:
                logger.warning(f"Skipping undecodable list entry in {key}")
        return values

    async def list_remove(self, key: str, value: Any) -> int:
        # Match on decoded values so entries written by other serializers still match
        try:
            items = await self.client.lrange(key, 0, -1)
            removed = 0
            for raw in set(items):
                try:
                    decoded = deserialize(raw, holds_records(key))
                except ValueError:
                    continue
                if decoded == value:
                    removed += await self.client.lrem(key, 0, raw)
            return removed
        except RedisError as e:
            raise KVStoreError(f"Redis LREM {key} failed: {e}") from e

    async def scan_keys(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self.client.scan_iter(match=pattern, count=100)]
        except RedisError as e:
            raise KVStoreError(f"Redis SCAN {pattern} failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryKVStore(KVStore):
    """
    Process-local fallback used when no Redis credentials are configured.

    There is no native TTL here, so each entry remembers its expiry instant
    and is dropped lazily when read after that instant.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._store[key]
            return None
        return payload

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._store[key] = (serialize(value), expires_at)

    async def get(self, key: str) -> Optional[Any]:
        payload = self._live(key)
        if payload is None or isinstance(payload, list):
            return None
        return deserialize(payload, holds_records(key))

    async def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def list_push(self, key: str, value: Any) -> None:
        items = self._live(key)
        if not isinstance(items, list):
            items = []
        self._store[key] = ([serialize(value)] + items, None)

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        items = self._live(key)
        if not isinstance(items, list):
            return []
        stop = None if end == -1 else end + 1
        return [deserialize(item, holds_records(key)) for item in items[start:stop]]

    async def list_remove(self, key: str, value: Any) -> int:
        items = self._live(key)
        if not isinstance(items, list):
            return 0
        kept = [item for item in items if deserialize(item, holds_records(key)) != value]
        self._store[key] = (kept, None)
        return len(items) - len(kept)

    async def scan_keys(self, pattern: str) -> List[str]:
        return [key for key in list(self._store) if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None]


def create_kv_store(config: Any) -> KVStore:
    """
    Pick the KV backend once, from credential availability.

    Args:
        config: Settings with redis_url / redis_token

    Returns:
        RedisKVStore when redis_url is set, InMemoryKVStore otherwise
    """
    if config.redis_url:
        logger.info("Using Redis KV index")
        return RedisKVStore.from_url(config.redis_url, config.redis_token)

    logger.warning("Redis configuration not found, using in-memory KV index (development only)")
    return InMemoryKVStore()
