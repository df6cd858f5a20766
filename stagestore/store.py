"""Key-value backing store adapters.

The persistence layer talks to four logical stores (stage metadata, chunked
build data, the published index and owner inventories). Each is reached
through one of the two protocols below so a Redis deployment and the
in-memory fallback are interchangeable.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    NamedTuple,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
)

import redis.asyncio as redis

from .errors import StoreContentionError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Merge = Callable[[Optional[str]], Optional[str]]
"""Merge function applied atomically against the current stored value.

Receives ``None`` when the key is absent. Returning ``None`` removes the key.
"""

PageFetcher = Callable[[Any], Awaitable[Tuple[List[T], Any]]]


class OrderedEntry(NamedTuple):
    key: str
    score: int


class Pages(Generic[T]):
    """Explicitly advanced pagination over a store listing.

    ``fetch(cursor)`` returns ``(items, next_cursor)``; a ``None`` cursor marks
    the current page as the last one.
    """

    def __init__(self, fetch: PageFetcher[T]) -> None:
        self._fetch = fetch
        self._page: List[T] = []
        self._cursor: Any = None
        self._finished = False

    @classmethod
    async def open(cls, fetch: PageFetcher[T], start: Any = None) -> "Pages[T]":
        pages = cls(fetch)
        await pages._load(start)
        return pages

    @property
    def current_page(self) -> List[T]:
        return list(self._page)

    @property
    def is_finished(self) -> bool:
        return self._finished

    async def advance_to_next_page(self) -> None:
        if self._finished:
            return
        await self._load(self._cursor)

    async def _load(self, cursor: Any) -> None:
        items, next_cursor = await self._fetch(cursor)
        self._page = list(items)
        self._cursor = next_cursor
        self._finished = next_cursor is None

    async def __aiter__(self) -> AsyncIterator[List[T]]:
        while True:
            yield self.current_page
            if self._finished:
                return
            await self.advance_to_next_page()


class KeyValueStore(Protocol):
    """String-valued store with atomic single-key merge and prefix listing."""

    async def get(self, key: str) -> Optional[str]:  # pragma: no cover - interface
        ...

    async def set(self, key: str, value: str) -> None:  # pragma: no cover - interface
        ...

    async def remove(self, key: str) -> None:  # pragma: no cover - interface
        ...

    async def update(self, key: str, merge: Merge) -> Optional[str]:  # pragma: no cover - interface
        ...

    async def list_keys(self, prefix: str, page_size: int = 100) -> Pages[str]:  # pragma: no cover - interface
        ...


class OrderedStore(Protocol):
    """Store of integer scores supporting ordered, paginated scans."""

    async def get(self, key: str) -> Optional[int]:  # pragma: no cover - interface
        ...

    async def set(self, key: str, score: int) -> None:  # pragma: no cover - interface
        ...

    async def remove(self, key: str) -> None:  # pragma: no cover - interface
        ...

    async def list_ordered(
        self, descending: bool, page_size: int = 100
    ) -> Pages[OrderedEntry]:  # pragma: no cover - interface
        ...


def _escape_glob(value: str) -> str:
    return "".join("\\" + ch if ch in "*?[]\\" else ch for ch in value)


class _RedisAdapter:
    DEFAULT_RETRIES = 3
    DEFAULT_BACKOFF = 0.05

    def __init__(
        self,
        redis_client: redis.Redis,
        namespace: str,
        *,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
    ) -> None:
        self.redis = redis_client
        self.namespace = namespace
        self._retries = max(0, int(retries))
        self._backoff = max(0.0, float(backoff))

    @staticmethod
    def _decode(value: Any) -> Any:
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def _call(self, op: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        operation_name = getattr(op, "__name__", op.__class__.__name__)
        attempt = 0
        while True:
            try:
                return await op(*args, **kwargs)
            except redis.RedisError as exc:
                attempt += 1
                if attempt > self._retries:
                    logger.error(
                        "Redis store %s %s failed after %d attempts: %s",
                        self.namespace,
                        operation_name,
                        attempt,
                        exc,
                    )
                    raise StoreUnavailableError(
                        f"{self.namespace} {operation_name} failed"
                    ) from exc
                logger.warning(
                    "Redis store %s %s failed (attempt %d): %s",
                    self.namespace,
                    operation_name,
                    attempt,
                    exc,
                )
                await asyncio.sleep(self._backoff * attempt)


class RedisKeyValueStore(_RedisAdapter):
    """:class:`KeyValueStore` backed by plain Redis string keys."""

    DEFAULT_UPDATE_ATTEMPTS = 32

    def __init__(
        self,
        redis_client: redis.Redis,
        namespace: str,
        *,
        update_attempts: int = DEFAULT_UPDATE_ATTEMPTS,
        retries: int = _RedisAdapter.DEFAULT_RETRIES,
        backoff: float = _RedisAdapter.DEFAULT_BACKOFF,
    ) -> None:
        super().__init__(redis_client, namespace, retries=retries, backoff=backoff)
        self._update_attempts = max(1, int(update_attempts))

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return self._decode(await self._call(self.redis.get, self._key(key)))

    async def set(self, key: str, value: str) -> None:
        await self._call(self.redis.set, self._key(key), value)

    async def remove(self, key: str) -> None:
        await self._call(self.redis.delete, self._key(key))

    async def update(self, key: str, merge: Merge) -> Optional[str]:
        """Apply ``merge`` with ``WATCH``/``MULTI`` until no concurrent write interferes."""

        name = self._key(key)
        failures = 0
        for attempt in range(1, self._update_attempts + 1):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(name)
                    current = self._decode(await pipe.get(name))
                    new_value = merge(current)
                    pipe.multi()
                    if new_value is None:
                        pipe.delete(name)
                    else:
                        pipe.set(name, new_value)
                    await pipe.execute()
                    return new_value
            except redis.WatchError:
                logger.debug("Concurrent write on %s; retrying merge (attempt %d)", name, attempt)
            except redis.RedisError as exc:
                failures += 1
                if failures > self._retries:
                    logger.error("Redis store %s update failed: %s", self.namespace, exc)
                    raise StoreUnavailableError(f"{self.namespace} update failed") from exc
                await asyncio.sleep(self._backoff * failures)
        raise StoreContentionError(
            f"update of {name} did not commit after {self._update_attempts} attempts"
        )

    async def list_keys(self, prefix: str, page_size: int = 100) -> Pages[str]:
        pattern = self._key(_escape_glob(prefix)) + "*"
        strip = len(self.namespace) + 1
        seen: set[str] = set()

        async def fetch(cursor: Any) -> Tuple[List[str], Any]:
            next_cursor, raw_keys = await self._call(
                self.redis.scan, cursor=cursor or 0, match=pattern, count=page_size
            )
            keys: List[str] = []
            for raw in raw_keys:
                name = self._decode(raw)[strip:]
                if name in seen:
                    continue
                seen.add(name)
                keys.append(name)
            next_cursor = int(next_cursor)
            return keys, (next_cursor if next_cursor != 0 else None)

        return await Pages.open(fetch, 0)


class RedisOrderedStore(_RedisAdapter):
    """:class:`OrderedStore` backed by a single Redis sorted set."""

    async def get(self, key: str) -> Optional[int]:
        score = await self._call(self.redis.zscore, self.namespace, key)
        return None if score is None else int(score)

    async def set(self, key: str, score: int) -> None:
        await self._call(self.redis.zadd, self.namespace, {key: score})

    async def remove(self, key: str) -> None:
        await self._call(self.redis.zrem, self.namespace, key)

    async def list_ordered(
        self, descending: bool, page_size: int = 100
    ) -> Pages[OrderedEntry]:
        op = self.redis.zrevrange if descending else self.redis.zrange

        async def fetch(offset: Any) -> Tuple[List[OrderedEntry], Any]:
            start = offset or 0
            rows = await self._call(
                op, self.namespace, start, start + page_size - 1, withscores=True
            )
            entries = [OrderedEntry(self._decode(member), int(score)) for member, score in rows]
            return entries, (start + page_size if len(entries) == page_size else None)

        return await Pages.open(fetch, 0)


class InMemoryKeyValueStore:
    """Minimal in-memory :class:`KeyValueStore` used when no ``redis_dsn`` is configured.

    ``list_keys`` yields keys in lexicographic order, which is the natural
    key order of the hosted stores this layer was designed against.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._values[key] = value

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)

    async def update(self, key: str, merge: Merge) -> Optional[str]:
        async with self._lock:
            new_value = merge(self._values.get(key))
            if new_value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = new_value
            return new_value

    async def list_keys(self, prefix: str, page_size: int = 100) -> Pages[str]:
        async def fetch(after: Any) -> Tuple[List[str], Any]:
            async with self._lock:
                keys = sorted(k for k in self._values if k.startswith(prefix))
            start = 0 if after is None else bisect.bisect_right(keys, after)
            page = keys[start : start + page_size]
            more = start + page_size < len(keys)
            return page, (page[-1] if more and page else None)

        return await Pages.open(fetch)

    def keys(self) -> List[str]:
        return sorted(self._values)


class InMemoryOrderedStore:
    """In-memory :class:`OrderedStore`; ties are broken by key."""

    def __init__(self) -> None:
        self._scores: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[int]:
        async with self._lock:
            return self._scores.get(key)

    async def set(self, key: str, score: int) -> None:
        async with self._lock:
            self._scores[key] = int(score)

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._scores.pop(key, None)

    async def list_ordered(
        self, descending: bool, page_size: int = 100
    ) -> Pages[OrderedEntry]:
        async def fetch(offset: Any) -> Tuple[List[OrderedEntry], Any]:
            start = offset or 0
            async with self._lock:
                ordered = sorted(
                    (OrderedEntry(k, v) for k, v in self._scores.items()),
                    key=lambda entry: (entry.score, entry.key),
                    reverse=descending,
                )
            page = ordered[start : start + page_size]
            return page, (start + page_size if start + page_size < len(ordered) else None)

        return await Pages.open(fetch)


__all__ = [
    "InMemoryKeyValueStore",
    "InMemoryOrderedStore",
    "KeyValueStore",
    "Merge",
    "OrderedEntry",
    "OrderedStore",
    "Pages",
    "RedisKeyValueStore",
    "RedisOrderedStore",
]
