"""Index of published stages ordered by publish time."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Set, TypeVar

from .errors import (
    AlreadyPublishedError,
    AlreadyUnpublishedError,
    NoPublishedStagesError,
    NotFoundError,
)
from .metadata import MetadataManager
from .store import OrderedStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now_ms() -> int:
    return int(time.time() * 1000)


class PublishedIndex:
    """Ordered index of published stage IDs scored by publish time (Unix ms).

    The index may drift from the metadata store; readers that find an entry
    whose stage no longer exists remove it in the background.
    """

    def __init__(
        self,
        store: OrderedStore,
        metadata: MetadataManager,
        *,
        page_size: int = 100,
        rng: random.Random | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._page_size = page_size
        self._rng = rng or random.Random()
        self._clock = clock
        self._repairs: Set[asyncio.Task[None]] = set()

    async def add(self, stage_id: str) -> Dict[str, Any]:
        """Publish ``stage_id``; returns the metadata fields that changed."""

        record = await self._metadata.get(stage_id)
        if record.is_published:
            raise AlreadyPublishedError(f"Stage {stage_id} is already published.")
        await self._store.set(stage_id, self._clock())
        changed = await self._metadata.update(stage_id, {"is_published": True})
        logger.info("Successfully published stage %s", stage_id)
        return changed

    async def remove(self, stage_id: str) -> Dict[str, Any]:
        """Unpublish ``stage_id``; returns the metadata fields that changed."""

        record = await self._metadata.get(stage_id)
        if not record.is_published:
            raise AlreadyUnpublishedError(f"Stage {stage_id} is already unpublished.")
        await self._store.remove(stage_id)
        changed = await self._metadata.update(stage_id, {"is_published": False})
        logger.info("Successfully unpublished stage %s", stage_id)
        return changed

    async def discard(self, stage_id: str) -> None:
        """Drop the index entry only; a no-op when it is absent."""

        await self._store.remove(stage_id)

    async def contains(self, stage_id: str) -> bool:
        return await self._store.get(stage_id) is not None

    async def list_ids(self, *, descending: bool = True) -> List[str]:
        ids: List[str] = []
        pages = await self._store.list_ordered(descending, self._page_size)
        async for entries in pages:
            ids.extend(entry.key for entry in entries)
        return ids

    async def sample_random(self, resolve: Callable[[str], Awaitable[T]]) -> T:
        """Resolve a uniformly random published stage.

        Candidates that no longer exist are dropped and their index entry is
        removed in the background; candidates failing for any other reason
        are logged and dropped. Raises :class:`NoPublishedStagesError` when
        no candidate resolves.
        """

        candidates = await self.list_ids()
        if not candidates:
            raise NoPublishedStagesError("There are no published stages available.")
        while candidates:
            index = self._rng.randrange(len(candidates))
            stage_id = candidates.pop(index)
            try:
                return await resolve(stage_id)
            except NotFoundError:
                self._schedule_repair(stage_id)
            except Exception:
                logger.exception("Failed to resolve published stage %s", stage_id)
        raise NoPublishedStagesError("None of the published stages could be loaded.")

    def _schedule_repair(self, stage_id: str) -> None:
        task = asyncio.create_task(self._repair(stage_id))
        self._repairs.add(task)
        task.add_done_callback(self._repairs.discard)

    async def _repair(self, stage_id: str) -> None:
        try:
            await self._store.remove(stage_id)
        except Exception:
            logger.exception("Failed to remove stale published stage %s", stage_id)
            return
        logger.info(
            "Removed %s from the published stages list because it doesn't exist.",
            stage_id,
        )

    async def drain(self) -> None:
        """Wait for background index repairs started by earlier reads."""

        while self._repairs:
            await asyncio.gather(*list(self._repairs))


__all__ = ["PublishedIndex"]
