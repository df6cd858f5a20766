"""Chunked storage of stage build data."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .codec import decode_chunk, encode_chunk
from .models import BuildData, Chunk
from .store import KeyValueStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def chunk_key(stage_id: str, index: int) -> str:
    return f"{stage_id}/{index}"


class ChunkStore:
    """Splits a stage's build data across ``{stage_id}/{n}`` keys (``n`` from 1)."""

    def __init__(self, store: KeyValueStore, *, page_size: int = 100) -> None:
        self._store = store
        self._page_size = page_size

    async def put_chunks(
        self,
        stage_id: str,
        chunks: Sequence[Chunk],
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Write every chunk in order.

        There is no rollback: if a write fails, earlier chunks stay committed.
        Re-running the whole call overwrites the same keys.
        Chunks left over from a longer previous build are removed afterwards.
        """

        total = len(chunks)
        for index, chunk in enumerate(chunks, start=1):
            await self._store.set(chunk_key(stage_id, index), encode_chunk(chunk))
            if on_progress is not None:
                on_progress(index, total)
        await self._trim(stage_id, total)

    async def get_chunks(self, stage_id: str) -> BuildData:
        """Return the stored chunks sorted by their numeric index."""

        indexed: List[Tuple[int, Chunk]] = []
        pages = await self._store.list_keys(f"{stage_id}/", self._page_size)
        async for keys in pages:
            for key in keys:
                index = self._index_of(stage_id, key)
                if index is None:
                    continue
                raw = await self._store.get(key)
                if raw is None:
                    # removed between listing and read
                    continue
                indexed.append((index, decode_chunk(raw, key=key)))
        indexed.sort(key=lambda pair: pair[0])
        return [chunk for _, chunk in indexed]

    async def delete_chunks(self, stage_id: str) -> int:
        """Remove every chunk key of ``stage_id``; returns how many were removed."""

        keys: List[str] = []
        pages = await self._store.list_keys(f"{stage_id}/", self._page_size)
        async for page in pages:
            keys.extend(page)
        # remove only after listing: some SCAN implementations use offset cursors
        for key in keys:
            await self._store.remove(key)
        return len(keys)

    async def _trim(self, stage_id: str, keep: int) -> None:
        stale: List[str] = []
        pages = await self._store.list_keys(f"{stage_id}/", self._page_size)
        async for keys in pages:
            for key in keys:
                index = self._index_of(stage_id, key)
                if index is not None and index > keep:
                    stale.append(key)
        for key in stale:
            await self._store.remove(key)
        if stale:
            logger.debug("Removed %d stale chunks of stage %s", len(stale), stage_id)

    @staticmethod
    def _index_of(stage_id: str, key: str) -> Optional[int]:
        suffix = key[len(stage_id) + 1 :]
        try:
            index = int(suffix)
        except ValueError:
            logger.warning("Ignoring non-chunk key %s under stage %s", key, stage_id)
            return None
        if index < 1:
            logger.warning("Ignoring chunk key %s with invalid index", key)
            return None
        return index


__all__ = ["ChunkStore", "ProgressCallback", "chunk_key"]
