"""Per-owner stage inventories with garbage-collect-on-read."""

from __future__ import annotations

import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from .errors import DecodeError, NotFoundError, StageStoreError
from .store import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def inventory_key(owner_id: int | str) -> str:
    return f"{owner_id}/stages"


def _decode_ids(raw: Optional[str], key: str) -> List[str]:
    if raw is None:
        return []
    try:
        ids = json.loads(raw)
    except ValueError as exc:
        raise DecodeError("malformed stage list", key=key) from exc
    if not isinstance(ids, list):
        raise DecodeError("stage list must be a JSON array", key=key)
    return [str(stage_id) for stage_id in ids]


class OwnershipIndex:
    """Lists of stage IDs kept per owner under ``{owner_id}/stages*`` keys.

    Deleting a stage never touches these lists. Listing an owner's stages
    removes the IDs that turn out not to exist anymore.
    """

    def __init__(self, store: KeyValueStore, *, page_size: int = 100) -> None:
        self._store = store
        self._page_size = page_size

    async def add(self, owner_id: int | str, stage_id: str) -> None:
        key = inventory_key(owner_id)

        def merge(current: Optional[str]) -> str:
            ids = _decode_ids(current, key)
            if stage_id not in ids:
                ids.append(stage_id)
            return json.dumps(ids)

        await self._store.update(key, merge)

    async def remove(self, owner_id: int | str, stage_id: str) -> None:
        await self._prune(inventory_key(owner_id), [stage_id])

    async def list_ids(self, owner_id: int | str) -> List[str]:
        ids: List[str] = []
        pages = await self._store.list_keys(inventory_key(owner_id), self._page_size)
        async for keys in pages:
            for key in keys:
                ids.extend(_decode_ids(await self._store.get(key), key))
        return ids

    async def list_by_owner(
        self, owner_id: int | str, resolve: Callable[[str], Awaitable[T]]
    ) -> List[T]:
        """Resolve every stage in the owner's lists, pruning IDs that no longer exist."""

        stages: List[T] = []
        pages = await self._store.list_keys(inventory_key(owner_id), self._page_size)
        async for keys in pages:
            missing: Dict[str, List[str]] = {}
            for key in keys:
                try:
                    ids = _decode_ids(await self._store.get(key), key)
                except StageStoreError:
                    logger.exception("Skipping unreadable stage list %s", key)
                    continue
                for stage_id in ids:
                    try:
                        stages.append(await resolve(stage_id))
                    except NotFoundError:
                        missing.setdefault(key, []).append(stage_id)
                    except Exception:
                        logger.exception("Failed to load stage %s listed in %s", stage_id, key)
            for key, stage_ids in missing.items():
                try:
                    await self._prune(key, stage_ids)
                except StageStoreError:
                    logger.exception("Failed to prune missing stages from %s", key)
                    continue
                logger.info(
                    "Removed the following stage IDs because they don't exist: %s",
                    json.dumps(stage_ids),
                )
        return stages

    async def _prune(self, key: str, stage_ids: List[str]) -> None:
        def merge(current: Optional[str]) -> Optional[str]:
            if current is None:
                return None
            ids = _decode_ids(current, key)
            for stage_id in stage_ids:
                if stage_id in ids:
                    ids.remove(stage_id)
            return json.dumps(ids)

        await self._store.update(key, merge)


__all__ = ["OwnershipIndex", "inventory_key"]
