"""Stage handles and the service that loads and creates them."""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import redis.asyncio as redis

from .chunks import ChunkStore
from .codec import count_objects, encode_metadata, iter_objects
from .config import StageStoreConfig, StageStores, build_stores
from .errors import IDGenerationError, StageNotFoundError
from .events import StageEvents
from .materialize import SceneBuilder
from .metadata import MetadataManager
from .models import (
    BuildData,
    Chunk,
    PermissionOverride,
    StageMember,
    StageMetadata,
)
from .ownership import OwnershipIndex
from .published import PublishedIndex

logger = logging.getLogger(__name__)


class Stage:
    """Handle on one stored stage.

    The handle caches the metadata it was loaded with and keeps it in sync
    with its own writes only; the store remains authoritative.
    """

    def __init__(self, metadata: StageMetadata, service: "StageService") -> None:
        self._metadata = metadata
        self._service = service
        self.events = StageEvents()
        self.scene: Any = None

    def __repr__(self) -> str:
        return f"Stage(id={self.id!r}, name={self.name!r})"

    @property
    def metadata(self) -> StageMetadata:
        return self._metadata.model_copy(deep=True)

    @property
    def id(self) -> str:
        return self._metadata.id

    @property
    def name(self) -> str:
        return self._metadata.name

    @property
    def description(self) -> Optional[str]:
        return self._metadata.description

    @property
    def time_created(self) -> int:
        return self._metadata.time_created

    @property
    def time_updated(self) -> int:
        return self._metadata.time_updated

    @property
    def is_published(self) -> bool:
        return self._metadata.is_published

    @property
    def members(self) -> List[StageMember]:
        return list(self._metadata.members)

    @property
    def permission_overrides(self) -> List[PermissionOverride]:
        return list(self._metadata.permission_overrides)

    def _apply(self, changed: Mapping[str, Any]) -> None:
        self._metadata = self._metadata.model_copy(update=dict(changed))
        self.events.metadata_updated.fire(dict(changed))

    async def update_metadata(self, **fields: Any) -> None:
        """Merge ``fields`` into the stored record, then into this handle."""

        changed = await self._service.metadata.update(self.id, fields)
        self._apply(changed)

    async def update_build_data(self, chunks: Sequence[Chunk]) -> None:
        await self._service.chunks.put_chunks(
            self.id, chunks, on_progress=self.events.build_data_progress.fire
        )
        self.events.build_data_updated.fire()

    async def get_build_data(self) -> BuildData:
        return await self._service.chunks.get_chunks(self.id)

    async def publish(self) -> None:
        changed = await self._service.published.add(self.id)
        self._apply(changed)

    async def unpublish(self) -> None:
        changed = await self._service.published.remove(self.id)
        self._apply(changed)

    async def delete(self) -> None:
        """Irrecoverably delete the stage and its build data.

        The stage is unpublished first, then its chunks go, then the metadata
        record. Owner inventories are left alone; listing them prunes the
        dangling ID later.
        """

        try:
            record = await self._service.metadata.get(self.id)
        except StageNotFoundError:
            record = None
        if record is not None and record.is_published:
            await self.unpublish()
        else:
            await self._service.published.discard(self.id)

        removed = await self._service.chunks.delete_chunks(self.id)
        await self._service.metadata.remove(self.id)
        logger.info("Stage %s has been successfully deleted (%d chunks).", self.id, removed)
        self.events.deleted.fire()

    async def download(self, builder: SceneBuilder) -> Any:
        """Feed every stored object to ``builder`` and return what it builds."""

        build_data = await self.get_build_data()
        total = count_objects(build_data)
        for processed, descriptor in enumerate(iter_objects(build_data), start=1):
            builder.add_object(descriptor)
            self.events.download_progress.fire(processed, total)
            await asyncio.sleep(0)
        self.scene = builder.build()
        return self.scene

    def to_json(self) -> str:
        return encode_metadata(self._metadata)


class StageService:
    """Entry point for loading, sampling, listing and creating stages."""

    def __init__(
        self,
        stores: StageStores,
        config: StageStoreConfig | None = None,
        *,
        rng: random.Random | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = config or StageStoreConfig()
        self.config = cfg
        self.stores = stores
        self.metadata = MetadataManager(stores.metadata)
        self.chunks = ChunkStore(stores.build_data, page_size=cfg.page_size)
        self.published = PublishedIndex(
            stores.published,
            self.metadata,
            page_size=cfg.published_page_size,
            rng=rng,
            clock=lambda: int(clock() * 1000),
        )
        self.ownership = OwnershipIndex(stores.inventory, page_size=cfg.page_size)
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock

    @classmethod
    def from_config(
        cls, config: StageStoreConfig, redis_client: redis.Redis | None = None
    ) -> "StageService":
        return cls(build_stores(config, redis_client), config)

    async def close(self) -> None:
        """Wait for background index repairs, then release owned connections."""

        await self.published.drain()
        await self.stores.close()

    async def from_id(self, stage_id: str) -> Stage:
        return Stage(await self.metadata.get(stage_id), self)

    async def random(self) -> Stage:
        return await self.published.sample_random(self.from_id)

    async def list_from_owner_id(self, owner_id: int | str) -> List[Stage]:
        return await self.ownership.list_by_owner(owner_id, self.from_id)

    async def generate_id(self) -> str:
        """Return an ID no stored stage uses, giving up after the configured attempts."""

        attempts = self.config.id_generation_attempts
        for _ in range(attempts):
            candidate = self._id_factory()
            if not await self.metadata.exists(candidate):
                return candidate
            logger.debug("Generated stage ID %s is taken; retrying", candidate)
        raise IDGenerationError(f"no unused stage ID after {attempts} attempts")

    async def create(
        self,
        name: str,
        owner_id: int,
        *,
        description: str | None = None,
        permission_overrides: Iterable[PermissionOverride] = (),
    ) -> Stage:
        """Create an empty, unpublished stage administered by ``owner_id``."""

        stage_id = await self.generate_id()
        now = int(self._clock())
        record = StageMetadata(
            id=stage_id,
            name=name,
            description=description,
            time_created=now,
            time_updated=now,
            is_published=False,
            members=[StageMember(id=owner_id, role="Admin")],
            permission_overrides=list(permission_overrides),
        )
        await self.metadata.create(record)
        await self.ownership.add(owner_id, stage_id)
        logger.info("Created stage %s for owner %s", stage_id, owner_id)
        return Stage(record, self)


__all__ = ["Stage", "StageService"]
