from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import logging

import redis.asyncio as redis
import yaml

from .store import (
    InMemoryKeyValueStore,
    InMemoryOrderedStore,
    KeyValueStore,
    OrderedStore,
    RedisKeyValueStore,
    RedisOrderedStore,
)

logger = logging.getLogger(__name__)


@dataclass
class NamespaceConfig:
    """Names of the logical stores the persistence layer uses."""

    metadata: str = "StageMetadata"
    build_data: str = "StageBuildData"
    published: str = "PublishedStages"
    inventory: str = "Inventory"


@dataclass
class StageStoreConfig:
    """Configuration for stage persistence."""

    redis_dsn: Optional[str] = None
    page_size: int = 100
    published_page_size: int = 100
    update_attempts: int = 32
    store_retries: int = 3
    retry_backoff: float = 0.05
    id_generation_attempts: int = 10
    namespaces: NamespaceConfig = field(default_factory=NamespaceConfig)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "StageStoreConfig":
        """Construct :class:`StageStoreConfig` from a raw mapping."""

        base = dict(data)
        namespaces_data = base.pop("namespaces", {}) or {}
        cfg = cls(**base)
        if isinstance(namespaces_data, NamespaceConfig):
            cfg.namespaces = namespaces_data
        elif isinstance(namespaces_data, dict):
            cfg.namespaces = NamespaceConfig(**namespaces_data)
        else:
            raise TypeError("stagestore.namespaces must be a mapping")
        if cfg.page_size < 1 or cfg.published_page_size < 1:
            raise ValueError("page sizes must be positive")
        if cfg.id_generation_attempts < 1:
            raise ValueError("id_generation_attempts must be positive")
        return cfg


@dataclass
class StageStores:
    """The four stores a :class:`~stagestore.stage.StageService` depends on."""

    metadata: KeyValueStore
    build_data: KeyValueStore
    published: OrderedStore
    inventory: KeyValueStore
    redis_client: Optional[redis.Redis] = None
    owns_redis: bool = False

    async def close(self) -> None:
        """Close the Redis client when these stores created it."""

        if self.redis_client is None or not self.owns_redis:
            return
        client, self.redis_client = self.redis_client, None
        if hasattr(client, "aclose"):
            await client.aclose()
        else:
            await client.close()


def find_config_file(cwd: Path | None = None) -> str | None:
    """Return path to ``stagestore.yml``/``stagestore.yaml`` in ``cwd`` if present."""

    base = Path.cwd() if cwd is None else cwd
    for name in ("stagestore.yml", "stagestore.yaml"):
        candidate = base / name
        if candidate.is_file():
            return str(candidate)
    return None


def load_config(path: str) -> StageStoreConfig:
    """Parse YAML and populate :class:`StageStoreConfig`.

    The settings may sit at the top level or under a ``stagestore`` section.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            try:
                data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                logger.error("Failed to parse configuration file %s: %s", path, exc)
                raise ValueError(f"Failed to parse configuration file {path}") from exc
    except (FileNotFoundError, OSError) as exc:
        logger.error("Unable to open configuration file %s: %s", path, exc)
        raise

    if not isinstance(data, dict):
        raise TypeError("stagestore config must be a mapping")
    section = data.get("stagestore", data)
    if not isinstance(section, dict):
        raise TypeError("stagestore section must be a mapping")
    return StageStoreConfig.from_mapping(section)


def build_stores(
    config: StageStoreConfig, redis_client: redis.Redis | None = None
) -> StageStores:
    """Return Redis-backed stores, or in-memory ones when no Redis is configured."""

    owns_redis = False
    if redis_client is None and config.redis_dsn:
        redis_client = redis.from_url(config.redis_dsn, decode_responses=True)
        owns_redis = True
    ns = config.namespaces
    if redis_client is None:
        logger.warning("No redis_dsn configured; stages are kept in memory only")
        return StageStores(
            metadata=InMemoryKeyValueStore(),
            build_data=InMemoryKeyValueStore(),
            published=InMemoryOrderedStore(),
            inventory=InMemoryKeyValueStore(),
        )

    def kv(namespace: str) -> RedisKeyValueStore:
        return RedisKeyValueStore(
            redis_client,
            namespace,
            update_attempts=config.update_attempts,
            retries=config.store_retries,
            backoff=config.retry_backoff,
        )

    return StageStores(
        metadata=kv(ns.metadata),
        build_data=kv(ns.build_data),
        published=RedisOrderedStore(
            redis_client,
            ns.published,
            retries=config.store_retries,
            backoff=config.retry_backoff,
        ),
        inventory=kv(ns.inventory),
        redis_client=redis_client,
        owns_redis=owns_redis,
    )


__all__ = [
    "NamespaceConfig",
    "StageStoreConfig",
    "StageStores",
    "build_stores",
    "find_config_file",
    "load_config",
]
