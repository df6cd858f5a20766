"""Test configuration and shared fixtures."""

import random

import pytest
import pytest_asyncio

from stagestore.config import StageStoreConfig, StageStores
from stagestore.stage import StageService
from stagestore.store import InMemoryKeyValueStore, InMemoryOrderedStore


@pytest_asyncio.fixture
async def fake_redis():
    fakeredis_aioredis = pytest.importorskip(
        "fakeredis.aioredis",
        reason="fakeredis is required for Redis-backed store tests",
    )
    redis = fakeredis_aioredis.FakeRedis(decode_responses=True)
    try:
        yield redis
    finally:
        if hasattr(redis, "aclose"):
            await redis.aclose(close_connection_pool=True)
        else:
            await redis.close()


@pytest.fixture
def stores() -> StageStores:
    return StageStores(
        metadata=InMemoryKeyValueStore(),
        build_data=InMemoryKeyValueStore(),
        published=InMemoryOrderedStore(),
        inventory=InMemoryKeyValueStore(),
    )


@pytest.fixture
def config() -> StageStoreConfig:
    return StageStoreConfig(page_size=2, published_page_size=2)


@pytest.fixture
def service(stores: StageStores, config: StageStoreConfig) -> StageService:
    return StageService(stores, config, rng=random.Random(7), clock=lambda: 1_700_000_000.0)

