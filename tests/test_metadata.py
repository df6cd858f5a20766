from __future__ import annotations

import asyncio
import json

import pytest

from stagestore.codec import encode_metadata
from stagestore.errors import DecodeError, StageNotFoundError
from stagestore.metadata import MetadataManager, validate_fields
from stagestore.models import StageMember
from stagestore.store import InMemoryKeyValueStore, RedisKeyValueStore
from tests.factories import make_metadata


@pytest.mark.asyncio
async def test_get_missing_stage_raises_not_found() -> None:
    manager = MetadataManager(InMemoryKeyValueStore())

    with pytest.raises(StageNotFoundError) as excinfo:
        await manager.get("ghost")
    assert excinfo.value.stage_id == "ghost"
    assert not await manager.exists("ghost")


@pytest.mark.asyncio
async def test_update_overlays_only_given_fields() -> None:
    store = InMemoryKeyValueStore()
    manager = MetadataManager(store)
    await manager.create(make_metadata(description="old"))

    changed = await manager.update(
        "s1", {"name": "New", "members": [{"id": 7, "role": "Admin"}], "description": None}
    )

    assert changed == {"name": "New", "members": [StageMember(id=7)], "description": None}
    record = json.loads(await store.get("s1"))
    assert record["name"] == "New"
    assert record["members"] == [{"id": 7, "role": "Admin"}]
    assert "description" not in record
    assert record["timeCreated"] == 1_700_000_000
    stored = await manager.get("s1")
    assert stored.name == "New" and stored.description is None


@pytest.mark.asyncio
async def test_update_of_missing_record_starts_from_empty_object() -> None:
    store = InMemoryKeyValueStore()
    manager = MetadataManager(store)

    await manager.update("s1", {"is_published": True})

    assert json.loads(await store.get("s1")) == {"isPublished": True}


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields_and_id_changes() -> None:
    manager = MetadataManager(InMemoryKeyValueStore())

    with pytest.raises(ValueError):
        await manager.update("s1", {"colour": "red"})
    with pytest.raises(ValueError):
        await manager.update("s1", {"id": "s2"})
    with pytest.raises(ValueError):
        validate_fields({"is_published": "definitely"})


@pytest.mark.asyncio
async def test_update_fails_on_corrupt_record() -> None:
    store = InMemoryKeyValueStore()
    await store.set("s1", "[not an object]")

    with pytest.raises(DecodeError):
        await MetadataManager(store).update("s1", {"name": "x"})


@pytest.mark.asyncio
async def test_concurrent_updates_of_different_fields_both_land() -> None:
    store = InMemoryKeyValueStore()
    manager = MetadataManager(store)
    await store.set("s1", encode_metadata(make_metadata(name="A", is_published=False)))

    await asyncio.gather(
        manager.update("s1", {"name": "B"}),
        manager.update("s1", {"is_published": True}),
    )

    record = await manager.get("s1")
    assert record.name == "B"
    assert record.is_published is True


@pytest.mark.asyncio
async def test_concurrent_updates_against_redis_merge_per_field(fake_redis) -> None:
    manager = MetadataManager(RedisKeyValueStore(fake_redis, "StageMetadata"))
    await manager.create(make_metadata(name="A"))

    await asyncio.gather(
        manager.update("s1", {"name": "B"}),
        manager.update("s1", {"is_published": True}),
        manager.update("s1", {"description": "shared"}),
    )

    record = await manager.get("s1")
    assert (record.name, record.is_published, record.description) == ("B", True, "shared")


@pytest.mark.asyncio
async def test_remove_deletes_record() -> None:
    manager = MetadataManager(InMemoryKeyValueStore())
    await manager.create(make_metadata())

    await manager.remove("s1")

    assert not await manager.exists("s1")
