from __future__ import annotations

import pytest

from stagestore.chunks import ChunkStore
from stagestore.codec import encode_chunk
from stagestore.errors import DecodeError
from stagestore.store import InMemoryKeyValueStore, RedisKeyValueStore
from tests.factories import make_chunk


@pytest.mark.asyncio
async def test_put_then_get_preserves_numeric_order() -> None:
    store = InMemoryKeyValueStore()
    chunks = ChunkStore(store, page_size=3)
    build = [make_chunk(f"part-{index}") for index in range(1, 13)]

    await chunks.put_chunks("s1", build)

    # natural key order is s1/1, s1/10, s1/11, s1/12, s1/2, ...
    assert store.keys()[:3] == ["s1/1", "s1/10", "s1/11"]
    assert await chunks.get_chunks("s1") == build


@pytest.mark.asyncio
async def test_put_chunks_reports_progress_per_chunk() -> None:
    chunks = ChunkStore(InMemoryKeyValueStore())
    progress: list[tuple[int, int]] = []

    await chunks.put_chunks(
        "s1", [make_chunk("a"), make_chunk("b"), make_chunk("c")], lambda *args: progress.append(args)
    )

    assert progress == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_put_chunks_overwrites_and_trims_previous_build() -> None:
    store = InMemoryKeyValueStore()
    chunks = ChunkStore(store)
    await chunks.put_chunks("s1", [make_chunk("a"), make_chunk("b"), make_chunk("c")])

    await chunks.put_chunks("s1", [make_chunk("x")])

    assert store.keys() == ["s1/1"]
    assert await chunks.get_chunks("s1") == [make_chunk("x")]


@pytest.mark.asyncio
async def test_chunks_of_other_stages_are_not_touched() -> None:
    store = InMemoryKeyValueStore()
    chunks = ChunkStore(store)
    await chunks.put_chunks("s1", [make_chunk("a")])
    await chunks.put_chunks("s10", [make_chunk("b")])

    assert await chunks.delete_chunks("s1") == 1

    assert store.keys() == ["s10/1"]
    assert await chunks.get_chunks("s10") == [make_chunk("b")]


@pytest.mark.asyncio
async def test_delete_chunks_twice_is_a_no_op() -> None:
    store = InMemoryKeyValueStore()
    chunks = ChunkStore(store, page_size=2)
    await chunks.put_chunks("s1", [make_chunk(str(index)) for index in range(5)])

    assert await chunks.delete_chunks("s1") == 5
    assert store.keys() == []
    assert await chunks.delete_chunks("s1") == 0
    assert store.keys() == []


@pytest.mark.asyncio
async def test_get_chunks_ignores_foreign_keys_and_fails_on_corrupt_chunk() -> None:
    store = InMemoryKeyValueStore()
    chunks = ChunkStore(store)
    await store.set("s1/1", encode_chunk(make_chunk("a")))
    await store.set("s1/notes", "whatever")

    assert await chunks.get_chunks("s1") == [make_chunk("a")]

    await store.set("s1/2", "{broken")
    with pytest.raises(DecodeError):
        await chunks.get_chunks("s1")


@pytest.mark.asyncio
async def test_redis_backed_chunks_sort_regardless_of_scan_order(fake_redis) -> None:
    chunks = ChunkStore(RedisKeyValueStore(fake_redis, "StageBuildData"), page_size=2)
    build = [make_chunk(f"part-{index}") for index in range(1, 12)]

    await chunks.put_chunks("s1", build)

    assert await chunks.get_chunks("s1") == build
    assert await chunks.delete_chunks("s1") == 11
    assert await chunks.get_chunks("s1") == []
