import asyncio
import json

import pytest

from tubelinks.errors import MalformedInput
from tubelinks.service import LinkPersistenceService
from tubelinks.storage import KVStoreAdapter, MemoryKVBackend


def urls(links):
    return [l.url for l in links]


def test_clear_is_idempotent(service, sample_links):
    async def scenario():
        await service.save(sample_links)
        first = await service.clear_all()
        second = await service.clear_all()
        return first, second, await service.get_all()

    first, second, remaining = asyncio.run(scenario())
    assert first.success and second.success
    assert first.total_count == second.total_count == 0
    assert remaining == []


def test_save_is_merge_append(service):
    async def scenario():
        await service.save([{"url": "A"}])
        result = await service.save([{"url": "A"}, {"url": "B"}])
        return result, await service.get_all()

    result, links = asyncio.run(scenario())
    assert urls(links) == ["A", "B"]
    assert result.added_count == 1
    assert result.total_count == 2
    assert result.success


def test_save_dedupes_within_batch(service):
    result = asyncio.run(service.save([{"url": "A"}, {"url": "A"}]))
    assert result.added_count == 1
    assert result.total_count == 1


def test_save_never_removes_existing(service):
    async def scenario():
        await service.save([{"url": "A"}, {"url": "B"}])
        await service.save([{"url": "C"}])
        return await service.get_all()

    assert urls(asyncio.run(scenario())) == ["A", "B", "C"]


def test_invalid_records_are_dropped_not_fatal(service):
    batch = [{"url": "A"}, {"title": "no url"}, "just a string", {"url": ""}, {"url": 42}]
    result = asyncio.run(service.save(batch))
    assert result.success
    assert result.added_count == 1
    assert result.rejected_count == 4


def test_save_requires_a_list(service):
    with pytest.raises(MalformedInput):
        asyncio.run(service.save({"url": "A"}))


def test_strict_urls_rejects_non_youtube():
    service = LinkPersistenceService(KVStoreAdapter(MemoryKVBackend()), strict_urls=True)
    result = asyncio.run(service.save([{"url": "A"}, {"url": "https://youtu.be/aaaaaaaaaaa"}]))
    assert result.added_count == 1
    assert result.rejected_count == 1


def test_delete_is_exact_match_and_keeps_order(service):
    async def scenario():
        await service.save([{"url": "A"}, {"url": "B"}, {"url": "C"}])
        result = await service.delete_one("B")
        return result, await service.get_all()

    result, links = asyncio.run(scenario())
    assert result.deleted
    assert result.total_count == 2
    assert urls(links) == ["A", "C"]


def test_delete_by_id(service):
    async def scenario():
        await service.save([{"url": "A", "id": "1"}, {"url": "B", "id": "2"}])
        await service.delete_one("2")
        return await service.get_all()

    assert urls(asyncio.run(scenario())) == ["A"]


def test_delete_missing_is_not_an_error(service):
    result = asyncio.run(service.delete_one("nope"))
    assert result.success
    assert not result.deleted
    assert result.message == "Link not found"


def test_delete_requires_key(service):
    with pytest.raises(MalformedInput):
        asyncio.run(service.delete_one(""))


def test_unconfigured_store_degrades(unconfigured_service):
    assert asyncio.run(unconfigured_service.get_all()) == []

    result = asyncio.run(unconfigured_service.save([{"url": "A"}]))
    assert not result.success
    assert result.added_count == 0
    assert result.total_count == 1
    assert result.warning

    assert not asyncio.run(unconfigured_service.delete_one("A")).success
    assert not asyncio.run(unconfigured_service.clear_all()).success


def test_corrupt_blob_reads_as_empty_and_blocks_merge():
    backend = MemoryKVBackend({"youtube_links": "{broken"})
    service = LinkPersistenceService(KVStoreAdapter(backend))

    assert asyncio.run(service.get_all()) == []
    result = asyncio.run(service.save([{"url": "A"}]))
    assert not result.success
    assert backend.get("youtube_links") == "{broken"


def test_clear_repairs_corrupt_blob():
    backend = MemoryKVBackend({"youtube_links": "{broken"})
    service = LinkPersistenceService(KVStoreAdapter(backend))
    assert asyncio.run(service.clear_all()).success
    assert json.loads(backend.get("youtube_links"))["links"] == []


def test_stored_blob_shape_and_version(service, backend):
    async def scenario():
        await service.save([{"url": "A", "timestamp": "2024-01-01T00:00:00Z", "title": "kept"}])
        return await service.save([{"url": "B"}])

    result = asyncio.run(scenario())
    blob = json.loads(backend.get("youtube_links"))
    assert blob["version"] == 2
    assert result.version == 2
    assert blob["links"][0] == {"url": "A", "timestamp": "2024-01-01T00:00:00Z", "title": "kept"}
    assert "source" not in blob["links"][1]


def test_malformed_stored_records_are_skipped():
    raw = json.dumps({"links": [{"url": "A"}, {"nope": 1}, "B"]})
    service = LinkPersistenceService(KVStoreAdapter(MemoryKVBackend({"youtube_links": raw})))
    assert urls(asyncio.run(service.get_all())) == ["A"]


def test_legacy_blob_without_version(backend, service):
    backend.put("youtube_links", json.dumps({"links": [{"url": "A"}]}))
    result = asyncio.run(service.save([{"url": "B"}]))
    assert result.version == 1


def test_concurrent_saves_in_one_process_do_not_lose_links(service):
    async def scenario():
        await asyncio.gather(*(service.save([{"url": f"L{i}"}]) for i in range(10)))
        return await service.get_all()

    assert sorted(urls(asyncio.run(scenario()))) == sorted(f"L{i}" for i in range(10))


def test_status(service, unconfigured_service):
    assert service.status() == {"configured": True, "backend": "memory", "storageKey": "youtube_links"}
    assert unconfigured_service.status()["configured"] is False
