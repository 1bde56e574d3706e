"""Unit tests for the bounded fetch queue."""

import asyncio

import pytest

from pkgindex.errors import NotFound
from pkgindex.fetcher import Fetcher
from pkgindex.proxy import ProxyClient
from pkgindex.queue import InMemoryQueue, requeue


class TestInMemoryQueue:
    """Test scheduling and running of fetches."""

    def test_requires_a_worker(self):
        async def process(module_path, version):
            return 200, None

        with pytest.raises(ValueError, match="workers"):
            InMemoryQueue(process, workers=0)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        active = 0
        peak = 0

        async def process(module_path, version):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return 200, None

        queue = InMemoryQueue(process, workers=2)
        for i in range(6):
            assert await queue.schedule("example.com/m", f"v1.0.{i}")
        await queue.wait_for_testing()

        assert peak == 2
        assert len(queue.results) == 6
        assert set(queue.results.values()) == {200}

    @pytest.mark.asyncio
    async def test_duplicates_are_dropped(self):
        release = asyncio.Event()
        calls = []

        async def process(module_path, version):
            calls.append((module_path, version))
            await release.wait()
            return 200, None

        queue = InMemoryQueue(process, workers=4)
        assert await queue.schedule("example.com/m", "v1.0.0")
        assert not await queue.schedule("example.com/m", "v1.0.0")
        assert await queue.schedule("example.com/m", "v1.0.0", suffix="reprocess")
        release.set()
        await queue.wait_for_testing()

        assert len(calls) == 2
        assert set(queue.results) == {"example.com/m@v1.0.0", "example.com/m@v1.0.0-reprocess"}

        # Once finished, the same item may be scheduled again.
        assert await queue.schedule("example.com/m", "v1.0.0")
        await queue.wait_for_testing()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def process(module_path, version):
            await asyncio.sleep(10)
            return 200, None

        queue = InMemoryQueue(process, workers=1, timeout=0.05)
        await queue.schedule("example.com/m", "v1.0.0")
        await queue.wait_for_testing()

        assert queue.results == {"example.com/m@v1.0.0": 550}

    @pytest.mark.asyncio
    async def test_status_and_errors(self):
        async def process(module_path, version):
            if version == "v1.0.0":
                return 404, NotFound("gone")
            if version == "v1.1.0":
                raise NotFound("gone")
            raise RuntimeError("boom")

        queue = InMemoryQueue(process, workers=3)
        for version in ("v1.0.0", "v1.1.0", "v1.2.0"):
            await queue.schedule("example.com/m", version)
        await queue.wait_for_testing()

        assert queue.results == {
            "example.com/m@v1.0.0": 404,
            "example.com/m@v1.1.0": 404,
            "example.com/m@v1.2.0": 500,
        }

    @pytest.mark.asyncio
    async def test_wait_with_nothing_scheduled(self):
        async def process(module_path, version):
            return 200, None

        queue = InMemoryQueue(process)
        await queue.wait_for_testing()
        assert queue.results == {}


@pytest.mark.asyncio
async def test_requeue(store):
    await store.insert_index_versions(
        [("example.com/a", "v1.0.0"), ("example.com/a", "v1.1.0"), ("example.com/b", "v0.1.0")]
    )
    calls = []

    async def process(module_path, version):
        calls.append((module_path, version))
        await store.upsert_version_state(module_path, version, 200)
        return 200, None

    queue = InMemoryQueue(process, workers=2)
    scheduled = await requeue(store, queue, limit=2)
    await queue.wait_for_testing()

    assert scheduled == 2
    assert sorted(calls) == [("example.com/a", "v1.0.0"), ("example.com/a", "v1.1.0")]

    # Fetched versions are no longer due.
    remaining = await store.get_next_versions_to_fetch(10)
    assert [(s.module_path, s.version) for s in remaining] == [("example.com/b", "v0.1.0")]


@pytest.mark.asyncio
async def test_fetch_timeout_records_state(store, monkeypatch):
    async def slow_get_info(module_path, version):
        await asyncio.sleep(10)

    client = ProxyClient("https://proxy.test")
    monkeypatch.setattr(client, "get_info", slow_get_info)
    fetcher = Fetcher(client, store, timeout=0.05)
    queue = InMemoryQueue(fetcher.fetch_and_update_state, workers=1, timeout=5)
    try:
        await queue.schedule("example.com/a", "v1.0.0")
        await queue.wait_for_testing()
    finally:
        await client.close()

    assert queue.results == {"example.com/a@v1.0.0": 550}
    vs = await store.get_version_state("example.com/a", "v1.0.0")
    assert vs.status == 550
