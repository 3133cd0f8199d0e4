"""
Tests for the advisory LockCoordinator.

Covers acquisition and release, timeouts, stale-marker recovery and
serialization of concurrent holders.
"""

import asyncio
import json
import os
import socket
import sys
import time
from dataclasses import replace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from jobfiles.exceptions import LockTimeout
from jobfiles.services.lock_coordinator import LockCoordinator


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def coordinator(test_settings):
    return LockCoordinator(settings=test_settings)


def write_marker(path: Path, **fields):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(fields), encoding="utf-8")


# ============================================================================
# Acquire / release
# ============================================================================

class TestAcquireRelease:
    """Marker lifecycle for a single holder."""

    def test_acquire_creates_marker_with_owner(self, coordinator):
        async def run_test():
            return await coordinator.acquire()

        handle = asyncio.run(run_test())

        marker = json.loads(coordinator.lock_path.read_text(encoding="utf-8"))
        assert marker["pid"] == os.getpid()
        assert marker["token"] == handle.token
        assert marker["hostname"] == socket.gethostname()
        assert coordinator.is_held(handle)

    def test_release_removes_marker(self, coordinator):
        async def run_test():
            handle = await coordinator.acquire()
            return coordinator.release(handle)

        assert asyncio.run(run_test()) is True
        assert not coordinator.lock_path.exists()

    def test_release_with_foreign_token_keeps_marker(self, coordinator):
        async def run_test():
            handle = await coordinator.acquire()
            impostor = replace(handle, token="someone-else")
            return handle, coordinator.release(impostor)

        handle, released = asyncio.run(run_test())

        assert released is False
        assert coordinator.lock_path.exists()
        assert coordinator.is_held(handle)

    def test_hold_releases_on_error(self, coordinator):
        async def run_test():
            async with coordinator.hold():
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(run_test())

        assert not coordinator.lock_path.exists()

    def test_each_acquisition_gets_new_token(self, coordinator):
        async def run_test():
            first = await coordinator.acquire()
            coordinator.release(first)
            second = await coordinator.acquire()
            coordinator.release(second)
            return first, second

        first, second = asyncio.run(run_test())
        assert first.token != second.token


# ============================================================================
# Timeouts and stale markers
# ============================================================================

class TestContention:
    """Behavior when a marker already exists."""

    def test_live_marker_times_out(self, coordinator):
        write_marker(
            coordinator.lock_path,
            pid=os.getpid(),
            hostname=socket.gethostname(),
            token="held-elsewhere",
            acquired_at=time.time(),
        )

        async def run_test():
            await coordinator.acquire(timeout=0.1)

        with pytest.raises(LockTimeout):
            asyncio.run(run_test())

        # The live holder's marker is untouched
        marker = json.loads(coordinator.lock_path.read_text(encoding="utf-8"))
        assert marker["token"] == "held-elsewhere"

    def test_remote_marker_is_respected_until_max_age(self, coordinator):
        write_marker(
            coordinator.lock_path,
            pid=1,
            hostname="another-machine.invalid",
            token="remote",
            acquired_at=time.time(),
        )

        async def run_test():
            await coordinator.acquire(timeout=0.1)

        with pytest.raises(LockTimeout):
            asyncio.run(run_test())

    def test_dead_owner_marker_is_broken(self, coordinator):
        write_marker(
            coordinator.lock_path,
            pid=999999999,
            hostname=socket.gethostname(),
            token="crashed",
            acquired_at=time.time(),
        )

        async def run_test():
            return await coordinator.acquire(timeout=0.5)

        handle = asyncio.run(run_test())
        assert coordinator.is_held(handle)

    def test_old_marker_is_broken(self, coordinator):
        write_marker(
            coordinator.lock_path,
            pid=os.getpid(),
            hostname=socket.gethostname(),
            token="ancient",
            acquired_at=time.time() - coordinator.max_age - 60,
        )

        async def run_test():
            return await coordinator.acquire(timeout=0.5)

        handle = asyncio.run(run_test())
        assert coordinator.is_held(handle)

    def test_corrupt_marker_is_broken(self, coordinator):
        coordinator.lock_path.parent.mkdir(parents=True, exist_ok=True)
        coordinator.lock_path.write_text("{not json", encoding="utf-8")

        async def run_test():
            return await coordinator.acquire(timeout=0.5)

        handle = asyncio.run(run_test())
        assert coordinator.is_held(handle)

    def test_is_stale_rules(self, coordinator):
        now = time.time()
        host = socket.gethostname()

        assert coordinator.is_stale({}) is True
        assert coordinator.is_stale({"pid": "abc", "hostname": host}) is True
        assert coordinator.is_stale({"pid": os.getpid(), "hostname": host, "acquired_at": now}) is False
        assert coordinator.is_stale({"pid": 1, "hostname": "elsewhere", "acquired_at": now}) is False

    def test_marker_replaced_after_stale_read_is_kept(self, coordinator, monkeypatch):
        write_marker(
            coordinator.lock_path,
            pid=os.getpid(),
            hostname=socket.gethostname(),
            token="fresh-owner",
            acquired_at=time.time(),
        )
        real_read = coordinator._read_marker
        reads = []

        def first_read_sees_crashed_owner(path=None):
            # The crashed owner's marker is replaced right after this read
            reads.append(path)
            if len(reads) == 1:
                return {"pid": 999999999, "hostname": socket.gethostname(), "token": "crashed"}
            return real_read(path)

        monkeypatch.setattr(coordinator, "_read_marker", first_read_sees_crashed_owner)
        coordinator._break_if_stale()

        marker = json.loads(coordinator.lock_path.read_text(encoding="utf-8"))
        assert marker["token"] == "fresh-owner"
        assert [p.name for p in coordinator.lock_path.parent.iterdir() if ".stale-" in p.name] == []

    def test_breaking_stale_marker_leaves_no_leftovers(self, coordinator):
        write_marker(
            coordinator.lock_path,
            pid=999999999,
            hostname=socket.gethostname(),
            token="crashed",
            acquired_at=time.time(),
        )

        coordinator._break_if_stale()

        assert not coordinator.lock_path.exists()
        assert [p.name for p in coordinator.lock_path.parent.iterdir() if ".stale-" in p.name] == []


# ============================================================================
# Concurrency
# ============================================================================

class TestSerialization:
    """Concurrent holders never overlap."""

    def test_concurrent_holders_are_serialized(self, coordinator):
        inside = []
        overlaps = []
        order = []

        async def worker(n):
            async with coordinator.hold():
                inside.append(n)
                if len(inside) > 1:
                    overlaps.append(list(inside))
                await asyncio.sleep(0.01)
                order.append(n)
                inside.remove(n)

        async def run_test():
            await asyncio.gather(*(worker(n) for n in range(5)))

        asyncio.run(run_test())

        assert overlaps == []
        assert sorted(order) == [0, 1, 2, 3, 4]
        assert not coordinator.lock_path.exists()
