"""
Tests for cache retention sweeps and housekeeping.
"""

import json
import os
import time
from unittest.mock import patch

import pytest

from echotest.cache.action_cache import ActionCache
from echotest.cache.housekeeping import clean_up_cache, purge_legacy_cache
from echotest.cache.retention import (
    remove_orphaned_locks,
    select_expired,
    sort_by_mtime,
    sweep_artifacts,
)
from echotest.config.settings import DAY_MS, HOUR_MS
from echotest.core.types import now_ms

DEAD_PID = 2**22 + 12345


def _fp(index: int) -> str:
    return f"{index:064x}"


def _age(path, seconds: float) -> None:
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


def _write_entry(cache_dir, fingerprint, age_seconds=0.0, timestamp=None):
    path = cache_dir / f"{fingerprint}.json"
    payload = {
        "test": {"name": fingerprint[-4:], "filePath": "t.ts"},
        "data": {"steps": []},
        "timestamp": timestamp if timestamp is not None else now_ms(),
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    _age(path, age_seconds)
    return path


class TestSelection:
    def test_sort_by_mtime_newest_first(self, tmp_path):
        old = tmp_path / "old"
        new = tmp_path / "new"
        old.write_text("x")
        new.write_text("x")
        _age(old, 100)

        assert [p for p, _ in sort_by_mtime([old, new, tmp_path / "gone"])] == [new, old]

    def test_select_expired_by_age_and_count(self, tmp_path):
        now = 1_000.0
        stamped = [
            (tmp_path / "a", now - 1),
            (tmp_path / "b", now - 2),
            (tmp_path / "c", now - 3),
            (tmp_path / "d", now - 500),
        ]
        expired = select_expired(stamped, max_age_ms=100_000, max_count=2, now=now)
        assert expired == [tmp_path / "c", tmp_path / "d"]


class TestSweepEntries:
    @pytest.mark.asyncio
    async def test_sweep_by_age(self, action_cache, cache_dir):
        fresh = _write_entry(cache_dir, _fp(1), age_seconds=10)
        stale = _write_entry(cache_dir, _fp(2), age_seconds=3 * 3600)

        report = await action_cache.sweep(max_age_ms=HOUR_MS, max_count=100)

        assert fresh.exists()
        assert not stale.exists()
        assert report.removed_entries == [stale]

    @pytest.mark.asyncio
    async def test_sweep_by_count_keeps_newest(self, action_cache, cache_dir):
        paths = [_write_entry(cache_dir, _fp(i), age_seconds=i * 10) for i in range(5)]

        await action_cache.sweep(max_age_ms=DAY_MS, max_count=2)

        assert [p.exists() for p in paths] == [True, True, False, False, False]

    @pytest.mark.asyncio
    async def test_sweep_skips_locked_entry(self, action_cache, cache_dir):
        stale = _write_entry(cache_dir, _fp(1), age_seconds=3 * 3600)
        (cache_dir / f"{_fp(1)}.lock").write_text(
            json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()})
        )

        report = await action_cache.sweep(max_age_ms=HOUR_MS, max_count=100)

        assert stale.exists()
        assert report.skipped == [stale]

    def test_remove_orphaned_locks(self, cache_dir):
        orphan = cache_dir / f"{_fp(1)}.lock"
        orphan.write_text(json.dumps({"ownerId": DEAD_PID, "timestamp": now_ms() - 60_000}))
        live = cache_dir / f"{_fp(2)}.lock"
        live.write_text(json.dumps({"ownerId": os.getpid(), "timestamp": now_ms() - 60_000}))
        garbage = cache_dir / f"{_fp(3)}.lock"
        garbage.write_text("??")
        _age(garbage, 60)

        removed = remove_orphaned_locks(cache_dir)

        assert sorted(removed) == sorted([orphan, garbage])
        assert live.exists()

    def test_lock_retaken_after_stale_check_is_kept(self, cache_dir):
        lock_path = cache_dir / f"{_fp(1)}.lock"
        lock_path.write_text(json.dumps({"ownerId": DEAD_PID, "timestamp": now_ms() - 60_000}))
        fresh = json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()})

        def reclaimed_meanwhile(pid):
            # Another process reclaims the dead lock and takes it for itself.
            lock_path.write_text(fresh)
            return False

        with patch("echotest.cache.retention.is_process_alive", side_effect=reclaimed_meanwhile):
            removed = remove_orphaned_locks(cache_dir)

        assert removed == []
        assert lock_path.read_text() == fresh


class TestSweepArtifacts:
    def test_artifacts_swept_per_run_by_age_and_count(self, tmp_path):
        screenshots = tmp_path / "screenshots"
        run_a = screenshots / _fp(1)
        run_b = screenshots / _fp(2)
        run_a.mkdir(parents=True)
        run_b.mkdir(parents=True)
        a_files = []
        for i in range(4):
            path = run_a / f"{i}.png"
            path.write_bytes(b"x")
            _age(path, i * 10)
            a_files.append(path)
        old = run_b / "old.png"
        old.write_bytes(b"x")
        _age(old, 6 * 3600)

        report = sweep_artifacts(screenshots, max_age_ms=5 * HOUR_MS, max_count=2)

        assert [p.exists() for p in a_files] == [True, True, False, False]
        assert not run_b.exists()
        assert sorted(report.removed_artifacts) == sorted(a_files[2:] + [old])

    @pytest.mark.asyncio
    async def test_artifacts_removed_even_when_entry_survives(self, cache_dir, registry):
        cache = ActionCache(cache_dir, registry=registry)
        entry = _write_entry(cache_dir, _fp(1))
        run_dir = cache.artifact_dir(_fp(1))
        run_dir.mkdir(parents=True)
        shot = run_dir / "1.png"
        shot.write_bytes(b"x")
        _age(shot, 6 * 3600)

        await cache.sweep(max_age_ms=DAY_MS, max_count=100, artifact_max_age_ms=5 * HOUR_MS)

        assert entry.exists()
        assert not shot.exists()

    def test_missing_directory(self, tmp_path):
        report = sweep_artifacts(tmp_path / "nope", max_age_ms=1, max_count=1)
        assert report.removed_artifacts == []


class TestCleanUpCache:
    @pytest.mark.asyncio
    async def test_removes_expired_and_invalid_entries(self, settings, action_cache, cache_dir):
        fresh = _write_entry(cache_dir, _fp(1))
        expired = _write_entry(cache_dir, _fp(2), timestamp=now_ms() - 8 * DAY_MS)
        invalid = cache_dir / f"{_fp(3)}.json"
        invalid.write_text("not json", encoding="utf-8")
        unrelated = cache_dir / "notes.json"
        unrelated.write_text("{}", encoding="utf-8")

        report = await clean_up_cache(settings=settings, cache=action_cache)

        assert fresh.exists()
        assert not expired.exists()
        assert not invalid.exists()
        assert unrelated.exists()
        assert set(report.removed_entries) >= {expired, invalid}

    @pytest.mark.asyncio
    async def test_force_purge_removes_everything(self, settings, action_cache, cache_dir):
        entries = [_write_entry(cache_dir, _fp(i)) for i in range(3)]
        shots = cache_dir / "screenshots" / _fp(0)
        shots.mkdir(parents=True)
        (shots / "1.png").write_bytes(b"x")

        report = await clean_up_cache(force_purge=True, settings=settings, cache=action_cache)

        assert not any(p.exists() for p in entries)
        assert not (cache_dir / "screenshots").exists()
        assert len(report.removed_entries) == 3

    @pytest.mark.asyncio
    async def test_purges_legacy_cache_file(self, settings, action_cache, cache_dir):
        legacy = cache_dir.parent / "cache.json"
        legacy.write_text("{}", encoding="utf-8")

        await clean_up_cache(settings=settings, cache=action_cache)

        assert not legacy.exists()


def test_purge_legacy_cache_without_file(tmp_path):
    assert purge_legacy_cache(tmp_path / "cache") is False
