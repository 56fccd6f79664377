"""
Tests for the per-fingerprint action cache.
"""

import asyncio
import base64
import json
import multiprocessing
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from echotest.cache.action_cache import ActionCache
from echotest.cache.fingerprint import compute_fingerprint
from echotest.cache.lock import LockRegistry
from echotest.core.types import (
    CacheAction,
    CacheEntry,
    CacheStep,
    RunMetadata,
    TestIdentity,
    TokenUsage,
    VerdictStatus,
    now_ms,
)
from echotest.error_handling.exceptions import CacheError


def _step(name="computer", **action_input) -> CacheStep:
    return CacheStep(
        reasoning="Clicking the sign-in button",
        action=CacheAction(name=name, input=action_input or {"action": "left_click"}),
        result="left_click performed",
        extras={"componentDescription": 'button "Sign in"'},
    )


def _commit_from_process(cache_dir, fingerprint, writer):
    cache = ActionCache(
        Path(cache_dir), lock_max_attempts=12, lock_base_delay_ms=2, registry=LockRegistry()
    )
    for _ in range(writer + 1):
        cache.record_step(_step(action=f"writer-{writer}"))
    test = TestIdentity(name="shared", file_path="tests/shared.test.ts", body="Open the page.")
    ok = asyncio.run(cache.commit(test, fingerprint, required=True))
    sys.exit(0 if ok else 1)


@pytest.fixture
def fingerprint(sample_test):
    return compute_fingerprint(sample_test)


class TestStepBuffer:
    def test_record_step_buffers_without_io(self, action_cache, cache_dir):
        action_cache.record_step(_step())
        action_cache.record_step(_step(action="screenshot"))

        assert len(action_cache.steps) == 2
        assert list(cache_dir.iterdir()) == []

    def test_steps_returns_copy(self, action_cache):
        action_cache.record_step(_step())
        action_cache.steps.clear()
        assert len(action_cache.steps) == 1

    def test_clear_steps(self, action_cache):
        action_cache.record_step(_step())
        action_cache.clear_steps()
        assert action_cache.steps == []

    def test_for_run_has_private_buffer(self, action_cache):
        first = action_cache.for_run()
        second = action_cache.for_run()
        first.record_step(_step())

        assert len(first.steps) == 1
        assert second.steps == []
        assert action_cache.steps == []
        second.clear_steps()
        assert len(first.steps) == 1
        assert first.cache_dir == action_cache.cache_dir


class TestCommitAndGet:
    @pytest.mark.asyncio
    async def test_commit_then_get_returns_same_steps(self, action_cache, sample_test, fingerprint):
        steps = [_step(), _step(action="mouse_move", coordinate=[10, 20])]
        for step in steps:
            action_cache.record_step(step)
        metadata = RunMetadata(
            status=VerdictStatus.PASSED,
            reason="Dashboard visible",
            token_usage=TokenUsage(input_tokens=100, output_tokens=20),
            run_id="run-1",
        )

        assert await action_cache.commit(sample_test, fingerprint, metadata) is True
        entry = await action_cache.get(fingerprint)

        assert entry is not None
        assert entry.steps == steps
        assert entry.test.name == sample_test.name
        assert entry.test.file_path == sample_test.file_path
        assert entry.metadata == metadata
        assert action_cache.steps == []

    @pytest.mark.asyncio
    async def test_persisted_layout_uses_camel_case(self, action_cache, sample_test, fingerprint, cache_dir):
        action_cache.record_step(_step())
        await action_cache.commit(
            sample_test,
            fingerprint,
            RunMetadata(status=VerdictStatus.PASSED, run_id="r", from_cache=False),
        )

        raw = json.loads((cache_dir / f"{fingerprint}.json").read_text(encoding="utf-8"))
        assert set(raw) == {"test", "data", "timestamp", "metadata"}
        assert raw["test"] == {"name": sample_test.name, "filePath": sample_test.file_path}
        assert raw["metadata"]["runId"] == "r"
        assert "tokenUsage" in raw["metadata"]
        assert abs(raw["timestamp"] - now_ms()) < 5000
        assert not (cache_dir / f"{fingerprint}.lock").exists()

    @pytest.mark.asyncio
    async def test_commit_overwrites_previous_entry(self, action_cache, sample_test, fingerprint):
        action_cache.record_step(_step())
        await action_cache.commit(sample_test, fingerprint)
        action_cache.record_step(_step(action="screenshot"))
        await action_cache.commit(sample_test, fingerprint)

        entry = await action_cache.get(fingerprint)
        assert [s.action.input for s in entry.steps] == [{"action": "screenshot"}]

    @pytest.mark.asyncio
    async def test_get_missing_entry_returns_none(self, action_cache, fingerprint):
        assert await action_cache.get(fingerprint) is None

    @pytest.mark.asyncio
    async def test_get_deletes_malformed_entry(self, action_cache, fingerprint, cache_dir):
        path = cache_dir / f"{fingerprint}.json"
        path.write_text("{truncated", encoding="utf-8")

        assert await action_cache.get(fingerprint) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_get_deletes_schema_invalid_entry(self, action_cache, fingerprint, cache_dir):
        path = cache_dir / f"{fingerprint}.json"
        path.write_text(json.dumps({"data": {"steps": "nope"}}), encoding="utf-8")

        assert await action_cache.get(fingerprint) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_get_returns_none_when_locked(self, action_cache, sample_test, fingerprint, cache_dir):
        action_cache.record_step(_step())
        await action_cache.commit(sample_test, fingerprint)
        lock_path = cache_dir / f"{fingerprint}.lock"
        lock_path.write_text(json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()}))

        assert await action_cache.get(fingerprint) is None
        assert lock_path.exists()

    @pytest.mark.asyncio
    async def test_commit_lock_failure_is_soft(self, action_cache, sample_test, fingerprint, cache_dir):
        (cache_dir / f"{fingerprint}.lock").write_text(
            json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()})
        )
        action_cache.record_step(_step())

        assert await action_cache.commit(sample_test, fingerprint) is False
        assert action_cache.steps == []
        assert not (cache_dir / f"{fingerprint}.json").exists()

    @pytest.mark.asyncio
    async def test_commit_required_raises(self, action_cache, sample_test, fingerprint, cache_dir):
        (cache_dir / f"{fingerprint}.lock").write_text(
            json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()})
        )
        with pytest.raises(CacheError) as exc_info:
            await action_cache.commit(sample_test, fingerprint, required=True)
        assert exc_info.value.kind == "file-lock"

    @pytest.mark.asyncio
    async def test_commit_write_failure_releases_lock(self, action_cache, sample_test, fingerprint, cache_dir):
        action_cache.record_step(_step())
        with patch("echotest.cache.action_cache.os.replace", side_effect=OSError("disk full")):
            assert await action_cache.commit(sample_test, fingerprint) is False

        assert not (cache_dir / f"{fingerprint}.lock").exists()
        assert list(cache_dir.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_concurrent_commits_never_interleave(self, cache_dir, registry, sample_test, fingerprint):
        """The file always holds exactly one writer's full payload."""
        writers = []
        for index in range(4):
            cache = ActionCache(cache_dir, lock_max_attempts=20, lock_base_delay_ms=1, registry=registry)
            for _ in range(index + 1):
                cache.record_step(_step(action=f"writer-{index}"))
            writers.append(cache)

        results = await asyncio.gather(*(w.commit(sample_test, fingerprint) for w in writers))
        assert all(results)

        entry = await writers[0].get(fingerprint)
        actions = {step.action.input["action"] for step in entry.steps}
        assert len(actions) == 1
        writer = int(actions.pop().split("-")[1])
        assert len(entry.steps) == writer + 1

    def test_commits_from_separate_processes_never_interleave(self, cache_dir):
        """Processes racing on one fingerprint leave one writer's full payload."""
        fingerprint = "c" * 64
        context = multiprocessing.get_context("spawn")
        workers = [
            context.Process(target=_commit_from_process, args=(str(cache_dir), fingerprint, index))
            for index in range(4)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=60)

        assert [worker.exitcode for worker in workers] == [0, 0, 0, 0]
        raw = json.loads((cache_dir / f"{fingerprint}.json").read_text(encoding="utf-8"))
        entry = CacheEntry.model_validate(raw)
        actions = {step.action.input["action"] for step in entry.steps}
        assert len(actions) == 1
        writer = int(actions.pop().split("-")[1])
        assert len(entry.steps) == writer + 1
        assert list(cache_dir.glob("*.lock")) == []
        assert list(cache_dir.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_different_fingerprints_do_not_contend(self, action_cache, cache_dir, sample_test):
        (cache_dir / f"{'a' * 64}.lock").write_text(
            json.dumps({"ownerId": os.getpid(), "timestamp": now_ms()})
        )
        action_cache.record_step(_step())
        assert await action_cache.commit(sample_test, "b" * 64) is True


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_entry_lock_and_artifacts(self, cache_dir, registry, sample_test, fingerprint):
        cache = ActionCache(cache_dir, save_screenshots=True, registry=registry)
        cache.record_step(_step())
        await cache.commit(sample_test, fingerprint)
        cache.save_screenshot(fingerprint, base64.b64encode(b"png").decode())

        assert await cache.delete(fingerprint) is True
        assert not (cache_dir / f"{fingerprint}.json").exists()
        assert not (cache_dir / f"{fingerprint}.lock").exists()
        assert not cache.artifact_dir(fingerprint).exists()

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self, action_cache, fingerprint):
        assert await action_cache.delete(fingerprint) is True


class TestScreenshots:
    def test_save_screenshot_disabled_by_default(self, action_cache, fingerprint):
        assert action_cache.save_screenshot(fingerprint, base64.b64encode(b"png").decode()) is None

    def test_save_screenshot_writes_png(self, cache_dir, registry, fingerprint):
        cache = ActionCache(cache_dir, save_screenshots=True, registry=registry)
        path = cache.save_screenshot(fingerprint, base64.b64encode(b"\x89PNG data").decode())

        assert path is not None
        assert path.parent == cache_dir / "screenshots" / fingerprint
        assert path.suffix == ".png"
        assert path.read_bytes() == b"\x89PNG data"

    def test_save_screenshot_rejects_invalid_base64(self, cache_dir, registry, fingerprint):
        cache = ActionCache(cache_dir, save_screenshots=True, registry=registry)
        assert cache.save_screenshot(fingerprint, "not base64!!") is None


def test_from_settings(settings):
    cache = ActionCache.from_settings(settings)
    assert cache.cache_dir == settings.cache_dir
    assert cache.lock_max_attempts == settings.cache_lock_max_attempts
    assert cache.screenshots_dir == settings.screenshots_dir
