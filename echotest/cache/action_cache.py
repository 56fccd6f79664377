"""Per-test action histories persisted as one JSON file per fingerprint."""

from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from echotest.cache.lock import FileLock, LockRegistry
from echotest.cache.retention import (
    ENTRY_SUFFIX,
    LOCK_SUFFIX,
    SweepReport,
    sweep_artifacts,
    sweep_entries,
)
from echotest.config.settings import Settings
from echotest.core.types import (
    CacheData,
    CacheEntry,
    CachedTest,
    CacheStep,
    RunMetadata,
    TestIdentity,
    now_ms,
)
from echotest.error_handling.exceptions import CacheError

logger = logging.getLogger(__name__)


class ActionCache:
    """
    Keyed store of action histories.

    Steps recorded during a run live in an in-memory buffer until
    :meth:`commit` flushes them. Every read and write of an entry file
    happens inside that fingerprint's :class:`FileLock`.
    """

    def __init__(
        self,
        cache_dir: Path,
        lock_max_attempts: int = 10,
        lock_base_delay_ms: int = 10,
        lock_stale_ms: int = 10_000,
        save_screenshots: bool = False,
        registry: Optional[LockRegistry] = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.screenshots_dir = self.cache_dir / "screenshots"
        self.lock_max_attempts = lock_max_attempts
        self.lock_base_delay_ms = lock_base_delay_ms
        self.lock_stale_ms = lock_stale_ms
        self.save_screenshots = save_screenshots
        self._registry = registry
        self._steps: List[CacheStep] = []
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ActionCache":
        return cls(
            cache_dir=settings.cache_dir,
            lock_max_attempts=settings.cache_lock_max_attempts,
            lock_base_delay_ms=settings.cache_lock_base_delay_ms,
            lock_stale_ms=settings.cache_lock_stale_ms,
            save_screenshots=settings.save_screenshots,
        )

    # ------------------------------------------------------------------ #
    # Paths
    # ------------------------------------------------------------------ #
    def entry_path(self, fingerprint: str) -> Path:
        return self.cache_dir / f"{fingerprint}{ENTRY_SUFFIX}"

    def lock_path(self, fingerprint: str) -> Path:
        return self.cache_dir / f"{fingerprint}{LOCK_SUFFIX}"

    def artifact_dir(self, fingerprint: str) -> Path:
        return self.screenshots_dir / fingerprint

    def lock_for(self, fingerprint: str) -> FileLock:
        return FileLock(
            self.lock_path(fingerprint),
            max_attempts=self.lock_max_attempts,
            base_delay_ms=self.lock_base_delay_ms,
            stale_after_ms=self.lock_stale_ms,
            registry=self._registry,
        )

    # ------------------------------------------------------------------ #
    # Step buffer
    # ------------------------------------------------------------------ #
    def record_step(self, step: CacheStep) -> None:
        """Append a step to the pending buffer. No I/O."""
        self._steps.append(step)

    @property
    def steps(self) -> List[CacheStep]:
        return list(self._steps)

    def clear_steps(self) -> None:
        self._steps = []

    def for_run(self) -> "ActionCache":
        """
        A view of this store with its own empty step buffer.

        Entry files, locks and settings are shared; the buffer is not, so
        concurrent runs never see each other's steps.
        """
        run_cache = copy.copy(self)
        run_cache._steps = []
        return run_cache

    # ------------------------------------------------------------------ #
    # Entry operations
    # ------------------------------------------------------------------ #
    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """
        Load the entry for ``fingerprint``.

        Returns None on a miss, on lock exhaustion and on a corrupt entry;
        corrupt entries are deleted.
        """
        path = self.entry_path(fingerprint)
        lock = self.lock_for(fingerprint)
        if not await lock.acquire():
            logger.error("Failed to acquire lock for get", extra={"fingerprint": fingerprint})
            return None

        try:
            try:
                content = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            try:
                return CacheEntry.model_validate(json.loads(content))
            except (ValueError, ValidationError) as exc:
                logger.error(
                    "Invalid cache file removed",
                    extra={"cache_file": str(path), "error": str(exc)},
                )
                path.unlink(missing_ok=True)
                return None
        except OSError as exc:
            logger.error(
                "Failed to read cache file",
                extra={"cache_file": str(path), "error": str(exc)},
            )
            return None
        finally:
            lock.release()

    async def commit(
        self,
        test: TestIdentity,
        fingerprint: str,
        metadata: Optional[RunMetadata] = None,
        required: bool = False,
    ) -> bool:
        """
        Overwrite the entry for ``fingerprint`` with the buffered steps.

        The buffer is cleared whatever the outcome. Failures are logged and
        reported as False unless ``required`` is set, in which case they
        raise :class:`CacheError`.
        """
        steps = self._steps
        self._steps = []
        path = self.entry_path(fingerprint)
        lock = self.lock_for(fingerprint)

        if not await lock.acquire():
            logger.error("Failed to acquire lock for set", extra={"fingerprint": fingerprint})
            if required:
                raise CacheError("file-lock", f"Failed to acquire lock for {fingerprint}")
            return False

        entry = CacheEntry(
            test=CachedTest(name=test.name, file_path=test.file_path),
            data=CacheData(steps=steps),
            timestamp=now_ms(),
            metadata=metadata,
        )
        tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        try:
            tmp_path.write_text(
                json.dumps(entry.model_dump(mode="json", by_alias=True), indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, path)
            logger.debug(
                "Cache entry written",
                extra={"fingerprint": fingerprint, "step_count": len(steps)},
            )
            return True
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            logger.error(
                "Failed to write cache file",
                extra={"cache_file": str(path), "error": str(exc)},
            )
            if required:
                raise CacheError("crud", f"Failed to write cache file: {exc}", cause=exc)
            return False
        finally:
            lock.release()

    async def delete(self, fingerprint: str) -> bool:
        """Remove the entry, its lock and its artifacts. Missing files are fine."""
        path = self.entry_path(fingerprint)
        lock = self.lock_for(fingerprint)
        if not await lock.acquire():
            logger.error("Failed to acquire lock for delete", extra={"fingerprint": fingerprint})
            return False
        try:
            path.unlink(missing_ok=True)
            shutil.rmtree(self.artifact_dir(fingerprint), ignore_errors=True)
            logger.debug("Cache entry deleted", extra={"fingerprint": fingerprint})
            return True
        except OSError as exc:
            logger.error(
                "Failed to delete cache file",
                extra={"cache_file": str(path), "error": str(exc)},
            )
            return False
        finally:
            lock.release()

    def save_screenshot(self, fingerprint: str, base64_image: str) -> Optional[Path]:
        """Store a screenshot artifact for the run; returns its path."""
        if not self.save_screenshots:
            return None
        try:
            data = base64.b64decode(base64_image, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Discarding screenshot with invalid base64", extra={"fingerprint": fingerprint})
            return None

        run_dir = self.artifact_dir(fingerprint)
        path = run_dir / f"{now_ms()}-{len(self._steps)}.png"
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            logger.error(
                "Failed to save screenshot",
                extra={"artifact": str(path), "error": str(exc)},
            )
            return None
        return path

    async def sweep(
        self,
        max_age_ms: int,
        max_count: int,
        artifact_max_age_ms: int = 5 * 60 * 60 * 1000,
        artifact_max_count: int = 10,
    ) -> SweepReport:
        """Apply retention to entries and, independently, to screenshot artifacts."""
        report = await sweep_entries(self.cache_dir, max_age_ms, max_count, self.lock_for)
        report.merge(sweep_artifacts(self.screenshots_dir, artifact_max_age_ms, artifact_max_count))
        logger.info(
            "Cache sweep finished",
            extra={
                "removed_entries": len(report.removed_entries),
                "removed_artifacts": len(report.removed_artifacts),
                "skipped": len(report.skipped),
            },
        )
        return report
