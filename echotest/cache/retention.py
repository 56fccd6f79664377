"""Recency and count based retention for cache entries and artifacts."""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from echotest.cache.lock import FileLock, is_process_alive
from echotest.core.types import LockRecord, now_ms

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".json"
LOCK_SUFFIX = ".lock"


@dataclass
class SweepReport:
    """Paths touched by a retention pass."""

    removed_entries: List[Path] = field(default_factory=list)
    removed_artifacts: List[Path] = field(default_factory=list)
    removed_locks: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)

    def merge(self, other: "SweepReport") -> "SweepReport":
        self.removed_entries.extend(other.removed_entries)
        self.removed_artifacts.extend(other.removed_artifacts)
        self.removed_locks.extend(other.removed_locks)
        self.skipped.extend(other.skipped)
        return self


def sort_by_mtime(paths: Iterable[Path]) -> List[Tuple[Path, float]]:
    """Pair paths with their mtime (seconds), newest first. Vanished paths are dropped."""
    stamped: List[Tuple[Path, float]] = []
    for path in paths:
        try:
            stamped.append((path, path.stat().st_mtime))
        except FileNotFoundError:
            continue
    stamped.sort(key=lambda item: item[1], reverse=True)
    return stamped


def select_expired(
    stamped: List[Tuple[Path, float]],
    max_age_ms: int,
    max_count: int,
    now: float,
) -> List[Path]:
    """Paths older than ``max_age_ms`` or beyond the ``max_count`` newest."""
    expired: List[Path] = []
    for index, (path, mtime) in enumerate(stamped):
        is_old = (now - mtime) * 1000 > max_age_ms
        is_beyond_limit = index >= max_count
        if is_old or is_beyond_limit:
            expired.append(path)
    return expired


async def sweep_entries(
    cache_dir: Path,
    max_age_ms: int,
    max_count: int,
    lock_for: Callable[[str], FileLock],
) -> SweepReport:
    """
    Delete cache entries that are too old or beyond the newest ``max_count``.

    Each deletion happens under that entry's lock; entries whose lock cannot
    be taken are skipped and left for the next sweep.
    """
    report = SweepReport()
    if not cache_dir.exists():
        return report

    stamped = sort_by_mtime(cache_dir.glob(f"*{ENTRY_SUFFIX}"))
    for path in select_expired(stamped, max_age_ms, max_count, time.time()):
        fingerprint = path.stem
        lock = lock_for(fingerprint)
        if not await lock.acquire():
            logger.error("Failed to acquire lock for cleanup", extra={"cache_file": str(path)})
            report.skipped.append(path)
            continue
        try:
            path.unlink()
            report.removed_entries.append(path)
            logger.debug("Removed cache file", extra={"cache_file": str(path)})
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error(
                "Failed to remove cache file",
                extra={"cache_file": str(path), "error": str(exc)},
            )
        finally:
            lock.release()

    report.removed_locks.extend(remove_orphaned_locks(cache_dir))
    return report


def remove_orphaned_locks(cache_dir: Path, stale_after_ms: int = 10_000) -> List[Path]:
    """
    Remove lock files whose owner died without releasing them.

    Deletion is compare-and-delete: a lock whose content changed since it
    was judged stale belongs to a new holder and is left alone.
    """
    removed: List[Path] = []
    for lock_path in cache_dir.glob(f"*{LOCK_SUFFIX}"):
        raw = _read_lock(lock_path)
        if raw is None:
            continue
        try:
            record = LockRecord.model_validate_json(raw)
        except ValueError:
            # Parse and validation errors both land here; judge by file age.
            try:
                age_ms = now_ms() - int(lock_path.stat().st_mtime * 1000)
            except FileNotFoundError:
                continue
            if age_ms <= stale_after_ms:
                continue
        else:
            if now_ms() - record.timestamp <= stale_after_ms or is_process_alive(record.owner_id):
                continue
        if _read_lock(lock_path) != raw:
            logger.debug("Lock changed hands during sweep", extra={"lock_path": str(lock_path)})
            continue
        try:
            lock_path.unlink()
            removed.append(lock_path)
            logger.debug("Removed orphaned lock", extra={"lock_path": str(lock_path)})
        except FileNotFoundError:
            continue
    return removed


def _read_lock(lock_path: Path) -> Optional[str]:
    try:
        return lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def sweep_artifacts(screenshots_dir: Path, max_age_ms: int, max_count: int) -> SweepReport:
    """
    Apply the recency and count policy inside every run's artifact directory.

    Runs are swept independently of their cache entries: a surviving entry
    does not protect its screenshots.
    """
    report = SweepReport()
    if not screenshots_dir.exists():
        return report

    now = time.time()
    for run_dir in screenshots_dir.iterdir():
        if not run_dir.is_dir():
            continue
        stamped = sort_by_mtime(p for p in run_dir.iterdir() if p.is_file())
        for path in select_expired(stamped, max_age_ms, max_count, now):
            try:
                path.unlink()
                report.removed_artifacts.append(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error(
                    "Failed to remove screenshot",
                    extra={"artifact": str(path), "error": str(exc)},
                )
        try:
            next(run_dir.iterdir())
        except StopIteration:
            shutil.rmtree(run_dir, ignore_errors=True)

    if report.removed_artifacts:
        logger.debug(
            "Swept screenshot artifacts",
            extra={"removed": len(report.removed_artifacts)},
        )
    return report
