"""
Sentinel-file locks for the action cache.

A lock is a file created with ``O_CREAT | O_EXCL`` that holds the owner's pid
and the acquisition time. Locks left behind by dead processes are reclaimed
once they are older than the stale threshold. Liveness probing uses
``os.kill(pid, 0)`` and therefore assumes a POSIX host.
"""

from __future__ import annotations

import asyncio
import atexit
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

from pydantic import ValidationError

from echotest.core.types import LockRecord, now_ms
from echotest.error_handling.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_BASE_DELAY_MS = 10
DEFAULT_STALE_AFTER_MS = 10_000


def is_process_alive(pid: int) -> bool:
    """Probe whether ``pid`` refers to a running process."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user.
        return True
    except OSError:
        return False
    return True


class FileLock:
    """Per-resource mutual exclusion backed by a sentinel file."""

    def __init__(
        self,
        lock_path: Path,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        stale_after_ms: int = DEFAULT_STALE_AFTER_MS,
        owner_id: Optional[int] = None,
        registry: Optional["LockRegistry"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.lock_path = Path(lock_path)
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.stale_after_ms = stale_after_ms
        self.owner_id = owner_id if owner_id is not None else os.getpid()
        self._registry = registry if registry is not None else held_locks
        self._sleep = sleep
        self._record: Optional[LockRecord] = None

    @property
    def held(self) -> bool:
        return self._record is not None

    async def acquire(self) -> bool:
        """
        Try to take the lock, backing off exponentially while it is busy.

        Returns:
            True when the lock is held, False when attempts were exhausted or
            the lock file could not be created. Callers treat False as
            "operation skipped".
        """
        if self.held:
            return True

        attempt = 0
        while attempt < self.max_attempts:
            try:
                if self._try_create():
                    return True
            except OSError as exc:
                logger.error(
                    "Unexpected lock acquisition error",
                    extra={"lock_path": str(self.lock_path), "error": str(exc)},
                )
                return False

            if self._reclaim_if_stale():
                attempt += 1
                continue

            delay_ms = self.base_delay_ms * (2 ** attempt)
            attempt += 1
            if attempt < self.max_attempts:
                await self._sleep(delay_ms / 1000)

        logger.error(
            "Failed to acquire lock after max attempts",
            extra={"lock_path": str(self.lock_path), "attempts": self.max_attempts},
        )
        return False

    def release(self) -> None:
        """Delete the lock file, but only if it still holds our own record."""
        record = self._record
        if record is None:
            return
        self._record = None
        self._registry.discard(self)

        current = self._read_record()
        if current is None:
            return
        if current.owner_id != record.owner_id or current.timestamp != record.timestamp:
            logger.debug(
                "Skipped releasing lock not owned by this holder",
                extra={"lock_path": str(self.lock_path), "owner_id": current.owner_id},
            )
            return
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error(
                "Failed to release lock",
                extra={"lock_path": str(self.lock_path), "error": str(exc)},
            )

    async def __aenter__(self) -> "FileLock":
        if not await self.acquire():
            raise LockTimeoutError(str(self.lock_path), self.max_attempts)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _try_create(self) -> bool:
        """Exclusive create-only write of our record. False if the file exists."""
        record = LockRecord(owner_id=self.owner_id, timestamp=now_ms())
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(record.model_dump_json(by_alias=True))
        self._record = record
        self._registry.add(self)
        return True

    def _read_record(self) -> Optional[LockRecord]:
        try:
            raw = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error(
                "Failed to read lock file",
                extra={"lock_path": str(self.lock_path), "error": str(exc)},
            )
            return None
        try:
            return LockRecord.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            return None

    def _lock_age_ms(self) -> Optional[int]:
        try:
            return now_ms() - int(self.lock_path.stat().st_mtime * 1000)
        except FileNotFoundError:
            return None

    def _reclaim_if_stale(self) -> bool:
        """
        Remove the current lock file when its owner is gone.

        Returns True when the caller should retry immediately: either the
        stale lock was removed or the lock vanished on its own.
        """
        record = self._read_record()
        if record is None:
            age = self._lock_age_ms()
            if age is None:
                return True
            # Unparsable content is either a holder mid-write or a crash
            # mid-write; only the latter ever gets old.
            if age <= self.stale_after_ms:
                return False
            logger.warning(
                "Reclaiming unreadable lock file",
                extra={"lock_path": str(self.lock_path), "age_ms": age},
            )
            return self._unlink_quietly()

        age = now_ms() - record.timestamp
        if age <= self.stale_after_ms or is_process_alive(record.owner_id):
            return False

        # Compare-and-delete: a competitor may have reclaimed and re-locked
        # between our read and now.
        current = self._read_record()
        if current is None or current != record:
            return True
        logger.warning(
            "Reclaiming stale lock",
            extra={
                "lock_path": str(self.lock_path),
                "owner_id": record.owner_id,
                "age_ms": age,
            },
        )
        return self._unlink_quietly()

    def _unlink_quietly(self) -> bool:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error(
                "Failed to remove stale lock",
                extra={"lock_path": str(self.lock_path), "error": str(exc)},
            )
            return False
        return True


class LockRegistry:
    """Tracks the locks this process holds so exit paths can release them."""

    def __init__(self) -> None:
        self._locks: Set[FileLock] = set()
        self._guard = threading.Lock()
        self._handlers_installed = False

    def add(self, lock: FileLock) -> None:
        with self._guard:
            self._locks.add(lock)

    def discard(self, lock: FileLock) -> None:
        with self._guard:
            self._locks.discard(lock)

    def __len__(self) -> int:
        return len(self._locks)

    def release_all(self) -> None:
        """Release every held lock; safe to call repeatedly."""
        with self._guard:
            locks = list(self._locks)
        for lock in locks:
            lock.release()

    def install_release_handlers(self) -> None:
        """
        Release held locks on interpreter exit, SIGINT, SIGTERM and uncaught
        exceptions. Idempotent.
        """
        if self._handlers_installed:
            return
        self._handlers_installed = True

        atexit.register(self.release_all)

        previous_hook = sys.excepthook

        def _excepthook(exc_type, exc, tb):
            self.release_all()
            previous_hook(exc_type, exc, tb)

        sys.excepthook = _excepthook

        if threading.current_thread() is not threading.main_thread():
            logger.debug("Signal handlers can only be installed from the main thread")
            return

        for signum in (signal.SIGINT, signal.SIGTERM):
            previous = signal.getsignal(signum)

            def _handler(received, frame, _previous=previous):
                self.release_all()
                if _previous == signal.SIG_IGN:
                    return
                if callable(_previous):
                    _previous(received, frame)
                else:
                    sys.exit(128 + received)

            signal.signal(signum, _handler)


held_locks = LockRegistry()
