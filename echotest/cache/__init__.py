"""
Action cache exports.
"""

from echotest.cache.action_cache import ActionCache
from echotest.cache.fingerprint import compute_fingerprint, stable_hash
from echotest.cache.housekeeping import clean_up_cache, purge_legacy_cache
from echotest.cache.lock import FileLock, LockRegistry, held_locks, is_process_alive
from echotest.cache.retention import SweepReport, sweep_artifacts, sweep_entries

__all__ = [
    "ActionCache",
    "FileLock",
    "LockRegistry",
    "held_locks",
    "is_process_alive",
    "compute_fingerprint",
    "stable_hash",
    "clean_up_cache",
    "purge_legacy_cache",
    "SweepReport",
    "sweep_entries",
    "sweep_artifacts",
]
