"""Deterministic cache keys for test definitions."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from echotest.core.types import TestIdentity

FINGERPRINT_LENGTH = 64


def stable_hash(payload: Any) -> str:
    """Return a stable sha256 hash for any JSON-serializable payload."""
    serialized = json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")
    return hashlib.sha256(serialized).hexdigest()


def compute_fingerprint(test: TestIdentity) -> str:
    """Fingerprint of the full test definition; the action-cache key."""
    return stable_hash(test.fingerprint_payload())


def is_fingerprint(value: str) -> bool:
    """True when ``value`` looks like a fingerprint (64 lowercase hex chars)."""
    if len(value) != FINGERPRINT_LENGTH:
        return False
    return all(ch in "0123456789abcdef" for ch in value)
