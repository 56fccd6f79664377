"""Process-wide cache housekeeping entry points."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional

from echotest.cache.action_cache import ActionCache
from echotest.cache.fingerprint import is_fingerprint
from echotest.cache.retention import ENTRY_SUFFIX, SweepReport
from echotest.config.settings import Settings, get_settings
from echotest.core.types import now_ms

logger = logging.getLogger(__name__)

LEGACY_CACHE_FILE = "cache.json"


async def clean_up_cache(
    force_purge: bool = False,
    settings: Optional[Settings] = None,
    cache: Optional[ActionCache] = None,
) -> SweepReport:
    """
    Run cache retention with the configured defaults.

    Args:
        force_purge: Remove every entry and artifact regardless of age
        settings: Settings to read retention limits from
        cache: Cache to sweep (built from settings when omitted)

    Returns:
        Report of removed and skipped paths
    """
    settings = settings or get_settings()
    cache = cache or ActionCache.from_settings(settings)
    logger.debug("Cleaning up cache", extra={"force_purge": force_purge})

    report = SweepReport()
    now = now_ms()

    for path in sorted(cache.cache_dir.glob(f"*{ENTRY_SUFFIX}")):
        fingerprint = path.stem
        if not is_fingerprint(fingerprint):
            continue
        if force_purge:
            if await cache.delete(fingerprint):
                report.removed_entries.append(path)
            else:
                report.skipped.append(path)
            continue

        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
            timestamp = int(entry["timestamp"])
        except FileNotFoundError:
            continue
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(
                "Failed to process cache file",
                extra={"cache_file": str(path), "error": str(exc)},
            )
            if await cache.delete(fingerprint):
                report.removed_entries.append(path)
                logger.error("Invalid cache file removed", extra={"cache_file": str(path)})
            continue

        if now - timestamp > settings.cache_max_age_ms:
            if await cache.delete(fingerprint):
                report.removed_entries.append(path)
                logger.debug("Cache file removed", extra={"cache_file": str(path)})

    if force_purge:
        shutil.rmtree(cache.screenshots_dir, ignore_errors=True)
    else:
        report.merge(
            await cache.sweep(
                max_age_ms=settings.cache_max_age_ms,
                max_count=settings.cache_max_entries,
                artifact_max_age_ms=settings.screenshot_max_age_ms,
                artifact_max_count=settings.screenshot_max_per_run,
            )
        )

    purge_legacy_cache(cache.cache_dir)
    return report


def purge_legacy_cache(cache_dir: Path) -> bool:
    """Remove the single-file cache used before per-test entries existed."""
    legacy_path = cache_dir.parent / LEGACY_CACHE_FILE
    if not legacy_path.exists():
        return False

    logger.warning(f"Purging legacy cache file {legacy_path}")
    try:
        legacy_path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.error(
            "Failed to purge legacy cache file",
            extra={"cache_file": str(legacy_path), "error": str(exc)},
        )
        return False
    return True
