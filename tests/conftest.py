"""
Shared fixtures for the echotest test suite.
"""

from unittest.mock import AsyncMock

import pytest

from echotest.cache.action_cache import ActionCache
from echotest.cache.lock import LockRegistry
from echotest.config.settings import Settings, get_settings
from echotest.core.types import TestIdentity, ToolResult


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the cached settings at a temporary cache directory."""
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "default-cache"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def registry():
    """A private lock registry so tests never touch process-wide handlers."""
    return LockRegistry()


@pytest.fixture
def action_cache(cache_dir, registry):
    return ActionCache(cache_dir, lock_max_attempts=3, lock_base_delay_ms=1, registry=registry)


@pytest.fixture
def settings(cache_dir):
    """Settings tuned for fast tests: no waits, small limits."""
    return Settings(
        _env_file=None,
        cache_dir=cache_dir,
        agent_max_retries=3,
        agent_retry_delay_seconds=5.0,
        agent_rate_limit_cooldown_seconds=60.0,
        agent_request_delay_seconds=0.0,
        agent_max_turns=5,
    )


@pytest.fixture
def sample_test():
    return TestIdentity(
        name="user can log in",
        file_path="tests/login.test.ts",
        body="Open the login page, sign in as demo/demo and check the dashboard loads.",
        expectations=["The dashboard heading is visible"],
    )


@pytest.fixture
def mock_driver():
    """Browser driver mock satisfying the driver contract."""
    driver = AsyncMock()
    driver.execute.return_value = ToolResult(output="done")
    driver.navigate.return_value = ToolResult(output="Navigated to https://example.com")
    driver.describe_element_at.return_value = 'button#submit "Sign in"'
    return driver


@pytest.fixture
def mock_shell():
    shell = AsyncMock()
    shell.run.return_value = ToolResult(output="ok")
    return shell
