"""
Per-test orchestration: cache replay or a full agent conversation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from echotest.agents.conversation import ConversationLoop
from echotest.browser.shell import ShellRunner
from echotest.cache.action_cache import ActionCache
from echotest.cache.fingerprint import compute_fingerprint
from echotest.cache.lock import held_locks
from echotest.config.agent_prompts import build_test_prompt
from echotest.config.settings import Settings, get_settings
from echotest.core.interfaces import BrowserDriver, LanguageModelProvider
from echotest.core.types import (
    CacheEntry,
    TestIdentity,
    TestResult,
    TokenUsage,
    Verdict,
    VerdictStatus,
)
from echotest.error_handling.exceptions import TestLogicError
from echotest.models.openai_provider import OpenAIProvider
from echotest.monitoring.logger import get_logger, log_test_event
from echotest.tools.bridge import ToolBridge

logger = get_logger(__name__)

CACHE_REPLAY_REASON = "Replayed from cache"


@dataclass
class RunContext:
    """Collaborators shared by every test an orchestrator executes."""

    settings: Settings
    cache: ActionCache
    bridge: ToolBridge
    provider: LanguageModelProvider

    @classmethod
    def create(
        cls,
        driver: BrowserDriver,
        provider: Optional[LanguageModelProvider] = None,
        settings: Optional[Settings] = None,
        shell: Optional[ShellRunner] = None,
        cache: Optional[ActionCache] = None,
    ) -> "RunContext":
        settings = settings or get_settings()
        if cache is None:
            cache = ActionCache.from_settings(settings)
            # The process-wide registry backs this cache; release its locks on exit.
            held_locks.install_release_handlers()
        provider = provider or OpenAIProvider()
        bridge = ToolBridge(driver=driver, shell=shell or ShellRunner(), cache=cache)
        return cls(settings=settings, cache=cache, bridge=bridge, provider=provider)


class TestOrchestrator:
    """
    Executes tests against a shared run context; runs may overlap.

    Test-logic failures become a failed verdict; provider, configuration and
    programming errors propagate to the caller.
    """

    __test__ = False

    def __init__(self, context: RunContext) -> None:
        self.context = context

    async def execute(self, test: TestIdentity, prompt: Optional[str] = None) -> TestResult:
        """
        Execute a single test.

        Args:
            test: Test definition
            prompt: Prompt override (built from the test when omitted)

        Returns:
            Result carrying the verdict, token usage and recorded steps
        """
        settings = self.context.settings
        fingerprint = compute_fingerprint(test)
        run_id = uuid4().hex
        started_at = datetime.now(timezone.utc)
        log_test_event("started", test.name, fingerprint, {"run_id": run_id})

        if not settings.no_cache:
            entry = await self.context.cache.get(fingerprint)
            if entry is not None:
                result = self._replay(test, fingerprint, entry, started_at)
                log_test_event(
                    "cache_hit",
                    test.name,
                    fingerprint,
                    {"run_id": result.run_id, "step_count": len(result.steps)},
                )
                return result

        # Per-run buffer and binding; concurrent runs share only the store.
        cache = self.context.cache.for_run()
        bridge = self.context.bridge.for_test(test, fingerprint, cache=cache)
        loop = ConversationLoop(
            provider=self.context.provider,
            bridge=bridge,
            cache=cache,
            settings=settings,
        )
        prompt = prompt or build_test_prompt(
            test.name,
            test.body,
            expectations=test.expectations,
            has_callback=test.callback is not None,
        )

        try:
            outcome = await loop.run(prompt, test, fingerprint=fingerprint, run_id=run_id)
        except TestLogicError as exc:
            logger.warning(
                "Test ended without a usable verdict",
                extra={"test_name": test.name, "error_code": exc.error_code, "error": exc.message},
            )
            result = TestResult(
                test=test,
                verdict=Verdict(status=VerdictStatus.FAILED, reason=exc.message),
                token_usage=loop.token_usage,
                steps=loop.steps,
                run_id=run_id,
                fingerprint=fingerprint,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )
            cache.clear_steps()
        else:
            result = TestResult(
                test=test,
                verdict=outcome.verdict,
                token_usage=outcome.token_usage,
                steps=outcome.steps,
                run_id=run_id,
                fingerprint=fingerprint,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        log_test_event(
            result.verdict.status.value,
            test.name,
            fingerprint,
            {
                "run_id": run_id,
                "reason": result.verdict.reason,
                "input_tokens": result.token_usage.input_tokens,
                "output_tokens": result.token_usage.output_tokens,
                "duration_seconds": result.duration_seconds,
            },
        )
        return result

    async def invalidate(self, test: TestIdentity) -> bool:
        """Drop the cached entry for ``test`` so its next run asks the model again."""
        fingerprint = compute_fingerprint(test)
        removed = await self.context.cache.delete(fingerprint)
        if removed:
            log_test_event("invalidated", test.name, fingerprint)
        return removed

    @staticmethod
    def _replay(
        test: TestIdentity,
        fingerprint: str,
        entry: CacheEntry,
        started_at: datetime,
    ) -> TestResult:
        metadata = entry.metadata
        if metadata is not None:
            verdict = Verdict(status=metadata.status, reason=metadata.reason or CACHE_REPLAY_REASON)
            run_id = metadata.run_id
        else:
            # Only passing runs are ever persisted.
            verdict = Verdict(status=VerdictStatus.PASSED, reason=CACHE_REPLAY_REASON)
            run_id = uuid4().hex

        return TestResult(
            test=test,
            verdict=verdict,
            token_usage=TokenUsage(),
            steps=entry.steps,
            from_cache=True,
            run_id=run_id,
            fingerprint=fingerprint,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
