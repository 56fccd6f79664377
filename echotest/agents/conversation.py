"""
Multi-turn tool-calling conversation that ends in a verdict.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from echotest.agents.verdict import parse_verdict
from echotest.cache.action_cache import ActionCache
from echotest.cache.fingerprint import compute_fingerprint
from echotest.config.agent_prompts import TEST_AGENT_SYSTEM_PROMPT
from echotest.config.settings import Settings
from echotest.core.interfaces import LanguageModelProvider
from echotest.core.types import (
    CacheStep,
    ConversationMessage,
    ConversationResult,
    FinishReason,
    LoopState,
    ProviderResponse,
    RunMetadata,
    TestIdentity,
    TokenUsage,
    ToolResultBlock,
    Verdict,
)
from echotest.error_handling.exceptions import (
    GenerationError,
    MaxRetriesError,
    ProviderError,
    RateLimitError,
)
from echotest.tools.bridge import ToolBridge
from echotest.tools.definitions import build_tool_definitions

logger = logging.getLogger(__name__)


class ConversationLoop:
    """
    Drives the model through tool calls until it emits a verdict.

    State moves IDLE -> AWAITING_MODEL -> DISPATCHING_TOOLS (and back) ->
    DONE or FAILED. A transient provider failure restarts the conversation
    from scratch with a fresh history, usage total and step buffer; a rate
    limit waits and repeats the same call.
    """

    def __init__(
        self,
        provider: LanguageModelProvider,
        bridge: ToolBridge,
        cache: ActionCache,
        settings: Settings,
        system_prompt: str = TEST_AGENT_SYSTEM_PROMPT,
        tools: Optional[List[Dict[str, Any]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.bridge = bridge
        self.cache = cache
        self.settings = settings
        self.system_prompt = system_prompt
        self.tools = tools if tools is not None else [
            definition.to_schema()
            for definition in build_tool_definitions(
                settings.browser_viewport_width, settings.browser_viewport_height
            )
        ]
        self._sleep = sleep

        self.state = LoopState.IDLE
        self.history: List[ConversationMessage] = []
        self.token_usage = TokenUsage()
        self.turns = 0

    async def run(
        self,
        prompt: str,
        test: TestIdentity,
        fingerprint: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> ConversationResult:
        """
        Run the conversation for one test.

        Args:
            prompt: Initial user prompt
            test: Test being executed
            fingerprint: Cache key for the test (computed when omitted)
            run_id: Identifier recorded in the cache metadata

        Returns:
            Verdict with the token usage of the successful attempt

        Raises:
            ProviderError: Non-retryable provider failure
            MaxRetriesError: Transient failures exhausted the retry budget
            GenerationError: Terminal non-tool finish reason or turn limit
            InvalidResponseError: Final message carried no usable verdict
        """
        fingerprint = fingerprint or compute_fingerprint(test)
        run_id = run_id or uuid4().hex
        max_retries = self.settings.agent_max_retries
        attempt = 0

        while True:
            self._reset(prompt)
            try:
                verdict = await self._converse()
            except ProviderError as exc:
                if not exc.retryable:
                    self.state = LoopState.FAILED
                    logger.error(
                        "Non-retryable provider error",
                        extra={"status_code": exc.status_code, "error": exc.message},
                    )
                    raise
                attempt += 1
                if attempt > max_retries:
                    self.state = LoopState.FAILED
                    raise MaxRetriesError(max_retries, last_error=exc) from exc
                delay = self.settings.agent_retry_delay_seconds * attempt
                logger.warning(
                    "Provider call failed, restarting conversation",
                    extra={
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "delay_seconds": delay,
                        "error": exc.message,
                    },
                )
                await self._sleep(delay)
                continue
            except Exception:
                self.state = LoopState.FAILED
                raise

            self.state = LoopState.DONE
            steps = self.cache.steps
            if verdict.passed:
                metadata = RunMetadata(
                    status=verdict.status,
                    reason=verdict.reason,
                    token_usage=self.token_usage,
                    run_id=run_id,
                )
                await self.cache.commit(test, fingerprint, metadata)
            else:
                self.cache.clear_steps()

            return ConversationResult(
                verdict=verdict,
                token_usage=self.token_usage,
                steps=steps,
                turns=self.turns,
            )

    def _reset(self, prompt: str) -> None:
        self.history = [ConversationMessage.user_text(prompt)]
        self.token_usage = TokenUsage()
        self.turns = 0
        self.cache.clear_steps()
        self.state = LoopState.IDLE

    async def _converse(self) -> Verdict:
        while True:
            response = await self._complete()
            self.token_usage = self.token_usage + response.usage
            self.history.extend(response.response_messages)

            match response.finish_reason:
                case FinishReason.TOOL_CALLS:
                    if not response.tool_calls:
                        raise GenerationError(
                            "unknown", "Provider reported tool calls but returned none."
                        )
                    self.turns += 1
                    if self.turns > self.settings.agent_max_turns:
                        raise GenerationError(
                            "max-turns-exceeded",
                            f"Conversation exceeded {self.settings.agent_max_turns} tool turns.",
                        )
                    await self._dispatch_tools(response)
                case FinishReason.LENGTH:
                    raise GenerationError(
                        "token-limit-exceeded",
                        "Generation stopped because the maximum token length was reached.",
                    )
                case FinishReason.CONTENT_FILTER:
                    raise GenerationError(
                        "unsafe-content-detected",
                        "Content generation was blocked due to safety filters.",
                    )
                case FinishReason.ERROR | FinishReason.OTHER:
                    raise GenerationError(
                        "unknown",
                        f"Generation ended unexpectedly ({response.finish_reason.value}).",
                    )
                case FinishReason.STOP:
                    return parse_verdict(response.text)

    async def _complete(self) -> ProviderResponse:
        self.state = LoopState.AWAITING_MODEL
        while True:
            if self.settings.agent_request_delay_seconds > 0:
                await self._sleep(self.settings.agent_request_delay_seconds)
            try:
                return await self.provider.complete(
                    self.system_prompt,
                    self.history,
                    self.tools,
                    self.settings.openai_max_tokens,
                )
            except RateLimitError as exc:
                cooldown = self.settings.agent_rate_limit_cooldown_seconds
                logger.warning(
                    "Rate limited by provider, cooling down",
                    extra={"cooldown_seconds": cooldown, "error": exc.message},
                )
                await self._sleep(cooldown)

    async def _dispatch_tools(self, response: ProviderResponse) -> None:
        self.state = LoopState.DISPATCHING_TOOLS
        results: List[ToolResultBlock] = []

        for tool_call in response.tool_calls:
            if self.settings.debug_mode:
                logger.info(
                    f"Tool call: '{tool_call.name}'",
                    extra={"tool_name": tool_call.name, "tool_input": tool_call.input},
                )

            result, step = await self.bridge.dispatch(tool_call, reasoning=response.text)
            self.cache.record_step(step)
            results.append(
                ToolResultBlock(
                    tool_use_id=tool_call.id,
                    content=[self.bridge.to_content(result)],
                )
            )

            if self.settings.debug_mode:
                logger.info(
                    f"Tool response: '{tool_call.name}'",
                    extra={
                        "tool_name": tool_call.name,
                        "output": result.output,
                        "base64_image": result.base64_image,
                    },
                )

        self.history.append(ConversationMessage(role="user", content=results))

    @property
    def steps(self) -> List[CacheStep]:
        return self.cache.steps
