"""
Bridge between model tool calls and the browser, shell and test hooks.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from echotest.browser.shell import ShellRunner
from echotest.cache.action_cache import ActionCache
from echotest.core.interfaces import BrowserDriver
from echotest.core.types import (
    CacheAction,
    CacheStep,
    ImageBlock,
    ProviderToolCall,
    TestIdentity,
    TextBlock,
    ToolResult,
)
from echotest.error_handling.exceptions import ToolExecutionError, UnknownToolError
from echotest.monitoring.logger import get_logger
from echotest.tools.definitions import (
    BashToolCall,
    ComputerToolCall,
    NavigateToolCall,
    RunCallbackToolCall,
    SleepToolCall,
    ToolCall,
    parse_tool_call,
)

COMPONENT_DESCRIPTION_KEY = "componentDescription"


class ToolBridge:
    """
    Executes typed tool calls and shapes their results for the model.

    :meth:`for_test` derives a bridge bound to one test run so the
    run_callback tool reaches that test's hook and screenshot artifacts are
    filed under its fingerprint. The driver and shell are shared.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        shell: ShellRunner,
        cache: Optional[ActionCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.driver = driver
        self.shell = shell
        self.cache = cache
        self._sleep = sleep
        self._callback: Optional[Callable[[], Awaitable[Any]]] = None
        self._fingerprint: Optional[str] = None
        self.logger = get_logger("tools.bridge")

    def for_test(
        self,
        test: TestIdentity,
        fingerprint: Optional[str] = None,
        cache: Optional[ActionCache] = None,
    ) -> "ToolBridge":
        """New bridge over the same driver and shell, bound to ``test``."""
        bridge = ToolBridge(
            driver=self.driver,
            shell=self.shell,
            cache=cache if cache is not None else self.cache,
            sleep=self._sleep,
        )
        bridge._callback = test.callback
        bridge._fingerprint = fingerprint
        return bridge

    async def execute(self, call: ToolCall) -> ToolResult:
        """Run one typed tool call."""
        match call:
            case ComputerToolCall():
                return await self.driver.execute(call.to_action())
            case BashToolCall(command=command):
                return await self.shell.run(command)
            case SleepToolCall(duration=duration):
                await self._sleep(duration / 1000)
                return ToolResult(output=f"Waited for {duration}ms")
            case NavigateToolCall(url=url):
                return await self.driver.navigate(url)
            case RunCallbackToolCall():
                return await self._run_callback()
            case _:
                raise UnknownToolError(getattr(call, "name", type(call).__name__))

    async def dispatch(
        self, tool_call: ProviderToolCall, reasoning: str = ""
    ) -> Tuple[ToolResult, CacheStep]:
        """
        Parse, execute and record a raw provider tool call.

        Invalid arguments and tool failures come back as text results so the
        model can correct itself; unknown tools raise.
        """
        extras: Dict[str, Any] = {}
        try:
            call = parse_tool_call(tool_call)
            result = await self.execute(call)
            if isinstance(call, ComputerToolCall) and call.is_pointer_move:
                description = await self._describe(*call.coordinate)
                if description is not None:
                    extras[COMPONENT_DESCRIPTION_KEY] = description
        except ToolExecutionError as exc:
            self.logger.warning(
                "Tool execution failed",
                extra={"tool_name": exc.tool_name, "error": exc.message},
            )
            result = ToolResult(output=f"Error: {exc.message}", metadata={"error": True})

        if result.base64_image and self.cache is not None and self._fingerprint:
            self.cache.save_screenshot(self._fingerprint, result.base64_image)

        return result, self.build_step(tool_call, result, extras, reasoning)

    @staticmethod
    def to_content(result: ToolResult) -> Union[ImageBlock, TextBlock]:
        """Image when the result carries one, otherwise its text (possibly empty)."""
        if result.base64_image:
            return ImageBlock(data=result.base64_image)
        return TextBlock(text=result.output or "")

    @staticmethod
    def build_step(
        tool_call: ProviderToolCall,
        result: ToolResult,
        extras: Optional[Dict[str, Any]] = None,
        reasoning: str = "",
    ) -> CacheStep:
        return CacheStep(
            reasoning=reasoning,
            action=CacheAction(name=tool_call.name, input=dict(tool_call.input)),
            result=result.output,
            extras=extras or {},
        )

    async def _describe(self, x: int, y: int) -> Optional[str]:
        try:
            return await self.driver.describe_element_at(x, y)
        except Exception as exc:
            self.logger.warning(
                "Failed to describe element under pointer",
                extra={"x": x, "y": y, "error": str(exc)},
            )
            return None

    async def _run_callback(self) -> ToolResult:
        if self._callback is None:
            return ToolResult(output="No callback defined for this test")
        try:
            value = await self._callback()
        except Exception as exc:
            raise ToolExecutionError(
                f"Callback failed: {exc}", tool_name="run_callback", cause=exc
            ) from exc
        output = "Callback executed successfully"
        if value is not None:
            output = f"{output}: {json.dumps(value, default=str)}"
        return ToolResult(output=output)
