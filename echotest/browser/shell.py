"""
Shell command runner backing the bash tool.
"""

import asyncio
from typing import Optional

from echotest.config.settings import get_settings
from echotest.core.types import ToolResult
from echotest.monitoring.logger import get_logger

MAX_OUTPUT_CHARS = 16_000


class ShellRunner:
    """Runs shell commands with a bounded timeout and combined output."""

    def __init__(self, timeout_seconds: Optional[float] = None, cwd: Optional[str] = None) -> None:
        settings = get_settings()
        self.timeout_seconds = timeout_seconds or settings.shell_timeout_seconds
        self.cwd = cwd
        self.logger = get_logger("browser.shell")

    async def run(self, command: str) -> ToolResult:
        """
        Run ``command`` through the system shell.

        Non-zero exit codes are reported in the output rather than raised so
        the model can react to them.
        """
        self.logger.debug("Running shell command", extra={"command": command})
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.cwd,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.logger.warning(
                "Shell command timed out",
                extra={"command": command, "timeout_seconds": self.timeout_seconds},
            )
            return ToolResult(
                output=f"Command timed out after {self.timeout_seconds} seconds",
                metadata={"timed_out": True},
            )

        output = stdout.decode("utf-8", errors="replace")
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + "\n... (output truncated)"
        if process.returncode:
            output = f"{output}\n(exit code {process.returncode})".lstrip("\n")

        return ToolResult(output=output, metadata={"exit_code": process.returncode})
