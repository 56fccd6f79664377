"""
Playwright browser driver implementation.
"""

import asyncio
import base64
import os
from typing import Any, Dict, Optional, Tuple

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from echotest.config.settings import get_settings
from echotest.core.interfaces import BrowserDriver
from echotest.core.types import ToolResult
from echotest.error_handling.exceptions import ToolExecutionError
from echotest.monitoring.logger import get_logger, log_performance_metric

DESCRIBE_ELEMENT_SCRIPT = """
([x, y]) => {
    const el = document.elementFromPoint(x, y);
    if (!el) return "";
    const parts = [el.tagName.toLowerCase()];
    if (el.id) parts.push(`#${el.id}`);
    const role = el.getAttribute("role");
    if (role) parts.push(`[role=${role}]`);
    const label = el.getAttribute("aria-label") || el.getAttribute("name") || el.getAttribute("placeholder");
    if (label) parts.push(`"${label}"`);
    const text = (el.innerText || el.value || "").trim().replace(/\\s+/g, " ").slice(0, 80);
    if (text) parts.push(text);
    return parts.join(" ");
}
"""


class PlaywrightDriver(BrowserDriver):
    """Playwright-based browser automation driver."""

    def __init__(
        self,
        headless: Optional[bool] = None,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        timeout: Optional[int] = None,
    ) -> None:
        """
        Initialize the Playwright driver.

        Args:
            headless: Run browser in headless mode
            viewport_width: Browser viewport width
            viewport_height: Browser viewport height
            timeout: Default timeout in milliseconds
        """
        settings = get_settings()
        self.headless = headless if headless is not None else settings.browser_headless
        self.viewport_width = viewport_width or settings.browser_viewport_width
        self.viewport_height = viewport_height or settings.browser_viewport_height
        self.timeout = timeout or settings.browser_timeout

        self.logger = get_logger("browser.driver")
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._cursor: Tuple[int, int] = (0, 0)

    async def start(self) -> None:
        """Start the browser and create a page."""
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        if self._browser is None:
            self.logger.info(
                "Starting browser",
                extra={
                    "headless": self.headless,
                    "viewport": f"{self.viewport_width}x{self.viewport_height}",
                },
            )
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--disable-dev-shm-usage", "--disable-extensions"],
                env=os.environ,
            )

        if self._context is None:
            self._context = await self._browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height},
            )
            self._context.set_default_timeout(self.timeout)

        if self._page is None:
            self._page = await self._context.new_page()

    async def stop(self) -> None:
        """Stop the browser and cleanup resources."""
        if self._page:
            await self._page.close()
            self._page = None

        if self._context:
            await self._context.close()
            self._context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self.logger.info("Browser stopped")

    async def execute(self, action: Dict[str, Any]) -> ToolResult:
        """Perform one computer-tool action."""
        page = await self._ensure_page()
        name = action.get("action")
        coordinate = action.get("coordinate")
        text = action.get("text")

        try:
            match name:
                case "mouse_move":
                    x, y = coordinate
                    await page.mouse.move(x, y)
                    self._cursor = (x, y)
                case "left_click" | "right_click" | "middle_click":
                    button = name.split("_", 1)[0]
                    await page.mouse.click(*self._cursor, button=button)
                case "double_click":
                    await page.mouse.dblclick(*self._cursor)
                case "left_click_drag":
                    x, y = coordinate
                    await page.mouse.down()
                    await page.mouse.move(x, y, steps=10)
                    await page.mouse.up()
                    self._cursor = (x, y)
                case "type":
                    await page.keyboard.type(text)
                case "key":
                    await page.keyboard.press(normalize_key(text))
                case "cursor_position":
                    return ToolResult(output=f"X={self._cursor[0]},Y={self._cursor[1]}")
                case "screenshot":
                    pass
                case _:
                    raise ToolExecutionError(f"Unsupported computer action: {name}", tool_name="computer")
        except PlaywrightError as exc:
            raise ToolExecutionError(
                f"Browser action '{name}' failed: {exc}", tool_name="computer", cause=exc
            ) from exc

        self.logger.debug("Executed browser action", extra={"action": name})
        if name == "screenshot":
            return ToolResult(base64_image=await self._screenshot_base64())
        return ToolResult(output=f"{name} performed", metadata={"cursor": list(self._cursor)})

    async def describe_element_at(self, x: int, y: int) -> str:
        """Short description of the DOM element under the given point."""
        page = await self._ensure_page()
        return await page.evaluate(DESCRIBE_ELEMENT_SCRIPT, [x, y])

    async def navigate(self, url: str) -> ToolResult:
        """Navigate to a URL."""
        page = await self._ensure_page()
        self.logger.info("Navigating to URL", extra={"url": url})
        start_time = asyncio.get_running_loop().time()

        try:
            await page.goto(url, wait_until="load")
        except PlaywrightError as exc:
            raise ToolExecutionError(
                f"Navigation to {url} failed: {exc}", tool_name="navigate", cause=exc
            ) from exc

        elapsed_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        log_performance_metric("page_navigation", elapsed_ms, context={"url": url})
        return ToolResult(output=f"Navigated to {page.url}", metadata={"url": page.url})

    async def _ensure_page(self) -> Page:
        if not self._page:
            await self.start()
        return self._page

    async def _screenshot_base64(self) -> str:
        screenshot_bytes = await self._page.screenshot(type="png", full_page=False)
        return base64.b64encode(screenshot_bytes).decode("utf-8")

    async def __aenter__(self) -> "PlaywrightDriver":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()


_KEY_ALIASES = {
    "return": "Enter",
    "enter": "Enter",
    "esc": "Escape",
    "escape": "Escape",
    "tab": "Tab",
    "backspace": "Backspace",
    "delete": "Delete",
    "space": "Space",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "page_up": "PageUp",
    "page_down": "PageDown",
    "home": "Home",
    "end": "End",
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "shift": "Shift",
    "cmd": "Meta",
    "super": "Meta",
    "meta": "Meta",
}


def normalize_key(key: str) -> str:
    """Map xdotool-style key names (``ctrl+a``, ``Return``) to Playwright's."""
    tokens = [token.strip() for token in key.split("+") if token.strip()]
    normalized = []
    for token in tokens:
        alias = _KEY_ALIASES.get(token.lower())
        if alias:
            normalized.append(alias)
        elif len(token) == 1:
            normalized.append(token)
        else:
            normalized.append(token[0].upper() + token[1:])
    return "+".join(normalized)
