"""
Tests for the Playwright driver with a mocked page.
"""

import base64
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError

from echotest.browser.driver import PlaywrightDriver, normalize_key
from echotest.error_handling.exceptions import ToolExecutionError


@pytest.fixture
def page():
    page = AsyncMock()
    page.url = "https://example.com/dashboard"
    page.screenshot.return_value = b"\x89PNG"
    return page


@pytest.fixture
def driver(page):
    driver = PlaywrightDriver(headless=True)
    driver._page = page
    return driver


class TestNormalizeKey:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Return", "Enter"),
            ("ctrl+a", "Control+a"),
            ("shift+Tab", "Shift+Tab"),
            ("cmd+shift+p", "Meta+Shift+p"),
            ("page_down", "PageDown"),
            ("F5", "F5"),
            ("x", "x"),
        ],
    )
    def test_aliases(self, raw, expected):
        assert normalize_key(raw) == expected


class TestExecute:
    @pytest.mark.asyncio
    async def test_move_then_click_uses_cursor(self, driver, page):
        await driver.execute({"action": "mouse_move", "coordinate": [40, 60]})
        result = await driver.execute({"action": "left_click"})

        page.mouse.move.assert_awaited_once_with(40, 60)
        page.mouse.click.assert_awaited_once_with(40, 60, button="left")
        assert result.output == "left_click performed"

    @pytest.mark.asyncio
    async def test_right_click(self, driver, page):
        await driver.execute({"action": "right_click"})
        page.mouse.click.assert_awaited_once_with(0, 0, button="right")

    @pytest.mark.asyncio
    async def test_drag_updates_cursor(self, driver, page):
        await driver.execute({"action": "left_click_drag", "coordinate": [300, 200]})
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

        result = await driver.execute({"action": "cursor_position"})
        assert result.output == "X=300,Y=200"

    @pytest.mark.asyncio
    async def test_type_and_key(self, driver, page):
        await driver.execute({"action": "type", "text": "demo"})
        await driver.execute({"action": "key", "text": "Return"})

        page.keyboard.type.assert_awaited_once_with("demo")
        page.keyboard.press.assert_awaited_once_with("Enter")

    @pytest.mark.asyncio
    async def test_screenshot_returns_base64(self, driver, page):
        result = await driver.execute({"action": "screenshot"})

        assert result.output is None
        assert base64.b64decode(result.base64_image) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_playwright_error_becomes_tool_error(self, driver, page):
        page.keyboard.type.side_effect = PlaywrightError("Target closed")

        with pytest.raises(ToolExecutionError) as exc_info:
            await driver.execute({"action": "type", "text": "demo"})

        assert exc_info.value.tool_name == "computer"
        assert "Target closed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unsupported_action(self, driver):
        with pytest.raises(ToolExecutionError, match="Unsupported"):
            await driver.execute({"action": "triple_click"})


class TestNavigate:
    @pytest.mark.asyncio
    async def test_navigate_reports_final_url(self, driver, page):
        result = await driver.navigate("https://example.com")

        page.goto.assert_awaited_once_with("https://example.com", wait_until="load")
        assert result.output == "Navigated to https://example.com/dashboard"
        assert result.metadata == {"url": "https://example.com/dashboard"}

    @pytest.mark.asyncio
    async def test_navigation_failure(self, driver, page):
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(ToolExecutionError) as exc_info:
            await driver.navigate("https://nowhere.invalid")

        assert exc_info.value.tool_name == "navigate"


@pytest.mark.asyncio
async def test_describe_element_at(driver, page):
    page.evaluate.return_value = 'button#submit "Sign in"'

    assert await driver.describe_element_at(5, 6) == 'button#submit "Sign in"'
    assert page.evaluate.await_args.args[1] == [5, 6]
