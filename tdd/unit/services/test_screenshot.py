"""
Unit tests for screenshot.py.

Playwright is replaced by a mock context manager; no browser is launched.
"""
import base64
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.services.errors import ScreenshotFailed
from app.services.screenshot import capture_screenshot


def fake_playwright(page: AsyncMock):
    browser = AsyncMock()
    browser.new_page.return_value = page

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=playwright)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context), browser


class TestCaptureScreenshot:

    async def test_returns_png_data_url(self):
        page = AsyncMock()
        page.screenshot.return_value = b"\x89PNG fake"
        factory, browser = fake_playwright(page)

        with patch("app.services.screenshot.async_playwright", factory):
            data_url = await capture_screenshot("https://launchpad-draft-1.fly.dev")

        assert data_url == "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
        page.goto.assert_awaited_once_with(
            "https://launchpad-draft-1.fly.dev", wait_until="networkidle", timeout=30000
        )
        browser.new_page.assert_awaited_once_with(viewport={"width": 1280, "height": 800})
        browser.close.assert_awaited_once()

    async def test_navigation_error_raises_screenshot_failed(self):
        page = AsyncMock()
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        factory, browser = fake_playwright(page)

        with patch("app.services.screenshot.async_playwright", factory):
            with pytest.raises(ScreenshotFailed) as exc_info:
                await capture_screenshot("https://nowhere.fly.dev")

        assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)
        browser.close.assert_awaited_once()
