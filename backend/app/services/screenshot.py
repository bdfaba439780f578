"""
Verification screenshot of a deployed instance, stored as a data URL
on the generation record and the marketplace listing.
"""
import base64
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from app.services.errors import ScreenshotFailed

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1280, "height": 800}
NAVIGATION_TIMEOUT_MS = 30000


async def capture_screenshot(url: str) -> str:
    """
    Load ``url`` in headless Chromium and return a PNG data URL.

    Raises:
        ScreenshotFailed: browser launch, navigation or capture failed
    """
    try:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                page = await browser.new_page(viewport=VIEWPORT)
                await page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
                png = await page.screenshot(type="png")
            finally:
                await browser.close()
    except PlaywrightError as e:
        raise ScreenshotFailed(f"Could not capture {url}", str(e)) from e

    logger.debug(f"Captured {len(png)} byte screenshot of {url}")
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
