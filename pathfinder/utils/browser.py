"""Launch Chromium and open viewport-sized contexts."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from pathfinder.models.config import DEFAULT_USER_AGENT
from pathfinder.models.scenario import ViewportConfig


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch the Chromium instance shared by every pair of one suite run."""
    return await playwright.chromium.launch(
        headless=headless,
        args=[
            "--disable-dev-shm-usage",
        ],
    )


async def create_context(
    browser: Browser,
    viewport: ViewportConfig,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated context sized to the viewport.

    Mobile profiles also get touch and mobile-meta-viewport emulation.
    """
    context_kwargs: dict = {
        "viewport": {"width": viewport.width, "height": viewport.height},
        "user_agent": user_agent or DEFAULT_USER_AGENT,
        "locale": "en-US",
    }
    if viewport.is_mobile:
        context_kwargs["is_mobile"] = True
        context_kwargs["has_touch"] = True
    return await browser.new_context(**context_kwargs)
