"""Translates normalized Steps to Playwright calls."""

from __future__ import annotations

import logging

from playwright.async_api import Locator, Page

from pathfinder.errors import StepError
from pathfinder.models.config import TimeoutConfig
from pathfinder.models.scenario import Step

logger = logging.getLogger(__name__)

_SELECTOR_KINDS = ("click", "fill", "select", "hover", "verify")


def is_known_kind(kind: str) -> bool:
    return kind in _SELECTOR_KINDS or kind in ("navigate", "wait", "screenshot")


async def navigate(page: Page, url: str, timeouts: TimeoutConfig) -> None:
    """Load a URL and wait for network idle, bounded by the navigation timeout."""
    logger.debug("Navigating to %s...", url)
    await page.goto(url, wait_until="networkidle", timeout=timeouts.navigation)


async def _visible(page: Page, selector: str, timeouts: TimeoutConfig) -> Locator:
    locator = page.locator(selector)
    await locator.wait_for(state="visible", timeout=timeouts.visibility)
    return locator


async def _click(page: Page, selector: str, timeouts: TimeoutConfig) -> None:
    locator = await _visible(page, selector, timeouts)
    await locator.scroll_into_view_if_needed()
    try:
        await locator.click(timeout=timeouts.click)
    except Exception as e:
        if "intercept" not in str(e).lower():
            raise
        # Another element (overlay, sticky header) sits on top of the target
        logger.info("Click on %s intercepted, retrying with force", selector)
        await locator.click(timeout=timeouts.click, force=True)


async def _dispatch(page: Page, step: Step, timeouts: TimeoutConfig) -> None:
    kind = step.kind
    if kind == "navigate":
        if not step.url:
            raise StepError(step.kind, "navigate step requires a url")
        await navigate(page, step.url, timeouts)
    elif kind == "click":
        logger.debug("Clicking: %s", step.selector)
        await _click(page, step.selector, timeouts)
    elif kind == "fill":
        locator = await _visible(page, step.selector, timeouts)
        await locator.scroll_into_view_if_needed()
        logger.debug("Filling %s with '%s'", step.selector,
                     "***" if "password" in step.selector.lower() else step.value)
        await locator.fill(step.value or "")
    elif kind == "select":
        locator = await _visible(page, step.selector, timeouts)
        await locator.scroll_into_view_if_needed()
        logger.debug("Selecting '%s' in %s", step.value, step.selector)
        await locator.select_option(step.value or "")
    elif kind == "hover":
        locator = await _visible(page, step.selector, timeouts)
        await locator.scroll_into_view_if_needed()
        logger.debug("Hovering over: %s", step.selector)
        await locator.hover()
    elif kind == "verify":
        locator = await _visible(page, step.selector, timeouts)
        if step.expected_text:
            text = await locator.text_content() or ""
            if step.expected_text not in text:
                raise StepError(
                    step.kind,
                    f"Expected text '{step.expected_text}' not found in '{text.strip()[:200]}'",
                )
    elif kind == "wait":
        if step.selector:
            timeout = step.timeout or timeouts.wait_selector
            logger.debug("Waiting up to %dms for %s", timeout, step.selector)
            await page.locator(step.selector).wait_for(state="visible", timeout=timeout)
        else:
            delay = step.timeout or timeouts.wait_delay
            logger.debug("Waiting %dms", delay)
            await page.wait_for_timeout(delay)

    # "screenshot" is captured by the scenario runner around step boundaries


async def execute_step(page: Page, step: Step, timeouts: TimeoutConfig | None = None) -> bool:
    """Execute a single step on the Playwright page.

    Returns False when the step kind is unknown and was skipped, True
    otherwise. Any failure is raised as StepError carrying the step kind.
    """
    timeouts = timeouts or TimeoutConfig()
    logger.debug("Running step: %s | selector=%s | url=%s | value=%s | %s",
                 step.kind, step.selector, step.url, step.value, step.description)

    if not is_known_kind(step.kind):
        logger.warning("Unknown step type: %s, skipping", step.kind)
        return False

    if step.kind in _SELECTOR_KINDS and not step.selector:
        raise StepError(step.kind, f"{step.kind} step requires a selector")

    try:
        await _dispatch(page, step, timeouts)
    except StepError:
        raise
    except Exception as e:
        raise StepError(step.kind, str(e)) from e
    return True
