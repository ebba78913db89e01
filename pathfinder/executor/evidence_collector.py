"""Append-only evidence sink for console output, page errors and screenshots."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from playwright.async_api import Page

from pathfinder.models.result import ConsoleLogEntry, ErrorEntry, ScreenshotRef, iso_timestamp
from pathfinder.storage.base import Storage

logger = logging.getLogger(__name__)

LogCallback = Callable[[ConsoleLogEntry], None]


class EvidenceCollector:
    """Collects evidence for one page lifetime.

    Entries are only ever appended, in the order the browser emits them,
    interleaved with the engine's own progress lines.
    """

    def __init__(
        self,
        storage: Storage,
        run_id: str,
        scenario_name: str,
        viewport: str,
        on_log: Optional[LogCallback] = None,
    ):
        self.storage = storage
        self.run_id = run_id
        self.scenario_name = scenario_name
        self.viewport = viewport
        self.on_log = on_log
        self.console_logs: list[ConsoleLogEntry] = []
        self.errors: list[ErrorEntry] = []
        self.screenshots: list[ScreenshotRef] = []

    def setup_listeners(self, page: Page) -> None:
        """Attach console and page-error listeners to a page."""
        page.on("console", lambda msg: self.log(msg.type, msg.text))
        page.on("pageerror", self._on_page_error)

    def _on_page_error(self, exc) -> None:
        message = getattr(exc, "message", None) or str(exc)
        self.record_error(message, getattr(exc, "stack", None))

    def log(self, type_: str, message: str) -> ConsoleLogEntry:
        entry = ConsoleLogEntry(type=type_, message=message, timestamp=iso_timestamp())
        self.console_logs.append(entry)
        if self.on_log:
            try:
                self.on_log(entry)
            except Exception as e:
                logger.debug("Log callback failed: %s", e)
        return entry

    def record_error(self, message: str, stack: str | None = None) -> None:
        self.errors.append(ErrorEntry(message=message, stack=stack))

    async def capture(self, page: Page, step_name: str) -> ScreenshotRef:
        """Take a full-page screenshot and upload it. Raises on capture failure."""
        data = await page.screenshot(full_page=True, type="png")
        url = self.storage.upload_screenshot(
            data,
            run_id=self.run_id,
            scenario_name=self.scenario_name,
            step_name=step_name,
            viewport=self.viewport,
        )
        ref = ScreenshotRef(url=url, step_name=step_name, timestamp=int(time.time() * 1000))
        self.screenshots.append(ref)
        return ref

    async def try_capture(self, page: Page, step_name: str) -> ScreenshotRef | None:
        """Best-effort capture for diagnostics; failures are logged, not raised."""
        try:
            return await self.capture(page, step_name)
        except Exception as e:
            logger.warning("Screenshot '%s' failed: %s", step_name, e)
            return None
