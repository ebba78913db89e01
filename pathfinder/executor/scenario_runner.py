"""Drives one scenario through one viewport in an isolated context."""

from __future__ import annotations

import logging
import time
import traceback

from playwright.async_api import Browser, Page

from pathfinder.errors import StepError
from pathfinder.models.config import FrameworkConfig
from pathfinder.models.result import ScenarioResult, StepResult, iso_timestamp
from pathfinder.models.scenario import Scenario, ViewportConfig
from pathfinder.storage.base import Storage
from pathfinder.utils.browser import create_context

from .evidence_collector import EvidenceCollector, LogCallback
from .step_interpreter import execute_step, navigate

logger = logging.getLogger(__name__)


class ScenarioRunner:
    """Runs a scenario's steps against a target URL for a single viewport.

    Each call opens its own browser context and closes it on every exit
    path. A failing step is recorded and the remaining steps still run.
    """

    def __init__(self, browser: Browser, storage: Storage, config: FrameworkConfig):
        self.browser = browser
        self.storage = storage
        self.config = config

    async def run(
        self,
        scenario: Scenario,
        viewport: ViewportConfig,
        target_url: str,
        run_id: str,
        on_log: LogCallback | None = None,
        screenshot_on_every_step: bool | None = None,
    ) -> ScenarioResult:
        every_step = (self.config.screenshot_on_every_step
                      if screenshot_on_every_step is None else screenshot_on_every_step)
        start = time.time()
        collector = EvidenceCollector(self.storage, run_id, scenario.name, viewport.name, on_log=on_log)
        step_results: list[StepResult] = []

        logger.info("Running scenario '%s' on %s (%s)", scenario.name, viewport.name, viewport.size)
        context = None
        try:
            try:
                context = await create_context(self.browser, viewport, self.config.browser.user_agent)
                page = await context.new_page()
            except Exception as e:
                logger.error("Could not open browser context for '%s': %s", scenario.name, e)
                collector.record_error(f"Browser context setup failed: {e}", traceback.format_exc())
                return self._build_result(scenario, viewport, run_id, start, collector, step_results)

            collector.setup_listeners(page)
            try:
                await self._drive(page, scenario, target_url, collector, step_results, every_step)
            except Exception as e:
                logger.error("Scenario '%s' crashed: %s", scenario.name, e)
                collector.log("error", f"[Playwright] Scenario execution failed: {e}")
                collector.record_error(str(e) or "Scenario execution failed", traceback.format_exc())

            try:
                await collector.capture(page, "final-state")
            except Exception as e:
                logger.warning("Final screenshot failed for '%s': %s", scenario.name, e)
                collector.record_error(f"Final screenshot failed: {e}")

            return self._build_result(scenario, viewport, run_id, start, collector, step_results)
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug("Context close failed: %s", e)

    async def _drive(
        self,
        page: Page,
        scenario: Scenario,
        target_url: str,
        collector: EvidenceCollector,
        step_results: list[StepResult],
        every_step: bool,
    ) -> None:
        timeouts = self.config.timeouts
        collector.log("info", f"[Playwright] Navigating to {target_url}")
        await navigate(page, target_url, timeouts)
        await collector.capture(page, "initial-load")

        total = len(scenario.steps)
        for i, step in enumerate(scenario.steps):
            n = i + 1
            step_start = time.time()
            collector.log("info", f"[Playwright] Executing step {n}/{total}: {step.kind}")
            logger.debug("  Step %d/%d: %s %s", n, total, step.kind,
                         step.description or step.selector or step.url or "")
            try:
                executed = await execute_step(page, step, timeouts)
            except StepError as e:
                step_results.append(StepResult(
                    index=i,
                    kind=step.kind,
                    status="fail",
                    started_at=iso_timestamp(step_start),
                    duration_ms=int((time.time() - step_start) * 1000),
                    message=e.message,
                    error=traceback.format_exc(),
                ))
                collector.log("error", f"[Playwright] Step {n} failed: {e.message}")
                collector.record_error(f"Step {n} ({step.kind}) failed: {e.message}", traceback.format_exc())
                logger.warning("Step %d (%s) of '%s' failed: %s", n, step.kind, scenario.name, e.message)
                await collector.try_capture(page, f"error-step-{n}")
                continue

            step_results.append(StepResult(
                index=i,
                kind=step.kind,
                status="pass",
                started_at=iso_timestamp(step_start),
                duration_ms=int((time.time() - step_start) * 1000),
                message="Step completed successfully" if executed
                else f"Unknown step type '{step.kind}', skipped",
            ))
            if every_step and executed:
                await collector.try_capture(page, f"step-{n}-{step.kind}")

    @staticmethod
    def _build_result(
        scenario: Scenario,
        viewport: ViewportConfig,
        run_id: str,
        start: float,
        collector: EvidenceCollector,
        step_results: list[StepResult],
    ) -> ScenarioResult:
        end = time.time()
        result = ScenarioResult(
            run_id=run_id,
            scenario_id=scenario.id,
            scenario_name=scenario.name,
            viewport=viewport.name,
            viewport_size=viewport.size,
            started_at=iso_timestamp(start),
            completed_at=iso_timestamp(end),
            duration_ms=int((end - start) * 1000),
            step_results=list(step_results),
            screenshots=list(collector.screenshots),
            console_logs=list(collector.console_logs),
            errors=list(collector.errors),
        )
        result.finalize_status()
        logger.info("[%s] %s (%s): %.1fs", result.status.upper(), scenario.name,
                    viewport.name, result.duration_ms / 1000)
        return result
