"""Suite executor: runs the viewport x scenario matrix and streams progress."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

from playwright.async_api import async_playwright

from pathfinder.errors import PersistenceError, ScenarioError
from pathfinder.models.config import FrameworkConfig
from pathfinder.models.result import (
    ConsoleLogEntry,
    ErrorEntry,
    RunSummary,
    ScenarioResult,
    TestRun,
    iso_timestamp,
)
from pathfinder.models.scenario import Scenario, Step, TestSuite, ViewportConfig
from pathfinder.storage.base import Storage
from pathfinder.utils.browser import launch_browser

from .scenario_runner import ScenarioRunner

logger = logging.getLogger(__name__)


def _retrieve_failure(task: asyncio.Task) -> None:
    # Streaming consumers may never await the result; the error was already emitted
    if not task.cancelled():
        task.exception()


@dataclass
class ProgressEvent:
    """One named event on the progress stream."""
    event: str
    data: dict[str, Any]

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"


@dataclass
class SuiteExecutionResult:
    run: TestRun
    results: list[ScenarioResult]
    summary: RunSummary


@dataclass
class _MatrixState:
    run: TestRun
    suite: TestSuite
    pairs: list[tuple[ViewportConfig, Scenario]]
    every_step: bool
    emit: Callable[[ProgressEvent], None]
    started: float
    results: list[ScenarioResult] = field(default_factory=list)
    next_index: int = 0


class SuiteExecution:
    """Handle on a suite run executing in a background task.

    ``events()`` yields progress events until the run finishes. The run
    keeps going, and keeps persisting, if the consumer stops iterating.
    """

    def __init__(self, queue: asyncio.Queue, task: asyncio.Task):
        self._queue = queue
        self._task = task

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def result(self) -> SuiteExecutionResult:
        return await self._task


class ExecutionOrchestrator:
    """Executes suites one (viewport, scenario) pair at a time."""

    def __init__(
        self,
        storage: Storage,
        config: FrameworkConfig,
        enricher: Optional[Any] = None,
    ):
        self.storage = storage
        self.config = config
        self.enricher = enricher
        self._background: set[asyncio.Task] = set()
        self._enrichment: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(
        self,
        suite: TestSuite,
        viewports: list[ViewportConfig],
        screenshot_on_every_step: bool | None = None,
    ) -> SuiteExecution:
        """Start executing a suite and return a streaming handle."""
        every_step = (self.config.screenshot_on_every_step
                      if screenshot_on_every_step is None else screenshot_on_every_step)
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._execute(suite, viewports, every_step, queue))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_retrieve_failure)
        return SuiteExecution(queue, task)

    async def execute_suite(
        self,
        suite: TestSuite,
        viewports: list[ViewportConfig],
        screenshot_on_every_step: bool | None = None,
    ) -> SuiteExecutionResult:
        """Batch mode: drain the same event sequence and return everything."""
        execution = self.start(suite, viewports, screenshot_on_every_step)
        async for _ in execution.events():
            pass
        return await execution.result()

    async def execute_adhoc(
        self,
        target_url: str,
        steps: list[Step | dict],
        viewport: ViewportConfig,
        name: str = "Ad-hoc scenario",
    ) -> SuiteExecutionResult:
        """Run a single unsaved scenario through the regular suite path."""
        scenario = Scenario(id=f"adhoc_{uuid.uuid4().hex[:8]}", name=name, steps=steps)
        suite = TestSuite(id="adhoc", name=name, target_url=target_url, scenarios=[scenario])
        return await self.execute_suite(suite, [viewport])

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        suite: TestSuite,
        viewports: list[ViewportConfig],
        every_step: bool,
        queue: asyncio.Queue,
    ) -> SuiteExecutionResult:
        try:
            run = self._create_run(suite, viewports, every_step)
            state = _MatrixState(
                run=run,
                suite=suite,
                pairs=[(v, s) for v in viewports for s in suite.scenarios],
                every_step=every_step,
                emit=queue.put_nowait,
                started=time.time(),
            )
            logger.info("Starting run %s: suite '%s', %d viewports x %d scenarios",
                        run.id, suite.name, len(viewports), len(suite.scenarios))
            self._emit_progress(state)
            await self._run_with_browser(state)
            return await self._finish(state)
        except Exception as e:
            logger.error("Suite execution aborted: %s", e)
            queue.put_nowait(ProgressEvent("error", {"message": str(e)}))
            raise
        finally:
            queue.put_nowait(None)

    def _create_run(self, suite: TestSuite, viewports: list[ViewportConfig], every_step: bool) -> TestRun:
        viewport_names = [v.name for v in viewports]
        try:
            return self.storage.create_run(
                suite.id, viewport_names, len(suite.scenarios), screenshot_on_every_step=every_step,
            )
        except PersistenceError as e:
            # Results still stream and return; only the run record is missing
            logger.warning("Could not record run for suite %s, continuing unpersisted: %s", suite.id, e)
            now = iso_timestamp()
            return TestRun(
                id=f"run_local_{uuid.uuid4().hex[:12]}",
                suite_id=suite.id,
                viewports=viewport_names,
                scenario_count=len(suite.scenarios),
                screenshot_on_every_step=every_step,
                created_at=now,
                updated_at=now,
            )

    async def _run_with_browser(self, state: _MatrixState) -> None:
        matrix_done = False
        try:
            async with async_playwright() as p:
                logger.debug("Launching Chromium for run %s...", state.run.id)
                browser = await launch_browser(p, headless=self.config.browser.headless)
                try:
                    await self._run_matrix(ScenarioRunner(browser, self.storage, self.config), state)
                    matrix_done = True
                finally:
                    await browser.close()
        except Exception as e:
            if matrix_done:
                logger.warning("Browser shutdown failed: %s", e)
                return
            logger.error("Browser unavailable: %s", e)
            await self._run_matrix(None, state, launch_error=e)

    async def _run_matrix(
        self,
        runner: ScenarioRunner | None,
        state: _MatrixState,
        launch_error: Exception | None = None,
    ) -> None:
        total = len(state.pairs)
        while state.next_index < total:
            viewport, scenario = state.pairs[state.next_index]
            state.next_index += 1
            state.emit(ProgressEvent("scenario-start", {
                "testRunId": state.run.id,
                "name": scenario.name,
                "viewport": viewport.name,
                "index": state.next_index,
                "total": total,
            }))

            result = await self._run_pair(runner, state, scenario, viewport, launch_error)
            state.results.append(result)

            state.emit(ProgressEvent("scenario-complete", {
                "testRunId": state.run.id,
                "name": scenario.name,
                "viewport": viewport.name,
                "status": result.status,
                "durationMs": result.duration_ms,
            }))
            self._emit_progress(state)

    async def _run_pair(
        self,
        runner: ScenarioRunner | None,
        state: _MatrixState,
        scenario: Scenario,
        viewport: ViewportConfig,
        launch_error: Exception | None,
    ) -> ScenarioResult:
        result: ScenarioResult | None = None
        try:
            if runner is None:
                raise ScenarioError(f"Browser launch failed: {launch_error}")

            def on_log(entry: ConsoleLogEntry) -> None:
                state.emit(ProgressEvent("log", {
                    "testRunId": state.run.id,
                    "name": scenario.name,
                    "viewport": viewport.name,
                    **entry.model_dump(),
                }))

            result = await runner.run(
                scenario, viewport, state.suite.target_url, state.run.id,
                on_log=on_log, screenshot_on_every_step=state.every_step,
            )
            result.id = self.storage.save_scenario_result(result)
        except Exception as e:
            logger.error("Pair %s / %s failed: %s", scenario.name, viewport.name, e)
            state.emit(ProgressEvent("error", {
                "testRunId": state.run.id,
                "name": scenario.name,
                "viewport": viewport.name,
                "message": str(e),
            }))
            synthetic = self._synthetic_failure(state.run.id, scenario, viewport, e, result)
            if not isinstance(e, PersistenceError):
                try:
                    synthetic.id = self.storage.save_scenario_result(synthetic)
                except PersistenceError as pe:
                    logger.warning("Could not persist failure record: %s", pe)
            return synthetic

        self._schedule_enrichment(result)
        return result

    @staticmethod
    def _synthetic_failure(
        run_id: str,
        scenario: Scenario,
        viewport: ViewportConfig,
        error: Exception,
        partial: ScenarioResult | None,
    ) -> ScenarioResult:
        """Build a fail result for a pair-level exception, keeping any executed data."""
        now = iso_timestamp()
        entry = ErrorEntry(message=str(error) or type(error).__name__)
        if partial is not None:
            return partial.model_copy(update={
                "id": None,
                "status": "fail",
                "errors": [*partial.errors, entry],
            })
        return ScenarioResult(
            run_id=run_id,
            scenario_id=scenario.id,
            scenario_name=scenario.name,
            viewport=viewport.name,
            viewport_size=viewport.size,
            status="fail",
            started_at=now,
            completed_at=now,
            errors=[entry],
        )

    def _emit_progress(self, state: _MatrixState) -> None:
        total = len(state.pairs)
        done = len(state.results)
        state.emit(ProgressEvent("progress", {
            "testRunId": state.run.id,
            "current": done,
            "total": total,
            "percentage": round(done / total * 100) if total else 100,
            "passed": sum(1 for r in state.results if r.status == "pass"),
            "failed": sum(1 for r in state.results if r.status == "fail"),
            "elapsedMs": int((time.time() - state.started) * 1000),
        }))

    async def _finish(self, state: _MatrixState) -> SuiteExecutionResult:
        summary = RunSummary.from_results(state.results)
        status = "completed" if all(r.status == "pass" for r in state.results) else "failed"
        try:
            self.storage.update_run_status(state.run.id, status)
        except PersistenceError as e:
            logger.warning("Failed to update run %s status: %s", state.run.id, e)
        run = state.run.model_copy(update={"status": status})

        logger.info("Run %s %s: %d passed, %d failed (%.1fs)", run.id, status,
                    summary.passed, summary.failed, time.time() - state.started)
        state.emit(ProgressEvent("complete", {
            "testRunId": run.id,
            "status": status,
            "summary": summary.model_dump(),
        }))

        await self.drain_enrichment()
        return SuiteExecutionResult(run=run, results=state.results, summary=summary)

    # ------------------------------------------------------------------
    # AI enrichment
    # ------------------------------------------------------------------

    def _schedule_enrichment(self, result: ScenarioResult) -> None:
        """Fire-and-forget analysis of a persisted result."""
        if self.enricher is None or not result.id:
            return
        task = asyncio.create_task(self._enrich(result))
        self._enrichment.add(task)
        task.add_done_callback(self._enrichment.discard)

    async def _enrich(self, result: ScenarioResult) -> None:
        try:
            await asyncio.to_thread(self.enricher.enrich, result)
        except Exception as e:
            logger.warning("AI enrichment failed for result %s: %s", result.id, e)

    async def drain_enrichment(self) -> None:
        """Wait for outstanding enrichment tasks; their errors are ignored."""
        pending = [t for t in self._enrichment if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
