"""Tests for the suite executor: matrix order, streaming, containment, enrichment."""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from pathfinder.errors import PersistenceError
from pathfinder.executor.executor import ExecutionOrchestrator, ProgressEvent
from pathfinder.executor.scenario_runner import ScenarioRunner
from pathfinder.models.scenario import Scenario, TestSuite

from helpers import make_mock_browser, make_mock_context, make_mock_locator, make_mock_page

# Patch targets for browser infrastructure
ASYNC_PW = "pathfinder.executor.executor.async_playwright"
LAUNCH_BROWSER = "pathfinder.executor.executor.launch_browser"


@pytest.fixture
def mock_playwright():
    """Provide a properly mocked async_playwright context manager and browser."""
    mock_pw = AsyncMock()
    mock_pw.__aenter__ = AsyncMock(return_value=mock_pw)
    mock_pw.__aexit__ = AsyncMock(return_value=False)

    mock_browser = make_mock_browser()
    mock_browser.new_context = AsyncMock(
        side_effect=lambda **kwargs: make_mock_context(make_mock_page(make_mock_locator("Welcome back")))
    )
    return mock_pw, mock_browser


@pytest.fixture
def patched_browser(mock_playwright):
    mock_pw, mock_browser = mock_playwright
    with patch(ASYNC_PW, return_value=mock_pw), \
         patch(LAUNCH_BROWSER, AsyncMock(return_value=mock_browser)):
        yield mock_browser


async def _collect(execution) -> list[ProgressEvent]:
    return [event async for event in execution.events()]


class TestProgressEvent:

    def test_to_sse_format(self):
        event = ProgressEvent("progress", {"current": 1, "total": 4})
        sse = event.to_sse()
        assert sse.startswith("event: progress\ndata: ")
        assert sse.endswith("\n\n")
        assert json.loads(sse.split("data: ", 1)[1]) == {"current": 1, "total": 4}


class TestBatchExecution:

    @pytest.mark.asyncio
    async def test_two_by_two_matrix_all_pass(self, patched_browser, storage, framework_config,
                                             suite, desktop, mobile):
        executor = ExecutionOrchestrator(storage, framework_config)

        outcome = await executor.execute_suite(suite, [desktop, mobile])

        assert outcome.summary.total == 4
        assert outcome.summary.passed == 4
        assert outcome.summary.failed == 0
        assert outcome.run.status == "completed"
        assert [(r.viewport, r.scenario_name) for r in outcome.results] == [
            ("desktop", "Login"), ("desktop", "Search"), ("mobile", "Login"), ("mobile", "Search"),
        ]
        assert storage.get_run(outcome.run.id).status == "completed"
        assert len(storage.get_scenario_results(outcome.run.id)) == 4
        assert all(r.id for r in outcome.results)
        patched_browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_record_created(self, patched_browser, storage, framework_config, suite, desktop):
        executor = ExecutionOrchestrator(storage, framework_config)

        outcome = await executor.execute_suite(suite, [desktop], screenshot_on_every_step=True)

        run = storage.get_run(outcome.run.id)
        assert run.suite_id == "suite_shop"
        assert run.viewports == ["desktop"]
        assert run.scenario_count == 2
        assert run.screenshot_on_every_step is True
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_failing_scenario_does_not_stop_suite(self, mock_playwright, storage, framework_config,
                                                        desktop):
        mock_pw, mock_browser = mock_playwright
        broken_page = make_mock_page()
        broken_page.goto = AsyncMock(side_effect=TimeoutError("Timeout 5000ms exceeded"))
        mock_browser.new_context = AsyncMock(side_effect=[
            make_mock_context(broken_page),
            make_mock_context(),
        ])
        suite = TestSuite(id="s", name="S", target_url="https://example.com", scenarios=[
            Scenario(id="a", name="A"), Scenario(id="b", name="B"),
        ])

        with patch(ASYNC_PW, return_value=mock_pw), \
             patch(LAUNCH_BROWSER, AsyncMock(return_value=mock_browser)):
            outcome = await ExecutionOrchestrator(storage, framework_config).execute_suite(suite, [desktop])

        assert [r.status for r in outcome.results] == ["fail", "pass"]
        assert outcome.run.status == "failed"
        assert storage.get_run(outcome.run.id).status == "failed"

    @pytest.mark.asyncio
    async def test_adhoc_runs_single_unsaved_scenario(self, patched_browser, storage, framework_config, desktop):
        executor = ExecutionOrchestrator(storage, framework_config)

        outcome = await executor.execute_adhoc(
            "https://example.com",
            [{"type": "click", "config": {"selector": "#go"}}],
            desktop,
        )

        assert outcome.summary.total == 1
        assert outcome.run.suite_id == "adhoc"
        assert outcome.results[0].scenario_name == "Ad-hoc scenario"


class TestStreaming:

    @pytest.mark.asyncio
    async def test_event_sequence(self, patched_browser, storage, framework_config, suite, desktop, mobile):
        executor = ExecutionOrchestrator(storage, framework_config)

        execution = executor.start(suite, [desktop, mobile])
        events = await _collect(execution)
        await execution.result()

        names = [e.event for e in events]
        assert names[0] == "progress"
        assert events[0].data["current"] == 0
        assert names[-1] == "complete"
        assert names.count("scenario-start") == 4
        assert names.count("scenario-complete") == 4
        assert names.count("progress") == 5
        assert "log" in names

        starts = [e.data for e in events if e.event == "scenario-start"]
        assert [s["index"] for s in starts] == [1, 2, 3, 4]
        assert all(s["total"] == 4 for s in starts)
        assert [(s["viewport"], s["name"]) for s in starts][0] == ("desktop", "Login")

        final = events[-1].data
        assert final["status"] == "completed"
        assert final["summary"] == {"total": 4, "passed": 4, "failed": 0, "skipped": 0}

    @pytest.mark.asyncio
    async def test_start_precedes_logs_and_complete_follows(self, patched_browser, storage,
                                                            framework_config, suite, desktop):
        executor = ExecutionOrchestrator(storage, framework_config)

        events = await _collect(executor.start(suite, [desktop]))

        first_start = next(i for i, e in enumerate(events) if e.event == "scenario-start")
        first_log = next(i for i, e in enumerate(events) if e.event == "log")
        first_complete = next(i for i, e in enumerate(events) if e.event == "scenario-complete")
        assert first_start < first_log < first_complete
        assert events[first_complete + 1].event == "progress"
        assert events[first_complete + 1].data["current"] == 1

    @pytest.mark.asyncio
    async def test_consumer_leaving_does_not_cancel_run(self, patched_browser, storage, framework_config,
                                                        suite, desktop):
        executor = ExecutionOrchestrator(storage, framework_config)

        execution = executor.start(suite, [desktop])
        async for _ in execution.events():
            break
        outcome = await execution.result()

        assert outcome.summary.total == 2
        assert len(storage.get_scenario_results(outcome.run.id)) == 2


class TestContainment:

    @pytest.mark.asyncio
    async def test_browser_launch_failure_fails_every_pair(self, mock_playwright, storage, framework_config,
                                                          suite, desktop, mobile):
        mock_pw, _ = mock_playwright
        with patch(ASYNC_PW, return_value=mock_pw), \
             patch(LAUNCH_BROWSER, AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))):
            execution = ExecutionOrchestrator(storage, framework_config).start(suite, [desktop, mobile])
            events = await _collect(execution)
            outcome = await execution.result()

        assert outcome.summary.failed == 4
        assert all("Browser launch failed" in r.errors[0].message for r in outcome.results)
        assert [e.event for e in events].count("error") == 4
        assert events[-1].event == "complete"
        assert len(storage.get_scenario_results(outcome.run.id)) == 4

    @pytest.mark.asyncio
    async def test_runner_crash_yields_persisted_failure(self, patched_browser, storage, framework_config,
                                                         suite, desktop):
        with patch.object(ScenarioRunner, "run", AsyncMock(side_effect=RuntimeError("renderer crashed"))):
            outcome = await ExecutionOrchestrator(storage, framework_config).execute_suite(suite, [desktop])

        assert [r.status for r in outcome.results] == ["fail", "fail"]
        assert outcome.results[0].errors[0].message == "renderer crashed"
        assert len(storage.get_scenario_results(outcome.run.id)) == 2

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_going(self, patched_browser, storage, framework_config,
                                                   suite, desktop):
        real_save = storage.save_scenario_result
        calls = {"n": 0}

        def flaky_save(result):
            calls["n"] += 1
            if calls["n"] == 1:
                raise PersistenceError("disk full")
            return real_save(result)

        with patch.object(storage, "save_scenario_result", side_effect=flaky_save):
            outcome = await ExecutionOrchestrator(storage, framework_config).execute_suite(suite, [desktop])

        first, second = outcome.results
        assert first.status == "fail"
        assert first.errors[-1].message == "disk full"
        assert first.step_results  # executed data kept
        assert second.status == "pass"
        # the failed write is not retried
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_run_creation_failure_still_runs_matrix(self, patched_browser, storage, framework_config,
                                                          suite, desktop):
        with patch.object(storage, "create_run", side_effect=PersistenceError("read-only")):
            execution = ExecutionOrchestrator(storage, framework_config).start(suite, [desktop])
            events = await _collect(execution)
            outcome = await execution.result()

        names = [e.event for e in events]
        assert names[0] == "progress"
        assert names[-1] == "complete"
        assert "error" not in names
        assert events[-1].data["summary"]["passed"] == 2
        assert outcome.run.id.startswith("run_local_")
        assert outcome.run.status == "completed"
        assert len(outcome.results) == 2


class TestEnrichment:

    @pytest.mark.asyncio
    async def test_enricher_called_per_persisted_result(self, patched_browser, storage, framework_config,
                                                        suite, desktop):
        enricher = Mock()
        executor = ExecutionOrchestrator(storage, framework_config, enricher=enricher)

        outcome = await executor.execute_suite(suite, [desktop])

        assert enricher.enrich.call_count == 2
        enriched_ids = {c.args[0].id for c in enricher.enrich.call_args_list}
        assert enriched_ids == {r.id for r in outcome.results}

    @pytest.mark.asyncio
    async def test_enrichment_failure_does_not_affect_results(self, patched_browser, storage,
                                                              framework_config, suite, desktop):
        enricher = Mock()
        enricher.enrich = Mock(side_effect=RuntimeError("rate limited"))
        executor = ExecutionOrchestrator(storage, framework_config, enricher=enricher)

        outcome = await executor.execute_suite(suite, [desktop])

        assert outcome.summary.passed == 2
        assert outcome.run.status == "completed"
