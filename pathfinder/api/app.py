"""HTTP API: suite execution (batch and SSE stream) and regression review."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from pathfinder.errors import ConfigurationError, PersistenceError
from pathfinder.executor.executor import ProgressEvent, SuiteExecutionResult
from pathfinder.models.scenario import TestSuite, ViewportConfig
from pathfinder.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ExecuteRequest(_CamelModel):
    suite_id: Optional[str] = Field(default=None, alias="suiteId")
    viewports: list[Any] = Field(default_factory=list)
    screenshot_on_every_step: Optional[bool] = Field(default=None, alias="screenshotOnEveryStep")


class AdhocRequest(_CamelModel):
    target_url: Optional[str] = Field(default=None, alias="targetUrl")
    test_name: str = Field(default="Ad-hoc scenario", alias="testName")
    steps: list[Any] = Field(default_factory=list)
    viewport: Any = None


class AnalyzeRequest(_CamelModel):
    test_run_id: Optional[str] = Field(default=None, alias="testRunId")


class ReviewRequest(_CamelModel):
    regression_id: str = Field(alias="regressionId")
    status: str
    notes: Optional[str] = None
    reviewed_by: Optional[str] = Field(default=None, alias="reviewedBy")


class BaselineRequest(_CamelModel):
    run_id: str = Field(alias="runId")
    notes: Optional[str] = None


def _execution_response(outcome: SuiteExecutionResult) -> dict[str, Any]:
    return {
        "success": True,
        "testRunId": outcome.run.id,
        "status": outcome.run.status,
        "results": [r.model_dump(mode="json") for r in outcome.results],
        "summary": outcome.summary.model_dump(),
    }


def create_app(orchestrator: Orchestrator) -> FastAPI:
    app = FastAPI(title="Pathfinder", version="0.1.0")

    def get_orchestrator() -> Orchestrator:
        return orchestrator

    async def event_payloads(events: AsyncIterator[ProgressEvent]) -> AsyncIterator[bytes]:
        async for event in events:
            yield event.to_sse().encode("utf-8")

    def _prepare(payload: ExecuteRequest, orch: Orchestrator) -> tuple[TestSuite, list[ViewportConfig]]:
        if not payload.suite_id or not payload.viewports:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing required parameters: suiteId and viewports",
            )
        try:
            viewports = orch.resolve_viewports(payload.viewports)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        suite = orch.storage.get_suite(payload.suite_id)
        if suite is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test suite not found")
        if not suite.scenarios:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No scenarios found for this suite")
        return suite, viewports

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @app.post("/api/scenarios/execute")
    async def execute(payload: ExecuteRequest, orch: Orchestrator = Depends(get_orchestrator)):
        suite, viewports = _prepare(payload, orch)
        outcome = await orch.executor.execute_suite(suite, viewports, payload.screenshot_on_every_step)
        return _execution_response(outcome)

    @app.post("/api/scenarios/execute/stream")
    async def execute_stream(payload: ExecuteRequest, orch: Orchestrator = Depends(get_orchestrator)):
        suite, viewports = _prepare(payload, orch)
        execution = orch.executor.start(suite, viewports, payload.screenshot_on_every_step)
        return StreamingResponse(
            event_payloads(execution.events()),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/scenarios/execute-adhoc")
    async def execute_adhoc(payload: AdhocRequest, orch: Orchestrator = Depends(get_orchestrator)):
        if not payload.target_url or not payload.steps:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing required parameters: targetUrl and steps",
            )
        try:
            viewport = (orch.resolve_viewports([payload.viewport])[0]
                        if payload.viewport else ViewportConfig())
            outcome = await orch.executor.execute_adhoc(
                payload.target_url, payload.steps, viewport, payload.test_name,
            )
        except ValueError as e:
            # bad viewport or a step that does not normalize
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return _execution_response(outcome)

    # ------------------------------------------------------------------
    # Regressions
    # ------------------------------------------------------------------

    @app.post("/api/regressions/analyze")
    async def analyze(payload: AnalyzeRequest, orch: Orchestrator = Depends(get_orchestrator)):
        if not payload.test_run_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing testRunId")
        report = await asyncio.to_thread(orch.analyze, payload.test_run_id)
        body = report.model_dump(mode="json")
        if not report.success:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)
        return body

    @app.get("/api/regressions/{test_run_id}")
    async def list_regressions(
        test_run_id: str,
        status_filter: Optional[str] = Query(default=None, alias="status"),
        significant: bool = False,
        orch: Orchestrator = Depends(get_orchestrator),
    ):
        regressions = orch.regressions(test_run_id, status_filter, significant)
        return {"regressions": [r.model_dump(mode="json") for r in regressions]}

    @app.get("/api/regressions/{test_run_id}/stats")
    async def regression_stats(test_run_id: str, orch: Orchestrator = Depends(get_orchestrator)):
        return orch.regression_stats(test_run_id).model_dump()

    @app.put("/api/regressions/review")
    async def review(payload: ReviewRequest, orch: Orchestrator = Depends(get_orchestrator)):
        try:
            updated = orch.review(payload.regression_id, payload.status, payload.notes, payload.reviewed_by)
        except ConfigurationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        return {"success": True, "regression": updated.model_dump(mode="json")}

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    @app.get("/api/baselines/{suite_id}")
    async def get_baseline(suite_id: str, orch: Orchestrator = Depends(get_orchestrator)):
        baseline = orch.get_baseline(suite_id)
        if baseline is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No baseline set for this suite")
        return baseline.model_dump()

    @app.put("/api/baselines/{suite_id}")
    async def set_baseline(suite_id: str, payload: BaselineRequest, orch: Orchestrator = Depends(get_orchestrator)):
        try:
            baseline = orch.set_baseline(suite_id, payload.run_id, payload.notes)
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        return baseline.model_dump()

    @app.delete("/api/baselines/{suite_id}")
    async def clear_baseline(suite_id: str, orch: Orchestrator = Depends(get_orchestrator)):
        orch.clear_baseline(suite_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app
