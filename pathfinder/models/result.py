"""Execution result data structures produced by the scenario runner."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ScenarioStatus = Literal["pass", "fail", "skipped"]
RunStatus = Literal["running", "completed", "failed"]


def iso_timestamp(ts: float | None = None) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix; ``ts`` defaults to now."""
    moment = datetime.now(timezone.utc) if ts is None else datetime.fromtimestamp(ts, timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ConsoleLogEntry(BaseModel):
    type: str  # log, info, warning, error, debug
    message: str
    timestamp: str


class ErrorEntry(BaseModel):
    message: str
    stack: Optional[str] = None


class ScreenshotRef(BaseModel):
    url: str
    step_name: str
    timestamp: int  # epoch milliseconds


class StepResult(BaseModel):
    """Result of executing a single step. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    index: int
    kind: str
    status: Literal["pass", "fail"] = "pass"
    started_at: str = ""
    duration_ms: int = 0
    message: str = ""
    error: Optional[str] = None


class ScenarioResult(BaseModel):
    id: Optional[str] = None  # assigned by storage
    run_id: str = ""
    scenario_id: str
    scenario_name: str
    viewport: str
    viewport_size: str
    status: ScenarioStatus = "pass"
    started_at: str = ""
    completed_at: str = ""
    duration_ms: int = 0
    step_results: list[StepResult] = Field(default_factory=list)
    screenshots: list[ScreenshotRef] = Field(default_factory=list)
    console_logs: list[ConsoleLogEntry] = Field(default_factory=list)
    errors: list[ErrorEntry] = Field(default_factory=list)

    def finalize_status(self) -> ScenarioStatus:
        """Derive status from recorded errors and step outcomes."""
        failed = bool(self.errors) or any(s.status == "fail" for s in self.step_results)
        self.status = "fail" if failed else "pass"
        return self.status

    def screenshot_for(self, step_name: str) -> Optional[ScreenshotRef]:
        for shot in self.screenshots:
            if shot.step_name == step_name:
                return shot
        return None


class TestRun(BaseModel):
    __test__ = False  # keep pytest from collecting this model

    id: str
    suite_id: str
    viewports: list[str] = Field(default_factory=list)
    scenario_count: int = 0
    status: RunStatus = "running"
    screenshot_on_every_step: bool = False
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None


class RunSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0

    @classmethod
    def from_results(cls, results: list[ScenarioResult]) -> "RunSummary":
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.status == "pass"),
            failed=sum(1 for r in results if r.status == "fail"),
            skipped=sum(1 for r in results if r.status == "skipped"),
        )
