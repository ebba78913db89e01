"""Storage interface consumed by the execution and comparison engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pathfinder.models.regression import (
    Baseline,
    IgnoreRegion,
    RegressionStats,
    VisualRegression,
)
from pathfinder.models.result import ScenarioResult, TestRun
from pathfinder.models.scenario import TestSuite

GLOBAL_DEFAULT_THRESHOLD = 0.1


class Storage(ABC):
    """Persists runs, results, screenshots and regression records.

    Write failures raise :class:`pathfinder.errors.PersistenceError`.
    ``upload_screenshot`` is the exception: a missing bucket yields an
    empty URL so scenario execution can proceed without storage.
    """

    # --- Suites -----------------------------------------------------------

    @abstractmethod
    def get_suite(self, suite_id: str) -> Optional[TestSuite]: ...

    @abstractmethod
    def save_suite(self, suite: TestSuite) -> str: ...

    @abstractmethod
    def list_suites(self) -> list[TestSuite]: ...

    # --- Runs and results -------------------------------------------------

    @abstractmethod
    def create_run(
        self,
        suite_id: str,
        viewports: list[str],
        scenario_count: int,
        screenshot_on_every_step: bool = False,
    ) -> TestRun: ...

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[TestRun]: ...

    @abstractmethod
    def update_run_status(self, run_id: str, status: str) -> None: ...

    @abstractmethod
    def save_scenario_result(self, result: ScenarioResult) -> str: ...

    @abstractmethod
    def get_scenario_results(self, run_id: str) -> list[ScenarioResult]: ...

    # --- Binary artifacts -------------------------------------------------

    @abstractmethod
    def upload_screenshot(
        self,
        data: bytes,
        run_id: str,
        scenario_name: str,
        step_name: str,
        viewport: str,
    ) -> str: ...

    @abstractmethod
    def upload_diff_image(self, data: bytes) -> str: ...

    # --- Baselines, thresholds, ignore regions ----------------------------

    @abstractmethod
    def get_baseline(self, suite_id: str) -> Optional[Baseline]: ...

    @abstractmethod
    def set_baseline(self, suite_id: str, run_id: str, notes: str | None = None) -> Baseline: ...

    @abstractmethod
    def clear_baseline(self, suite_id: str) -> None: ...

    @abstractmethod
    def get_threshold(
        self,
        suite_id: str,
        viewport: str | None = None,
        default: float | None = GLOBAL_DEFAULT_THRESHOLD,
    ) -> float | None: ...

    @abstractmethod
    def set_threshold(self, suite_id: str, threshold: float, viewport: str | None = None) -> None: ...

    @abstractmethod
    def get_ignore_regions(
        self,
        suite_id: str,
        test_name: str | None = None,
        viewport: str | None = None,
    ) -> list[IgnoreRegion]: ...

    @abstractmethod
    def save_ignore_region(self, region: IgnoreRegion) -> None: ...

    # --- Visual regressions -----------------------------------------------

    @abstractmethod
    def save_visual_regression(self, regression: VisualRegression) -> str: ...

    @abstractmethod
    def get_regressions(
        self,
        run_id: str,
        status: str | None = None,
        significant_only: bool = False,
    ) -> list[VisualRegression]: ...

    @abstractmethod
    def update_regression_status(
        self,
        regression_id: str,
        status: str,
        notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> VisualRegression: ...

    @abstractmethod
    def save_ai_analysis(self, result_id: str, analysis: dict[str, Any]) -> None: ...

    # --- Derived queries --------------------------------------------------

    def get_regression_stats(self, run_id: str) -> RegressionStats:
        regressions = self.get_regressions(run_id)
        stats = RegressionStats(total=len(regressions))
        for r in regressions:
            if r.is_significant:
                stats.significant += 1
            setattr(stats, r.status, getattr(stats, r.status) + 1)
        if regressions:
            avg = sum(r.percentage_different for r in regressions) / len(regressions)
            stats.average_difference = round(avg, 2)
        return stats
