"""Visual regression data structures: comparisons, baselines, review state."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

RegressionStatus = Literal["pending", "approved", "bug_reported", "investigating", "false_positive"]

# Statuses a reviewer may assign; "pending" is only ever the initial state.
REVIEW_STATUSES = ("approved", "bug_reported", "investigating", "false_positive")


class IgnoreRegion(BaseModel):
    x: int
    y: int
    width: int
    height: int
    reason: str = ""
    suite_id: Optional[str] = None
    test_name: Optional[str] = None
    viewport: Optional[str] = None

    def applies_to(self, suite_id: str, test_name: str | None, viewport: str | None) -> bool:
        """Unset scope fields match anything."""
        if self.suite_id and self.suite_id != suite_id:
            return False
        if self.test_name and test_name and self.test_name != test_name:
            return False
        if self.viewport and viewport and self.viewport != viewport:
            return False
        return True


class Dimensions(BaseModel):
    width: int
    height: int


class ComparisonResult(BaseModel):
    pixels_different: int
    percentage_different: float
    dimensions: Dimensions
    threshold: float
    is_significant: bool
    baseline_url: str = ""
    current_url: str = ""
    diff_image_url: str = ""


class VisualRegression(BaseModel):
    id: str = ""
    test_run_id: str
    baseline_run_id: str
    test_name: str
    viewport: str
    step_name: Optional[str] = None
    baseline_screenshot_url: str
    current_screenshot_url: str
    diff_image_url: str = ""
    pixels_different: int
    percentage_different: float
    threshold: float
    is_significant: bool
    status: RegressionStatus = "pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_comparison(
        cls,
        comparison: ComparisonResult,
        test_run_id: str,
        baseline_run_id: str,
        test_name: str,
        viewport: str,
        step_name: str | None = None,
    ) -> "VisualRegression":
        return cls(
            test_run_id=test_run_id,
            baseline_run_id=baseline_run_id,
            test_name=test_name,
            viewport=viewport,
            step_name=step_name,
            baseline_screenshot_url=comparison.baseline_url,
            current_screenshot_url=comparison.current_url,
            diff_image_url=comparison.diff_image_url,
            pixels_different=comparison.pixels_different,
            percentage_different=comparison.percentage_different,
            threshold=comparison.threshold,
            is_significant=comparison.is_significant,
            status="pending" if comparison.is_significant else "approved",
        )


class Baseline(BaseModel):
    suite_id: str
    baseline_run_id: str
    baseline_set_at: str = ""
    baseline_notes: Optional[str] = None


class ComparisonDetail(BaseModel):
    test_name: str
    viewport: str
    step_name: Optional[str] = None
    comparison: ComparisonResult
    regression_id: str = ""


class RegressionReport(BaseModel):
    success: bool
    message: str
    total_comparisons: int = 0
    regressions_found: int = 0
    significant_regressions: int = 0
    average_difference: float = 0.0
    details: list[ComparisonDetail] = Field(default_factory=list)


class RegressionStats(BaseModel):
    total: int = 0
    significant: int = 0
    pending: int = 0
    approved: int = 0
    bug_reported: int = 0
    investigating: int = 0
    false_positive: int = 0
    average_difference: float = 0.0
