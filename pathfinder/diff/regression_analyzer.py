"""Diffs a run's screenshots against its suite baseline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pathfinder.errors import ComparisonError, PersistenceError
from pathfinder.models.regression import (
    ComparisonDetail,
    RegressionReport,
    VisualRegression,
)
from pathfinder.models.result import ScenarioResult
from pathfinder.storage.base import Storage

from .screenshot_comparator import ScreenshotComparator

logger = logging.getLogger(__name__)


@dataclass
class ScreenshotPair:
    test_name: str
    viewport: str
    baseline_url: str
    current_url: str
    step_name: Optional[str] = None


def match_screenshots(
    current: list[ScenarioResult], baseline: list[ScenarioResult],
) -> list[ScreenshotPair]:
    """Pair current screenshots with baseline ones.

    Results match on exact (scenario name, viewport). When both sides carry
    step names, screenshots pair per step name; otherwise the first
    screenshot of each result is compared. Anything unmatched is skipped.
    """
    baseline_by_key: dict[tuple[str, str], ScenarioResult] = {}
    for r in baseline:
        baseline_by_key.setdefault((r.scenario_name, r.viewport), r)

    pairs: list[ScreenshotPair] = []
    for result in current:
        base = baseline_by_key.get((result.scenario_name, result.viewport))
        if base is None or not result.screenshots or not base.screenshots:
            continue

        stepped = result.screenshots[0].step_name and base.screenshots[0].step_name
        if stepped:
            for shot in result.screenshots:
                base_shot = base.screenshot_for(shot.step_name)
                if base_shot and base_shot.url and shot.url:
                    pairs.append(ScreenshotPair(
                        test_name=result.scenario_name,
                        viewport=result.viewport,
                        baseline_url=base_shot.url,
                        current_url=shot.url,
                        step_name=shot.step_name,
                    ))
        else:
            base_url = base.screenshots[0].url
            curr_url = result.screenshots[0].url
            if base_url and curr_url:
                pairs.append(ScreenshotPair(
                    test_name=result.scenario_name,
                    viewport=result.viewport,
                    baseline_url=base_url,
                    current_url=curr_url,
                ))
    return pairs


class RegressionAnalyzer:
    """Runs visual regression analysis for a test run."""

    def __init__(self, storage: Storage, comparator: ScreenshotComparator | None = None):
        self.storage = storage
        self.comparator = comparator or ScreenshotComparator(storage)

    def has_baseline(self, suite_id: str) -> bool:
        baseline = self.storage.get_baseline(suite_id)
        return bool(baseline and baseline.baseline_run_id)

    def analyze(self, test_run_id: str) -> RegressionReport:
        run = self.storage.get_run(test_run_id)
        if run is None:
            return RegressionReport(success=False, message="Test run not found")

        baseline = self.storage.get_baseline(run.suite_id)
        if not baseline or not baseline.baseline_run_id:
            logger.info("No baseline set for suite %s, skipping analysis", run.suite_id)
            return RegressionReport(success=False, message="No baseline set for this suite")

        current_results = self.storage.get_scenario_results(test_run_id)
        baseline_results = self.storage.get_scenario_results(baseline.baseline_run_id)
        pairs = match_screenshots(current_results, baseline_results)
        if not pairs:
            return RegressionReport(success=True, message="No matching screenshots found to compare")

        logger.info("Comparing %d screenshot pairs against baseline run %s",
                    len(pairs), baseline.baseline_run_id)
        details: list[ComparisonDetail] = []
        for pair in pairs:
            try:
                # unset thresholds fall through to the comparator's configured default
                threshold = self.storage.get_threshold(run.suite_id, pair.viewport, default=None)
                regions = self.storage.get_ignore_regions(run.suite_id, pair.test_name, pair.viewport)
                comparison = self.comparator.compare(
                    pair.baseline_url,
                    pair.current_url,
                    threshold=threshold,
                    ignore_regions=regions,
                )
                regression_id = self.storage.save_visual_regression(
                    VisualRegression.from_comparison(
                        comparison,
                        test_run_id=test_run_id,
                        baseline_run_id=baseline.baseline_run_id,
                        test_name=pair.test_name,
                        viewport=pair.viewport,
                        step_name=pair.step_name,
                    )
                )
            except (ComparisonError, PersistenceError) as e:
                logger.error("Failed to compare %s (%s%s): %s", pair.test_name, pair.viewport,
                             f", {pair.step_name}" if pair.step_name else "", e)
                continue
            except Exception:
                logger.exception("Unexpected error comparing %s (%s%s)", pair.test_name, pair.viewport,
                                 f", {pair.step_name}" if pair.step_name else "")
                continue

            details.append(ComparisonDetail(
                test_name=pair.test_name,
                viewport=pair.viewport,
                step_name=pair.step_name,
                comparison=comparison,
                regression_id=regression_id,
            ))

        total = len(details)
        significant = sum(1 for d in details if d.comparison.is_significant)
        avg = sum(d.comparison.percentage_different for d in details) / total if total else 0.0
        if significant:
            logger.warning("Detected %d significant visual regressions", significant)

        return RegressionReport(
            success=True,
            message=f"Compared {total} screenshots, {significant} significant",
            total_comparisons=total,
            regressions_found=total,
            significant_regressions=significant,
            average_difference=round(avg, 2),
            details=details,
        )
