"""Wires storage, execution, comparison and AI together."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from pathfinder.ai.client import AIClient
from pathfinder.ai.enrichment import ScenarioEnricher, TokenBucket
from pathfinder.diff.regression_analyzer import RegressionAnalyzer
from pathfinder.diff.screenshot_comparator import ScreenshotComparator
from pathfinder.executor.executor import ExecutionOrchestrator, SuiteExecutionResult
from pathfinder.models.config import FrameworkConfig
from pathfinder.models.regression import (
    Baseline,
    IgnoreRegion,
    RegressionReport,
    RegressionStats,
    VisualRegression,
)
from pathfinder.models.scenario import TestSuite, ViewportConfig
from pathfinder.storage.base import Storage
from pathfinder.storage.local import LocalStorage

logger = logging.getLogger(__name__)


class Orchestrator:
    """Facade over the engine used by the CLI and the HTTP API."""

    def __init__(self, config: FrameworkConfig, storage: Storage | None = None):
        self.config = config
        self.storage = storage or LocalStorage(
            config.storage.root_dir,
            bucket=config.storage.bucket,
            create_bucket=config.storage.create_bucket,
        )

        # AI enrichment is optional; the engine works without it
        self.ai_client: AIClient | None = None
        enricher = None
        if config.ai.enabled:
            try:
                self.ai_client = AIClient(
                    model=config.ai.model,
                    max_tokens=config.ai.max_tokens,
                    api_key=config.ai.api_key,
                )
                enricher = ScenarioEnricher(
                    self.ai_client,
                    self.storage,
                    TokenBucket(config.ai.requests_per_minute),
                )
            except EnvironmentError as e:
                logger.warning("AI client unavailable: %s. Skipping enrichment.", e)

        self.executor = ExecutionOrchestrator(self.storage, config, enricher=enricher)
        self.analyzer = RegressionAnalyzer(
            self.storage, ScreenshotComparator(self.storage, config.diff),
        )

    # ------------------------------------------------------------------
    # Suites and viewports
    # ------------------------------------------------------------------

    def import_suite(self, path: str | Path) -> TestSuite:
        """Load a suite definition from JSON and store it."""
        with open(path) as f:
            data = json.load(f)
        suite = TestSuite(**data)
        self.storage.save_suite(suite)
        logger.info("Imported suite '%s' (%d scenarios)", suite.name, len(suite.scenarios))
        return suite

    def resolve_viewports(self, raw: list[Any]) -> list[ViewportConfig]:
        return [ViewportConfig.parse(v, self.config.viewport_presets) for v in raw]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_suite(
        self,
        suite: TestSuite,
        viewports: list[ViewportConfig],
        screenshot_on_every_step: bool | None = None,
    ) -> SuiteExecutionResult:
        return asyncio.run(self.executor.execute_suite(suite, viewports, screenshot_on_every_step))

    def run_adhoc(
        self,
        target_url: str,
        steps: list[Any],
        viewport: ViewportConfig,
        name: str = "Ad-hoc scenario",
    ) -> SuiteExecutionResult:
        return asyncio.run(self.executor.execute_adhoc(target_url, steps, viewport, name))

    # ------------------------------------------------------------------
    # Visual regression
    # ------------------------------------------------------------------

    def analyze(self, run_id: str) -> RegressionReport:
        return self.analyzer.analyze(run_id)

    def set_baseline(self, suite_id: str, run_id: str, notes: str | None = None) -> Baseline:
        return self.storage.set_baseline(suite_id, run_id, notes)

    def clear_baseline(self, suite_id: str) -> None:
        self.storage.clear_baseline(suite_id)

    def get_baseline(self, suite_id: str) -> Baseline | None:
        return self.storage.get_baseline(suite_id)

    def set_threshold(self, suite_id: str, threshold: float, viewport: str | None = None) -> None:
        self.storage.set_threshold(suite_id, threshold, viewport)

    def add_ignore_region(self, region: IgnoreRegion) -> None:
        self.storage.save_ignore_region(region)

    def review(
        self,
        regression_id: str,
        status: str,
        notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> VisualRegression:
        return self.storage.update_regression_status(regression_id, status, notes, reviewed_by)

    def regressions(
        self, run_id: str, status: str | None = None, significant_only: bool = False,
    ) -> list[VisualRegression]:
        return self.storage.get_regressions(run_id, status, significant_only)

    def regression_stats(self, run_id: str) -> RegressionStats:
        return self.storage.get_regression_stats(run_id)
