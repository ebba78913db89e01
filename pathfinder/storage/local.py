"""File-backed storage: JSON records plus a PNG bucket directory."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from pathfinder.errors import ConfigurationError, PersistenceError
from pathfinder.models.regression import (
    REVIEW_STATUSES,
    Baseline,
    IgnoreRegion,
    VisualRegression,
)
from pathfinder.models.result import ScenarioResult, TestRun
from pathfinder.models.scenario import TestSuite

from .base import GLOBAL_DEFAULT_THRESHOLD, Storage

logger = logging.getLogger(__name__)

_SUITE_DEFAULT_KEY = "*"
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _slug(value: str) -> str:
    return _UNSAFE_CHARS_RE.sub("-", value).strip("-").lower() or "unnamed"


class LocalStorage(Storage):
    """Stores everything under one root directory.

    Layout::

        suites/<suite_id>.json
        runs/<run_id>/run.json
        runs/<run_id>/results/<seq>-<result_id>.json
        <bucket>/<run_id>/<viewport>/<scenario>/<step>-<ts>.png
        <bucket>/diffs/diff-<ts>.png
        baselines.json, thresholds.json, ignore_regions.json
        regressions/<run_id>.json
        ai_analyses/<result_id>.json
    """

    def __init__(self, root_dir: str | Path, bucket: str = "test-screenshots", create_bucket: bool = True):
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.bucket_dir = self.root_dir / bucket
        if create_bucket:
            self.bucket_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # JSON helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path, default: Any = None) -> Any:
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read %s: %s", path, e)
            return default

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            tmp.replace(path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        logger.debug("Saved %s", path)

    @staticmethod
    def _dump(model: BaseModel) -> dict:
        return model.model_dump(mode="json")

    def _run_dir(self, run_id: str) -> Path:
        return self.root_dir / "runs" / _slug(run_id)

    # ------------------------------------------------------------------
    # Suites
    # ------------------------------------------------------------------

    def get_suite(self, suite_id: str) -> Optional[TestSuite]:
        data = self._read_json(self.root_dir / "suites" / f"{_slug(suite_id)}.json")
        return TestSuite(**data) if data else None

    def save_suite(self, suite: TestSuite) -> str:
        self._write_json(self.root_dir / "suites" / f"{_slug(suite.id)}.json", self._dump(suite))
        return suite.id

    def list_suites(self) -> list[TestSuite]:
        suites_dir = self.root_dir / "suites"
        if not suites_dir.exists():
            return []
        suites = []
        for path in sorted(suites_dir.glob("*.json")):
            data = self._read_json(path)
            if data:
                suites.append(TestSuite(**data))
        return suites

    # ------------------------------------------------------------------
    # Runs and results
    # ------------------------------------------------------------------

    def create_run(
        self,
        suite_id: str,
        viewports: list[str],
        scenario_count: int,
        screenshot_on_every_step: bool = False,
    ) -> TestRun:
        now = _now()
        run = TestRun(
            id=f"run_{uuid.uuid4().hex[:12]}",
            suite_id=suite_id,
            viewports=viewports,
            scenario_count=scenario_count,
            status="running",
            screenshot_on_every_step=screenshot_on_every_step,
            created_at=now,
            updated_at=now,
        )
        self._write_json(self._run_dir(run.id) / "run.json", self._dump(run))
        logger.info("Created test run %s for suite %s", run.id, suite_id)
        return run

    def get_run(self, run_id: str) -> Optional[TestRun]:
        data = self._read_json(self._run_dir(run_id) / "run.json")
        return TestRun(**data) if data else None

    def update_run_status(self, run_id: str, status: str) -> None:
        run = self.get_run(run_id)
        if run is None:
            raise PersistenceError(f"Test run not found: {run_id}")
        now = _now()
        run.status = status
        run.updated_at = now
        if status in ("completed", "failed"):
            run.completed_at = now
        self._write_json(self._run_dir(run_id) / "run.json", self._dump(run))

    def save_scenario_result(self, result: ScenarioResult) -> str:
        results_dir = self._run_dir(result.run_id) / "results"
        seq = len(list(results_dir.glob("*.json"))) if results_dir.exists() else 0
        result_id = result.id or uuid.uuid4().hex[:12]
        stored = result.model_copy(update={"id": result_id})
        self._write_json(results_dir / f"{seq:04d}-{result_id}.json", self._dump(stored))
        return result_id

    def get_scenario_results(self, run_id: str) -> list[ScenarioResult]:
        results_dir = self._run_dir(run_id) / "results"
        if not results_dir.exists():
            return []
        results = []
        for path in sorted(results_dir.glob("*.json")):
            data = self._read_json(path)
            if data:
                results.append(ScenarioResult(**data))
        return results

    # ------------------------------------------------------------------
    # Binary artifacts
    # ------------------------------------------------------------------

    def upload_screenshot(
        self,
        data: bytes,
        run_id: str,
        scenario_name: str,
        step_name: str,
        viewport: str,
    ) -> str:
        if not self.bucket_dir.exists():
            logger.warning("Screenshot bucket %s does not exist, skipping upload", self.bucket_dir)
            return ""
        ts = int(time.time() * 1000)
        path = (self.bucket_dir / _slug(run_id) / _slug(viewport) / _slug(scenario_name)
                / f"{_slug(step_name)}-{ts}.png")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.warning("Screenshot upload failed for %s: %s", path, e)
            return ""
        return path.resolve().as_uri()

    def upload_diff_image(self, data: bytes) -> str:
        ts = int(time.time() * 1000)
        path = self.bucket_dir / "diffs" / f"diff-{ts}-{uuid.uuid4().hex[:6]}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise PersistenceError(f"Failed to upload diff image: {e}") from e
        return path.resolve().as_uri()

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    @property
    def _baselines_path(self) -> Path:
        return self.root_dir / "baselines.json"

    def get_baseline(self, suite_id: str) -> Optional[Baseline]:
        data = self._read_json(self._baselines_path, {})
        entry = data.get(suite_id)
        return Baseline(**entry) if entry else None

    def set_baseline(self, suite_id: str, run_id: str, notes: str | None = None) -> Baseline:
        if self.get_run(run_id) is None:
            raise PersistenceError(f"Test run not found: {run_id}")
        data = self._read_json(self._baselines_path, {})
        baseline = Baseline(
            suite_id=suite_id,
            baseline_run_id=run_id,
            baseline_set_at=_now(),
            baseline_notes=notes,
        )
        data[suite_id] = self._dump(baseline)
        self._write_json(self._baselines_path, data)
        logger.info("Baseline for suite %s set to run %s", suite_id, run_id)
        return baseline

    def clear_baseline(self, suite_id: str) -> None:
        data = self._read_json(self._baselines_path, {})
        if data.pop(suite_id, None) is not None:
            self._write_json(self._baselines_path, data)
            logger.info("Baseline for suite %s cleared", suite_id)

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    @property
    def _thresholds_path(self) -> Path:
        return self.root_dir / "thresholds.json"

    def get_threshold(
        self,
        suite_id: str,
        viewport: str | None = None,
        default: float | None = GLOBAL_DEFAULT_THRESHOLD,
    ) -> float | None:
        """Resolve suite+viewport, then suite default, then ``default``."""
        suite_thresholds = self._read_json(self._thresholds_path, {}).get(suite_id, {})
        if viewport and viewport in suite_thresholds:
            return float(suite_thresholds[viewport])
        if _SUITE_DEFAULT_KEY in suite_thresholds:
            return float(suite_thresholds[_SUITE_DEFAULT_KEY])
        return default

    def set_threshold(self, suite_id: str, threshold: float, viewport: str | None = None) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(f"Threshold must be a fraction between 0 and 1, got {threshold}")
        data = self._read_json(self._thresholds_path, {})
        data.setdefault(suite_id, {})[viewport or _SUITE_DEFAULT_KEY] = threshold
        self._write_json(self._thresholds_path, data)

    # ------------------------------------------------------------------
    # Ignore regions
    # ------------------------------------------------------------------

    @property
    def _ignore_regions_path(self) -> Path:
        return self.root_dir / "ignore_regions.json"

    def get_ignore_regions(
        self,
        suite_id: str,
        test_name: str | None = None,
        viewport: str | None = None,
    ) -> list[IgnoreRegion]:
        regions = [IgnoreRegion(**r) for r in self._read_json(self._ignore_regions_path, [])]
        return [r for r in regions if r.applies_to(suite_id, test_name, viewport)]

    def save_ignore_region(self, region: IgnoreRegion) -> None:
        data = self._read_json(self._ignore_regions_path, [])
        data.append(self._dump(region))
        self._write_json(self._ignore_regions_path, data)

    # ------------------------------------------------------------------
    # Visual regressions
    # ------------------------------------------------------------------

    def _regressions_path(self, run_id: str) -> Path:
        return self.root_dir / "regressions" / f"{_slug(run_id)}.json"

    def save_visual_regression(self, regression: VisualRegression) -> str:
        path = self._regressions_path(regression.test_run_id)
        data = self._read_json(path, [])
        now = _now()
        stored = regression.model_copy(update={
            "id": regression.id or f"reg_{uuid.uuid4().hex[:12]}",
            "created_at": regression.created_at or now,
            "updated_at": now,
        })
        data.append(self._dump(stored))
        self._write_json(path, data)
        return stored.id

    def get_regressions(
        self,
        run_id: str,
        status: str | None = None,
        significant_only: bool = False,
    ) -> list[VisualRegression]:
        regressions = [VisualRegression(**r) for r in self._read_json(self._regressions_path(run_id), [])]
        if status:
            regressions = [r for r in regressions if r.status == status]
        if significant_only:
            regressions = [r for r in regressions if r.is_significant]
        return regressions

    def update_regression_status(
        self,
        regression_id: str,
        status: str,
        notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> VisualRegression:
        if status not in REVIEW_STATUSES:
            raise ConfigurationError(
                f"Invalid review status '{status}'. Must be one of: {', '.join(REVIEW_STATUSES)}"
            )
        regressions_dir = self.root_dir / "regressions"
        for path in sorted(regressions_dir.glob("*.json")) if regressions_dir.exists() else []:
            data = self._read_json(path, [])
            for i, entry in enumerate(data):
                if entry.get("id") != regression_id:
                    continue
                now = _now()
                updated = VisualRegression(**entry).model_copy(update={
                    "status": status,
                    "notes": notes,
                    "reviewed_by": reviewed_by,
                    "reviewed_at": now,
                    "updated_at": now,
                })
                data[i] = self._dump(updated)
                self._write_json(path, data)
                logger.info("Regression %s marked %s", regression_id, status)
                return updated
        raise PersistenceError(f"Regression not found: {regression_id}")

    def save_ai_analysis(self, result_id: str, analysis: dict[str, Any]) -> None:
        self._write_json(
            self.root_dir / "ai_analyses" / f"{_slug(result_id)}.json",
            {"result_id": result_id, "analyzed_at": _now(), **analysis},
        )
