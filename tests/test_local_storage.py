"""Tests for the file-backed storage backend."""

import json
from pathlib import Path

import pytest

from pathfinder.errors import ConfigurationError, PersistenceError
from pathfinder.models.regression import IgnoreRegion, VisualRegression
from pathfinder.storage.local import LocalStorage

from helpers import make_result


def _regression(run_id: str, significant: bool = True, pct: float = 12.5) -> VisualRegression:
    return VisualRegression(
        test_run_id=run_id,
        baseline_run_id="run_base",
        test_name="Login",
        viewport="desktop",
        baseline_screenshot_url="file:///b.png",
        current_screenshot_url="file:///c.png",
        pixels_different=1250,
        percentage_different=pct,
        threshold=0.1,
        is_significant=significant,
        status="pending" if significant else "approved",
    )


class TestSuites:

    def test_save_and_get(self, storage, suite):
        storage.save_suite(suite)
        loaded = storage.get_suite("suite_shop")
        assert loaded == suite
        assert loaded.scenarios[0].steps[3].expected_text == "Welcome"

    def test_missing_suite(self, storage):
        assert storage.get_suite("nope") is None

    def test_list_suites(self, storage, suite):
        assert storage.list_suites() == []
        storage.save_suite(suite)
        assert [s.id for s in storage.list_suites()] == ["suite_shop"]


class TestRuns:

    def test_create_run(self, storage):
        run = storage.create_run("suite_shop", ["desktop", "mobile"], 3, screenshot_on_every_step=True)
        assert run.id.startswith("run_")
        assert run.status == "running"
        loaded = storage.get_run(run.id)
        assert loaded.viewports == ["desktop", "mobile"]
        assert loaded.scenario_count == 3
        assert loaded.screenshot_on_every_step is True

    def test_update_status_sets_completed_at(self, storage):
        run = storage.create_run("suite_shop", ["desktop"], 1)
        storage.update_run_status(run.id, "completed")
        loaded = storage.get_run(run.id)
        assert loaded.status == "completed"
        assert loaded.completed_at

    def test_update_unknown_run(self, storage):
        with pytest.raises(PersistenceError):
            storage.update_run_status("run_missing", "completed")

    def test_results_kept_in_insertion_order(self, storage):
        run = storage.create_run("suite_shop", ["desktop"], 3)
        ids = [storage.save_scenario_result(make_result(run.id, name)) for name in ("C", "A", "B")]
        results = storage.get_scenario_results(run.id)
        assert [r.scenario_name for r in results] == ["C", "A", "B"]
        assert [r.id for r in results] == ids

    def test_write_failure_raises_persistence_error(self, tmp_path):
        storage = LocalStorage(tmp_path / "store")
        # a file where the runs directory should be
        (tmp_path / "store" / "runs").write_text("blocked")
        with pytest.raises(PersistenceError):
            storage.create_run("suite_shop", ["desktop"], 1)


class TestScreenshots:

    def test_upload_returns_file_uri(self, storage):
        url = storage.upload_screenshot(b"png", "run_1", "Login Flow", "final-state", "mobile")
        assert url.startswith("file://")
        assert "/run_1/mobile/login-flow/final-state-" in url
        path = Path(url[len("file://"):])
        assert path.read_bytes() == b"png"

    def test_missing_bucket_returns_empty(self, tmp_path):
        storage = LocalStorage(tmp_path / "store", create_bucket=False)
        assert storage.upload_screenshot(b"png", "run_1", "Login", "final-state", "desktop") == ""

    def test_diff_images_are_unique(self, storage):
        a = storage.upload_diff_image(b"a")
        b = storage.upload_diff_image(b"b")
        assert a != b
        assert "/diffs/" in a


class TestBaselines:

    def test_set_get_clear(self, storage):
        run = storage.create_run("suite_shop", ["desktop"], 1)
        storage.set_baseline("suite_shop", run.id, notes="Release 1.2")

        baseline = storage.get_baseline("suite_shop")
        assert baseline.baseline_run_id == run.id
        assert baseline.baseline_notes == "Release 1.2"
        assert baseline.baseline_set_at

        storage.clear_baseline("suite_shop")
        assert storage.get_baseline("suite_shop") is None

    def test_baseline_requires_existing_run(self, storage):
        with pytest.raises(PersistenceError, match="not found"):
            storage.set_baseline("suite_shop", "run_missing")

    def test_clear_missing_is_noop(self, storage):
        storage.clear_baseline("never-set")


class TestThresholds:

    def test_global_default(self, storage):
        assert storage.get_threshold("suite_shop") == 0.1

    def test_suite_then_viewport_resolution(self, storage):
        storage.set_threshold("suite_shop", 0.05)
        storage.set_threshold("suite_shop", 0.2, viewport="mobile")
        assert storage.get_threshold("suite_shop", "mobile") == 0.2
        assert storage.get_threshold("suite_shop", "desktop") == 0.05
        assert storage.get_threshold("other") == 0.1

    def test_unset_returns_caller_default(self, storage):
        assert storage.get_threshold("suite_shop", "desktop", default=None) is None
        assert storage.get_threshold("suite_shop", default=0.05) == 0.05

    def test_out_of_range_rejected(self, storage):
        with pytest.raises(ConfigurationError):
            storage.set_threshold("suite_shop", 5)


class TestIgnoreRegions:

    def test_scoped_lookup(self, storage):
        storage.save_ignore_region(IgnoreRegion(x=0, y=0, width=100, height=40, reason="clock",
                                                suite_id="suite_shop"))
        storage.save_ignore_region(IgnoreRegion(x=0, y=0, width=10, height=10, suite_id="suite_shop",
                                                viewport="mobile"))
        storage.save_ignore_region(IgnoreRegion(x=5, y=5, width=5, height=5, suite_id="other"))

        assert len(storage.get_ignore_regions("suite_shop", "Login", "desktop")) == 1
        assert len(storage.get_ignore_regions("suite_shop", "Login", "mobile")) == 2
        assert len(storage.get_ignore_regions("other")) == 1


class TestRegressions:

    def test_save_assigns_id(self, storage):
        reg_id = storage.save_visual_regression(_regression("run_2"))
        assert reg_id.startswith("reg_")
        assert storage.get_regressions("run_2")[0].id == reg_id

    def test_filters(self, storage):
        storage.save_visual_regression(_regression("run_2", significant=True))
        storage.save_visual_regression(_regression("run_2", significant=False))
        assert len(storage.get_regressions("run_2")) == 2
        assert len(storage.get_regressions("run_2", significant_only=True)) == 1
        assert len(storage.get_regressions("run_2", status="approved")) == 1

    def test_review(self, storage):
        reg_id = storage.save_visual_regression(_regression("run_2"))
        updated = storage.update_regression_status(reg_id, "false_positive", "Ad banner", "qa@example.com")
        assert updated.status == "false_positive"
        assert updated.reviewed_by == "qa@example.com"
        assert updated.reviewed_at
        assert storage.get_regressions("run_2")[0].notes == "Ad banner"

    def test_review_invalid_status(self, storage):
        reg_id = storage.save_visual_regression(_regression("run_2"))
        with pytest.raises(ConfigurationError, match="Invalid review status"):
            storage.update_regression_status(reg_id, "pending")

    def test_review_unknown_regression(self, storage):
        with pytest.raises(PersistenceError):
            storage.update_regression_status("reg_missing", "approved")


class TestAIAnalyses:

    def test_save_ai_analysis(self, storage, tmp_path):
        storage.save_ai_analysis("res_1", {"issues": [], "confidence_score": 0.0})
        data = json.loads((tmp_path / "store" / "ai_analyses" / "res_1.json").read_text())
        assert data["result_id"] == "res_1"
        assert data["issues"] == []
