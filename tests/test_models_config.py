"""Tests for configuration models."""

import json
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from pathfinder.errors import ConfigurationError
from pathfinder.models.config import AIConfig, DiffConfig, FrameworkConfig, TimeoutConfig


class TestDefaults:

    def test_timeout_defaults(self):
        t = TimeoutConfig()
        assert (t.navigation, t.visibility, t.click) == (30000, 10000, 5000)
        assert (t.wait_selector, t.wait_delay) == (30000, 3000)

    def test_diff_defaults(self):
        d = DiffConfig()
        assert d.default_threshold == 0.1
        assert d.pixel_sensitivity == 0.1
        assert d.include_antialiasing is False

    def test_viewport_presets(self):
        cfg = FrameworkConfig()
        assert cfg.viewport_presets["mobile"] == (375, 667)
        assert cfg.viewport_presets["desktop"] == (1920, 1080)

    def test_every_step_off_by_default(self):
        assert FrameworkConfig().screenshot_on_every_step is False


class TestValidation:

    def test_threshold_out_of_range(self):
        with pytest.raises(ValidationError):
            DiffConfig(default_threshold=1.5)

    def test_env_api_key_resolved(self):
        with patch.dict(os.environ, {"MY_KEY": "secret"}):
            assert AIConfig(api_key="env:MY_KEY").api_key == "secret"

    def test_env_api_key_missing(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError, match="MY_KEY"):
                AIConfig(api_key="env:MY_KEY")


class TestLoadSave:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "cfg.json"
        cfg = FrameworkConfig(screenshot_on_every_step=True)
        cfg.save(path)
        loaded = FrameworkConfig.load(path)
        assert loaded.screenshot_on_every_step is True
        assert loaded.viewport_presets == cfg.viewport_presets

    def test_save_omits_api_key(self, tmp_path):
        path = tmp_path / "cfg.json"
        FrameworkConfig(ai=AIConfig(api_key="sk-secret")).save(path)
        data = json.loads(path.read_text())
        assert "api_key" not in data["ai"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FrameworkConfig.load(tmp_path / "nope.json")

    def test_invalid_file_raises_configuration_error(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"diff": {"default_threshold": 7}}))
        with pytest.raises(ConfigurationError):
            FrameworkConfig.load(path)
