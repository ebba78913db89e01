"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from pathfinder.models.config import FrameworkConfig, StorageConfig, TimeoutConfig
from pathfinder.models.scenario import Scenario, TestSuite, ViewportConfig
from pathfinder.storage.local import LocalStorage


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def framework_config(tmp_path: Path) -> FrameworkConfig:
    """Create a framework configuration rooted in a temp directory."""
    return FrameworkConfig(
        storage=StorageConfig(root_dir=str(tmp_path / "store")),
        timeouts=TimeoutConfig(navigation=5000, visibility=1000, click=1000),
    )


@pytest.fixture
def temp_config_file(framework_config: FrameworkConfig, tmp_path: Path) -> Path:
    """Write the framework configuration to disk."""
    config_file = tmp_path / "pathfinder.json"
    framework_config.save(config_file)
    return config_file


@pytest.fixture
def desktop() -> ViewportConfig:
    return ViewportConfig(name="desktop", width=1920, height=1080)


@pytest.fixture
def mobile() -> ViewportConfig:
    return ViewportConfig(name="mobile", width=375, height=667)


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    """File-backed storage in a temp directory."""
    return LocalStorage(tmp_path / "store")


# ============================================================================
# Suite Fixtures
# ============================================================================


@pytest.fixture
def login_scenario() -> Scenario:
    return Scenario(
        id="sc_login",
        name="Login",
        steps=[
            {"type": "fill", "config": {"selector": "#email", "value": "user@example.com"}},
            {"type": "fill", "config": {"selector": "#password", "value": "hunter2"}},
            {"type": "click", "config": {"selector": "button[type=submit]"}},
            {"type": "verify", "config": {"selector": ".welcome", "expectedResult": "Welcome"}},
        ],
    )


@pytest.fixture
def search_scenario() -> Scenario:
    return Scenario(
        id="sc_search",
        name="Search",
        steps=[
            {"action": "fill", "selector": "input[name=q]", "value": "shoes"},
            {"action": "click", "selector": "#search"},
        ],
    )


@pytest.fixture
def suite(login_scenario: Scenario, search_scenario: Scenario) -> TestSuite:
    return TestSuite(
        id="suite_shop",
        name="Shop smoke",
        target_url="https://example.com",
        scenarios=[login_scenario, search_scenario],
    )
