import sys
import pytest
from pathlib import Path

# Project root first so 'core', 'agents', ... resolve to this checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.project_registry import ProjectRegistry
from core.router_config import RouterConfig


class FakeClock:
    """Manually advanced clock for TTL and timestamp tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    """The shipped config/registry.yaml."""
    return ProjectRegistry()


@pytest.fixture
def config(tmp_path):
    """Pure defaults (no YAML), so tests do not depend on edits to config/router.yaml."""
    return RouterConfig(config_path=tmp_path / "missing.yaml")


@pytest.fixture
def make_config(tmp_path):
    def _factory(**overrides):
        return RouterConfig(config_path=tmp_path / "missing.yaml", overrides=overrides)
    return _factory
