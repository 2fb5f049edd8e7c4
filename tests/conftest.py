"""Shared pytest fixtures for strata tests.

Unit tests use in-memory layers; integration tests read the directory
layers under tests/fixtures/sample-layers.
"""

from pathlib import Path

import pytest

from strata_server.layers import DirectoryLayer, InMemoryLayer
from strata_server.merge import ResolutionStrategy
from strata_server.resolver import LayerResolutionEngine
from tests.helpers import make_specialist, make_topic

# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_layers(fixtures_dir: Path) -> Path:
    """Return path to the sample directory layers (base, override, broken)."""
    return fixtures_dir / "sample-layers"


# =============================================================================
# Layer Fixtures
# =============================================================================


@pytest.fixture
def base_layer() -> InMemoryLayer:
    """Low-precedence layer with the canonical dean-debug."""
    return InMemoryLayer(
        "base",
        100,
        items=[
            make_specialist(
                "dean-debug",
                title="Dean Debug",
                role="Performance Specialist",
                when_to_use=["performance issues"],
                primary=["performance tuning"],
                body="Base body.",
            ),
            make_specialist("alex-architect", title="Alex Architect"),
        ],
    )


@pytest.fixture
def override_layer() -> InMemoryLayer:
    """High-precedence layer redefining dean-debug."""
    return InMemoryLayer(
        "override",
        10,
        items=[
            make_specialist(
                "dean-debug",
                title="Dean Debug (Reports)",
                when_to_use=["slow reports"],
                primary=["report tuning"],
                body="Override body.",
            ),
        ],
    )


@pytest.fixture
def gated_topics_layer() -> InMemoryLayer:
    """Topics gated on presence/absence of the telemetry-tool capability."""
    return InMemoryLayer(
        "topics",
        100,
        items=[
            make_topic("always-shown"),
            make_topic("manual-timing", conditional_capability_missing="telemetry-tool"),
            make_topic("telemetry-analysis", conditional_capability="telemetry-tool"),
        ],
    )


@pytest.fixture
def make_engine():
    """Factory: make_engine(*layers, strategy="override", capabilities=None)."""

    def _make(*layers, strategy="override", capabilities=None, **strategy_options):
        return LayerResolutionEngine(
            strategy=ResolutionStrategy(conflict_resolution=strategy, **strategy_options),
            layers=layers,
            capabilities=capabilities,
        )

    return _make


@pytest.fixture
def directory_layers(sample_layers: Path) -> list[DirectoryLayer]:
    """The base (priority 100) and override (priority 10) directory layers."""
    return [
        DirectoryLayer("base", 100, sample_layers / "base"),
        DirectoryLayer("override", 10, sample_layers / "override"),
    ]
