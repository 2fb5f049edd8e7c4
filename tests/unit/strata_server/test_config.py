"""Unit tests for strata server config module.

Tests YAML configuration loading, environment variable overrides,
path resolution and layer construction.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from strata_server.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG,
    _deep_merge,
    _resolve_path,
    build_engine,
    build_layers,
    get_capabilities,
    get_discovery_config,
    get_embedded_content_path,
    get_resolution_strategy,
    load_config,
)
from strata_server.errors import ConfigurationError
from strata_server.layers import DirectoryLayer, LayerPriority
from strata_server.merge import ConflictResolution


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestDeepMerge:
    """Tests for _deep_merge helper function."""

    def test_merge_nested_dicts(self):
        """Merge nested dictionaries."""
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3}}

        assert _deep_merge(base, override) == {"outer": {"a": 1, "b": 3}}

    def test_lists_are_replaced(self):
        """A declared list replaces the default list wholesale."""
        base = {"layers": [{"name": "embedded"}]}
        override = {"layers": [{"name": "team"}]}

        assert _deep_merge(base, override) == {"layers": [{"name": "team"}]}

    def test_merge_does_not_modify_base(self):
        """Merge should not modify the base dictionary."""
        base = {"a": 1}
        original_base = base.copy()

        _deep_merge(base, {"b": 2})

        assert base == original_base


class TestResolvePath:
    """Tests for _resolve_path helper function."""

    def test_resolve_none_returns_none(self, tmp_path: Path):
        assert _resolve_path(None, tmp_path) is None

    def test_resolve_absolute_path(self, tmp_path: Path):
        absolute = "/absolute/path/to/layer"
        assert _resolve_path(absolute, tmp_path) == Path(absolute)

    def test_resolve_relative_path(self, tmp_path: Path):
        """Resolve relative path makes it absolute from base_dir."""
        result = _resolve_path("layers/team", tmp_path)
        assert result == (tmp_path / "layers/team").resolve()

    def test_expands_home(self, tmp_path: Path):
        result = _resolve_path("~/strata", tmp_path)
        assert result == Path("~/strata").expanduser()


class TestDefaultConfig:
    """Tests for DEFAULT_CONFIG structure."""

    def test_default_layer_is_embedded(self):
        assert [l["type"] for l in DEFAULT_CONFIG["layers"]] == ["embedded"]

    def test_default_strategy_is_override(self):
        assert DEFAULT_CONFIG["resolution"]["conflict_resolution"] == "override"

    def test_default_discovery_limit_is_3(self):
        assert DEFAULT_CONFIG["discovery"]["max_results"] == 3


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_returns_defaults_without_file(self, tmp_path: Path):
        """Load returns defaults when no config file exists."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(server_dir=tmp_path)

        assert config["discovery"]["max_results"] == 3
        assert config["capabilities"] == []

    def test_defaults_are_not_shared(self, tmp_path: Path):
        """Mutating a loaded config must not leak into DEFAULT_CONFIG."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(server_dir=tmp_path)
        config["layers"].append({"name": "scratch"})

        assert len(DEFAULT_CONFIG["layers"]) == 1

    def test_load_from_explicit_path(self, tmp_path: Path):
        config_path = write_yaml(
            tmp_path / "custom.yaml", {"discovery": {"max_results": 7}}
        )

        with patch.dict(os.environ, {}, clear=True):
            config = load_config(str(config_path), server_dir=tmp_path)

        assert config["discovery"]["max_results"] == 7
        assert config["discovery"]["include_alternatives"] is False

    def test_load_from_env_var(self, tmp_path: Path):
        config_path = write_yaml(
            tmp_path / "env.yaml", {"resolution": {"conflict_resolution": "merge"}}
        )

        with patch.dict(os.environ, {"STRATA_CONFIG_PATH": str(config_path)}, clear=True):
            config = load_config(server_dir=tmp_path)

        assert config["resolution"]["conflict_resolution"] == "merge"

    def test_load_default_config_file(self, tmp_path: Path):
        write_yaml(tmp_path / CONFIG_FILENAME, {"capabilities": ["telemetry-tool"]})

        with patch.dict(os.environ, {}, clear=True):
            config = load_config(server_dir=tmp_path)

        assert config["capabilities"] == ["telemetry-tool"]

    def test_invalid_default_file_is_ignored(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("layers: [unclosed\n")

        with patch.dict(os.environ, {}, clear=True):
            config = load_config(server_dir=tmp_path)

        assert config["discovery"]["max_results"] == 3

    def test_load_invalid_yaml_raises(self, tmp_path: Path):
        """An explicit config file must be valid."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("layers: [unclosed\n")

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="Invalid YAML"):
                load_config(str(config_path), server_dir=tmp_path)

    def test_non_mapping_file_raises(self, tmp_path: Path):
        config_path = write_yaml(tmp_path / "list.yaml", ["embedded", "project"])

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="mapping"):
                load_config(str(config_path), server_dir=tmp_path)

    def test_missing_explicit_file_uses_defaults(self, tmp_path: Path):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(str(tmp_path / "absent.yaml"), server_dir=tmp_path)

        assert config["resolution"]["conflict_resolution"] == "override"

    def test_relative_layer_paths_resolved(self, tmp_path: Path):
        config_path = write_yaml(
            tmp_path / CONFIG_FILENAME,
            {"layers": [{"name": "team", "type": "local", "path": "team-layer"}]},
        )

        with patch.dict(os.environ, {}, clear=True):
            config = load_config(str(config_path), server_dir=tmp_path)

        assert config["layers"][0]["path"] == str((tmp_path / "team-layer").resolve())
        assert config["project_layer"]["path"] == str((tmp_path / ".strata").resolve())

    def test_project_layer_env_override(self, tmp_path: Path):
        with patch.dict(
            os.environ, {"STRATA_PROJECT_LAYER_PATH": str(tmp_path / "proj")}, clear=True
        ):
            config = load_config(server_dir=tmp_path)

        project = [l for l in config["layers"] if l["name"] == "project"]
        assert len(project) == 1
        assert project[0]["type"] == "local"
        assert project[0]["path"] == str(tmp_path / "proj")

    def test_capabilities_env_override(self, tmp_path: Path):
        write_yaml(tmp_path / CONFIG_FILENAME, {"capabilities": ["other"]})

        with patch.dict(
            os.environ, {"STRATA_CAPABILITIES": " telemetry-tool, ,tracer,tracer"}, clear=True
        ):
            config = load_config(server_dir=tmp_path)

        assert config["capabilities"] == ["telemetry-tool", "tracer"]


class TestConfigAccessors:
    """Tests for the section accessors."""

    def test_resolution_strategy(self):
        strategy = get_resolution_strategy(
            {"resolution": {"conflict_resolution": "Extend", "inherit_collaborations": False}}
        )

        assert strategy.conflict_resolution is ConflictResolution.EXTEND
        assert strategy.inherit_collaborations is False

    def test_unknown_strategy_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown conflict_resolution"):
            get_resolution_strategy({"resolution": {"conflict_resolution": "newest"}})

    def test_quoted_false_flag_raises(self):
        with pytest.raises(ConfigurationError, match="inherit_collaborations"):
            get_resolution_strategy(
                {"resolution": {"conflict_resolution": "merge", "inherit_collaborations": "false"}}
            )

    def test_discovery_config_handles_missing_section(self):
        assert get_discovery_config({}) == {
            "max_results": 3,
            "include_alternatives": False,
            "default_specialists": ["sam-coder", "alex-architect", "chris-config"],
        }

    def test_default_specialists_configurable(self):
        discovery = get_discovery_config({"discovery": {"default_specialists": ["dean-debug"]}})

        assert discovery["default_specialists"] == ["dean-debug"]

    def test_default_specialists_can_be_disabled(self):
        discovery = get_discovery_config({"discovery": {"default_specialists": []}})

        assert discovery["default_specialists"] == []

    def test_capabilities(self):
        assert get_capabilities({"capabilities": ["a", "a", " b "]}) == ("a", "b")

    def test_embedded_content_ships_with_package(self):
        path = get_embedded_content_path()

        assert path.name == "embedded"
        assert (path / "specialists").is_dir()


class TestBuildLayers:
    """Tests for layer construction from config."""

    def test_embedded_and_local(self, tmp_path: Path):
        config = {
            "layers": [
                {"name": "embedded", "type": "embedded"},
                {"name": "team", "type": "local", "path": str(tmp_path), "priority": 50},
            ]
        }

        layers = build_layers(config)

        assert [l.name for l in layers] == ["embedded", "team"]
        assert all(isinstance(l, DirectoryLayer) for l in layers)
        assert layers[0].root == get_embedded_content_path()
        assert layers[0].priority == 1000
        assert layers[1].priority == 50

    def test_supported_kinds_from_directory_names(self, tmp_path: Path):
        config = {
            "layers": [
                {
                    "name": "team",
                    "type": "local",
                    "path": str(tmp_path),
                    "supported_kinds": ["topics"],
                }
            ]
        }

        (layer,) = build_layers(config)

        assert layer.supports("topic")
        assert not layer.supports("specialist")

    @pytest.mark.parametrize("layer_type", ["git", "http", "npm"])
    def test_unsupported_type_raises(self, layer_type):
        config = {"layers": [{"name": "remote", "type": layer_type}]}

        with pytest.raises(ConfigurationError, match="unsupported type"):
            build_layers(config)

    def test_local_without_path_raises(self):
        with pytest.raises(ConfigurationError, match="requires a path"):
            build_layers({"layers": [{"name": "team", "type": "local"}]})

    def test_missing_name_raises(self):
        with pytest.raises(ConfigurationError, match="missing a name"):
            build_layers({"layers": [{"type": "embedded"}]})

    def test_unknown_kind_raises(self, tmp_path: Path):
        config = {
            "layers": [
                {"name": "t", "type": "local", "path": str(tmp_path), "supported_kinds": ["recipes"]}
            ]
        }

        with pytest.raises(ConfigurationError, match="Invalid layer 't'"):
            build_layers(config)

    def test_project_layer_auto_detected(self, tmp_path: Path):
        project_dir = tmp_path / ".strata"
        project_dir.mkdir()
        config = {
            "layers": [{"name": "embedded", "type": "embedded"}],
            "project_layer": {"path": str(project_dir), "auto_detect": True},
        }

        layers = build_layers(config)

        assert [l.name for l in layers] == ["embedded", "project"]
        assert layers[1].priority == LayerPriority.PROJECT

    def test_project_layer_absent_directory(self, tmp_path: Path):
        config = {
            "layers": [],
            "project_layer": {"path": str(tmp_path / ".strata"), "auto_detect": True},
        }

        assert build_layers(config) == []

    def test_explicit_project_layer_not_duplicated(self, tmp_path: Path):
        config = {
            "layers": [{"name": "project", "type": "local", "path": str(tmp_path)}],
            "project_layer": {"path": str(tmp_path), "auto_detect": True},
        }

        assert [l.name for l in build_layers(config)] == ["project"]

    def test_build_engine(self, tmp_path: Path):
        with patch.dict(os.environ, {"STRATA_CAPABILITIES": "telemetry-tool"}, clear=True):
            config = load_config(server_dir=tmp_path)

        engine = build_engine(config)

        assert [l.name for l in engine.layers] == ["embedded"]
        assert engine.capabilities == ("telemetry-tool",)
