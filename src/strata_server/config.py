"""Strata Knowledge Server Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    STRATA_CONFIG_PATH: Path to config file (default: strata-config.yaml in server dir)
    STRATA_PROJECT_LAYER_PATH: Directory registered as the "project" layer
    STRATA_CAPABILITIES: Comma-separated capability names (replaces config list)

Configuration Schema:
    layers: list - Content layers, each:
        name: str - Unique layer name
        type: str - "embedded" or "local"
        path: str - Directory (local layers only)
        priority: int - Lower value wins conflicts
        enabled: bool - Skip the layer when false (default: true)
        supported_kinds: list - Subset of topics/specialists/workflows
    project_layer:
        path: str - Project layer directory (default: ".strata")
        auto_detect: bool - Register it when the directory exists
    resolution:
        conflict_resolution: str - override | merge | extend
        inherit_collaborations: bool
        merge_expertise: bool
    discovery:
        max_results: int - Default suggestion count (default: 3)
        include_alternatives: bool
        default_specialists: list - Ids suggested for an empty context
    capabilities: list - Available companion capabilities
    server:
        log_level: str - Logging level (default: "INFO")
        watch: bool - Reload local layers when their files change
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from strata_server.capabilities import normalize_capabilities
from strata_server.discovery import DEFAULT_SPECIALISTS
from strata_server.errors import ConfigurationError
from strata_server.layers import ContentLayer, DirectoryLayer, LayerPriority
from strata_server.merge import ResolutionStrategy
from strata_server.resolver import LayerResolutionEngine

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "strata-config.yaml"

# Layer source types this server can read; git/http/npm sources are not built in
SUPPORTED_LAYER_TYPES = ("embedded", "local")

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "layers": [
        {
            "name": "embedded",
            "type": "embedded",
            "priority": int(LayerPriority.EMBEDDED),
            "enabled": True,
        },
    ],
    "project_layer": {
        "path": ".strata",
        "auto_detect": True,
    },
    "resolution": {
        "conflict_resolution": "override",
        "inherit_collaborations": True,
        "merge_expertise": False,
    },
    "discovery": {
        "max_results": 3,
        "include_alternatives": False,
        "default_specialists": list(DEFAULT_SPECIALISTS),
    },
    "capabilities": [],
    "server": {
        "log_level": "INFO",
        "watch": True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Lists are replaced, not concatenated: a config file that declares
    ``layers`` declares the full layer set.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """
    Resolve a path, making relative paths absolute from base_dir.

    Args:
        path: Path string (absolute or relative) or None
        base_dir: Base directory for relative path resolution

    Returns:
        Resolved absolute Path or None if path was None
    """
    if path is None:
        return None

    path_obj = Path(path).expanduser()
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def _read_config_file(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        file_config = yaml.safe_load(f) or {}
    if not isinstance(file_config, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return file_config


def load_config(
    config_path: Optional[str] = None,
    server_dir: Optional[Path] = None
) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from STRATA_CONFIG_PATH or config_path parameter)
    3. Environment variable overrides (STRATA_PROJECT_LAYER_PATH,
       STRATA_CAPABILITIES)

    Args:
        config_path: Explicit config file path (overrides STRATA_CONFIG_PATH)
        server_dir: Directory for relative path resolution and default
            config file lookup (default: current working directory)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file is invalid YAML

    Examples:
        # Load with defaults (no config file required)
        config = load_config()

        # Load from specific file
        config = load_config("/path/to/strata-config.yaml")
    """
    if server_dir is None:
        server_dir = Path.cwd()

    # Start with defaults
    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("STRATA_CONFIG_PATH")

    if file_path:
        # Explicit config path - must be valid if it exists
        resolved_path = _resolve_path(file_path, server_dir)
        if resolved_path and resolved_path.exists():
            try:
                config = _deep_merge(config, _read_config_file(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except IOError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        # Check for default config file (optional)
        default_config_path = server_dir / CONFIG_FILENAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_config_file(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except (yaml.YAMLError, ConfigurationError) as e:
                logger.warning(f"Invalid default config (ignoring): {e}")
            except IOError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    # Apply environment variable overrides
    project_path_override = os.environ.get("STRATA_PROJECT_LAYER_PATH")
    if project_path_override:
        layers = [l for l in config.get("layers") or [] if l.get("name") != "project"]
        layers.append(
            {
                "name": "project",
                "type": "local",
                "path": project_path_override,
                "priority": int(LayerPriority.PROJECT),
                "enabled": True,
            }
        )
        config["layers"] = layers
        logger.info(f"Project layer override from env: {project_path_override}")

    capabilities_override = os.environ.get("STRATA_CAPABILITIES")
    if capabilities_override is not None:
        config["capabilities"] = list(normalize_capabilities(capabilities_override))
        logger.info(f"Capabilities override from env: {config['capabilities']}")

    # Resolve local layer paths
    for layer in config.get("layers") or []:
        if layer.get("path"):
            layer["path"] = str(_resolve_path(layer["path"], server_dir))

    project = config.get("project_layer") or {}
    if project.get("path"):
        project["path"] = str(_resolve_path(project["path"], server_dir))

    return config


def get_embedded_content_path() -> Path:
    """Directory of the content shipped inside the package."""
    return Path(__file__).parent / "embedded"


def get_resolution_strategy(config: Dict[str, Any]) -> ResolutionStrategy:
    """
    Build the resolution strategy from config.

    Raises:
        ConfigurationError: If conflict_resolution is unknown
    """
    return ResolutionStrategy.from_dict(config.get("resolution"))


def get_discovery_config(config: Dict[str, Any]) -> Dict[str, Any]:
    discovery = config.get("discovery", {})
    return {
        "max_results": int(discovery.get("max_results", 3)),
        "include_alternatives": bool(discovery.get("include_alternatives", False)),
        "default_specialists": [
            str(s) for s in discovery.get("default_specialists", DEFAULT_SPECIALISTS) or []
        ],
    }


def get_capabilities(config: Dict[str, Any]) -> tuple:
    return normalize_capabilities(config.get("capabilities"))


def _build_layer(entry: Dict[str, Any]) -> ContentLayer:
    name = entry.get("name")
    if not name:
        raise ConfigurationError(f"Layer entry is missing a name: {entry}")

    layer_type = str(entry.get("type", "local")).lower()
    if layer_type not in SUPPORTED_LAYER_TYPES:
        raise ConfigurationError(
            f"Layer '{name}' has unsupported type '{layer_type}'. "
            f"Supported types: {list(SUPPORTED_LAYER_TYPES)}"
        )

    if layer_type == "embedded":
        root = get_embedded_content_path()
        default_priority = LayerPriority.EMBEDDED
    else:
        if not entry.get("path"):
            raise ConfigurationError(f"Local layer '{name}' requires a path")
        root = Path(entry["path"])
        default_priority = LayerPriority.PROJECT

    try:
        return DirectoryLayer(
            name=name,
            priority=int(entry.get("priority", default_priority)),
            root=root,
            enabled=bool(entry.get("enabled", True)),
            supported_kinds=entry.get("supported_kinds"),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid layer '{name}': {e}") from e


def build_layers(config: Dict[str, Any]) -> List[ContentLayer]:
    """
    Create layers from config.

    The auto-detected project layer is added when its directory exists and no
    configured layer is already named "project".

    Raises:
        ConfigurationError: For unsupported layer types or incomplete entries
    """
    layers = [_build_layer(entry) for entry in config.get("layers") or []]

    project = config.get("project_layer") or {}
    if project.get("auto_detect") and project.get("path"):
        project_root = Path(project["path"])
        if project_root.is_dir() and not any(l.name == "project" for l in layers):
            layers.append(
                DirectoryLayer("project", LayerPriority.PROJECT, project_root)
            )
            logger.info(f"Detected project layer at {project_root}")

    return layers


def build_engine(config: Dict[str, Any]) -> LayerResolutionEngine:
    """Create a resolution engine with every configured layer registered."""
    return LayerResolutionEngine(
        strategy=get_resolution_strategy(config),
        layers=build_layers(config),
        capabilities=get_capabilities(config),
    )
