"""
Health check module for the Strata MCP server.

Provides health status checks for diagnostics: layer sources on disk, layer
failures recorded during resolution, and config file validity.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from strata_server.config import CONFIG_FILENAME
from strata_server.layers import DirectoryLayer
from strata_server.resolver import LayerResolutionEngine

logger = logging.getLogger(__name__)


def check_layer_sources(engine: LayerResolutionEngine) -> dict[str, Any]:
    """
    Check each directory layer's source on disk.

    Compares the number of Markdown files on disk with the number of items
    the layer loaded; a mismatch means some files were skipped as malformed.

    Returns:
        Dictionary with:
        - status: "healthy" | "degraded" | "empty"
        - layers: Per-layer status ("healthy" | "missing" | "mismatch" |
          "disabled" | "not_loaded")
        - reason: Explanation
    """
    layers = {}
    for layer in engine.layers:
        if not isinstance(layer, DirectoryLayer):
            layers[layer.name] = {"status": "healthy", "type": type(layer).__name__}
            continue

        entry: dict[str, Any] = {"path": str(layer.root)}
        if not layer.enabled:
            entry["status"] = "disabled"
        elif not layer.root.exists():
            entry["status"] = "missing"
            entry["reason"] = "Layer directory not found"
        elif layer.load_result is None:
            entry["status"] = "not_loaded"
        else:
            file_count = layer.count_files()
            item_count = layer.count_items()
            entry["file_count"] = file_count
            entry["item_count"] = item_count
            if file_count == item_count:
                entry["status"] = "healthy"
            else:
                entry["status"] = "mismatch"
                entry["reason"] = (
                    f"{file_count - item_count} file(s) skipped or shadowed by duplicate ids"
                )
        layers[layer.name] = entry

    if not layers:
        return {"status": "empty", "layers": {}, "reason": "No layers registered"}

    problems = [
        name
        for name, entry in layers.items()
        if entry["status"] in ("missing", "mismatch")
    ]
    if problems:
        return {
            "status": "degraded",
            "layers": layers,
            "reason": f"Layer issues: {', '.join(problems)}",
        }
    return {"status": "healthy", "layers": layers, "reason": "All layer sources readable"}


def check_layer_failures(engine: LayerResolutionEngine) -> dict[str, Any]:
    """
    Report layers that failed during initialization or resolution.

    Returns:
        Dictionary with:
        - status: "healthy" | "degraded"
        - failures: LayerFailure.to_dict() per failed layer
    """
    failures = {name: f.to_dict() for name, f in engine.failures.items()}
    if failures:
        return {
            "status": "degraded",
            "failures": failures,
            "reason": f"{len(failures)} layer(s) failed and were skipped",
        }
    return {"status": "healthy", "failures": {}, "reason": "No layer failures"}


def check_config_validity(config_path: Path | None = None) -> dict[str, Any]:
    """
    Check configuration file validity.

    Returns:
        Dictionary with:
        - status: "valid" | "invalid" | "default"
        - path: Config file path
        - reason: Explanation
    """
    if config_path is None:
        env_path = os.environ.get("STRATA_CONFIG_PATH")
        config_path = Path(env_path) if env_path else Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        return {
            "status": "default",
            "path": str(config_path),
            "reason": "No config file, using defaults",
        }

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
        if data is not None and not isinstance(data, dict):
            return {
                "status": "invalid",
                "path": str(config_path),
                "reason": "Config file must contain a mapping",
            }
        return {
            "status": "valid",
            "path": str(config_path),
            "reason": "Configuration is valid YAML",
        }

    except yaml.YAMLError as e:
        return {
            "status": "invalid",
            "path": str(config_path),
            "reason": f"Invalid YAML: {e}",
        }

    except OSError as e:
        logger.error(f"Error checking config validity: {e}")
        return {
            "status": "invalid",
            "path": str(config_path),
            "reason": str(e),
        }


def get_health_status(
    engine: LayerResolutionEngine, config_path: Path | None = None
) -> dict[str, Any]:
    """
    Get health status of a Strata server instance.

    Returns:
        Dictionary with:
        - overall: "healthy" | "degraded" | "unhealthy"
        - layers: Layer source check
        - failures: Layer failure check
        - config: Config validity check
        - cache: Resolution cache statistics
        - timestamp: Check timestamp (ISO format)
    """
    layers = check_layer_sources(engine)
    failures = check_layer_failures(engine)
    config = check_config_validity(config_path)

    statuses = [layers.get("status"), failures.get("status"), config.get("status")]

    if all(s in ("healthy", "valid", "default") for s in statuses):
        overall = "healthy"
    elif any(s in ("invalid", "empty") for s in statuses):
        overall = "unhealthy"
    else:
        overall = "degraded"

    return {
        "overall": overall,
        "layers": layers,
        "failures": failures,
        "config": config,
        "cache": engine.cache.get_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
