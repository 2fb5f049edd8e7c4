#!/usr/bin/env python3
"""
Strata Knowledge MCP Server

FastMCP server exposing layered knowledge (topics, specialists, workflows)
and specialist discovery via Model Context Protocol.

Features:
- Layered content resolution (embedded < company < team < project)
- Specialist suggestion and compound token search
- Keyword topic search
- Capability-conditional topics (set_capabilities)
- Automatic reload via file watcher on local layers
- Manual reload via reload_layers tool
"""

import asyncio
import logging
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path

from mcp.server.fastmcp import FastMCP
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from strata_server.config import (
    build_engine,
    get_discovery_config,
    load_config,
)
from strata_server.content import ContentKind
from strata_server.discovery import DiscoveryHints, SpecialistDiscoveryEngine
from strata_server.formatter import format_suggestions
from strata_server.health_check import get_health_status as _get_health_status
from strata_server.layers import DirectoryLayer
from strata_server.resolver import LayerResolutionEngine
from strata_server.topics import DEFAULT_LIMIT, search_topics as _search_topics

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("strata-knowledge")

# Load configuration
# Priority: STRATA_CONFIG_PATH env var > ./strata-config.yaml > defaults
server_config = load_config()
discovery_config = get_discovery_config(server_config)

# Engines (global state, swapped atomically on reload)
engine: LayerResolutionEngine = build_engine(server_config)
discovery = SpecialistDiscoveryEngine(
    engine,
    max_results=discovery_config["max_results"],
    default_specialists=discovery_config["default_specialists"],
)

# Reload state management
_reload_lock = threading.Lock()
_last_reload_time = time.time()
_debounce_timer: threading.Timer | None = None
_last_manual_reload = 0.0
MIN_MANUAL_RELOAD_INTERVAL = 10.0  # Minimum 10 seconds between manual reloads

# Shutdown management (graceful shutdown on SIGTERM/SIGINT)
_shutdown_event = threading.Event()
_observer: Observer | None = None


def _topic_summary(topic) -> dict:
    return {
        "id": topic.id,
        "title": topic.title,
        "domain": topic.domain,
        "tags": topic.tags,
        "difficulty": topic.difficulty,
        "source_layer": topic.source_layer,
    }


def _specialist_summary(specialist) -> dict:
    return {
        "id": specialist.id,
        "title": specialist.title,
        "role": specialist.role,
        "emoji": specialist.emoji,
        "domains": specialist.domains,
        "source_layer": specialist.source_layer,
    }


class LayerFileEventHandler(FileSystemEventHandler):
    """
    File watcher event handler for local layer directories.

    Debounces batches of changes into a single reload. Only Markdown file
    creation, modification, deletion and moves are considered.
    """

    def __init__(self, debounce_seconds: float = 3.0):
        super().__init__()
        self.debounce_seconds = debounce_seconds
        self._pending_events: set[str] = set()

    def _should_process(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        return Path(event.src_path).suffix == ".md"

    def _handle_event(self, event: FileSystemEvent):
        if not self._should_process(event):
            return

        logger.info(f"File {event.event_type}: {Path(event.src_path).name}")
        self._pending_events.add(event.src_path)

        global _debounce_timer
        if _debounce_timer is not None:
            _debounce_timer.cancel()

        _debounce_timer = threading.Timer(self.debounce_seconds, self._trigger_reload)
        _debounce_timer.start()

    def on_modified(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_created(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent):
        self._handle_event(event)

    def _trigger_reload(self):
        if not self._pending_events:
            return

        logger.info(
            f"Debounce period complete - triggering reload "
            f"({len(self._pending_events)} file(s) changed)"
        )
        self._pending_events.clear()
        _reload_layers()


def _reload_layers() -> dict:
    """
    Rebuild the engines from configuration (atomic swap).

    A fresh engine is built and initialized off to the side, then swapped in.
    The capability set currently in effect is carried over, since the host
    may have changed it since startup.
    """
    global engine, discovery, server_config, _last_reload_time

    with _reload_lock:
        try:
            start_time = time.time()
            logger.info("=== Starting layer reload ===")

            new_config = load_config()
            new_engine = build_engine(new_config)
            new_engine.set_capabilities(engine.capabilities)
            results = asyncio.run(new_engine.initialize())
            new_discovery_config = get_discovery_config(new_config)
            new_discovery = SpecialistDiscoveryEngine(
                new_engine,
                max_results=new_discovery_config["max_results"],
                default_specialists=new_discovery_config["default_specialists"],
            )

            old_layers = len(engine.layers)
            engine = new_engine
            discovery = new_discovery
            server_config = new_config
            _last_reload_time = time.time()

            elapsed_ms = (time.time() - start_time) * 1000
            logger.info(
                f"=== Reload complete: {old_layers} -> {len(new_engine.layers)} layers "
                f"({elapsed_ms:.1f}ms) ==="
            )
            return {
                "success": True,
                "layers": {name: r.to_dict() for name, r in results.items()},
                "elapsed_ms": elapsed_ms,
                "timestamp": datetime.now().isoformat(),
            }

        except Exception as e:
            logger.error(f"Reload failed: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "timestamp": datetime.now().isoformat(),
            }


# =============================================================================
# Topics
# =============================================================================


@mcp.tool()
async def get_topic(topic_id: str) -> dict:
    """
    Get one knowledge topic by id, as resolved across layers.

    Args:
        topic_id: Topic id (e.g., "testing/naming-conventions")

    Returns:
        Dictionary with:
        - topic: Full topic (body included), or None
        - error: Present when the topic is not found
    """
    try:
        logger.info(f"get_topic called: topic_id={topic_id}")
        topic = await engine.resolve_one(ContentKind.TOPIC, topic_id)
        if topic is None:
            return {"topic": None, "error": f"Topic not found: {topic_id}"}
        return {"topic": topic.to_dict()}

    except Exception as e:
        logger.error(f"Error in get_topic: {e}", exc_info=True)
        return {"topic": None, "error": str(e)}


@mcp.tool()
async def list_topics(
    domain: str | None = None, tag: str | None = None, layer: str | None = None
) -> dict:
    """
    List available topics (merged across layers, capability-filtered).

    Args:
        domain: Only topics in this domain
        tag: Only topics carrying this tag
        layer: Only this layer's own topics (unmerged)

    Returns:
        Dictionary with:
        - topics: Topic summaries (no body)
        - count: Number of topics
    """
    try:
        logger.info(f"list_topics called: domain={domain}, tag={tag}, layer={layer}")
        if layer:
            topics = await engine.get_items_from_layer(layer, ContentKind.TOPIC)
        else:
            topics = list((await engine.resolve_all(ContentKind.TOPIC)).values())

        if domain:
            topics = [t for t in topics if t.domain.lower() == domain.lower()]
        if tag:
            topics = [t for t in topics if tag.lower() in (x.lower() for x in t.tags)]

        summaries = [_topic_summary(t) for t in topics]
        return {"topics": summaries, "count": len(summaries)}

    except Exception as e:
        logger.error(f"Error in list_topics: {e}", exc_info=True)
        return {"topics": [], "count": 0, "error": str(e)}


@mcp.tool()
async def search_topics(
    query: str,
    domain: str | None = None,
    tags: list[str] | None = None,
    limit: int = DEFAULT_LIMIT,
) -> dict:
    """
    Search topics by keyword (merged across layers, capability-filtered).

    Args:
        query: Free-text keywords matched against title, tags, domain and body
        domain: Only topics in this domain
        tags: Only topics carrying at least one of these tags
        limit: Maximum number of results

    Returns:
        Dictionary with:
        - topics: Matching topic summaries with score and matched keywords
        - count: Number of results
    """
    try:
        logger.info(
            f"search_topics called: query={query[:80]}, domain={domain}, tags={tags}"
        )
        matches = await _search_topics(
            engine, query, domain=domain, tags=tags, limit=limit
        )
        results = [m.to_dict() for m in matches]
        return {"topics": results, "count": len(results), "query": query}

    except Exception as e:
        logger.error(f"Error in search_topics: {e}", exc_info=True)
        return {"topics": [], "count": 0, "query": query, "error": str(e)}


# =============================================================================
# Specialists
# =============================================================================


@mcp.tool()
async def get_specialist(name: str, include_collaborators: bool = True) -> dict:
    """
    Get a specialist by id or informal name ("dean" finds "dean-debug").

    Args:
        name: Specialist id, first name, or part of the title
        include_collaborators: Resolve natural handoffs and team consultations

    Returns:
        Dictionary with:
        - specialist: Full specialist, or None
        - collaborators: Resolved collaborator summaries per group
    """
    try:
        logger.info(f"get_specialist called: name={name}")
        specialist = await discovery.find_by_name(name)
        if specialist is None:
            return {"specialist": None, "error": f"Specialist not found: {name}"}

        result = {"specialist": specialist.to_dict()}
        if include_collaborators:
            options = await discovery.collaboration_options(specialist)
            result["collaborators"] = {
                group: [_specialist_summary(s) for s in members]
                for group, members in options.items()
            }
        return result

    except Exception as e:
        logger.error(f"Error in get_specialist: {e}", exc_info=True)
        return {"specialist": None, "error": str(e)}


@mcp.tool()
async def list_specialists(domain: str | None = None, by_category: bool = False) -> dict:
    """
    List specialists, optionally filtered by domain or grouped by category.

    Returns:
        Dictionary with:
        - specialists: Specialist summaries (when by_category is False)
        - categories: Domain -> summaries (when by_category is True)
        - count: Number of specialists
    """
    try:
        logger.info(f"list_specialists called: domain={domain}, by_category={by_category}")
        if by_category:
            categories = await discovery.specialists_by_category()
            return {
                "categories": {
                    name: [_specialist_summary(s) for s in members]
                    for name, members in categories.items()
                },
                "count": sum(len(m) for m in categories.values()),
            }

        if domain:
            specialists = await discovery.specialists_by_domain(domain)
        else:
            specialists = list(
                (await engine.resolve_all(ContentKind.SPECIALIST)).values()
            )
        summaries = [_specialist_summary(s) for s in specialists]
        return {"specialists": summaries, "count": len(summaries)}

    except Exception as e:
        logger.error(f"Error in list_specialists: {e}", exc_info=True)
        return {"specialists": [], "count": 0, "error": str(e)}


@mcp.tool()
async def suggest_specialist(
    query: str,
    domain: str | None = None,
    urgency: str | None = None,
    max_results: int | None = None,
    include_alternatives: bool | None = None,
) -> dict:
    """
    Suggest the specialists best suited to a problem description.

    Args:
        query: The user's problem in their own words
        domain: Domain the user is currently working in (hint)
        urgency: "high" favours quick, direct specialists (hint)
        max_results: Number of suggestions (default from config)
        include_alternatives: Also return the next-best matches

    Returns:
        Dictionary with:
        - suggestions: Ranked suggestions with confidence and reasons
        - alternatives: Next-best suggestions (when requested)
        - formatted: XML-formatted suggestions for direct injection
    """
    try:
        logger.info(f"suggest_specialist called: query={query[:80]}, domain={domain}")
        if include_alternatives is None:
            include_alternatives = discovery_config["include_alternatives"]

        result = await discovery.suggest(
            query,
            hints=DiscoveryHints(domain=domain, urgency=urgency),
            max_results=max_results,
            include_alternatives=include_alternatives,
        )
        data = result.to_dict()
        data["count"] = len(result.suggestions)
        data["formatted"] = format_suggestions(data, message=query)
        return data

    except Exception as e:
        logger.error(f"Error in suggest_specialist: {e}", exc_info=True)
        return {"suggestions": [], "alternatives": [], "count": 0, "error": str(e)}


@mcp.tool()
async def search_specialists(query: str) -> dict:
    """
    Search specialists with a compound query ("naming and error handling").

    Matching is lexical and unranked: any query word longer than three
    characters that overlaps a specialist's title, role, expertise, domains
    or use cases is a match.
    """
    try:
        logger.info(f"search_specialists called: query={query[:80]}")
        matches = await discovery.search_by_tokens(query)
        return {
            "specialists": [_specialist_summary(s) for s in matches],
            "count": len(matches),
            "query": query,
        }

    except Exception as e:
        logger.error(f"Error in search_specialists: {e}", exc_info=True)
        return {"specialists": [], "count": 0, "query": query, "error": str(e)}


# =============================================================================
# Workflows
# =============================================================================


@mcp.tool()
async def get_workflow(workflow_id: str) -> dict:
    """Get a workflow recipe (phases and specialist hints) by id."""
    try:
        logger.info(f"get_workflow called: workflow_id={workflow_id}")
        workflow = await engine.resolve_one(ContentKind.WORKFLOW, workflow_id)
        if workflow is None:
            return {"workflow": None, "error": f"Workflow not found: {workflow_id}"}
        return {"workflow": workflow.to_dict()}

    except Exception as e:
        logger.error(f"Error in get_workflow: {e}", exc_info=True)
        return {"workflow": None, "error": str(e)}


@mcp.tool()
async def list_workflows() -> dict:
    """List available workflows."""
    try:
        workflows = await engine.resolve_all(ContentKind.WORKFLOW)
        summaries = [
            {
                "id": w.id,
                "name": w.name,
                "type": w.type,
                "description": w.description,
                "phase_count": len(w.phases),
                "source_layer": w.source_layer,
            }
            for w in workflows.values()
        ]
        return {"workflows": summaries, "count": len(summaries)}

    except Exception as e:
        logger.error(f"Error in list_workflows: {e}", exc_info=True)
        return {"workflows": [], "count": 0, "error": str(e)}


# =============================================================================
# Administration
# =============================================================================


@mcp.tool()
async def set_capabilities(capabilities: list[str]) -> dict:
    """
    Report which companion capabilities (tools) are available.

    Replaces the whole capability set. Topics conditional on a capability
    appear or disappear accordingly.

    Args:
        capabilities: Capability names, e.g. ["telemetry-tool"]
    """
    try:
        previous = list(engine.capabilities)
        current = engine.set_capabilities(capabilities)
        return {"success": True, "previous": previous, "capabilities": list(current)}

    except Exception as e:
        logger.error(f"Error in set_capabilities: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def get_layer_statistics() -> dict:
    """
    Get per-layer diagnostics: priority, item counts, load and collect
    timings, last failure, plus resolution cache statistics.
    """
    try:
        await engine.initialize()
        return engine.get_layer_statistics()

    except Exception as e:
        logger.error(f"Error in get_layer_statistics: {e}", exc_info=True)
        return {"layers": [], "error": str(e)}


@mcp.tool()
async def reload_layers() -> dict:
    """
    Reload configuration and every layer from disk.

    Rate limited to once per MIN_MANUAL_RELOAD_INTERVAL seconds.
    """
    global _last_manual_reload

    now = time.time()
    if now - _last_manual_reload < MIN_MANUAL_RELOAD_INTERVAL:
        wait = MIN_MANUAL_RELOAD_INTERVAL - (now - _last_manual_reload)
        return {
            "success": False,
            "error": f"Reload rate limited - try again in {wait:.0f}s",
        }
    _last_manual_reload = now

    # Reload runs its own event loop for initialization
    return await asyncio.to_thread(_reload_layers)


@mcp.tool()
async def get_health_status() -> dict:
    """
    Get health status: layer sources, layer failures, config validity and
    cache statistics.

    Returns:
        Dictionary with overall "healthy" | "degraded" | "unhealthy" plus
        the individual checks
    """
    try:
        return _get_health_status(engine)

    except Exception as e:
        logger.error(f"Error in get_health_status: {e}", exc_info=True)
        return {"overall": "unknown", "error": str(e)}


# =============================================================================
# Lifecycle
# =============================================================================


def _watched_paths() -> list[Path]:
    """Local layer roots that exist on disk (the embedded layer never changes)."""
    paths = []
    embedded = Path(__file__).parent / "embedded"
    for layer in engine.layers:
        if isinstance(layer, DirectoryLayer) and layer.root.is_dir():
            if layer.root.resolve() != embedded.resolve():
                paths.append(layer.root)
    return paths


def _start_file_watcher():
    """
    Start watchdog observer for local layer directories.

    Runs in background thread with 3-second debouncing.
    Respects shutdown event for graceful termination.
    """
    global _observer

    paths = _watched_paths()
    if not paths:
        logger.info("No local layer directories to watch")
        return

    try:
        event_handler = LayerFileEventHandler(debounce_seconds=3.0)
        _observer = Observer()
        for path in paths:
            _observer.schedule(event_handler, str(path), recursive=True)
            logger.info(f"File watcher started: {path}")
        _observer.start()

        while not _shutdown_event.is_set():
            time.sleep(1)

        logger.info("File watcher shutting down...")
        _observer.stop()
        _observer.join(timeout=5)
        logger.info("File watcher stopped")

    except Exception as e:
        logger.error(f"File watcher error: {e}", exc_info=True)


def _signal_handler(sig, frame):
    """Graceful shutdown handler for SIGTERM/SIGINT signals."""
    logger.info(
        f"Received signal {sig} ({signal.Signals(sig).name}), initiating graceful shutdown..."
    )

    _shutdown_event.set()

    global _debounce_timer
    if _debounce_timer is not None:
        _debounce_timer.cancel()
        logger.info("Cancelled pending debounce timer")

    logger.info("Shutdown complete")
    sys.exit(0)


def main():
    """Main entry point for strata-server CLI command.

    Starts the Strata Knowledge MCP Server with:
    - Layer loading
    - File watcher for auto-reload of local layers
    - Signal handlers for graceful shutdown
    """
    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    log_level = str(server_config.get("server", {}).get("log_level", "INFO")).upper()
    logging.getLogger().setLevel(log_level)

    logger.info("=== Starting Strata Knowledge MCP Server ===")
    for layer in engine.layers:
        logger.info(f"Layer: {layer!r}")

    results = asyncio.run(engine.initialize())
    failed = [name for name, r in results.items() if not r.success]
    if failed:
        logger.warning(f"Layers not loaded: {', '.join(failed)}")

    stats = engine.get_layer_statistics()
    counts = stats["total"]["content_counts"]
    if not counts.get(ContentKind.SPECIALIST.value):
        # Not fatal: an empty layer set degrades to "nothing resolves"
        logger.warning("No specialists loaded - suggestions will be empty")
    logger.info(f"Content loaded: {counts}")
    logger.info(f"Capabilities: {list(engine.capabilities)}")

    if server_config.get("server", {}).get("watch", True):
        watcher_thread = threading.Thread(
            target=_start_file_watcher, daemon=True, name="FileWatcher"
        )
        watcher_thread.start()

    logger.info("MCP server ready - listening for tool calls")
    mcp.run()


if __name__ == "__main__":
    main()
