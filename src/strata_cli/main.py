"""Strata CLI entry point."""

import asyncio
from typing import List, Optional

import typer

from strata_server.config import build_engine, get_discovery_config, load_config
from strata_server.content import ContentKind
from strata_server.discovery import DiscoveryHints, SpecialistDiscoveryEngine
from strata_server.errors import ConfigurationError
from strata_server.resolver import LayerResolutionEngine
from strata_server.topics import DEFAULT_LIMIT, search_topics

from . import __version__
from .console import (
    confidence_style,
    console,
    create_table,
    print_error,
    print_info,
    print_panel,
    print_warning,
)
from .init_command import init_command

app = typer.Typer(
    name="strata",
    help="Strata - layered knowledge and specialist discovery for AI agents",
    no_args_is_help=True,
)

# Options shared by every command (set by the callback)
_state = {"config_path": None}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"strata version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to strata-config.yaml",
        envvar="STRATA_CONFIG_PATH",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Strata - layered knowledge and specialist discovery for AI agents."""
    _state["config_path"] = config


def _load(capabilities: Optional[List[str]] = None):
    """Build engine + discovery from config, exiting on configuration errors."""
    try:
        config = load_config(_state["config_path"])
        engine = build_engine(config)
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    if capabilities:
        engine.set_capabilities(capabilities)
    discovery_config = get_discovery_config(config)
    discovery = SpecialistDiscoveryEngine(
        engine,
        max_results=discovery_config["max_results"],
        default_specialists=discovery_config["default_specialists"],
    )
    return engine, discovery


def _report_failures(engine: LayerResolutionEngine) -> None:
    for name, failure in engine.failures.items():
        print_warning(f"Layer '{name}' skipped: {failure.cause}")


@app.command()
def suggest(
    query: str = typer.Argument(..., help="Problem description"),
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Current domain hint"),
    urgency: Optional[str] = typer.Option(None, "--urgency", "-u", help="Urgency hint (e.g. high)"),
    max_results: Optional[int] = typer.Option(None, "--max", "-n", help="Number of suggestions"),
    alternatives: bool = typer.Option(False, "--alternatives", "-a", help="Show next-best matches"),
) -> None:
    """Suggest specialists for a problem description."""
    engine, discovery = _load()
    result = asyncio.run(
        discovery.suggest(
            query,
            hints=DiscoveryHints(domain=domain, urgency=urgency),
            max_results=max_results,
            include_alternatives=alternatives,
        )
    )
    _report_failures(engine)

    if not result.suggestions:
        print_info("No specialist matched. Try 'strata search' with a broader query.")
        return

    table = create_table("Suggested specialists", "Specialist", "Confidence", "Reasons", "Layer")
    rows = [(s, False) for s in result.suggestions] + [
        (s, True) for s in result.alternatives
    ]
    for suggestion, is_alternative in rows:
        specialist = suggestion.specialist
        style = confidence_style(suggestion.confidence)
        name = f"{specialist.emoji} {specialist.display_name}".strip()
        if is_alternative:
            name = f"[dim](alt)[/dim] {name}"
        table.add_row(
            name,
            f"[{style}]{round(suggestion.confidence * 100)}%[/{style}]",
            "\n".join(suggestion.reasons),
            specialist.source_layer,
        )
    console.print(table)


@app.command()
def search(query: str = typer.Argument(..., help="Compound query")) -> None:
    """Find specialists matching any word of a compound query."""
    engine, discovery = _load()
    matches = asyncio.run(discovery.search_by_tokens(query))
    _report_failures(engine)

    if not matches:
        print_info(f"No specialists matched: {query}")
        return

    table = create_table(f"Matches for '{query}'", "Id", "Title", "Role")
    for specialist in matches:
        table.add_row(specialist.id, specialist.title, specialist.role)
    console.print(table)


@app.command()
def specialists(
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Only this domain"),
    by_category: bool = typer.Option(False, "--by-category", help="Group by primary domain"),
) -> None:
    """List resolved specialists."""
    engine, discovery = _load()

    if by_category:
        categories = asyncio.run(discovery.specialists_by_category())
        for category, members in sorted(categories.items()):
            console.print(f"[bold]{category}[/bold]")
            for specialist in members:
                console.print(f"  {specialist.emoji} {specialist.display_name} ({specialist.id})")
        return

    if domain:
        members = asyncio.run(discovery.specialists_by_domain(domain))
    else:
        members = list(asyncio.run(engine.resolve_all(ContentKind.SPECIALIST)).values())
    _report_failures(engine)

    table = create_table("Specialists", "Id", "Title", "Role", "Layers")
    for specialist in members:
        table.add_row(
            specialist.id, specialist.title, specialist.role, " < ".join(specialist.layers)
        )
    console.print(table)


@app.command()
def topics(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Search by keywords"),
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Only this domain"),
    tag: Optional[List[str]] = typer.Option(
        None, "--tag", "-t", help="Only topics with this tag (repeatable)"
    ),
    limit: int = typer.Option(DEFAULT_LIMIT, "--limit", "-n", help="Maximum search results"),
    capability: Optional[List[str]] = typer.Option(
        None, "--capability", help="Treat a capability as available (repeatable)"
    ),
) -> None:
    """List or search resolved topics visible under the capability set."""
    engine, _ = _load(capabilities=capability)
    if query or tag:
        matches = asyncio.run(
            search_topics(engine, query or "", domain=domain, tags=tag, limit=limit)
        )
        _report_failures(engine)
        if not matches:
            print_info("No matching topics")
            return

        title = f"Topics matching '{query}'" if query else "Topics"
        table = create_table(title, "Id", "Title", "Score", "Layer")
        for match in matches:
            table.add_row(
                match.topic.id, match.topic.title, str(match.score), match.topic.source_layer
            )
        console.print(table)
        return

    resolved = asyncio.run(engine.resolve_all(ContentKind.TOPIC))
    _report_failures(engine)

    table = create_table("Topics", "Id", "Title", "Domain", "Layer")
    for topic in resolved.values():
        if domain and topic.domain.lower() != domain.lower():
            continue
        table.add_row(topic.id, topic.title, topic.domain, topic.source_layer)
    console.print(table)


@app.command()
def show(
    kind: str = typer.Argument(..., help="topic, specialist or workflow"),
    item_id: str = typer.Argument(..., help="Item id (specialists also accept a first name)"),
) -> None:
    """Show one resolved item."""
    try:
        content_kind = ContentKind.parse(kind)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    engine, discovery = _load()
    if content_kind is ContentKind.SPECIALIST:
        item = asyncio.run(discovery.find_by_name(item_id))
    else:
        item = asyncio.run(engine.resolve_one(content_kind, item_id))

    if item is None:
        print_error(f"{content_kind.value.capitalize()} not found: {item_id}")
        raise typer.Exit(1)

    title = getattr(item, "title", "") or getattr(item, "name", "") or item.id
    details = [f"[dim]id:[/dim] {item.id}", f"[dim]layers:[/dim] {' < '.join(item.layers)}"]
    if content_kind is ContentKind.SPECIALIST:
        details.append(f"[dim]role:[/dim] {item.role}")
        details.append(f"[dim]when to use:[/dim] {', '.join(item.when_to_use)}")
        details.append(f"[dim]primary expertise:[/dim] {', '.join(item.expertise.primary)}")
    elif content_kind is ContentKind.WORKFLOW:
        details.append(f"[dim]phases:[/dim] {len(item.phases)}")
    body = getattr(item, "body", "")
    print_panel(title, "\n".join(details) + (f"\n\n{body}" if body else ""))


@app.command()
def layers() -> None:
    """Show registered layers in precedence order with item counts."""
    engine, _ = _load()
    asyncio.run(engine.initialize())
    stats = engine.get_layer_statistics()

    table = create_table(
        f"Layers (strategy: {stats['strategy']['conflict_resolution']})",
        "#", "Name", "Priority", "Enabled", "Topics", "Specialists", "Workflows", "Status",
    )
    for layer in stats["layers"]:
        counts = layer["content_counts"]
        if layer["last_failure"]:
            status = f"[red]{layer['last_failure']['error']}[/red]"
        elif layer["load_error"]:
            status = f"[yellow]{layer['load_error']}[/yellow]"
        else:
            status = "[green]ok[/green]"
        table.add_row(
            str(layer["precedence"]),
            layer["name"],
            str(layer["priority"]),
            "yes" if layer["enabled"] else "no",
            str(counts.get("topic", 0)),
            str(counts.get("specialist", 0)),
            str(counts.get("workflow", 0)),
            status,
        )
    console.print(table)
    if stats["capabilities"]:
        print_info(f"Capabilities: {', '.join(stats['capabilities'])}")


# Register the init command
app.command(name="init")(init_command)


if __name__ == "__main__":
    app()
