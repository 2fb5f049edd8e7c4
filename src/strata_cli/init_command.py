"""The strata init command implementation."""

import shutil
from pathlib import Path

import typer
import yaml
from rich.panel import Panel

from strata_server.config import CONFIG_FILENAME
from strata_server.layers import KIND_DIRECTORIES, LayerPriority
from strata_server.merge import ConflictResolution

from .console import console, print_error, print_success, print_warning

STRATA_DIR = ".strata"

EXAMPLE_SPECIALIST = """---
id: dean-debug
title: Dean Debug
when_to_use:
  - slow reports
---

Project-specific notes for Dean. Under the "merge" strategy these lines
replace the embedded body while the lists above are unioned with it; under
"extend" they are appended as extended capabilities.
"""


def generate_config(strategy: str) -> dict:
    """Build the strata-config.yaml contents for a new project."""
    return {
        "layers": [
            {
                "name": "embedded",
                "type": "embedded",
                "priority": int(LayerPriority.EMBEDDED),
            },
            {
                "name": "project",
                "type": "local",
                "path": STRATA_DIR,
                "priority": int(LayerPriority.PROJECT),
            },
        ],
        "resolution": {
            "conflict_resolution": strategy,
            "inherit_collaborations": True,
        },
        "capabilities": [],
    }


def write_config(config_path: Path, config: dict) -> None:
    with open(config_path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=False, default_flow_style=False)


def scaffold_layer(layer_dir: Path, include_example: bool) -> list[Path]:
    """Create the kind directories of a project layer. Returns created paths."""
    created = []
    for directory in KIND_DIRECTORIES.values():
        path = layer_dir / directory
        path.mkdir(parents=True, exist_ok=True)
        created.append(path)

    if include_example:
        example = layer_dir / "specialists" / "dean-debug.md"
        example.write_text(EXAMPLE_SPECIALIST)
        created.append(example)
    return created


def init_command(
    strategy: str = typer.Option(
        ConflictResolution.MERGE.value,
        "--strategy",
        "-s",
        help="Conflict resolution: override, merge or extend",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing .strata directory",
    ),
    no_interactive: bool = typer.Option(
        False,
        "--no-interactive",
        "-y",
        help="Accept all defaults without prompting",
    ),
) -> None:
    """Initialize a Strata project layer in the current directory.

    Creates a .strata/ layer directory and a strata-config.yaml that layers it
    over the embedded content.
    """
    try:
        strategy = ConflictResolution(strategy.strip().lower()).value
    except ValueError:
        print_error(
            f"Unknown strategy '{strategy}'. "
            f"Choose from: {', '.join(s.value for s in ConflictResolution)}"
        )
        raise typer.Exit(1)

    cwd = Path.cwd()
    layer_dir = cwd / STRATA_DIR
    config_path = cwd / CONFIG_FILENAME

    if layer_dir.exists():
        if not force:
            print_error(f"{STRATA_DIR}/ already exists. Use --force to overwrite.")
            raise typer.Exit(1)
        print_warning(f"Overwriting existing {STRATA_DIR}/ directory...")
        shutil.rmtree(layer_dir)

    console.print(
        Panel(
            "[bold blue]Strata[/bold blue] - layered knowledge for AI agents\n\n"
            f"This will create a {STRATA_DIR}/ project layer with:\n"
            "  - topics/\n"
            "  - specialists/\n"
            "  - workflows/\n"
            f"and a {CONFIG_FILENAME} using the '{strategy}' strategy",
            title="Initializing Strata",
            border_style="blue",
        )
    )

    include_example = True
    if not no_interactive:
        include_example = typer.confirm(
            "Add an example specialist override (dean-debug)?", default=True
        )

    created = scaffold_layer(layer_dir, include_example)
    for path in created:
        print_success(f"Created {path.relative_to(cwd)}")

    if config_path.exists() and not force:
        print_warning(
            f"Kept existing {CONFIG_FILENAME} "
            "(add a 'project' local layer to it manually)"
        )
    else:
        write_config(config_path, generate_config(strategy))
        print_success(f"Created {CONFIG_FILENAME}")

    console.print(
        Panel(
            "[green]Strata initialized successfully![/green]\n\n"
            "[dim]Next steps:[/dim]\n"
            f"  1. Add Markdown files under {STRATA_DIR}/\n"
            "  2. Check resolution with 'strata layers'\n"
            "  3. Try 'strata suggest \"my reports are slow\"'",
            title="Success",
            border_style="green",
        )
    )
