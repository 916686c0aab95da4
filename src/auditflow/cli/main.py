"""
auditflow CLI.

Commands:
    auditflow version              - Show the installed version
    auditflow config show          - Print the effective configuration
    auditflow config init          - Write a default config file
    auditflow verify FILE          - Verify hashes of exported audit events
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich import box
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from auditflow import __version__
from auditflow.core.config import AuditFlowConfig, config_path, load_config
from auditflow.events.hashing import verify_event_hash
from auditflow.models import AuditEvent

console = Console()

app = typer.Typer(
    name="auditflow",
    help="Audit event pipeline and security threat detector",
    no_args_is_help=True,
)

config_app = typer.Typer(
    name="config",
    help="Configuration commands",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """auditflow - tamper-evident audit logging with threat detection."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@app.command()
def version():
    """Show the auditflow version."""
    console.print(f"auditflow [bold]{__version__}[/bold]")


# =============================================================================
# CONFIG
# =============================================================================


@config_app.command("show")
def config_show(
    project: Optional[Path] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory (defaults to the current directory)",
    ),
):
    """Print the effective configuration (file plus environment overrides)."""
    try:
        config = load_config(project)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    path = config_path(project)
    source = str(path) if path.exists() else "defaults"
    console.print(f"[dim]# source: {source}[/dim]")
    rendered = yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False)
    console.print(Syntax(rendered, "yaml", theme="ansi_dark"))


@config_app.command("init")
def config_init(
    project: Optional[Path] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory (defaults to the current directory)",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write the default configuration to .auditflow/config.yaml."""
    path = config_path(project)
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists:[/yellow] {path}")
        console.print("Use [bold]--force[/bold] to overwrite it.")
        raise typer.Exit(1)

    AuditFlowConfig().save(path)
    console.print(f"[green]Wrote default configuration to[/green] {path}")


# =============================================================================
# VERIFY
# =============================================================================


def _read_events(path: Path) -> list[dict[str, Any]]:
    """Load exported events from a JSON array or a JSON-lines file."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


@app.command()
def verify(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Exported events"),
    show_valid: bool = typer.Option(
        True,
        "--show-valid/--only-failures",
        help="Also list events whose hash verifies",
    ),
):
    """
    Verify the integrity hashes of exported audit events.

    Exits with status 1 if any event has been tampered with.
    """
    try:
        documents = _read_events(file)
    except json.JSONDecodeError as e:
        console.print(f"[red]Cannot parse {file}:[/red] {e}")
        raise typer.Exit(2)

    table = Table(title=f"Audit Events ({file.name})", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("User")
    table.add_column("Timestamp")
    table.add_column("Integrity")

    failures = 0
    for document in documents:
        try:
            event = AuditEvent.from_dict(document)
        except (KeyError, TypeError, ValueError) as e:
            failures += 1
            doc_id = document.get("id", "?") if isinstance(document, dict) else "?"
            table.add_row(str(doc_id), "-", "-", "-", f"[red]Malformed: {e}[/red]")
            continue

        valid = verify_event_hash(event)
        if not valid:
            failures += 1
        elif not show_valid:
            continue
        table.add_row(
            event.id,
            event.action,
            event.user_id,
            event.timestamp.isoformat(),
            "[green]OK[/green]" if valid else "[red]TAMPERED[/red]",
        )

    if table.row_count:
        console.print(table)

    if failures:
        console.print(f"[red]{failures} of {len(documents)} events failed verification[/red]")
        raise typer.Exit(1)
    console.print(f"[green]All {len(documents)} events verified[/green]")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
