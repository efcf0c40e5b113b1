"""
AdGovernor CLI - Main entry point.

Terminal tools for checking credentials, inspecting rate-limit budgets,
and traversing paged Graph API edges through the governor.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from adgovernor import __app_name__, __version__
from adgovernor.core.config import validate_config_file

# Load environment variables from .env (if present)
load_dotenv()

console = Console()
err_console = Console(stderr=True)

# Create main app
app = typer.Typer(
    name=__app_name__,
    help="Rate-limited, retrying, paginating Graph API access",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """AdGovernor - Graph API access governor."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import api, limits  # noqa: E402

app.add_typer(api.app, name="api", help="Call the Graph API through the governor")
app.add_typer(limits.app, name="limits", help="Inspect rate limit tiers and budgets")


# =============================================================================
# Init Command
# =============================================================================


DEFAULT_APP_CONFIG = """\
# AdGovernor Configuration

api:
  base_url: https://graph.facebook.com
  api_version: v23.0
  access_token: ${META_ACCESS_TOKEN}
  timeout_seconds: 30

rate_limit:
  # development | standard
  tier: ${META_API_TIER:-standard}

pagination:
  max_pages: 100
  collect_max_pages: 50
  max_items: 5000
  batch_size: 50
  batch_delay_ms: 1000

logging:
  level: INFO
  file: logs/adgovernor.log
  json_format: true
  rich_console: true
"""


@app.command()
def init(
    path: Path = typer.Option(
        Path("configs/app.yaml"),
        "--path",
        "-p",
        help="Where to write the configuration file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Write a default configuration file."""
    if path.exists() and not force:
        err_console.print(f"[yellow]Configuration already exists:[/yellow] {path} (use --force)")
        raise typer.Exit(1)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_APP_CONFIG, encoding="utf-8")

    console.print(Panel.fit(
        f"[bold green]OK - configuration written to {path}[/bold green]\n\n"
        "Next steps:\n"
        "  1. Export [cyan]META_ACCESS_TOKEN[/cyan] (or put it in .env)\n"
        "  2. Check it: [yellow]adgovernor api health --live[/yellow]\n"
        "  3. Page an edge: [yellow]adgovernor api pages act_<id>/campaigns --account act_<id>[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


@app.command()
def validate(
    path: Path = typer.Argument(
        Path("configs/app.yaml"),
        help="Configuration file to check",
    ),
) -> None:
    """Validate a configuration file."""
    errors = validate_config_file(path)

    if errors:
        err_console.print(f"[red]Invalid configuration:[/red] {path}")
        for error in errors:
            err_console.print(f"  [red]-[/red] {error}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] {path}")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    run()
