"""
Rate limit inspection commands.

Show the budgets of each access tier and simulate bursts of calls
against a fresh limiter.
"""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from adgovernor.core.config.models import RateLimitTier
from adgovernor.core.fetch.errors import GraphApiError
from adgovernor.core.fetch.throttling import TIER_CONFIGS, RateLimiter

console = Console()

app = typer.Typer(
    help="Inspect rate limit tiers and budgets",
    no_args_is_help=True,
)


@app.command("tiers")
def show_tiers() -> None:
    """Show the score budget of every access tier."""
    table = Table(title="Rate Limit Tiers", show_header=True, header_style="bold magenta")
    table.add_column("Tier", style="cyan", no_wrap=True)
    table.add_column("Max Score", justify="right")
    table.add_column("Decay", justify="right")
    table.add_column("Block", justify="right")
    table.add_column("Read", justify="right")
    table.add_column("Write", justify="right")

    for tier, config in TIER_CONFIGS.items():
        table.add_row(
            tier.value,
            f"{config.max_score:g}",
            f"{config.decay_time_ms / 1000:g}s",
            f"{config.block_time_ms / 1000:g}s",
            f"{config.read_call_score:g}",
            f"{config.write_call_score:g}",
        )

    console.print(table)


async def _simulate(limiter: RateLimiter, account: str, reads: int, writes: int) -> tuple[int, int, GraphApiError | None]:
    admitted = 0
    rejected = 0
    first_rejection: GraphApiError | None = None

    for is_write in [False] * reads + [True] * writes:
        try:
            await limiter.check_rate_limit(account, is_write_call=is_write)
            admitted += 1
        except GraphApiError as e:
            rejected += 1
            first_rejection = first_rejection or e

    return admitted, rejected, first_rejection


@app.command("simulate")
def simulate(
    tier: RateLimitTier = typer.Option(
        RateLimitTier.DEVELOPMENT,
        "--tier",
        "-t",
        help="Access tier to simulate",
    ),
    account: str = typer.Option(
        "act_simulated",
        "--account",
        "-a",
        help="Account id to charge",
    ),
    reads: int = typer.Option(0, "--reads", "-r", min=0, help="Read calls to issue"),
    writes: int = typer.Option(0, "--writes", "-w", min=0, help="Write calls to issue"),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json)",
    ),
) -> None:
    """Issue a burst of calls against a fresh limiter and report the outcome."""
    limiter = RateLimiter(tier)
    admitted, rejected, first_rejection = asyncio.run(_simulate(limiter, account, reads, writes))
    stats = limiter.stats(account)

    if format == "json":
        console.print_json(json.dumps({
            "tier": tier.value,
            "account_id": account,
            "admitted": admitted,
            "rejected": rejected,
            "current_score": stats["current_score"],
            "remaining_capacity": stats["remaining_capacity"],
            "is_blocked": stats["is_blocked"],
            "block_time_remaining_ms": stats["block_time_remaining_ms"],
        }))
        return

    table = Table(title=f"Simulation: {tier.value} tier", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Admitted calls", str(admitted))
    table.add_row("Rejected calls", str(rejected))
    table.add_row("Current score", f"{stats['current_score']:g}")
    table.add_row("Remaining capacity", f"{stats['remaining_capacity']:g}")
    blocked = "[red]Yes[/red]" if stats["is_blocked"] else "[green]No[/green]"
    table.add_row("Blocked", blocked)
    if stats["is_blocked"]:
        table.add_row("Block remaining", f"{stats['block_time_remaining_ms'] / 1000:.0f}s")

    console.print(table)

    if first_rejection is not None:
        console.print(f"[yellow]First rejection:[/yellow] {first_rejection.message}")
