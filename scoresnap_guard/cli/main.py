"""
CLI interface for scoresnap-guard.

Provides command-line access to the rate limiter and the scoreboard
analysis client.
"""

import asyncio
import calendar
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from scoresnap_guard.config.loader import Settings, load_settings
from scoresnap_guard.core.admission import AdmissionController, UsageStatistics
from scoresnap_guard.core.analysis import AnalysisResult
from scoresnap_guard.core.errors import CredentialError, InferenceError
from scoresnap_guard.core.policy import RateLimitPolicy
from scoresnap_guard.core.security import install_redaction
from scoresnap_guard.sdk.client import InferenceClient
from scoresnap_guard.sdk.credentials import API_KEY_ENV_VAR, InMemoryCredentialStore
from scoresnap_guard.storage.repository import SQLiteUsageStore, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@dataclass
class CliState:
    settings: Settings
    db_path: str
    developer_mode: bool = False


def _open_controller(state: CliState) -> AdmissionController:
    """Build a controller over the configured database.

    Configured limits seed the policy only when none has been persisted yet.
    """
    store = SQLiteUsageStore(state.db_path)
    has_policy = store.load_policy() is not None
    controller = AdmissionController(store)
    if not has_policy:
        controller.update_policy(state.settings.limits)
    controller.set_developer_mode(state.developer_mode)
    return controller


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to YAML settings file"
    ),
    db: Optional[str] = typer.Option(
        None, "--db", help="Path to the usage database (overrides config)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging"
    ),
    developer_mode: bool = typer.Option(
        False, "--developer-mode", help="Use high developer limits for this run"
    ),
):
    """scoresnap-guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )
    install_redaction()

    try:
        settings = load_settings(config) if config else Settings()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = CliState(
        settings=settings,
        db_path=db or settings.storage.db_path,
        developer_mode=developer_mode
    )
    if ctx.invoked_subcommand is None:
        console.print("scoresnap-guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    try:
        initialize_schema(ctx.obj.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show usage against each rate limit window."""
    controller = _open_controller(ctx.obj)
    stats = controller.get_usage_statistics()
    _display_status(stats, controller.active_policy, controller.is_limit_exceeded)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def policy(
    ctx: typer.Context,
    per_minute: Optional[int] = typer.Option(None, "--per-minute", help="Calls allowed per minute"),
    per_hour: Optional[int] = typer.Option(None, "--per-hour", help="Calls allowed per hour"),
    per_day: Optional[int] = typer.Option(None, "--per-day", help="Calls allowed per day"),
):
    """Update the rate limit policy. Omitted thresholds keep their value."""
    controller = _open_controller(ctx.obj)
    current = controller.policy
    updated = controller.update_policy(RateLimitPolicy(
        per_minute=current.per_minute if per_minute is None else per_minute,
        per_hour=current.per_hour if per_hour is None else per_hour,
        per_day=current.per_day if per_day is None else per_day
    ))
    console.print(
        f"[green]✓[/] Policy set to {updated.per_minute}/min, "
        f"{updated.per_hour}/hour, {updated.per_day}/day"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command("reset-policy")
def reset_policy(ctx: typer.Context):
    """Restore the default policy (3/min, 20/hour, 40/day)."""
    controller = _open_controller(ctx.obj)
    controller.reset_policy()
    console.print("[green]✓[/] Policy reset to defaults")
    sys.exit(EXIT_CODE_PASS)


@app.command("reset-usage")
def reset_usage(ctx: typer.Context):
    """Clear every recorded call."""
    controller = _open_controller(ctx.obj)
    controller.force_reset()
    console.print("[green]✓[/] Usage ledger cleared")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def simulate(
    ctx: typer.Context,
    count: int = typer.Argument(..., help="Number of calls to record")
):
    """Record simulated calls to exercise the limits."""
    controller = _open_controller(ctx.obj)
    accepted = controller.simulate_calls(count)
    console.print(f"Accepted {accepted} of {count} simulated calls")
    if accepted < count:
        console.print(f"[yellow]{count - accepted} calls blocked by rate limits[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def analyze(
    ctx: typer.Context,
    image: Path = typer.Argument(..., help="Scoreboard photo to analyze"),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", help=f"API key (defaults to ${API_KEY_ENV_VAR})"
    ),
):
    """Read the score off a scoreboard photo."""
    state: CliState = ctx.obj
    try:
        credentials = (
            InMemoryCredentialStore(api_key) if api_key
            else InMemoryCredentialStore.from_env()
        )
        image_bytes = image.read_bytes()
    except CredentialError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except OSError as e:
        console.print(f"[red]Error reading image:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    controller = _open_controller(state)
    client = InferenceClient(controller, credentials, settings=state.settings.client)

    try:
        result = asyncio.run(_run_analysis(client, image_bytes))
    except InferenceError as e:
        console.print(f"[red]Analysis failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_analysis(result)
    sys.exit(EXIT_CODE_PASS)


async def _run_analysis(client: InferenceClient, image_bytes: bytes) -> AnalysisResult:
    try:
        return await client.analyze(image_bytes)
    finally:
        await client.aclose()


def _format_optional(value) -> str:
    return "-" if value is None else str(value)


def _display_status(stats: UsageStatistics, policy: RateLimitPolicy, exceeded: bool):
    """Display window usage and statistics."""
    table = Table(title="Rate Limit Usage")
    table.add_column("Window")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_row("Last minute", str(stats.calls_last_minute), str(policy.per_minute))
    table.add_row("Last hour", str(stats.calls_last_hour), str(policy.per_hour))
    table.add_row("Last day", str(stats.calls_last_24_hours), str(policy.per_day))
    console.print(table)

    weekday = (
        calendar.day_name[stats.most_active_weekday]
        if stats.most_active_weekday is not None else None
    )
    peak = f"{stats.peak_hour:02d}:00" if stats.peak_hour is not None else None
    console.print(f"Total calls: {stats.total_calls}")
    console.print(f"Calls in last 7 days: {stats.calls_last_7_days}")
    console.print(f"Average calls per day: {stats.average_calls_per_day:.1f}")
    console.print(f"Usage intensity: {stats.intensity.label}")
    console.print(f"Peak hour: {_format_optional(peak)}")
    console.print(f"Most active day: {_format_optional(weekday)}")
    if exceeded:
        console.print("\n[bold red]Rate limit reached[/] - new analyses are blocked")
    else:
        console.print("\n[green]✓[/] Analyses allowed")


def _display_analysis(result: AnalysisResult):
    """Display an analysis result."""
    console.print("\n[bold]Scoreboard Analysis[/bold]")
    console.print("-" * 40)
    home = result.home_team.score if result.home_team else None
    away = result.away_team.score if result.away_team else None
    console.print(f"Home: {_format_optional(home)}")
    console.print(f"Away: {_format_optional(away)}")
    if result.game_info:
        info = result.game_info
        console.print(f"Quarter: {_format_optional(info.quarter)}")
        console.print(f"Time remaining: {_format_optional(info.time_remaining)}")
        console.print(f"Possession: {_format_optional(info.possession)}")
        console.print(f"Shot clock: {_format_optional(info.shot_clock)}")
    if result.confidence is not None:
        console.print(f"Confidence: {result.confidence:.0%}")
    if result.notes:
        console.print(f"Notes: {result.notes}")
    if not result.is_valid:
        console.print("\n[yellow]No scoreboard values could be read[/]")


if __name__ == "__main__":
    app()
