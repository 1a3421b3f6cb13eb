"""
Command-line interface for Academic Calendar Sync.
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from academic_calendar_sync.auth import TokenProvider
from academic_calendar_sync.config import AppConfig
from academic_calendar_sync.config import load_config
from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import DEFAULT_CONFIG
from academic_calendar_sync.models import PHASES
from academic_calendar_sync.models import AuthError
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import SyncSettings
from academic_calendar_sync.rate_limit import RateLimiter
from academic_calendar_sync.sync import CalendarSynchronizer

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Bidirectional sync between academic data and Google Calendar.",
)

console = Console()

_PHASE_LABELS = {
    "deletions": "Remote deletions",
    "imported": "Imported events",
    "exportedEvents": "Custom events",
    "exportedDeadlines": "Deadlines",
    "exportedExams": "Exams",
    "exportedWork": "Work items",
    "exportedClasses": "Class meetings",
}


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path | None,
        typer.Option("--state-db", help="State DB path (overrides config and environment)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _config() -> AppConfig:
    return load_config(state.config_path, state_db=state.state_db)


def _require_settings(store: StateDatabase, user: str) -> SyncSettings:
    settings = store.get_settings(user)
    if settings is None or not settings.connected:
        console.print(
            f"[bold red]Error:[/] Google Calendar is not connected for [cyan]{user}[/]. "
            "Run [cyan]academic-calendar-sync configure[/] first."
        )
        raise typer.Exit(1)
    return settings


def _token_provider(cfg: AppConfig, store: StateDatabase) -> TokenProvider:
    return TokenProvider(store, cfg.google_client_id, cfg.google_client_secret)


def _format_ts(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


_USER_OPT = Annotated[str, typer.Option("--user", "-u", help="User id to operate on")]


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    user: _USER_OPT,
    no_import: Annotated[
        bool, typer.Option("--no-import", help="Skip importing Google events")
    ] = False,
    no_export_events: Annotated[
        bool,
        typer.Option("--no-export-events", help="Skip exporting custom events and classes"),
    ] = False,
    no_export_deadlines: Annotated[
        bool,
        typer.Option("--no-export-deadlines", help="Skip exporting deadlines and work items"),
    ] = False,
    no_export_exams: Annotated[
        bool, typer.Option("--no-export-exams", help="Skip exporting exams")
    ] = False,
) -> None:
    """Run one sync pass for a user.

    Directions default to the user's stored settings; the [cyan]--no-*[/]
    flags switch individual directions off for this run only.
    """
    cfg = _config()
    overrides = {
        "importEvents": False if no_import else None,
        "exportEvents": False if no_export_events else None,
        "exportDeadlines": False if no_export_deadlines else None,
        "exportExams": False if no_export_exams else None,
    }

    with StateDatabase(cfg.state_db_path, cfg.encryption_secret) as store:
        settings = _require_settings(store, user)

        info = Text()
        info.append("  User:      ", style="bold")
        info.append(f"{user}")
        if settings.email:
            info.append(f" ({settings.email})", style="dim")
        info.append("\n  Import:    ", style="bold")
        info.append(settings.import_calendar_id)
        info.append("\n  Export:    ", style="bold")
        info.append(settings.export_calendar_id)
        info.append("\n  Timezone:  ", style="bold")
        info.append(cfg.timezone)
        console.print(Panel(info, title="[bold]Academic Calendar Sync[/bold]"))

        synchronizer = CalendarSynchronizer(
            store,
            _token_provider(cfg, store),
            rate_limiter=RateLimiter(cfg.api_delay),
            tz=cfg.tzinfo,
        )
        try:
            report = synchronizer.run(user, overrides)
        except AuthError as e:
            console.print(f"[bold red]Authentication failed:[/] {e}")
            console.print("[yellow]Reconnect Google Calendar and try again.[/]")
            raise typer.Exit(1) from None
        except CalendarSyncError as e:
            console.print(f"[bold red]Sync failed:[/] {e}")
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None

    # -- Results table -------------------------------------------------------
    results = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    results.add_column("Phase")
    results.add_column("Created", justify="right")
    results.add_column("Updated", justify="right")
    results.add_column("Deleted", justify="right")
    results.add_column("Errors", justify="right")
    for name in PHASES:
        phase = report[name]
        error_val = Text(str(len(phase.errors)))
        if phase.errors:
            error_val.stylize("bold red")
        results.add_row(
            _PHASE_LABELS[name],
            str(phase.created),
            str(phase.updated),
            str(phase.deleted),
            error_val,
        )
    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    for name in PHASES:
        for message in report[name].errors:
            console.print(f"  [red]•[/] {message}")

    if report.error_count:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status(user: _USER_OPT) -> None:
    """Show connection state and sync settings for a user."""
    cfg = _config()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    config_exists = state.config_path.exists()
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    db_exists = cfg.state_db_path.exists()
    cfg_info.append(str(cfg.state_db_path) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")
    console.print(Panel(cfg_info, title="[bold]Academic Calendar Sync — Status[/bold]"))

    if not db_exists:
        console.print(
            "[yellow]No state database yet, run[/] "
            "[cyan]academic-calendar-sync configure[/] "
            "[yellow]to create it.[/]"
        )
        return

    with StateDatabase(cfg.state_db_path, cfg.encryption_secret) as store:
        settings = store.get_settings(user)
        premium = store.is_premium(user)
        pending = len(store.get_deletion_queue(user))

    if settings is None:
        console.print(f"[yellow]No sync settings recorded for[/] [cyan]{user}[/].")
        return

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row(
        "Connected",
        Text("yes", style="green") if settings.connected else Text("no", style="red"),
    )
    table.add_row("Account", settings.email or "—")
    table.add_row("Premium", "yes" if premium else "no")
    table.add_row("Import calendar", settings.import_calendar_id)
    table.add_row("Export calendar", settings.export_calendar_id)
    table.add_row("Import events", "on" if settings.import_events else "off")
    table.add_row("Export events", "on" if settings.export_events else "off")
    table.add_row("Export deadlines", "on" if settings.export_deadlines else "off")
    table.add_row("Export exams", "on" if settings.export_exams else "off")
    table.add_row("Token expires", _format_ts(settings.token_expires_at))
    table.add_row("Last sync", _format_ts(settings.last_synced_at))
    table.add_row("Pending deletions", str(pending))
    console.print(Panel(table, title=f"[bold]{user}[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: configure
# ---------------------------------------------------------------------------


@app.command()
def configure(
    user: _USER_OPT,
    access_token: Annotated[
        str | None, typer.Option("--access-token", help="Google OAuth access token")
    ] = None,
    refresh_token: Annotated[
        str | None, typer.Option("--refresh-token", help="Google OAuth refresh token")
    ] = None,
    expires_in: Annotated[
        int, typer.Option("--expires-in", help="Seconds until the access token expires")
    ] = 3600,
    email: Annotated[str | None, typer.Option("--email", help="Google account email")] = None,
    import_calendar: Annotated[
        str | None, typer.Option("--import-calendar", help="Calendar id to import from")
    ] = None,
    export_calendar: Annotated[
        str | None, typer.Option("--export-calendar", help="Calendar id to export to")
    ] = None,
    import_events: Annotated[
        bool | None, typer.Option("--import-events/--no-import-events")
    ] = None,
    export_events: Annotated[
        bool | None, typer.Option("--export-events/--no-export-events")
    ] = None,
    export_deadlines: Annotated[
        bool | None, typer.Option("--export-deadlines/--no-export-deadlines")
    ] = None,
    export_exams: Annotated[
        bool | None, typer.Option("--export-exams/--no-export-exams")
    ] = None,
    premium: Annotated[
        bool | None, typer.Option("--premium/--no-premium", help="Set the sync entitlement")
    ] = None,
    disconnect: Annotated[
        bool, typer.Option("--disconnect", help="Mark the user disconnected")
    ] = False,
) -> None:
    """Create or update a user's connection and sync settings.

    Passing [cyan]--access-token[/] and [cyan]--refresh-token[/] connects the
    user; other options only change the stored settings.
    """
    cfg = _config()

    with StateDatabase(cfg.state_db_path, cfg.encryption_secret) as store:
        settings = store.get_settings(user) or SyncSettings(user_id=user)

        if access_token or refresh_token:
            if not (access_token and refresh_token):
                raise typer.BadParameter(
                    "--access-token and --refresh-token must be given together"
                )
            settings.access_token = access_token
            settings.refresh_token = refresh_token
            settings.token_expires_at = datetime.now(timezone.utc) + timedelta(
                seconds=expires_in
            )
            settings.connected = True
        if disconnect:
            settings.connected = False
        if email is not None:
            settings.email = email
        if import_calendar:
            settings.import_calendar_id = import_calendar
        if export_calendar:
            settings.export_calendar_id = export_calendar
        if import_events is not None:
            settings.import_events = import_events
        if export_events is not None:
            settings.export_events = export_events
        if export_deadlines is not None:
            settings.export_deadlines = export_deadlines
        if export_exams is not None:
            settings.export_exams = export_exams

        store.save_settings(settings)
        if premium is not None:
            store.set_premium(user, premium)

    console.print(f"[green]✓[/] Settings saved for [cyan]{user}[/]")


# ---------------------------------------------------------------------------
# Subcommand: refresh
# ---------------------------------------------------------------------------


@app.command()
def refresh(user: _USER_OPT) -> None:
    """Refresh the user's access token if it is close to expiry."""
    cfg = _config()

    with StateDatabase(cfg.state_db_path, cfg.encryption_secret) as store:
        settings = _require_settings(store, user)
        try:
            _token_provider(cfg, store).get_valid_token(settings, user)
        except AuthError as e:
            console.print(f"[bold red]Token refresh failed:[/] {e}")
            raise typer.Exit(1) from None

    console.print(
        f"[green]✓[/] Access token valid until {_format_ts(settings.token_expires_at)}"
    )


# ---------------------------------------------------------------------------
# Subcommand: calendars
# ---------------------------------------------------------------------------


@app.command()
def calendars(user: _USER_OPT) -> None:
    """List the Google calendars available to a user."""
    cfg = _config()

    with StateDatabase(cfg.state_db_path, cfg.encryption_secret) as store:
        settings = _require_settings(store, user)
        try:
            token = _token_provider(cfg, store).get_valid_token(settings, user)
            items = GoogleCalendarClient(token, RateLimiter(cfg.api_delay)).list_calendars()
        except CalendarSyncError as e:
            console.print(f"[bold red]Failed to list calendars:[/] {e}")
            raise typer.Exit(1) from None

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Name")
    table.add_column("ID", style="dim")
    table.add_column("Primary")
    for item in items:
        table.add_row(
            item["summary"] or "(unnamed)",
            item["id"],
            "[green]✓[/]" if item["primary"] else "",
        )
    console.print(Panel(table, title="[bold]Google Calendars[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 8000,
) -> None:
    """Serve the HTTP API."""
    import uvicorn

    from academic_calendar_sync.web import create_app

    uvicorn.run(create_app(_config()), host=host, port=port, log_config=None)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
