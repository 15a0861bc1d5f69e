"""CLI entry point for Crypto Monitor — cryptocurrency price alerts.

Provides the ``crypto-monitor`` command with subcommands for running the
server, checking prices, managing alert rules and notification preferences,
and pruning stored price history.

This is the ONLY module where console output is allowed. All other modules
use ``logging``. Async internals are bridged to typer's synchronous
interface via ``asyncio.run()``.
"""

from __future__ import annotations

import asyncio
import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from Crypto_Monitor.config import Settings
from Crypto_Monitor.logging_config import configure_logging
from Crypto_Monitor.models import (
    DEFAULT_USER_ID,
    AlertCondition,
    AlertRuleCreate,
    NotificationPreferences,
    PriceSnapshot,
)
from Crypto_Monitor.utils.exceptions import DataFetchError

# ---------------------------------------------------------------------------
# Typer app and sub-apps
# ---------------------------------------------------------------------------

app = typer.Typer(name="crypto-monitor", help="Cryptocurrency price monitoring and alerts")
alerts_app = typer.Typer(help="Manage price alert rules")
app.add_typer(alerts_app, name="alerts")

# Rich console for formatted output
console = Console()

_VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")]
_QuietOption = Annotated[bool, typer.Option("--quiet", "-q", help="Suppress info logging")]
_UserOption = Annotated[str, typer.Option("--user", "-u", help="Owner of the alert rules")]


def _pct_markup(value: Decimal | None) -> str:
    if value is None:
        return "[dim]—[/dim]"
    color = "green" if value >= 0 else "red"
    return f"[{color}]{value:+.2f}%[/{color}]"


def _money(value: Decimal | None) -> str:
    return "—" if value is None else f"${value:,.2f}"


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address (default: HOST env)")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port (default: PORT env)")] = None,
    scheduler: Annotated[
        bool, typer.Option("--scheduler/--no-scheduler", help="Run the price and cleanup timers")
    ] = True,
    verbose: _VerboseOption = False,
    quiet: _QuietOption = False,
) -> None:
    """Run the HTTP/WebSocket server with the ingestion scheduler."""
    import uvicorn  # noqa: PLC0415

    from Crypto_Monitor.web.app import create_app  # noqa: PLC0415

    configure_logging(verbose=verbose, quiet=quiet)
    settings = Settings.from_env()
    web_app = create_app(settings, start_scheduler=scheduler)
    # create_app reconfigures logging from the environment; reapply the flags
    configure_logging(verbose=verbose, quiet=quiet)
    uvicorn.run(
        web_app,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# prices command
# ---------------------------------------------------------------------------


@app.command()
def prices(
    coins: Annotated[
        list[str] | None, typer.Argument(help="Coin ids (default: SUPPORTED_COINS)")
    ] = None,
    verbose: _VerboseOption = False,
    quiet: _QuietOption = False,
) -> None:
    """Fetch and display current prices from CoinGecko."""
    configure_logging(verbose=verbose, quiet=quiet)
    asyncio.run(_prices_async(coins or None))


async def _prices_async(coins: list[str] | None) -> None:
    from Crypto_Monitor.services import CoinGeckoService, RateLimiter, ServiceCache  # noqa: PLC0415

    settings = Settings.from_env()
    coingecko = CoinGeckoService(
        ServiceCache(),
        RateLimiter(requests_per_minute=settings.coingecko_rate_limit),
        supported_coins=settings.supported_coins,
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        timeout=settings.coingecko_timeout,
    )
    try:
        snapshots = await coingecko.fetch_current_prices(coins)
    except DataFetchError as exc:
        console.print(f"[red]Could not fetch prices: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        await coingecko.aclose()

    _render_prices(snapshots)


def _render_prices(snapshots: list[PriceSnapshot]) -> None:
    if not snapshots:
        console.print("[yellow]No prices returned.[/yellow]")
        return

    table = Table(title="Current Prices (USD)")
    table.add_column("Symbol", style="bold", width=8)
    table.add_column("Name", width=20)
    table.add_column("Price", justify="right", width=16)
    table.add_column("24h", justify="right", width=10)
    table.add_column("Market Cap", justify="right", width=22)

    for snap in snapshots:
        table.add_row(
            snap.symbol,
            snap.name,
            _money(snap.current_price),
            _pct_markup(snap.price_change_percentage_24h),
            _money(snap.market_cap),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# health command
# ---------------------------------------------------------------------------


@app.command()
def health(verbose: _VerboseOption = False) -> None:
    """Check the health of CoinGecko, SQLite and the cache."""
    configure_logging(verbose=verbose)
    asyncio.run(_health_async())


async def _health_async() -> None:
    from Crypto_Monitor.data import Database  # noqa: PLC0415
    from Crypto_Monitor.services import (  # noqa: PLC0415
        CoinGeckoService,
        HealthService,
        RateLimiter,
        ServiceCache,
    )

    settings = Settings.from_env()
    async with Database(settings.db_path) as db:
        cache = ServiceCache(database=db)
        await cache.initialize()
        coingecko = CoinGeckoService(
            cache,
            RateLimiter(requests_per_minute=settings.coingecko_rate_limit),
            base_url=settings.coingecko_base_url,
            api_key=settings.coingecko_api_key,
            timeout=settings.coingecko_timeout,
        )
        try:
            console.print("\n[bold]Running health checks...[/bold]\n")
            status = await HealthService(database=db, coingecko=coingecko, cache=cache).check_all()
        finally:
            await coingecko.aclose()

    table = Table(title="Health Status")
    table.add_column("Service", style="bold", width=15)
    table.add_column("Status", width=12)
    table.add_column("Details", width=40)

    def _flag(ok: bool) -> str:
        return "[green]OK[/green]" if ok else "[red]DOWN[/red]"

    table.add_row("CoinGecko", _flag(status.coingecko_available), settings.coingecko_base_url)
    table.add_row("SQLite", _flag(status.sqlite_available), settings.db_path)
    table.add_row("Cache", _flag(status.cache_available), "service_cache table")

    console.print(table)
    console.print(f"\n[dim]Last check: {status.last_check.isoformat()}[/dim]")


# ---------------------------------------------------------------------------
# alerts subcommands
# ---------------------------------------------------------------------------


@alerts_app.command("list")
def alerts_list(user: _UserOption = DEFAULT_USER_ID) -> None:
    """List a user's active alert rules."""
    asyncio.run(_alerts_list_async(user=user))


async def _alerts_list_async(*, user: str) -> None:
    from Crypto_Monitor.data import Database, Repository  # noqa: PLC0415

    async with Database(Settings.from_env().db_path) as db:
        rules = await Repository(db).list_user_alerts(user)

    if not rules:
        console.print(f"[yellow]No active alerts for user '{user}'.[/yellow]")
        return

    table = Table(title=f"Active Alerts ({user})")
    table.add_column("ID", justify="right", width=5)
    table.add_column("Symbol", style="bold", width=8)
    table.add_column("Condition", width=18)
    table.add_column("Threshold", justify="right", width=16)
    table.add_column("Created", width=20)

    for rule in rules:
        threshold = (
            _money(rule.target_price) if rule.condition.uses_price else f"{rule.percentage_change}%"
        )
        table.add_row(
            str(rule.id),
            rule.symbol,
            rule.condition.value,
            threshold,
            rule.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@alerts_app.command("add")
def alerts_add(
    symbol: Annotated[str, typer.Argument(help="Coin symbol, e.g. BTC")],
    condition: Annotated[AlertCondition, typer.Argument(help="Alert condition")],
    threshold: Annotated[str, typer.Argument(help="Target price or percentage")],
    user: _UserOption = DEFAULT_USER_ID,
) -> None:
    """Create an alert rule."""
    try:
        value = Decimal(threshold)
    except InvalidOperation as exc:
        console.print(f"[red]Invalid threshold: '{threshold}'[/red]")
        raise typer.Exit(code=1) from exc

    try:
        data = AlertRuleCreate(
            symbol=symbol,
            condition=condition,
            target_price=value if condition.uses_price else None,
            percentage_change=None if condition.uses_price else value,
        )
    except ValidationError as exc:
        console.print(f"[red]Invalid alert: {exc.errors()[0]['msg']}[/red]")
        raise typer.Exit(code=1) from exc

    asyncio.run(_alerts_add_async(user=user, data=data))


async def _alerts_add_async(*, user: str, data: AlertRuleCreate) -> None:
    from Crypto_Monitor.data import Database, Repository  # noqa: PLC0415

    async with Database(Settings.from_env().db_path) as db:
        rule = await Repository(db).create_alert(user, data)
    console.print(
        f"[green]Alert {rule.id} created: {rule.symbol} {rule.condition.value} "
        f"{rule.threshold}[/green]"
    )


@alerts_app.command("remove")
def alerts_remove(
    alert_id: Annotated[int, typer.Argument(help="Alert ID to delete")],
    user: _UserOption = DEFAULT_USER_ID,
) -> None:
    """Delete an alert rule."""
    asyncio.run(_alerts_remove_async(alert_id=alert_id, user=user))


async def _alerts_remove_async(*, alert_id: int, user: str) -> None:
    from Crypto_Monitor.data import Database, Repository  # noqa: PLC0415

    async with Database(Settings.from_env().db_path) as db:
        deleted = await Repository(db).delete_alert(alert_id, user)

    if not deleted:
        console.print(f"[red]Alert {alert_id} not found for user '{user}'.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Alert {alert_id} deleted.[/green]")


# ---------------------------------------------------------------------------
# cleanup command
# ---------------------------------------------------------------------------


@app.command()
def cleanup(
    days: Annotated[
        int | None, typer.Option(min=1, help="Retention window (default: HISTORY_RETENTION_DAYS)")
    ] = None,
) -> None:
    """Delete stored price history older than the retention window."""
    asyncio.run(_cleanup_async(days=days))


async def _cleanup_async(*, days: int | None) -> None:
    from Crypto_Monitor.data import Database, Repository  # noqa: PLC0415

    settings = Settings.from_env()
    retention = days or settings.history_retention_days
    cutoff = datetime.datetime.now(datetime.UTC) - datetime.timedelta(days=retention)
    async with Database(settings.db_path) as db:
        deleted = await Repository(db).delete_price_history_before(cutoff)
    console.print(f"[green]Deleted {deleted} history rows older than {retention} days.[/green]")


# ---------------------------------------------------------------------------
# notify-prefs command
# ---------------------------------------------------------------------------


@app.command("notify-prefs")
def notify_prefs(
    user: Annotated[str, typer.Argument(help="User id")] = DEFAULT_USER_ID,
    email: Annotated[str | None, typer.Option(help="Email address for alerts")] = None,
    first_name: Annotated[str | None, typer.Option(help="Name used in the greeting")] = None,
    enable: Annotated[
        bool | None,
        typer.Option("--enable/--disable", help="Turn alert emails on or off"),
    ] = None,
) -> None:
    """Show or update a user's notification preferences."""
    asyncio.run(_notify_prefs_async(user=user, email=email, first_name=first_name, enable=enable))


async def _notify_prefs_async(
    *, user: str, email: str | None, first_name: str | None, enable: bool | None
) -> None:
    from Crypto_Monitor.data import Database, Repository  # noqa: PLC0415

    async with Database(Settings.from_env().db_path) as db:
        repo = Repository(db)
        current = await repo.get_notification_preferences(user)
        prefs = current or NotificationPreferences(user_id=user)

        if email is not None or first_name is not None or enable is not None:
            prefs = prefs.model_copy(
                update={
                    k: v
                    for k, v in (
                        ("email", email),
                        ("first_name", first_name),
                        ("email_notifications", enable),
                    )
                    if v is not None
                }
            )
            if prefs.email_notifications and not prefs.email:
                console.print("[red]Set --email before enabling alert emails.[/red]")
                raise typer.Exit(code=1)
            await repo.save_notification_preferences(prefs)
            console.print(f"[green]Preferences saved for '{user}'.[/green]")

    table = Table(title=f"Notification Preferences ({user})")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Email", prefs.email or "—")
    table.add_row("First name", prefs.first_name or "—")
    table.add_row("Alert emails", "on" if prefs.email_notifications else "off")
    console.print(table)
