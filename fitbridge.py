#!/usr/bin/env python3
"""
fitbridge CLI

Connect fitness providers, sync daily activity and check energy balance.

Usage:
    fitbridge providers
    fitbridge devices connect fitbit
    fitbridge devices sync --all
    fitbridge activity --date 2024-06-01
    fitbridge balance
    fitbridge tokens status
    fitbridge start dev --port 5000
"""

import asyncio
import datetime
import logging
import signal
import socket
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from fitbridge_sync import (
    Capability,
    DeviceStatus,
    DeviceSyncService,
    FitBridgeError,
    ProviderType,
    __version__,
    load_provider_registry,
    load_settings,
)
from fitbridge_sync.balance import BalanceStatus
from fitbridge_sync.connection_manager import ConnectionState

logger = logging.getLogger("fitbridge")

console = Console()

app = typer.Typer(
    name="fitbridge",
    help="fitbridge CLI - Fitness provider connections and health data sync",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]fitbridge[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose logging"),
):
    """fitbridge CLI - Fitness provider connections and health data sync."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )


# ============================================================================
# Helper Functions
# ============================================================================

def _is_port_available(port: int) -> bool:
    """Check if a port is available."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("localhost", port))
            return True
        except OSError:
            return False


def _parse_provider(value: str) -> ProviderType:
    try:
        return ProviderType.parse(value)
    except ValueError:
        choices = ", ".join(p.value.lower() for p in ProviderType)
        raise typer.BadParameter(f"Unknown provider '{value}'. Choose from: {choices}") from None


def _parse_date(value: Optional[str]) -> Optional[datetime.date]:
    if value is None:
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a YYYY-MM-DD date") from None


def _service(**kwargs) -> DeviceSyncService:
    return DeviceSyncService.from_settings(**kwargs)


def _run(action, **service_kwargs):
    """Run ``action(service)`` inside a fresh service; library errors exit 1."""

    async def runner():
        async with _service(**service_kwargs) as service:
            return await action(service)

    try:
        return asyncio.run(runner())
    except FitBridgeError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)


def _start_tunnel(port: int) -> str:
    """Open an ngrok tunnel to the OAuth callback port and return its public URL."""
    from pyngrok import ngrok
    from pyngrok.exception import PyngrokError

    console.print("[bold]🌐 Starting ngrok tunnel...[/bold]")
    try:
        tunnel = ngrok.connect(port, "http")
    except PyngrokError as e:
        console.print(f"[red]❌ Could not start ngrok: {e}[/red]")
        console.print()
        console.print("[yellow]💡 Troubleshooting:[/yellow]")
        console.print("   1. Make sure you have an ngrok account (free): https://ngrok.com/")
        console.print("   2. Set your authtoken: [cyan]ngrok config add-authtoken YOUR_TOKEN[/cyan]")
        raise typer.Exit(1)

    console.print(f"[green]✅ ngrok tunnel started:[/green] [cyan]{tunnel.public_url}[/cyan]")
    return tunnel.public_url


def _stop_tunnel(public_url: Optional[str]) -> None:
    if not public_url:
        return
    from pyngrok import ngrok
    from pyngrok.exception import PyngrokError

    try:
        ngrok.disconnect(public_url)
        console.print("[dim]ngrok tunnel stopped[/dim]")
    except PyngrokError as e:
        console.print(f"[yellow]⚠️  Could not stop ngrok tunnel: {e}[/yellow]")


STATUS_STYLES = {
    DeviceStatus.CONNECTED: "green",
    DeviceStatus.SYNCING: "cyan",
    DeviceStatus.ERROR: "red",
    DeviceStatus.DISCONNECTED: "dim",
}

BALANCE_STYLES = {
    BalanceStatus.BALANCED: "green",
    BalanceStatus.SLIGHT_IMBALANCE: "yellow",
    BalanceStatus.SIGNIFICANT_IMBALANCE: "red",
}

TOKEN_STATE_STYLES = {
    ConnectionState.AUTHENTICATED: "green",
    ConnectionState.AUTHORIZING: "cyan",
    ConnectionState.EXPIRED: "yellow",
    ConnectionState.UNAUTHENTICATED: "dim",
}


# ============================================================================
# VERSION / PROVIDERS
# ============================================================================

@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]fitbridge[/bold cyan] version [green]{__version__}[/green]")


@app.command()
def providers():
    """
    List supported providers and whether their client credentials are set.

    Example:
        fitbridge providers
    """
    registry = load_provider_registry()

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Name")
    table.add_column("Capability")
    table.add_column("Configured")

    for config in registry:
        if config.capability == Capability.OAUTH2:
            configured = "[green]yes[/green]" if config.is_configured else (
                f"[yellow]no[/yellow] [dim]({config.env_prefix}_CLIENT_ID / _CLIENT_SECRET)[/dim]"
            )
        elif config.capability == Capability.SDK:
            configured = "[dim]on-device[/dim]"
        else:
            configured = f"[red]unsupported[/red] [dim]{config.unsupported_reason}[/dim]"
        table.add_row(config.provider.value.lower(), config.display_name, config.capability.value, configured)

    console.print(table)


# ============================================================================
# DEVICES Commands
# ============================================================================

devices_app = typer.Typer(help="Connected device management")
app.add_typer(devices_app, name="devices")


@devices_app.command("list")
def devices_list():
    """
    List connected devices.

    Example:
        fitbridge devices list
    """
    devices = _run(lambda service: service.orchestrator.list_connected_devices())

    if not devices:
        console.print("[yellow]No connected devices[/yellow]")
        console.print("   Connect one with: [cyan]fitbridge devices connect fitbit[/cyan]")
        return

    table = Table(title="Connected devices")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Last sync")

    for device in devices:
        style = STATUS_STYLES.get(device.status, "white")
        name = f"{device.name} ⭐" if device.is_primary else device.name
        last_sync = device.last_sync.isoformat(timespec="seconds") if device.last_sync else "-"
        table.add_row(
            device.id,
            name,
            device.provider.value.lower(),
            f"[{style}]{device.status.value}[/{style}]",
            last_sync,
        )

    console.print(table)


@devices_app.command("connect")
def devices_connect(
    provider: str = typer.Argument(..., help="Provider to connect (fitbit, google_fit, whoop, polar, apple_health)"),
    tunnel: bool = typer.Option(False, "--tunnel", help="Expose the OAuth callback through an ngrok tunnel"),
    no_browser: bool = typer.Option(False, "--no-browser", help="Print the authorization URL instead of opening a browser"),
):
    """
    Connect a provider account. Ctrl+C cancels a pending authorization.

    Examples:
        fitbridge devices connect fitbit
        fitbridge devices connect whoop --tunnel --no-browser
    """
    provider_type = _parse_provider(provider)

    try:
        settings = load_settings()
    except FitBridgeError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)

    public_url = _start_tunnel(settings.oauth_callback_port) if tunnel else None

    def show_url(url: str) -> None:
        console.print()
        console.print("[bold]🔐 Authorize fitbridge in your browser:[/bold]")
        console.print(f"   [cyan]{url}[/cyan]")
        console.print("[dim]Waiting for the provider to redirect back (Ctrl+C to cancel)...[/dim]")

    async def connect(service: DeviceSyncService):
        loop = asyncio.get_running_loop()
        session = service.connection_manager.session
        handler_installed = False
        if session is not None:
            try:
                loop.add_signal_handler(signal.SIGINT, session.cancel)
                handler_installed = True
            except (NotImplementedError, RuntimeError):
                logger.debug("SIGINT handler not available; Ctrl+C will abort instead of cancel")
        try:
            return await service.orchestrator.authorize_device(provider_type)
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

    console.print(f"🔗 Connecting [bold]{provider_type.value.lower()}[/bold]...")
    try:
        outcome = _run(
            connect,
            settings=settings,
            public_url=public_url,
            open_browser=not no_browser,
            on_url=show_url,
        )
    finally:
        _stop_tunnel(public_url)

    if outcome.success:
        console.print(f"[green]✅ {outcome.display_name or provider_type.value} connected[/green]")
        return
    if outcome.cancelled:
        console.print(f"[yellow]⚠️  {outcome.error}[/yellow]")
    else:
        console.print(f"[red]❌ {outcome.error}[/red]")
    raise typer.Exit(1)


@devices_app.command("sync")
def devices_sync(
    device_id: Optional[str] = typer.Argument(None, help="Device ID to sync"),
    sync_all: bool = typer.Option(False, "--all", "-a", help="Sync every connected device"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Day to sync (YYYY-MM-DD, default today)"),
):
    """
    Sync one device or every connected device.

    Examples:
        fitbridge devices sync 3f2c9a
        fitbridge devices sync --all --date 2024-06-01
    """
    day = _parse_date(date)

    if sync_all:
        result = _run(lambda service: service.orchestrator.sync_all_devices(day))
        if result.total == 0:
            console.print("[yellow]No connected devices to sync[/yellow]")
            return
        style = "green" if result.failed_count == 0 else "yellow"
        console.print(
            f"[{style}]🔄 Synced {result.success_count} of {result.total} devices[/{style}]"
            + (f" [red]({result.failed_count} failed)[/red]" if result.failed_count else "")
        )
        if result.failed_count:
            raise typer.Exit(1)
        return

    if not device_id:
        console.print("[red]❌ Pass a DEVICE_ID or --all[/red]")
        raise typer.Exit(1)

    if _run(lambda service: service.orchestrator.sync_device(device_id, day)):
        console.print(f"[green]✅ Device {device_id} synced[/green]")
    else:
        console.print(f"[red]❌ Sync failed for device {device_id}[/red]")
        console.print("   Run with [cyan]--verbose[/cyan] for details")
        raise typer.Exit(1)


@devices_app.command("disconnect")
def devices_disconnect(
    device_id: str = typer.Argument(..., help="Device ID (or provider name) to disconnect"),
):
    """
    Disconnect a device and clear its stored credentials.

    Example:
        fitbridge devices disconnect 3f2c9a
    """
    if _run(lambda service: service.orchestrator.disconnect_device(device_id)):
        console.print(f"[green]✅ Device {device_id} disconnected[/green]")
    else:
        console.print(f"[red]❌ Could not disconnect {device_id}[/red]")
        raise typer.Exit(1)


# ============================================================================
# ACTIVITY / BALANCE Commands
# ============================================================================

@app.command()
def activity(
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Day (YYYY-MM-DD, default today)"),
):
    """
    Show the day's activity summary.

    Example:
        fitbridge activity --date 2024-06-01
    """
    day = _parse_date(date) or datetime.date.today()
    data = _run(lambda service: service.orchestrator.get_activity_data(day))

    if data is None:
        console.print(f"[yellow]No activity data for {day.isoformat()}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Activity for {day.isoformat()}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Steps", f"{data.steps:,}")
    table.add_row("Calories burned", f"{data.calories_burned:,.0f} kcal")
    table.add_row("Active minutes", str(data.active_minutes))
    if data.heart_rate is not None:
        table.add_row("Heart rate", f"{data.heart_rate:.0f} bpm")
    if data.distance_meters is not None:
        table.add_row("Distance", f"{data.distance_meters / 1000:.2f} km")
    if data.weight_kg is not None:
        table.add_row("Weight", f"{data.weight_kg:.1f} kg")
    console.print(table)


@app.command()
def balance(
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Day (YYYY-MM-DD, default today)"),
):
    """
    Show calories in vs. calories out for a day.

    Example:
        fitbridge balance --date 2024-06-01
    """
    day = _parse_date(date) or datetime.date.today()
    result = _run(lambda service: service.balance.compute_balance(day))

    if result is None:
        console.print(f"[yellow]No balance available for {day.isoformat()}[/yellow]")
        console.print("   Balance needs calories burned from a synced device")
        raise typer.Exit(1)

    style = BALANCE_STYLES[result.balance_status]
    console.print(f"⚖️  Balance for [bold]{day.isoformat()}[/bold]")
    console.print(f"   Calories in:  [cyan]{result.calories_in:,.0f}[/cyan] kcal")
    console.print(f"   Calories out: [cyan]{result.calories_out:,.0f}[/cyan] kcal")
    console.print(f"   Balance:      [{style}]{result.balance:+,.0f} kcal ({result.balance_percent:.0%})[/{style}]")
    console.print(f"   Status:       [{style}]{result.balance_status.value}[/{style}]")


# ============================================================================
# TOKENS Commands
# ============================================================================

tokens_app = typer.Typer(help="OAuth token management")
app.add_typer(tokens_app, name="tokens")


@tokens_app.command("status")
def tokens_status():
    """
    Show the connection state of every OAuth provider.

    Example:
        fitbridge tokens status
    """

    async def collect(service: DeviceSyncService):
        manager = service.connection_manager
        return [(config, manager.state(config.provider)) for config in service.registry.oauth_providers()]

    rows = _run(collect)

    table = Table(title="OAuth tokens")
    table.add_column("Provider", style="cyan")
    table.add_column("State")

    for config, state in rows:
        style = TOKEN_STATE_STYLES[state]
        table.add_row(config.display_name, f"[{style}]{state.value}[/{style}]")

    console.print(table)


@tokens_app.command("refresh")
def tokens_refresh(
    provider: str = typer.Argument(..., help="Provider whose token to refresh"),
):
    """
    Refresh the stored access token for a provider.

    Example:
        fitbridge tokens refresh fitbit
    """
    provider_type = _parse_provider(provider)
    console.print(f"🔄 Refreshing token for [cyan]{provider_type.value.lower()}[/cyan]...")

    if _run(lambda service: service.connection_manager.refresh(provider_type)) is None:
        console.print("[red]❌ Token refresh failed[/red]")
        console.print(f"   Reconnect with: [cyan]fitbridge devices connect {provider_type.value.lower()}[/cyan]")
        raise typer.Exit(1)

    console.print("[green]✅ Token refreshed[/green]")


@tokens_app.command("clear")
def tokens_clear(
    provider: str = typer.Argument(..., help="Provider whose tokens to clear"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """
    Delete stored tokens for a provider.

    Example:
        fitbridge tokens clear fitbit --force
    """
    provider_type = _parse_provider(provider)

    if not force:
        typer.confirm(f"Delete stored tokens for {provider_type.value.lower()}?", abort=True)

    async def clear(service: DeviceSyncService):
        return service.connection_manager.clear_tokens(provider_type)

    if _run(clear):
        console.print("[green]✅ Tokens cleared[/green]")
    else:
        console.print("[red]❌ Could not clear tokens[/red]")
        raise typer.Exit(1)


# ============================================================================
# START Command
# ============================================================================

start_app = typer.Typer(help="Run local services")
app.add_typer(start_app, name="start")


@start_app.command("dev")
def start_dev(
    port: int = typer.Option(5000, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """
    Run the in-memory device registry and nutrition API.

    Example:
        fitbridge start dev --port 5000
    """
    import uvicorn

    if not _is_port_available(port):
        console.print(f"[red]❌ Port {port} is already in use[/red]")
        console.print(f"   Try: [cyan]fitbridge start dev --port {port + 1}[/cyan]")
        raise typer.Exit(1)

    console.print(f"🚀 Starting dev registry on [cyan]http://{host}:{port}[/cyan]")
    console.print(f"   Point the CLI at it with [cyan]FITBRIDGE_API_URL=http://{host}:{port}/api[/cyan]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    uvicorn.run("server.dev_registry:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    app()
