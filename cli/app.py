from __future__ import annotations

import asyncio
import base64
import mimetypes
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import typer

from cli.config import CLIConfig, load_config
from cli.render import (
    echo_key_values,
    render_atmospheric,
    render_dashboard,
    render_session,
    render_statistics,
    render_users,
    render_water,
)
from client.admin import UserSummary
from client.context import ClientContext, open_context
from client.synchronizer import DashboardSnapshot
from errors import TelemetryError, ValidationError
from logging_config import configure_logging

T = TypeVar("T")


@dataclass
class CLIState:
    config: CLIConfig


app = typer.Typer(
    help="Dashboard for the water tank telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
users_app = typer.Typer(help="Manage user accounts (administrators only).")
recover_app = typer.Typer(help="Recover a forgotten password.")
logo_app = typer.Typer(help="Customize the dashboard logo.")
app.add_typer(users_app, name="users")
app.add_typer(recover_app, name="recover")
app.add_typer(logo_app, name="logo")


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.find_object(CLIState)
    if state is None:
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _run(ctx: typer.Context, operation: Callable[[ClientContext], Awaitable[T]]) -> T:
    """Open a client context, run ``operation`` in it and report domain errors."""
    config = _get_state(ctx).config

    async def runner() -> T:
        async with open_context(config.base_url, config.timeout, config.cache_path) as context:
            return await operation(context)

    try:
        return asyncio.run(runner())
    except TelemetryError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _local(instant: datetime) -> datetime:
    return instant if instant.tzinfo is not None else instant.astimezone()


async def _find_user(context: ClientContext, username: str) -> UserSummary:
    for user in await context.admin.list_users():
        if user.username == username:
            return user
    raise ValidationError(f"User {username!r} was not found.")


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds for each request.",
    ),
    cache_path: Optional[str] = typer.Option(
        None,
        "--cache-path",
        help="Local cache file (defaults to LOCAL_CACHE_PATH env).",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging()
    ctx.obj = CLIState(config=load_config(base_url=base_url, timeout=timeout, cache_path=cache_path))


@app.command("send")
def send_command(
    ctx: typer.Context,
    liters: Optional[float] = typer.Option(None, "--liters", help="Tank volume in liters."),
    m3: Optional[float] = typer.Option(None, "--m3", help="Tank volume in cubic meters."),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Temperature in °C."),
    humidity: Optional[float] = typer.Option(None, "--humidity", help="Relative humidity in %."),
) -> None:
    """Post one sensor transmission, as the field device would."""
    payload: Dict[str, Any] = {
        key: value
        for key, value in (
            ("volume_liters", liters),
            ("volume_m3", m3),
            ("temperature", temperature),
            ("humidity", humidity),
        )
        if value is not None
    }
    if not payload:
        raise typer.BadParameter("Provide at least one of --liters, --m3, --temperature, --humidity.")

    result = _run(ctx, lambda context: context.remote.ingest(payload))
    typer.secho(result.get("message", "Data sent."), fg=typer.colors.GREEN)
    results = result.get("results") or {}
    for key in ("water_error", "atmospheric_error"):
        if results.get(key):
            typer.secho(f"{key}: {results[key]}", fg=typer.colors.YELLOW)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Load the newest readings and show the dashboard."""

    async def operation(context: ClientContext) -> tuple[DashboardSnapshot, float, str]:
        loaded = await context.synchronizer.initial_load()
        context.synchronizer.set_online(loaded)
        return (
            context.synchronizer.snapshot(),
            context.preferences.tank_capacity(),
            context.synchronizer.describe_freshness(),
        )

    snapshot, capacity, freshness = _run(ctx, operation)
    render_dashboard(snapshot, capacity, freshness)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    duration: float = typer.Option(60.0, "--duration", min=0.1, help="Seconds to follow the live feed."),
) -> None:
    """Follow new readings as they arrive."""

    def on_update(snapshot: DashboardSnapshot) -> None:
        water = snapshot.latest_water
        atmospheric = snapshot.latest_atmospheric
        parts = []
        if water is not None:
            parts.append(f"water={water.volume_liters:.2f} L")
        if atmospheric is not None:
            parts.append(f"temperature={atmospheric.temperature:.1f} °C humidity={atmospheric.humidity:.1f} %")
        flags = []
        if snapshot.status.is_raining:
            flags.append("raining")
        if snapshot.status.is_pump_active:
            flags.append("pump active")
        typer.echo(" ".join(parts + flags) or "waiting for readings...")

    async def operation(context: ClientContext) -> int:
        synchronizer = context.synchronizer
        loaded = await synchronizer.initial_load()
        synchronizer.set_online(loaded)
        typer.echo(synchronizer.describe_freshness())
        remove = synchronizer.add_listener(on_update)
        subscription = synchronizer.subscribe_live()
        try:
            await asyncio.sleep(duration)
        finally:
            subscription.stop()
            remove()
        return len(synchronizer.snapshot().water)

    buffered = _run(ctx, operation)
    typer.echo(f"Stopped watching ({buffered} water readings buffered).")


@app.command("history")
def history_command(
    ctx: typer.Context,
    at: datetime = typer.Option(..., "--at", help="Show the readings in effect at this date/time."),
) -> None:
    """Show the newest readings taken at or before a point in time."""
    instant = _local(at)
    water, atmospheric = _run(ctx, lambda context: context.synchronizer.lookup_at(instant))
    render_water(water)
    typer.echo()
    render_atmospheric(atmospheric)


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    start: Optional[datetime] = typer.Option(None, "--start", formats=["%Y-%m-%d"], help="First day (UTC)."),
    end: Optional[datetime] = typer.Option(None, "--end", formats=["%Y-%m-%d"], help="Last day (UTC)."),
) -> None:
    """Summarize the buffered readings."""

    async def operation(context: ClientContext):
        await context.synchronizer.initial_load()
        snapshot = context.synchronizer.snapshot()
        return context.aggregator.summarize(
            snapshot.water,
            snapshot.atmospheric,
            start=start.date() if start else None,
            end=end.date() if end else None,
        )

    render_statistics(_run(ctx, operation))


@app.command("login")
def login_command(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Account username."),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
) -> None:
    """Sign in and remember the session on this device."""
    session = _run(ctx, lambda context: context.gateway.sign_in(username, password))
    typer.secho(f"Signed in as {session.username}.", fg=typer.colors.GREEN)


@app.command("signup")
def signup_command(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="New account username."),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """Create an account and sign in with it."""
    session = _run(ctx, lambda context: context.gateway.sign_up(username, password))
    typer.secho(f"Account created. Signed in as {session.username}.", fg=typer.colors.GREEN)


@app.command("logout")
def logout_command(ctx: typer.Context) -> None:
    """Forget the session stored on this device."""

    async def operation(context: ClientContext) -> None:
        context.gateway.sign_out()

    _run(ctx, operation)
    typer.echo("Signed out.")


@app.command("whoami")
def whoami_command(ctx: typer.Context) -> None:
    """Show the signed-in user."""

    async def operation(context: ClientContext):
        return context.gateway.session

    render_session(_run(ctx, operation))


@app.command("dark-mode")
def dark_mode_command(ctx: typer.Context) -> None:
    """Toggle the dark mode preference of the signed-in user."""
    session = _run(ctx, lambda context: context.gateway.toggle_dark_mode())
    if session is None:
        typer.secho("Not signed in.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Dark mode {'on' if session.dark_mode else 'off'}.")


@users_app.command("list")
def users_list_command(ctx: typer.Context) -> None:
    """List every account."""
    render_users(_run(ctx, lambda context: context.admin.list_users()))


@users_app.command("create")
def users_create_command(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    confirm: str = typer.Option(..., "--confirm", prompt="Confirm password", hide_input=True),
) -> None:
    """Create an account."""
    user_id = _run(ctx, lambda context: context.admin.create_user(username, password, confirm))
    typer.secho(f"User {username} created (id={user_id}).", fg=typer.colors.GREEN)


@users_app.command("passwd")
def users_passwd_command(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    confirm: str = typer.Option(..., "--confirm", prompt="Confirm password", hide_input=True),
) -> None:
    """Change the password of an account."""

    async def operation(context: ClientContext) -> None:
        user = await _find_user(context, username)
        await context.admin.change_password(user.id, password, confirm)

    _run(ctx, operation)
    typer.secho(f"Password changed for {username}.", fg=typer.colors.GREEN)


@users_app.command("toggle-admin")
def users_toggle_admin_command(ctx: typer.Context, username: str = typer.Argument(...)) -> None:
    """Grant or revoke administrator rights."""

    async def operation(context: ClientContext) -> UserSummary:
        return await context.admin.toggle_admin(await _find_user(context, username))

    user = _run(ctx, operation)
    typer.echo(f"{user.username} is {'now' if user.is_admin else 'no longer'} an administrator.")


@users_app.command("delete")
def users_delete_command(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete an account."""
    if not yes:
        typer.confirm(f"Delete user {username}?", abort=True)

    async def operation(context: ClientContext) -> None:
        await context.admin.delete_user(await _find_user(context, username))

    _run(ctx, operation)
    typer.secho(f"User {username} deleted.", fg=typer.colors.GREEN)


@recover_app.command("request")
def recover_request_command(ctx: typer.Context, username: str = typer.Argument(...)) -> None:
    """Issue a recovery token for an account with a registered email."""
    token = _run(ctx, lambda context: context.gateway.request_recovery(username))
    echo_key_values([("token", token)])


@recover_app.command("reset")
def recover_reset_command(
    ctx: typer.Context,
    token: str = typer.Argument(...),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    confirm: str = typer.Option(..., "--confirm", prompt="Confirm password", hide_input=True),
) -> None:
    """Set a new password using a recovery token."""
    _run(ctx, lambda context: context.gateway.reset_password(token, password, confirm))
    typer.secho("Password reset. You can now sign in.", fg=typer.colors.GREEN)


@app.command("capacity")
def capacity_command(
    ctx: typer.Context,
    value: Optional[float] = typer.Argument(None, help="New tank capacity in cubic meters."),
) -> None:
    """Show or set the tank capacity used for the fill gauge."""

    async def operation(context: ClientContext) -> float:
        if value is None:
            return context.preferences.tank_capacity()
        return context.preferences.set_tank_capacity(value)

    typer.echo(f"Tank capacity: {_run(ctx, operation)} m³")


@logo_app.command("set")
def logo_set_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Image file."),
) -> None:
    """Use an image file as the dashboard logo."""
    mime_type, _ = mimetypes.guess_type(file.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise typer.BadParameter(f"{file} is not an image file.")
    data_uri = f"data:{mime_type};base64,{base64.b64encode(file.read_bytes()).decode('ascii')}"

    async def operation(context: ClientContext) -> None:
        context.preferences.set_logo(data_uri)

    _run(ctx, operation)
    typer.secho("Logo updated.", fg=typer.colors.GREEN)


@logo_app.command("reset")
def logo_reset_command(ctx: typer.Context) -> None:
    """Restore the default logo."""

    async def operation(context: ClientContext) -> None:
        context.preferences.reset_logo()

    _run(ctx, operation)
    typer.echo("Logo reset.")
