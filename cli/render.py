from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

import typer

from client.admin import UserSummary
from client.synchronizer import DashboardSnapshot
from models.records import AtmosphericReading, UserSession, WaterReading
from services.aggregator import ReadingStatistics
from services.status import fill_percentage, remaining_capacity


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "n/a"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _format_optional(value: Optional[float], digits: int = 2) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


def render_water(reading: Optional[WaterReading], capacity_m3: Optional[float] = None) -> None:
    echo_heading("Water level")
    if reading is None:
        typer.echo("No water reading available.")
        return
    pairs: list[tuple[str, Any]] = [
        ("timestamp", _format_time(reading.timestamp)),
        ("volume_m3", f"{reading.volume_m3:.3f}"),
        ("volume_liters", f"{reading.volume_liters:.2f}"),
    ]
    if capacity_m3 is not None:
        pairs.extend(
            [
                ("capacity_m3", capacity_m3),
                ("fill", f"{fill_percentage(reading.volume_m3, capacity_m3):.1f}%"),
                ("remaining_m3", f"{remaining_capacity(reading.volume_m3, capacity_m3):.3f}"),
            ]
        )
    echo_key_values(pairs)


def render_atmospheric(reading: Optional[AtmosphericReading]) -> None:
    echo_heading("Atmospheric conditions")
    if reading is None:
        typer.echo("No atmospheric reading available.")
        return
    echo_key_values(
        [
            ("timestamp", _format_time(reading.timestamp)),
            ("temperature", f"{reading.temperature:.1f} °C"),
            ("humidity", f"{reading.humidity:.1f} %"),
        ]
    )


def render_dashboard(snapshot: DashboardSnapshot, capacity_m3: float, freshness: str) -> None:
    typer.echo(freshness)
    if not snapshot.is_online:
        typer.secho(
            "You are offline. Showing the last data received.",
            fg=typer.colors.YELLOW,
        )
    typer.echo()
    render_water(snapshot.latest_water, capacity_m3)
    typer.echo()
    render_atmospheric(snapshot.latest_atmospheric)
    typer.echo()
    echo_heading("Status")
    echo_key_values(
        [
            ("raining", "yes" if snapshot.status.is_raining else "no"),
            ("pump_active", "yes" if snapshot.status.is_pump_active else "no"),
            ("daily_rainfall_liters", f"{snapshot.status.daily_rainfall_volume:.2f}"),
            ("buffered_readings", f"{len(snapshot.water)} water / {len(snapshot.atmospheric)} atmospheric"),
        ]
    )


def render_statistics(stats: ReadingStatistics) -> None:
    echo_heading("Statistics")
    echo_key_values(
        [
            ("water_readings", stats.water_count),
            ("atmospheric_readings", stats.atmospheric_count),
            ("consumption_liters", _format_optional(stats.consumption_liters)),
            ("mean_volume_liters", _format_optional(stats.mean_volume_liters)),
            ("min_volume_liters", _format_optional(stats.min_volume_liters)),
            ("max_volume_liters", _format_optional(stats.max_volume_liters)),
            ("mean_temperature", _format_optional(stats.mean_temperature, 1)),
            ("min_temperature", _format_optional(stats.min_temperature, 1)),
            ("max_temperature", _format_optional(stats.max_temperature, 1)),
            ("mean_humidity", _format_optional(stats.mean_humidity, 1)),
            ("mean_interval_minutes", _format_optional(stats.mean_interval_minutes, 1)),
        ]
    )


def render_session(session: Optional[UserSession]) -> None:
    if session is None:
        typer.echo("Not signed in.")
        return
    echo_key_values(
        [
            ("username", session.username),
            ("admin", "yes" if session.is_admin else "no"),
            ("dark_mode", "on" if session.dark_mode else "off"),
        ]
    )


def render_users(users: Sequence[UserSummary]) -> None:
    echo_heading("Users")
    if not users:
        typer.echo("No users.")
        return
    for user in users:
        role = "admin" if user.is_admin else "user"
        typer.echo(f"  - {user.username} ({role}) id={user.id} created={_format_time(user.created_at)}")
