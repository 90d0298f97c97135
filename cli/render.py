from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence

import typer

from models.readings import Alert, AlertSeverity, FacilityCandidate
from services.processor import SessionView
from services.supervisor import ConnectionState


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _fmt(value: Any, suffix: str = "") -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.1f}{suffix}"
    return f"{value}{suffix}"


def render_reading(payload: Dict[str, Any]) -> None:
    echo_heading("Reading")
    echo_key_values(
        [
            ("deviceId", payload.get("deviceId")),
            ("temp", _fmt(payload.get("temp"), "°C")),
            ("humidity", _fmt(payload.get("humidity"), "%")),
            ("shock", _fmt(payload.get("shock"), "g")),
            ("lat", _fmt(payload.get("lat"))),
            ("lng", _fmt(payload.get("lng"))),
            ("receivedAt", payload.get("receivedAt")),
        ]
    )


def render_facilities(items: Sequence[Dict[str, Any]]) -> None:
    echo_heading("Nearest facilities")
    if not items:
        typer.echo("No facilities found.")
        return
    for item in items:
        place = ", ".join(part for part in (item.get("city"), item.get("state")) if part)
        suffix = f" ({place})" if place else ""
        typer.echo(f"  - {item.get('name')}{suffix}: {item.get('distance', 0.0):.1f} mi")


def render_candidates(candidates: Sequence[FacilityCandidate]) -> None:
    render_facilities(
        [
            {
                "name": candidate.facility.name,
                "city": candidate.facility.city,
                "state": candidate.facility.state,
                "distance": candidate.distance_mi,
            }
            for candidate in candidates
        ]
    )


def render_connection(state: ConnectionState) -> None:
    colors = {
        ConnectionState.connected: typer.colors.GREEN,
        ConnectionState.connecting: typer.colors.YELLOW,
    }
    label = "Live" if state is ConnectionState.connected else state.value.capitalize()
    typer.secho(f"[{label}]", fg=colors.get(state, typer.colors.RED))


def render_alert(alert: Alert) -> None:
    color = typer.colors.RED if alert.severity is AlertSeverity.critical else typer.colors.YELLOW
    typer.secho(
        f"{alert.at.isoformat()} {alert.severity.value.upper()} {alert.kind.value}: {alert.message}",
        fg=color,
    )


def render_view(view: SessionView) -> None:
    snapshot = view.snapshot
    location = view.location
    echo_key_values(
        [
            ("device", snapshot.device_id or "-"),
            ("temperature", _fmt(snapshot.temperature_c, "°C")),
            ("humidity", _fmt(snapshot.humidity_pct, "%")),
            ("last shock", _fmt(snapshot.last_shock.g_force if snapshot.last_shock else None, "g")),
            ("location", f"{location.lat:.6f}, {location.lng:.6f}" if location else "-"),
            ("alerts", f"{view.critical_count} critical, {view.warning_count} warning"),
        ]
    )
