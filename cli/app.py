from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.mock import mock_readings
from cli.render import (
    render_alert,
    render_candidates,
    render_connection,
    render_facilities,
    render_reading,
    render_view,
)
from logging_config import configure_logging
from models.readings import AlertSeverity
from services.facilities import build_default_index
from services.processor import ReadingProcessor, SessionView, build_default_processor
from services.redirect import RedirectAdvisor
from services.supervisor import ReconnectionSupervisor
from settings import get_settings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for feeding and watching the cold chain telemetry bridge.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Bridge API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    ws_url: Optional[str] = typer.Option(
        None,
        "--ws-url",
        help="Broadcast websocket URL (defaults to HUB_WS_URL env or ws://localhost:8000/ws).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, ws_url=ws_url)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("send")
def send_command(
    ctx: typer.Context,
    temp: float = typer.Option(..., "--temp", help="Temperature in °C."),
    shock: float = typer.Option(0.0, "--shock", help="Shock magnitude in g."),
    humidity: Optional[float] = typer.Option(None, "--humidity", help="Relative humidity in %."),
    device_id: Optional[str] = typer.Option(None, "--device-id", help="Device identifier."),
    lat: Optional[float] = typer.Option(None, "--lat", help="Latitude."),
    lng: Optional[float] = typer.Option(None, "--lng", help="Longitude."),
) -> None:
    """Submit a single reading to the bridge."""
    state = _get_state(ctx)
    payload = {"temp": temp, "shock": shock}
    optional = {"humidity": humidity, "deviceId": device_id, "lat": lat, "lng": lng}
    payload.update({key: value for key, value in optional.items() if value is not None})
    reading = state.client.submit_reading(payload)
    typer.secho("Reading accepted.", fg=typer.colors.GREEN)
    render_reading(reading)


@app.command("mock")
def mock_command(
    ctx: typer.Context,
    count: int = typer.Option(0, "--count", "-n", min=0, help="Readings to send (0 = until interrupted)."),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between readings."),
    device_id: str = typer.Option("DEV-001", "--device-id", help="Device identifier."),
) -> None:
    """Stream simulated readings to the bridge."""
    state = _get_state(ctx)
    delay = interval if interval is not None else state.config.mock_interval
    typer.echo(f"Sending mock readings to {state.config.base_url} ...")
    sent = 0
    try:
        for payload in mock_readings(device_id=device_id):
            state.client.submit_reading(payload)
            sent += 1
            typer.echo(
                f"Sent: temp={payload['temp']:.2f}°C, humidity={payload['humidity']:.1f}%, "
                f"shock={payload['shock']:.2f}g, GPS {payload['lat']:.4f}, {payload['lng']:.4f}"
            )
            if count and sent >= count:
                break
            time.sleep(delay)
    except KeyboardInterrupt:
        typer.echo()
    typer.echo(f"Sent {sent} reading(s).")


@app.command("nearest")
def nearest_command(
    ctx: typer.Context,
    lat: float = typer.Argument(..., help="Latitude."),
    lng: float = typer.Argument(..., help="Longitude."),
    limit: int = typer.Option(5, "--limit", "-k", min=1, max=50, help="Number of facilities."),
) -> None:
    """List the facilities closest to a point."""
    state = _get_state(ctx)
    render_facilities(state.client.nearest_facilities(lat, lng, limit))


class AlertPrinter:
    """Prints alerts as they appear and redirect candidates on critical ones."""

    def __init__(self, advisor: RedirectAdvisor) -> None:
        self._advisor = advisor
        self._last_alert_id = 0

    def __call__(self, view: SessionView) -> None:
        fresh = [alert for alert in view.alerts if alert.id > self._last_alert_id]
        if not fresh:
            return
        self._last_alert_id = max(alert.id for alert in fresh)
        for alert in reversed(fresh):
            render_alert(alert)
        if fresh[0].severity is AlertSeverity.critical:
            candidates = self._advisor.suggest(view)
            if candidates:
                render_candidates(candidates)
        render_view(view)


async def _watch(config: CLIConfig, processor: ReadingProcessor, duration: Optional[float]) -> None:
    settings = get_settings()
    processor.add_listener(AlertPrinter(RedirectAdvisor(build_default_index())))
    supervisor = ReconnectionSupervisor(
        config.ws_url,
        processor.ingest_message,
        on_disconnect=processor.reset,
        on_state_change=render_connection,
        reconnect_delay=settings.reconnect_delay,
    )
    supervisor.start()
    try:
        if duration:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await supervisor.shutdown()


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    duration: Optional[float] = typer.Option(
        None,
        "--duration",
        help="Stop after this many seconds (default: run until interrupted).",
    ),
) -> None:
    """Follow the live stream, printing alerts and redirect suggestions."""
    state = _get_state(ctx)
    configure_logging()
    typer.echo(f"Watching {state.config.ws_url} ...")
    try:
        asyncio.run(_watch(state.config, build_default_processor(), duration))
    except KeyboardInterrupt:
        typer.echo()
    typer.echo("Stopped.")
