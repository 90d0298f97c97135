"""Tests for the ingestion source adapter."""

from __future__ import annotations

import io
import logging
from typing import List, Optional

import serial

from models.readings import CanonicalReading
from services.errors import TransportError
from services.hub import BroadcastHub
from services.ingestion import (
    IngestionSourceAdapter,
    IngestionStatus,
    SerialLineSource,
    StreamLineSource,
    build_default_ingestion,
)
from settings import get_settings


class RecordingHub(BroadcastHub):
    def __init__(self) -> None:
        super().__init__()
        self.published: List[CanonicalReading] = []

    def publish(self, reading: CanonicalReading) -> CanonicalReading:
        stamped = super().publish(reading)
        self.published.append(stamped)
        return stamped


class FailingSource:
    name = "failing"

    def __init__(self, fail_on_open: bool = False, lines: Optional[List[bytes]] = None) -> None:
        self.fail_on_open = fail_on_open
        self.lines = list(lines or [])
        self.closed = False

    def open(self) -> None:
        if self.fail_on_open:
            raise TransportError("port busy")

    def read_line(self) -> Optional[bytes]:
        if self.lines:
            return self.lines.pop(0)
        raise TransportError("device unplugged")

    def close(self) -> None:
        self.closed = True


def _stream(text: str) -> StreamLineSource:
    return StreamLineSource(io.BytesIO(text.encode("utf-8")), name="test-stream")


def test_adapter_publishes_valid_lines_and_skips_the_rest(caplog) -> None:
    hub = RecordingHub()
    source = _stream(
        '{"temp": 4.2, "shock": 0}\r\n'
        "\r\n"
        "   \n"
        "garbage line\n"
        "Shock: 1.6 | Temp: 5.0C | Humidity: 40%\n"
    )
    adapter = IngestionSourceAdapter(hub=hub, source=source)

    with caplog.at_level(logging.WARNING):
        adapter.run()

    assert [reading.temperature_c for reading in hub.published] == [4.2, 5.0]
    assert all(reading.received_at is not None for reading in hub.published)
    assert adapter.accepted == 2
    assert adapter.rejected == 1
    assert adapter.status is IngestionStatus.stopped

    records = [record for record in caplog.records if record.name == "services.ingestion"]
    assert any("unrecognized" in record.getMessage() for record in records)
    assert any(getattr(record, "line", None) == "garbage line" for record in records)


def test_adapter_accepts_text_streams() -> None:
    hub = RecordingHub()
    adapter = IngestionSourceAdapter(
        hub=hub,
        source=StreamLineSource(io.StringIO('{"temp": 3.3, "deviceId": "DEV-002"}\n')),
    )

    adapter.run()

    assert [reading.device_id for reading in hub.published] == ["DEV-002"]


def test_adapter_survives_undecodable_bytes() -> None:
    hub = RecordingHub()
    source = StreamLineSource(io.BytesIO(b"\xff\xfe\n{\"temp\": 4}\n"))
    adapter = IngestionSourceAdapter(hub=hub, source=source)

    adapter.run()

    assert len(hub.published) == 1
    assert adapter.rejected == 1


def test_open_failure_marks_adapter_failed_and_hub_keeps_working(caplog) -> None:
    hub = RecordingHub()
    adapter = IngestionSourceAdapter(hub=hub, source=FailingSource(fail_on_open=True))

    with caplog.at_level(logging.ERROR):
        adapter.run()

    assert adapter.status is IngestionStatus.failed
    assert any("manual submissions only" in record.getMessage() for record in caplog.records)

    hub.submit_reading({"temp": 4.0})
    assert len(hub.published) == 1


def test_read_failure_stops_ingestion_and_closes_source() -> None:
    hub = RecordingHub()
    source = FailingSource(lines=[b'{"temp": 4.0}\n'])
    adapter = IngestionSourceAdapter(hub=hub, source=source)

    adapter.run()

    assert adapter.status is IngestionStatus.failed
    assert len(hub.published) == 1
    assert source.closed is True


def test_start_and_stop_run_on_worker_thread() -> None:
    hub = RecordingHub()
    adapter = IngestionSourceAdapter(hub=hub, source=_stream('{"temp": 4.0}\n'))

    adapter.start()
    adapter._future.result(timeout=5)  # type: ignore[union-attr]
    adapter.stop(timeout=5)

    assert len(hub.published) == 1
    assert adapter.status is IngestionStatus.stopped


def test_serial_source_wraps_open_errors(monkeypatch) -> None:
    def refuse(*_args, **_kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr("services.ingestion.serial.Serial", refuse)
    source = SerialLineSource("/dev/ttyUSB9", baudrate=9600)

    try:
        source.open()
    except TransportError as exc:
        assert "/dev/ttyUSB9" in str(exc)
    else:  # pragma: no cover - defensive check
        raise AssertionError("Expected TransportError when the port cannot be opened")


def test_default_ingestion_is_disabled_without_serial_port(monkeypatch) -> None:
    monkeypatch.delenv("SERIAL_PORT", raising=False)
    get_settings.cache_clear()
    build_default_ingestion.cache_clear()
    try:
        assert build_default_ingestion() is None
    finally:
        build_default_ingestion.cache_clear()
        get_settings.cache_clear()
