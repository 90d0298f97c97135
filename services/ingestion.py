"""Read raw device lines from a transport and feed them to the hub."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from functools import lru_cache
from threading import Event, Lock
from typing import IO, Optional, Protocol, Union

import serial
from serial.tools import list_ports

from app.schemas import SerialPortInfo
from services.errors import TransportError, UnrecognizedFormat
from services.hub import BroadcastHub, build_default_hub
from services.normalizer import normalize_line
from settings import get_settings

logger = logging.getLogger(__name__)


class IngestionStatus(str, Enum):
    idle = "idle"
    running = "running"
    stopped = "stopped"
    failed = "failed"


class LineSource(Protocol):
    name: str

    def open(self) -> None: ...

    def read_line(self) -> Optional[bytes]:
        """Return the next raw line, ``b""`` on an idle tick, ``None`` at end of stream."""

    def close(self) -> None: ...


class SerialLineSource:
    """Newline-delimited lines from a serial port."""

    def __init__(self, port: str, baudrate: int = 9600, read_timeout: float = 0.5) -> None:
        self.port = port
        self.baudrate = baudrate
        self.read_timeout = read_timeout
        self.name = f"serial:{port}"
        self._serial: Optional[serial.Serial] = None

    def open(self) -> None:
        try:
            self._serial = serial.Serial(self.port, self.baudrate, timeout=self.read_timeout)
        except (serial.SerialException, ValueError) as exc:
            raise TransportError(f"Failed to open {self.port}: {exc}") from exc

    def read_line(self) -> Optional[bytes]:
        if self._serial is None:
            raise TransportError(f"Serial port {self.port} is not open.")
        try:
            return self._serial.readline()
        except serial.SerialException as exc:
            raise TransportError(f"Failed to read {self.port}: {exc}") from exc

    def close(self) -> None:
        if self._serial is not None:
            self._serial.close()
            self._serial = None


class StreamLineSource:
    """Lines from an already open binary or text stream (files, stdin, tests)."""

    def __init__(self, stream: IO, name: str = "stream") -> None:
        self._stream = stream
        self.name = name

    def open(self) -> None:
        return None

    def read_line(self) -> Optional[bytes]:
        try:
            raw: Union[bytes, str] = self._stream.readline()
        except (OSError, ValueError) as exc:
            raise TransportError(f"Failed to read {self.name}: {exc}") from exc
        if not raw:
            return None
        if isinstance(raw, str):
            return raw.encode("utf-8")
        return raw

    def close(self) -> None:
        self._stream.close()


class IngestionSourceAdapter:
    """Pumps one line source through the normalizer into the hub.

    Unrecognized lines are logged and skipped. A transport failure stops
    ingestion but leaves the hub serving manual submissions.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        source: LineSource,
        default_device_id: Optional[str] = None,
    ) -> None:
        self.hub = hub
        self.source = source
        self.default_device_id = default_device_id or hub.default_device_id
        self.accepted = 0
        self.rejected = 0
        self._status = IngestionStatus.idle
        self._status_lock = Lock()
        self._stop = Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future[None]] = None

    @property
    def status(self) -> IngestionStatus:
        with self._status_lock:
            return self._status

    def _set_status(self, status: IngestionStatus) -> None:
        with self._status_lock:
            self._status = status

    def start(self) -> None:
        """Run the read loop on a dedicated worker thread."""
        if self._future is not None:
            return
        self._stop.clear()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ingestion")
        self._future = self._executor.submit(self.run)

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        self._stop.set()
        future = self._future
        if future is not None:
            future.result(timeout=timeout)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None
        self._future = None

    def run(self) -> None:
        transport = self.source.name
        try:
            self.source.open()
        except TransportError as exc:
            self._set_status(IngestionStatus.failed)
            logger.error(
                "Ingestion transport unavailable; manual submissions only",
                extra={"transport": transport, "reason": str(exc)},
            )
            return

        self._set_status(IngestionStatus.running)
        logger.info("Ingestion started", extra={"transport": transport})
        try:
            while not self._stop.is_set():
                raw = self.source.read_line()
                if raw is None:
                    break
                self.handle_line(raw)
        except TransportError as exc:
            self._set_status(IngestionStatus.failed)
            logger.error(
                "Ingestion transport failed; manual submissions only",
                extra={"transport": transport, "reason": str(exc)},
            )
            return
        finally:
            try:
                self.source.close()
            except (OSError, serial.SerialException) as exc:
                logger.warning(
                    "Failed to close ingestion transport",
                    extra={"transport": transport, "reason": str(exc)},
                )

        self._set_status(IngestionStatus.stopped)
        logger.info(
            "Ingestion stopped",
            extra={"transport": transport, "reason": "stopped" if self._stop.is_set() else "end of stream"},
        )

    def handle_line(self, raw: bytes) -> bool:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return False
        try:
            reading = normalize_line(line, default_device_id=self.default_device_id)
        except UnrecognizedFormat as exc:
            self.rejected += 1
            logger.warning(
                "Skipping unrecognized line",
                extra={"transport": self.source.name, "line": exc.line, "reason": "; ".join(exc.reasons)},
            )
            return False
        self.hub.publish(reading)
        self.accepted += 1
        return True


def list_serial_ports() -> list[SerialPortInfo]:
    return [
        SerialPortInfo(path=port.device, manufacturer=port.manufacturer)
        for port in list_ports.comports()
    ]


@lru_cache
def build_default_ingestion() -> Optional[IngestionSourceAdapter]:
    """Adapter for the configured serial port, or ``None`` for manual-only mode."""
    settings = get_settings()
    if not settings.serial_port:
        logger.info(
            "SERIAL_PORT not set; use POST /api/readings to submit readings",
            extra={"transport": "none"},
        )
        return None
    source = SerialLineSource(settings.serial_port, baudrate=settings.serial_baud)
    return IngestionSourceAdapter(
        hub=build_default_hub(),
        source=source,
        default_device_id=settings.default_device_id,
    )
