"""Error taxonomy for the telemetry pipeline.

None of these are fatal to the process: each one marks a degraded path the
caller is expected to log and survive.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for pipeline errors."""


class UnrecognizedFormat(TelemetryError):
    """A raw line matched neither the structured nor the text grammar."""

    def __init__(self, line: str, reasons: list[str] | None = None) -> None:
        self.line = line
        self.reasons = list(reasons or [])
        super().__init__(f"Unrecognized telemetry line: {line!r}")


class InvalidPayload(TelemetryError):
    """A manual submission is missing a required field or has a bad value."""


class TransportError(TelemetryError):
    """The ingestion transport could not be opened or read."""


class ConnectionLost(TelemetryError):
    """The subscriber connection to the hub dropped or could not be opened."""


class RoutingUnavailable(TelemetryError):
    """The routing collaborator could not produce a route."""


class NoRoute(RoutingUnavailable):
    """The routing service found no route between the two points."""


class ServiceUnavailable(RoutingUnavailable):
    """The routing service is unconfigured or unreachable."""
