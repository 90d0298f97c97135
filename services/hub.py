"""Fan-out of canonical readings to live subscribers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from functools import lru_cache
from itertools import count
from threading import Lock
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from app.schemas import ReadingMessage, ReadingSubmission
from models.readings import DEFAULT_DEVICE_ID, CanonicalReading, Location
from services.errors import InvalidPayload
from settings import get_settings

logger = logging.getLogger(__name__)


class Subscriber:
    """One live connection with a bounded outbound queue.

    The queue belongs to the event loop the subscriber was created on.
    ``offer`` may be called from any thread and never blocks: a full queue
    drops the message. From another thread it returns ``True`` once the
    message is handed to the loop; a later drop only shows in ``dropped``.
    """

    def __init__(
        self,
        subscriber_id: str,
        max_pending: int = 32,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.subscriber_id = subscriber_id
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self.dropped = 0

    @property
    def ready(self) -> bool:
        return not self._closed and not self._loop.is_closed()

    def offer(self, payload: str) -> bool:
        if not self.ready:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            return self._enqueue(payload)
        try:
            self._loop.call_soon_threadsafe(self._enqueue, payload)
        except RuntimeError:
            # loop shut down between the readiness check and the call
            self._closed = True
            return False
        return True

    async def get(self) -> str:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed = True

    def _enqueue(self, payload: str) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(
                "Dropping message for slow subscriber",
                extra={"subscriber_id": self.subscriber_id, "dropped": self.dropped},
            )
            return False
        return True


class BroadcastHub:
    """Holds the subscriber set and relays readings to it."""

    def __init__(
        self,
        max_pending: int = 32,
        default_device_id: str = DEFAULT_DEVICE_ID,
    ) -> None:
        self.max_pending = max_pending
        self.default_device_id = default_device_id
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = Lock()
        self._ids = count(1)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscriber:
        with self._lock:
            subscriber = Subscriber(
                subscriber_id=f"sub-{next(self._ids)}",
                max_pending=self.max_pending,
                loop=loop,
            )
            self._subscribers[subscriber.subscriber_id] = subscriber
            total = len(self._subscribers)
        logger.info(
            "Subscriber connected",
            extra={"subscriber_id": subscriber.subscriber_id, "subscriber_count": total},
        )
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.close()
        with self._lock:
            removed = self._subscribers.pop(subscriber.subscriber_id, None)
            total = len(self._subscribers)
        if removed is not None:
            logger.info(
                "Subscriber disconnected",
                extra={"subscriber_id": subscriber.subscriber_id, "subscriber_count": total},
            )

    def publish(self, reading: CanonicalReading) -> CanonicalReading:
        """Stamp ``received_at`` and deliver one payload to every ready subscriber."""
        stamped = replace(reading, received_at=datetime.now(timezone.utc))
        payload = ReadingMessage.from_reading(stamped).to_wire()

        with self._lock:
            targets = list(self._subscribers.values())

        offered = 0
        for subscriber in targets:
            if subscriber.offer(payload):
                offered += 1

        logger.debug(
            "Broadcast reading",
            extra={
                "device_id": stamped.device_id,
                "subscriber_count": len(targets),
                "offered": offered,
            },
        )
        return stamped

    def submit_reading(self, raw_payload: Any) -> CanonicalReading:
        """Validate a manual submission, build a reading and publish it."""
        if not isinstance(raw_payload, Mapping):
            raise InvalidPayload("Expected { temp, shock?, humidity?, deviceId?, lat?, lng? }")
        try:
            submission = ReadingSubmission.model_validate(dict(raw_payload))
        except ValidationError as exc:
            fields = sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]})
            detail = ", ".join(fields) or "payload"
            raise InvalidPayload(f"Invalid or missing field(s): {detail}") from exc

        device_id = (submission.device_id or "").strip() or self.default_device_id
        reading = CanonicalReading(
            device_id=device_id,
            observed_at=datetime.now(timezone.utc),
            temperature_c=submission.temp,
            humidity_pct=submission.humidity,
            shock_g=abs(submission.shock) if submission.shock is not None else 0.0,
            location=Location.maybe(submission.lat, submission.lng),
        )
        return self.publish(reading)


@lru_cache
def build_default_hub() -> BroadcastHub:
    settings = get_settings()
    return BroadcastHub(
        max_pending=settings.subscriber_queue_size,
        default_device_id=settings.default_device_id,
    )
