"""Subscriber-side connection lifecycle with fixed-delay reconnects."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import AsyncIterable, Callable, Optional, Union

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException

from services.errors import ConnectionLost

logger = logging.getLogger(__name__)

Message = Union[str, bytes]
ConnectFactory = Callable[[str], AbstractAsyncContextManager[AsyncIterable[Message]]]


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    shutdown = "shutdown"


def default_connect(url: str) -> AbstractAsyncContextManager[AsyncIterable[Message]]:
    return websocket_connect(url, open_timeout=10)


class ReconnectionSupervisor:
    """Owns one logical connection to the hub and keeps it alive.

    A single task runs the connect/read/sleep cycle, so there is never more
    than one pending attempt. Retries are unbounded; only ``shutdown`` ends
    the cycle.
    """

    def __init__(
        self,
        url: str,
        on_message: Callable[[Message], object],
        *,
        on_disconnect: Optional[Callable[[], object]] = None,
        on_state_change: Optional[Callable[[ConnectionState], object]] = None,
        reconnect_delay: float = 3.0,
        connect: ConnectFactory = default_connect,
    ) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._on_state_change = on_state_change
        self._connect = connect
        self._state = ConnectionState.disconnected
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping = False
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state is ConnectionState.connected

    def start(self) -> asyncio.Task[None]:
        if self._state is ConnectionState.shutdown:
            raise RuntimeError("Supervisor has been shut down.")
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run(), name="reconnection-supervisor")
        return self._task

    async def shutdown(self) -> None:
        """Stop reconnecting, cancel any pending delay and close the connection."""
        self._stopping = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._transition(ConnectionState.shutdown)

    async def run(self) -> None:
        while not self._stopping:
            self._transition(ConnectionState.connecting)
            self.attempts += 1
            try:
                await self._session()
            except ConnectionLost as exc:
                logger.warning(
                    "Connection to hub lost",
                    extra={"reason": str(exc), "attempt": self.attempts},
                )
            except Exception as exc:
                logger.exception(
                    "Unexpected error on hub connection",
                    extra={"reason": str(exc) or type(exc).__name__, "attempt": self.attempts},
                )
            else:
                logger.info("Connection to hub closed", extra={"attempt": self.attempts})
            finally:
                if self._state is not ConnectionState.shutdown:
                    self._transition(ConnectionState.disconnected)

            if self._stopping:
                break
            logger.info("Reconnecting to hub", extra={"delay": self.reconnect_delay})
            await asyncio.sleep(self.reconnect_delay)

    async def _session(self) -> None:
        try:
            async with self._connect(self.url) as connection:
                self._transition(ConnectionState.connected)
                async for message in connection:
                    self._deliver(message)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ConnectionLost(str(exc) or type(exc).__name__) from exc

    def _deliver(self, message: Message) -> None:
        # A failing consumer skips the message; it never ends the connection.
        try:
            self._on_message(message)
        except Exception as exc:
            logger.exception(
                "Message handler failed; skipping message",
                extra={"reason": str(exc) or type(exc).__name__},
            )

    def _transition(self, state: ConnectionState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.debug("Connection state changed", extra={"state": state.value})
        if previous is ConnectionState.connected and self._on_disconnect is not None:
            self._on_disconnect()
        if self._on_state_change is not None:
            self._on_state_change(state)
