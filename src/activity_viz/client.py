"""Reconnecting consumer of the activity stream.

``ReconnectingClient`` keeps one logical connection to the streaming server
across network interruptions. It moves through
``connecting -> connected -> disconnected -> connecting ...`` until it is shut
down, retrying with capped exponential backoff, and exposes the last N
accepted events together with the folded ``ActivityView``.
"""

import asyncio
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum

import aiohttp

from .activity_view import EMPTY_VIEW, ActivityView, apply_event
from .wire import WireEvent, parse_wire_event

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_MAX_EVENTS = 100

PONG_FRAME = json.dumps({"type": "pong"})


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def compute_backoff_delay(
    attempts: int, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY
) -> float:
    """Delay in seconds before retry number ``attempts`` (zero-based)."""
    # Cap the exponent so large attempt counts cannot overflow
    return min(base_delay * 2 ** min(attempts, 32), max_delay)


Opener = Callable[[str], Awaitable[aiohttp.ClientWebSocketResponse]]


class ReconnectingClient:
    """WebSocket client that reconnects with capped exponential backoff."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        opener: Opener | None = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        max_events: int = DEFAULT_MAX_EVENTS,
    ):
        """Initialize the client.

        Args:
            url: WebSocket URL of the streaming server
            session: aiohttp session to use; one is created when omitted
            opener: Coroutine function opening the channel for a URL, used
                instead of ``session.ws_connect`` when given
            base_delay: First retry delay in seconds
            max_delay: Retry delay ceiling in seconds
            max_events: Number of most recent events retained
        """
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("require 0 < base_delay <= max_delay")
        if max_events <= 0:
            raise ValueError("max_events must be positive")

        self.url = url
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._session = session
        self._owns_session = session is None
        self._opener = opener

        self._status = ConnectionStatus.CONNECTING
        self._attempts = 0
        self._retry_handle: asyncio.TimerHandle | None = None
        self._connect_task: asyncio.Task | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closing: asyncio.Task | None = None
        self._closed = False
        self._started = False

        self._events: deque[WireEvent] = deque(maxlen=max_events)
        self._view: ActivityView = EMPTY_VIEW
        self.last_error: BaseException | None = None

        self._status_listeners: list[Callable[[ConnectionStatus], None]] = []
        self._event_listeners: list[Callable[[WireEvent], None]] = []

    # ============================================================================
    # Public state
    # ============================================================================

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def events(self) -> list[WireEvent]:
        """Retained events, oldest first."""
        return list(self._events)

    @property
    def view(self) -> ActivityView:
        return self._view

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def add_status_listener(self, listener: Callable[[ConnectionStatus], None]) -> None:
        self._status_listeners.append(listener)

    def add_event_listener(self, listener: Callable[[WireEvent], None]) -> None:
        self._event_listeners.append(listener)

    # ============================================================================
    # Lifecycle
    # ============================================================================

    def start(self) -> None:
        """Open the channel. Must be called from a running event loop.

        Raises:
            RuntimeError: If the client was already started or shut down
        """
        if self._closed:
            raise RuntimeError("Client has been shut down")
        if self._started:
            raise RuntimeError("Client already started")

        self._started = True
        self._open()

    def shutdown(self) -> None:
        """Stop reconnecting and close the channel.

        The pending retry timer is cancelled before this returns; no status
        change is reported afterwards.
        """
        if self._closed:
            return

        self._set_status(ConnectionStatus.DISCONNECTED)
        self._closed = True

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            self._closing = asyncio.get_running_loop().create_task(ws.close())

        logger.info(f"Client for {self.url} shut down")

    async def close(self) -> None:
        """Shut down and wait for the connection task and owned session."""
        task = self._connect_task
        self.shutdown()

        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._closing is not None:
            await self._closing
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ============================================================================
    # Connection state machine
    # ============================================================================

    def _open(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)
        self._connect_task = asyncio.get_running_loop().create_task(
            self._run_connection(), name="activity-client-connection"
        )

    async def _open_channel(self) -> aiohttp.ClientWebSocketResponse:
        if self._opener is not None:
            return await self._opener(self.url)
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(self.url)

    async def _run_connection(self) -> None:
        """Open the channel and consume frames until it drops."""
        try:
            ws = await self._open_channel()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Connection to {self.url} failed: {e}")
            self._handle_disconnect(e)
            return

        if self._closed:
            await ws.close()
            return

        self._ws = ws
        self._attempts = 0
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info(f"Connected to {self.url}")

        error: BaseException | None = None
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    reply = self.handle_message(message.data)
                    if reply is not None:
                        await ws.send_str(reply)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            if self._ws is ws:
                self._ws = None

        logger.info(f"Connection to {self.url} closed")
        self._handle_disconnect(error)

    def _handle_disconnect(self, error: BaseException | None = None) -> None:
        """React to a close or error by scheduling exactly one retry."""
        if self._closed or self._retry_handle is not None:
            return

        if error is not None:
            self.last_error = error
        self._set_status(ConnectionStatus.DISCONNECTED)

        delay = compute_backoff_delay(self._attempts, self.base_delay, self.max_delay)
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._retry)
        self._attempts += 1

        logger.info(
            f"Reconnecting to {self.url} in {delay:.1f}s",
            extra={"attempt": self._attempts, "delay": delay},
        )

    def _retry(self) -> None:
        self._retry_handle = None
        if self._closed:
            return
        self._open()

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._closed or status is self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    # ============================================================================
    # Frame handling
    # ============================================================================

    def handle_message(self, data: str) -> str | None:
        """Process one inbound text frame.

        Ping control frames are answered; everything else must be a valid
        wire event to be buffered and folded. Malformed frames are logged and
        dropped.

        Returns:
            A reply frame to send back, if any.
        """
        try:
            raw = json.loads(data)
        except (TypeError, ValueError):
            raw = None
        if isinstance(raw, dict) and "type" in raw and "eventType" not in raw:
            return PONG_FRAME if raw["type"] == "ping" else None

        event = parse_wire_event(data)
        if event is None:
            return None

        self._events.append(event)
        self._view = apply_event(self._view, event)

        for listener in list(self._event_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed: {e}", exc_info=True)
        return None
