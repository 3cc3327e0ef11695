"""Fan-out of wire events to connected push channels.

The Broadcaster owns the registry of connected channels. Each connection has
its own bounded outbound queue drained by its own writer task, so a slow or
dead client never delays delivery to the others: a failed send, a send that
times out, or a full queue evicts only that connection.

Liveness is checked by periodic probes. A connection that leaves
``max_missed_probes`` consecutive probes unacknowledged is closed and
unregistered; one acknowledgement resets the count.
"""

import asyncio
import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

import psutil

from .compat import utc_now
from .delta_encoder import connected_event, heartbeat_event
from .wire import WireEvent

logger = logging.getLogger(__name__)

PING_FRAME = json.dumps({"type": "ping"})

_PING = object()


@runtime_checkable
class Channel(Protocol):
    """Bidirectional message channel as seen by the Broadcaster.

    Inbound messages, close and error notifications are observed by whoever
    owns the receive side (the WebSocket endpoint), which reports them via
    ``Broadcaster.acknowledge`` and ``Broadcaster.unregister``.
    """

    @property
    def is_open(self) -> bool: ...

    async def send(self, text: str) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


@dataclass
class Connection:
    """Registry entry for one connected channel."""

    connection_id: str
    channel: Channel
    queue: asyncio.Queue
    connected_at: datetime = field(default_factory=utc_now)
    confirmed: bool = True
    missed_probes: int = 0
    writer: asyncio.Task | None = None


class Broadcaster:
    """Owns the set of connected channels and delivers events to them."""

    def __init__(
        self,
        max_missed_probes: int = 2,
        queue_size: int = 1000,
        send_timeout: float = 10.0,
        close_timeout: float = 2.0,
    ):
        """Initialize the broadcaster.

        Args:
            max_missed_probes: Consecutive unacknowledged probes before eviction.
            queue_size: Maximum queued frames per connection.
            send_timeout: Seconds allowed for a single send or ping.
            close_timeout: Seconds allowed for a best-effort close.
        """
        self.max_missed_probes = max_missed_probes
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self.close_timeout = close_timeout

        self._connections: dict[str, Connection] = {}
        self._closing: set[asyncio.Task] = set()
        self._counter = 0
        self._started_at = psutil.Process().create_time()

    # ============================================================================
    # Registry
    # ============================================================================

    def register(self, channel: Channel, initial_events: Iterable[WireEvent] = ()) -> str:
        """Add a channel and queue its greeting.

        The synthetic connected event is always queued first, followed by
        ``initial_events``; both precede any later broadcast.

        Args:
            channel: Channel to register.
            initial_events: Events delivered to this channel only.

        Returns:
            The new connection identifier.
        """
        self._counter += 1
        connection_id = f"client-{self._counter}"

        connection = Connection(
            connection_id=connection_id,
            channel=channel,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )

        greeting = [connected_event(connection_id, len(self._connections) + 1), *initial_events]
        for event in greeting:
            try:
                connection.queue.put_nowait(event.to_json())
            except asyncio.QueueFull:
                logger.warning(
                    f"Initial state for {connection_id} exceeds queue size, truncating",
                    extra={"connection_id": connection_id, "queue_size": self.queue_size},
                )
                break

        self._connections[connection_id] = connection
        connection.writer = asyncio.create_task(
            self._deliver(connection), name=f"broadcaster-writer-{connection_id}"
        )

        logger.info(
            f"Registered {connection_id}",
            extra={"connection_id": connection_id, "connected_clients": len(self._connections)},
        )
        return connection_id

    def unregister(self, connection_id: str) -> None:
        """Remove a connection. Safe to call repeatedly or for unknown ids."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return

        _clear_queue(connection.queue)
        if connection.writer is not None and connection.writer is not asyncio.current_task():
            connection.writer.cancel()

        logger.info(
            f"Unregistered {connection_id}",
            extra={"connection_id": connection_id, "connected_clients": len(self._connections)},
        )

    def acknowledge(self, connection_id: str) -> None:
        """Record a pong or any other sign of life from a connection."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.confirmed = True
            connection.missed_probes = 0

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._connections

    @property
    def connection_ids(self) -> list[str]:
        return list(self._connections)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def uptime(self) -> float:
        """Seconds since the serving process started."""
        return max(time.time() - self._started_at, 0.0)

    # ============================================================================
    # Delivery
    # ============================================================================

    def broadcast(self, event: WireEvent) -> int:
        """Queue an event for every open channel. Never raises.

        Returns:
            Number of connections the event was queued for.
        """
        message = event.to_json()
        delivered = 0

        for connection_id, connection in list(self._connections.items()):
            try:
                if not connection.channel.is_open:
                    continue
                connection.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    f"Outbound queue full for {connection_id}, evicting",
                    extra={"connection_id": connection_id, "queue_size": self.queue_size},
                )
                self._evict(connection_id)
            except Exception as e:
                logger.warning(f"Failed to queue event for {connection_id}: {e}")
                self._evict(connection_id)

        return delivered

    async def _deliver(self, connection: Connection) -> None:
        """Writer task: drain one connection's queue in FIFO order."""
        while True:
            item = await connection.queue.get()
            try:
                if item is _PING:
                    await asyncio.wait_for(connection.channel.ping(), self.send_timeout)
                else:
                    await asyncio.wait_for(connection.channel.send(item), self.send_timeout)
            except asyncio.CancelledError:
                connection.queue.task_done()
                raise
            except Exception as e:
                connection.queue.task_done()
                logger.warning(
                    f"Send failed for {connection.connection_id}, evicting: {e}",
                    extra={
                        "connection_id": connection.connection_id,
                        "error_type": type(e).__name__,
                    },
                )
                self._evict(connection.connection_id)
                return
            connection.queue.task_done()

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until every connection's queue has been flushed."""
        queues = [c.queue for c in self._connections.values()]
        if not queues:
            return
        try:
            await asyncio.wait_for(asyncio.gather(*(q.join() for q in queues)), timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for outbound queues to drain")

    # ============================================================================
    # Liveness
    # ============================================================================

    async def probe_liveness(self) -> int:
        """Run one liveness probe cycle.

        Connections that did not acknowledge the previous probe get a miss;
        at ``max_missed_probes`` they are closed and unregistered. All
        remaining connections are marked unconfirmed and pinged, then a
        heartbeat with the live connection count is broadcast.

        Returns:
            Number of connections remaining after pruning.
        """
        evicted = []
        for connection_id, connection in list(self._connections.items()):
            if connection.confirmed:
                connection.missed_probes = 0
            else:
                connection.missed_probes += 1
                if connection.missed_probes >= self.max_missed_probes:
                    evicted.append(connection)
                    continue

            connection.confirmed = False
            try:
                connection.queue.put_nowait(_PING)
            except asyncio.QueueFull:
                evicted.append(connection)

        for connection in evicted:
            logger.info(
                f"Evicting unresponsive {connection.connection_id}",
                extra={
                    "connection_id": connection.connection_id,
                    "missed_probes": connection.missed_probes,
                },
            )
            self.unregister(connection.connection_id)
        if evicted:
            await asyncio.gather(*(self._close_channel(c.channel) for c in evicted))

        self.broadcast(heartbeat_event(self.connection_count, self.uptime))
        return self.connection_count

    # ============================================================================
    # Shutdown
    # ============================================================================

    def _evict(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        self.unregister(connection_id)
        task = asyncio.create_task(
            self._close_channel(connection.channel), name=f"broadcaster-close-{connection_id}"
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await asyncio.wait_for(channel.close(), self.close_timeout)
        except Exception as e:
            logger.debug(f"Best-effort close failed: {e}")

    async def close_all(self) -> None:
        """Close and unregister every connection without waiting on clients.

        Closes still pending from earlier evictions are awaited as well.
        """
        connections = list(self._connections.values())
        for connection in connections:
            self.unregister(connection.connection_id)
        pending = list(self._closing)
        if connections or pending:
            await asyncio.gather(*(self._close_channel(c.channel) for c in connections), *pending)
        logger.info(f"Closed {len(connections)} connections")


def _clear_queue(queue: asyncio.Queue) -> None:
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return
        queue.task_done()
