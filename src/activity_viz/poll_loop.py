"""
PollLoop - Timer-driven orchestration of snapshot diffing and delivery.

Two asyncio tasks share one event loop:
    - the poll task reads a snapshot, detects changes against the previous
      snapshot, encodes them and hands them to the Broadcaster;
    - the heartbeat task runs the Broadcaster's liveness probe.

Ticks of the same task never overlap, and a failing tick is logged without
stopping the stream.
"""

import asyncio
import logging
import time

from .broadcaster import Broadcaster
from .delta_encoder import encode_changes, snapshot_sync_events
from .monitoring.change_detector import carry_known_models, detect
from .monitoring.models import ChangeSet, Snapshot
from .monitoring.snapshot_reader import SnapshotReader
from .wire import WireEvent


class PollLoop:
    """
    Drives SnapshotReader -> detect -> DeltaEncoder -> Broadcaster.

    The previous snapshot is the only retained state; it is replaced by a
    single assignment at the end of each successful tick.
    """

    def __init__(
        self,
        reader: SnapshotReader,
        broadcaster: Broadcaster,
        poll_interval: float = 2.0,
        heartbeat_interval: float = 30.0,
    ):
        """
        Initialize the poll loop.

        Args:
            reader: Source of snapshots
            broadcaster: Destination for encoded events
            poll_interval: Seconds between snapshot polls (default: 2)
            heartbeat_interval: Seconds between liveness probes (default: 30)
        """
        self.reader = reader
        self.broadcaster = broadcaster
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval

        self._previous: Snapshot | None = None
        self._tick_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._running = False
        self._logger = logging.getLogger(__name__)

        self.tick_count = 0
        self.error_count = 0

    # ============================================================================
    # Lifecycle Methods
    # ============================================================================

    async def start(self) -> None:
        """
        Start the poll and heartbeat tasks.

        Raises:
            RuntimeError: If the loop is already running
        """
        if self._running:
            raise RuntimeError("PollLoop is already running")

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_forever(), name="poll-loop")
        self._heartbeat_task = asyncio.create_task(self._heartbeat_forever(), name="heartbeat-loop")

        self._logger.info(
            f"PollLoop started (poll interval: {self.poll_interval}s, "
            f"heartbeat interval: {self.heartbeat_interval}s)"
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop both tasks.

        Args:
            timeout: Maximum time to wait for each task to finish (seconds)
        """
        if not self._running:
            return

        self._logger.info("Stopping PollLoop...")
        self._running = False

        for task in (self._poll_task, self._heartbeat_task):
            if task is None:
                continue
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except asyncio.CancelledError:
                pass
            except asyncio.TimeoutError:
                self._logger.warning(f"Task {task.get_name()} did not stop within timeout")

        self._poll_task = None
        self._heartbeat_task = None
        self._logger.info("PollLoop stopped")

    def is_running(self) -> bool:
        """Check if the poll task is currently running."""
        return self._running and self._poll_task is not None and not self._poll_task.done()

    @property
    def latest_snapshot(self) -> Snapshot | None:
        return self._previous

    def sync_events(self) -> list[WireEvent]:
        """Current-state dump for a newly registered connection."""
        return snapshot_sync_events(self._previous)

    # ============================================================================
    # Core Methods
    # ============================================================================

    async def tick(self) -> ChangeSet:
        """
        Run one poll tick.

        The snapshot is read in a worker thread so slow disk I/O does not
        block connection handling. Detection, encoding, broadcast and the
        swap of the previous snapshot then run without yielding, so a
        connection registered concurrently sees either all of this tick's
        state or none of it.

        Returns:
            The changes detected in this tick
        """
        async with self._tick_lock:
            snapshot = await asyncio.to_thread(self.reader.take_snapshot)
            snapshot = carry_known_models(self._previous, snapshot)

            changes = detect(self._previous, snapshot)
            for event in encode_changes(changes, snapshot):
                self.broadcaster.broadcast(event)

            self._previous = snapshot
            self.tick_count += 1

        if not changes.is_empty():
            self._logger.debug(
                f"Tick {self.tick_count}: {len(changes)} changes across {len(snapshot.agents)} agents"
            )
        return changes

    async def _poll_forever(self) -> None:
        """
        Main poll loop (runs in background task).

        Sleeps for what remains of the interval after each tick; an overdue
        tick runs right after the previous one rather than alongside it.
        """
        self._logger.info("Poll loop started")

        while self._running:
            started = time.monotonic()
            try:
                await self.tick()
            except asyncio.CancelledError:
                self._logger.info("Poll loop cancelled")
                raise
            except Exception as e:
                self.error_count += 1
                self._logger.error(f"Error during poll tick: {e}", exc_info=True)

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(self.poll_interval - elapsed, 0))

        self._logger.info("Poll loop exited")

    async def _heartbeat_forever(self) -> None:
        """Liveness probe loop (runs in background task)."""
        while self._running:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                remaining = await self.broadcaster.probe_liveness()
                self._logger.debug(f"Heartbeat sent to {remaining} connections")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(f"Error during liveness probe: {e}", exc_info=True)
