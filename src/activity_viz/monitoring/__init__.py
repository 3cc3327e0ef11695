"""Agent state monitoring for the activity streamer.

This package reconstructs point-in-time snapshots of agent state from the
on-disk session data and computes the delta between consecutive snapshots.

Key Components:
    - models: Snapshot, AgentState and the change event types
    - config: Configuration dataclass for the streaming service
    - snapshot_reader: Partial-success reading of agent session data
    - change_detector: Pure diff of two snapshots

Example:
    >>> from activity_viz.monitoring import SnapshotReader, detect
    >>> reader = SnapshotReader("~/.openclaw")
    >>> first = reader.take_snapshot()
    >>> changes = detect(None, first)
"""

from __future__ import annotations

from .change_detector import carry_known_models, detect
from .config import StreamerConfig
from .models import (
    AgentState,
    AgentStatus,
    ChangeSet,
    LifecycleChange,
    ModelSwitch,
    SessionSummary,
    Snapshot,
    TokenDelta,
    ToolObservation,
)
from .snapshot_reader import SnapshotReader, classify_status

__all__ = [
    "AgentState",
    "AgentStatus",
    "ChangeSet",
    "LifecycleChange",
    "ModelSwitch",
    "SessionSummary",
    "Snapshot",
    "SnapshotReader",
    "StreamerConfig",
    "TokenDelta",
    "ToolObservation",
    "carry_known_models",
    "classify_status",
    "detect",
]
