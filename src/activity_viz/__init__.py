"""Agent Activity Viz: streams agent session activity to WebSocket clients."""

from .activity_view import AgentActivity, TokenUsage, apply_event
from .broadcaster import Broadcaster
from .client import ConnectionStatus, ReconnectingClient, compute_backoff_delay
from .monitoring import SnapshotReader, StreamerConfig, detect
from .poll_loop import PollLoop
from .wire import EventType, WireEvent, parse_wire_event

__all__ = [
    "AgentActivity",
    "Broadcaster",
    "ConnectionStatus",
    "EventType",
    "PollLoop",
    "ReconnectingClient",
    "SnapshotReader",
    "StreamerConfig",
    "TokenUsage",
    "WireEvent",
    "apply_event",
    "compute_backoff_delay",
    "detect",
    "parse_wire_event",
]
