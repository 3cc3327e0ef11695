"""Mapping of detected changes onto wire events.

Timestamps are display hints for consumers: ordering is carried by delivery
order, so a change without a timestamp is stamped at encode time.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .compat import isoformat_utc, utc_now
from .monitoring.models import (
    UNKNOWN_MODEL,
    AgentState,
    AgentStatus,
    ChangeEvent,
    ChangeSet,
    LifecycleChange,
    ModelSwitch,
    Snapshot,
    TokenDelta,
    ToolObservation,
)
from .wire import SYSTEM_AGENT_ID, EventType, WireEvent

logger = logging.getLogger(__name__)


def _stamp(timestamp: datetime | None) -> str:
    return isoformat_utc(timestamp or utc_now())


def _state_value(state: AgentStatus | None) -> str | None:
    return state.value if state is not None else None


def encode_change(change: ChangeEvent) -> WireEvent:
    """Encode one change as a wire event.

    Raises:
        TypeError: If ``change`` is not one of the four change types.
    """
    timestamp = _stamp(change.timestamp)

    if isinstance(change, LifecycleChange):
        event_type = (
            EventType.AGENT_ENDED
            if change.current_state is AgentStatus.ENDED
            else EventType.AGENT_STARTED
        )
        payload: dict[str, Any] = {
            "previousState": _state_value(change.previous_state),
            "currentState": change.current_state.value,
        }
    elif isinstance(change, ModelSwitch):
        event_type = EventType.MODEL_SWITCHED
        payload = {"model": change.current_model, "previousModel": change.previous_model}
    elif isinstance(change, TokenDelta):
        event_type = EventType.TOKEN_UPDATE
        payload = {
            "input": change.input_tokens,
            "output": change.output_tokens,
            "delta": change.delta,
            "totalTokens": change.current_tokens,
        }
    elif isinstance(change, ToolObservation):
        event_type = EventType.TOOL_CALLED
        payload = {"tool": change.tool_name}
    else:
        raise TypeError(f"Unsupported change type: {type(change).__name__}")

    return WireEvent(
        timestamp=timestamp,
        agent_id=change.agent_id,
        event_type=event_type,
        payload=payload,
    )


def encode_changes(changes: ChangeSet, snapshot: Snapshot | None = None) -> list[WireEvent]:
    """Encode a change set in its delivery order.

    ``agent_started`` resets an agent in client views, so when ``snapshot``
    is given a status change of an already known agent is followed by that
    agent's current model, token usage and tools from the snapshot.
    """
    events: list[WireEvent] = []
    for change in changes.events():
        event = encode_change(change)
        events.append(event)
        if snapshot is None or not _is_restart(change):
            continue
        agent = snapshot.agents.get(change.agent_id)
        if agent is not None:
            events.extend(_attribute_events(agent, event.timestamp))
    return events


def _is_restart(change: ChangeEvent) -> bool:
    return (
        isinstance(change, LifecycleChange)
        and change.previous_state is not None
        and change.current_state is not AgentStatus.ENDED
    )


def _attribute_events(agent: AgentState, timestamp: str) -> list[WireEvent]:
    def make(event_type: EventType, payload: dict[str, Any]) -> WireEvent:
        return WireEvent(
            timestamp=timestamp, agent_id=agent.agent_id, event_type=event_type, payload=payload
        )

    events = []
    if agent.current_model != UNKNOWN_MODEL:
        events.append(make(EventType.MODEL_SWITCHED, {"model": agent.current_model}))
    events.append(
        make(
            EventType.TOKEN_UPDATE,
            {
                "input": agent.input_tokens,
                "output": agent.output_tokens,
                "totalTokens": agent.total_tokens,
            },
        )
    )
    events.extend(make(EventType.TOOL_CALLED, {"tool": tool}) for tool in sorted(agent.tools_used))
    return events


def connected_event(connection_id: str, connected_clients: int) -> WireEvent:
    """Synthetic event sent to a channel as soon as it is registered."""
    return WireEvent(
        timestamp=_stamp(None),
        agent_id=SYSTEM_AGENT_ID,
        event_type=EventType.AGENT_STARTED,
        payload={
            "message": "Connected to Agent Activity Viz Server",
            "clientId": connection_id,
            "connectedClients": connected_clients,
        },
    )


def heartbeat_event(connected_clients: int, uptime: float) -> WireEvent:
    """Heartbeat carrying the live connection count."""
    return WireEvent(
        timestamp=_stamp(None),
        agent_id=SYSTEM_AGENT_ID,
        event_type=EventType.HEARTBEAT,
        payload={"connectedClients": connected_clients, "uptime": round(uptime, 3)},
    )


def snapshot_sync_events(snapshot: Snapshot | None) -> list[WireEvent]:
    """Full current-state dump for a newly connected client.

    For every agent that has not ended: an ``agent_started``, then its model
    (when known), its token usage and one ``tool_called`` per tool. Deltas
    streamed afterwards apply on top of this state.
    """
    if snapshot is None:
        return []

    timestamp = _stamp(snapshot.timestamp)
    events: list[WireEvent] = []

    for agent_id in sorted(snapshot.agents):
        agent = snapshot.agents[agent_id]
        if agent.status is AgentStatus.ENDED:
            continue

        events.append(
            WireEvent(
                timestamp=timestamp,
                agent_id=agent_id,
                event_type=EventType.AGENT_STARTED,
                payload={"previousState": None, "currentState": agent.status.value, "sync": True},
            )
        )
        events.extend(_attribute_events(agent, timestamp))

    logger.debug(f"Built {len(events)} sync events from snapshot")
    return events


def encode_snapshot(snapshot: Snapshot | None) -> dict[str, Any]:
    """JSON-ready view of a snapshot for the HTTP API."""
    if snapshot is None:
        return {"timestamp": None, "agents": [], "totalSessions": 0, "totalTokens": 0}

    return {
        "timestamp": isoformat_utc(snapshot.timestamp),
        "agents": [
            {
                "agentId": agent.agent_id,
                "agentName": agent.agent_name,
                "status": agent.status.value,
                "currentModel": agent.current_model,
                "totalTokens": agent.total_tokens,
                "contextPct": agent.context_usage_percent,
                "lastActivity": isoformat_utc(agent.last_activity) if agent.last_activity else None,
                "toolsUsed": sorted(agent.tools_used),
                "skills": list(agent.skills),
                "sessions": len(agent.sessions),
            }
            for agent in sorted(snapshot.agents.values(), key=lambda a: a.agent_id)
        ],
        "totalSessions": snapshot.total_sessions,
        "totalTokens": snapshot.total_tokens,
    }
