"""Client-side projection of the event stream.

The view is a read-only mapping of agent id to ``AgentActivity`` built by
folding wire events in delivery order. It is not authoritative: the server's
next snapshot is the source of truth and a dropped event can leave the view
out of date until a later event for the same agent arrives.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from .monitoring.models import AgentStatus
from .wire import EventType, WireEvent

ActivityView = Mapping[str, "AgentActivity"]

EMPTY_VIEW: ActivityView = MappingProxyType({})


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0


@dataclass(frozen=True)
class AgentActivity:
    """Locally reconstructed state of one agent."""

    agent_id: str
    status: AgentStatus
    last_seen: datetime | str
    tools_used: tuple[str, ...] = ()
    current_model: str | None = None
    token_usage: TokenUsage = TokenUsage()


def _event_time(event: WireEvent) -> datetime | str:
    try:
        return datetime.fromisoformat(event.timestamp.replace("Z", "+00:00"))
    except ValueError:
        return event.timestamp


def _as_count(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _touch(activity: AgentActivity, event: WireEvent, **changes) -> AgentActivity:
    return replace(
        activity, status=AgentStatus.ACTIVE, last_seen=_event_time(event), **changes
    )


def apply_event(view: ActivityView, event: WireEvent) -> ActivityView:
    """Fold one event into the view and return the new view.

    The input view is never modified. Events from the ``system`` pseudo-agent
    and heartbeats leave the view unchanged, as do attribute events for agents
    the view has not seen start.
    """
    if event.is_system or event.event_type is EventType.HEARTBEAT:
        return view

    agent_id = event.agent_id
    current = view.get(agent_id)

    if event.event_type is EventType.AGENT_STARTED:
        updated = AgentActivity(
            agent_id=agent_id,
            status=AgentStatus.ACTIVE,
            last_seen=_event_time(event),
        )
    elif current is None:
        return view
    elif event.event_type is EventType.AGENT_ENDED:
        updated = replace(current, status=AgentStatus.ENDED)
    elif event.event_type is EventType.TOOL_CALLED:
        tool = event.payload.get("tool")
        tools = current.tools_used
        if isinstance(tool, str) and tool not in tools:
            tools = tools + (tool,)
        updated = _touch(current, event, tools_used=tools)
    elif event.event_type is EventType.MODEL_SWITCHED:
        model = event.payload.get("model")
        updated = _touch(
            current,
            event,
            current_model=model if isinstance(model, str) else current.current_model,
        )
    elif event.event_type is EventType.TOKEN_UPDATE:
        usage = TokenUsage(
            input=_as_count(event.payload.get("input")),
            output=_as_count(event.payload.get("output")),
        )
        updated = _touch(current, event, token_usage=usage)
    else:
        return view

    return MappingProxyType({**view, agent_id: updated})


def fold_events(events, view: ActivityView = EMPTY_VIEW) -> ActivityView:
    """Fold a sequence of events, starting from ``view``."""
    for event in events:
        view = apply_event(view, event)
    return view
