"""Data models for agent activity monitoring.

This module defines the point-in-time snapshot of all tracked agents and the
change events derived from two consecutive snapshots. Every model is frozen:
a snapshot is built once per poll tick and superseded, never mutated.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType

UNKNOWN_MODEL = "unknown"


class AgentStatus(str, Enum):
    """Externally observable condition of an agent.

    Attributes:
        ACTIVE: Live session records and activity within the last 5 minutes.
        IDLE: Activity within the last hour.
        ENDED: No activity for an hour or more.
    """

    ACTIVE = "active"
    IDLE = "idle"
    ENDED = "ended"


@dataclass(frozen=True)
class SessionSummary:
    """One session record as listed by the dashboard data file.

    Attributes:
        session_id: Session identifier.
        agent_name: Name of the agent owning the session.
        model: Model identifier reported for the session.
        total_tokens: Cumulative tokens consumed by the session.
        context_pct: Context window usage percentage.
        last_activity: ISO 8601 timestamp of the last activity, if reported.
        updated_at_ms: Last update as epoch milliseconds.
        session_type: Session type label (e.g., "main", "cron").
        label: Optional human-readable label.
    """

    session_id: str
    agent_name: str
    model: str = UNKNOWN_MODEL
    total_tokens: int = 0
    context_pct: float = 0.0
    last_activity: str | None = None
    updated_at_ms: int = 0
    session_type: str = ""
    label: str | None = None


@dataclass(frozen=True)
class AgentState:
    """One agent's externally observable condition at snapshot time.

    The status is always produced by ``classify_status``; it is never set
    from an external signal directly.

    Attributes:
        agent_id: Stable identifier (``agent:<name>``).
        agent_name: Directory name of the agent.
        status: Derived lifecycle status.
        current_model: Most recently reported model, or ``"unknown"``.
        total_tokens: Cumulative token count (non-negative).
        context_usage_percent: Context window usage percentage.
        last_activity: Time of the most recent activity, if any.
        tools_used: Accumulated tool names seen in session transcripts.
        sessions: Dashboard session summaries for this agent.
        input_tokens: Input tokens of the most recent session record.
        output_tokens: Output tokens of the most recent session record.
        skills: Skill names of the most recent session record.
        last_known_model: Model reported before ``current_model`` fell back to
            ``"unknown"``; filled from the previous snapshot.
    """

    agent_id: str
    agent_name: str
    status: AgentStatus
    current_model: str = UNKNOWN_MODEL
    total_tokens: int = 0
    context_usage_percent: float = 0.0
    last_activity: datetime | None = None
    tools_used: frozenset[str] = frozenset()
    sessions: tuple[SessionSummary, ...] = ()
    input_tokens: int = 0
    output_tokens: int = 0
    skills: tuple[str, ...] = ()
    last_known_model: str = UNKNOWN_MODEL

    @property
    def known_model(self) -> str:
        """Current model, or the last one reported while it is unknown."""
        if self.current_model != UNKNOWN_MODEL:
            return self.current_model
        return self.last_known_model


@dataclass(frozen=True)
class Snapshot:
    """Reconstructed state of all tracked agents at one poll tick.

    Attributes:
        timestamp: Instant the snapshot was taken.
        agents: Read-only mapping of agent_id to AgentState.
    """

    timestamp: datetime
    agents: Mapping[str, AgentState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Seal the mapping so the snapshot cannot be mutated through it
        object.__setattr__(self, "agents", MappingProxyType(dict(self.agents)))

    @classmethod
    def from_agents(cls, timestamp: datetime, agents: list[AgentState]) -> Snapshot:
        """Build a snapshot from a list of agent states keyed by agent_id."""
        return cls(timestamp=timestamp, agents={agent.agent_id: agent for agent in agents})

    @property
    def total_sessions(self) -> int:
        return sum(len(agent.sessions) for agent in self.agents.values())

    @property
    def total_tokens(self) -> int:
        return sum(agent.total_tokens for agent in self.agents.values())


@dataclass(frozen=True)
class LifecycleChange:
    """An agent appeared, changed status, or disappeared."""

    agent_id: str
    previous_state: AgentStatus | None
    current_state: AgentStatus
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ModelSwitch:
    """An agent moved from its last known model to another."""

    agent_id: str
    previous_model: str
    current_model: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class TokenDelta:
    """A non-zero change in an agent's cumulative token count."""

    agent_id: str
    previous_tokens: int
    current_tokens: int
    delta: int
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ToolObservation:
    """A tool name newly present in an agent's accumulated tool set."""

    agent_id: str
    tool_name: str
    timestamp: datetime | None = None


ChangeEvent = LifecycleChange | ModelSwitch | TokenDelta | ToolObservation


@dataclass(frozen=True)
class ChangeSet:
    """The four independent categories of changes detected in one tick."""

    lifecycle_changes: tuple[LifecycleChange, ...] = ()
    model_switches: tuple[ModelSwitch, ...] = ()
    token_deltas: tuple[TokenDelta, ...] = ()
    tool_observations: tuple[ToolObservation, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.lifecycle_changes
            or self.model_switches
            or self.token_deltas
            or self.tool_observations
        )

    def events(self) -> Iterator[ChangeEvent]:
        """Yield every change in delivery order.

        Lifecycle changes come first so that a client sees an agent start
        before any attribute event for it, then model switches, token deltas
        and tool observations.
        """
        yield from self.lifecycle_changes
        yield from self.model_switches
        yield from self.token_deltas
        yield from self.tool_observations

    def __len__(self) -> int:
        return (
            len(self.lifecycle_changes)
            + len(self.model_switches)
            + len(self.token_deltas)
            + len(self.tool_observations)
        )
