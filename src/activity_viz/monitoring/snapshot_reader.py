"""Point-in-time snapshot reading of on-disk agent session data.

This module reads the agent data directory (``~/.openclaw`` by default) and
reconstructs the observable state of every tracked agent. Reading is
read-only and partial-success: an agent whose data cannot be read this tick
is left out of the snapshot instead of failing the whole read.

Directory layout::

    <data_dir>/
        openclaw.json                      model catalog
        dashboard/data.json                {"sessions": [...]} live session list
        agents/<name>/sessions/sessions.json
        agents/<name>/sessions/*.jsonl     session transcripts
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ..compat import UTC, utc_now
from .models import UNKNOWN_MODEL, AgentState, AgentStatus, SessionSummary, Snapshot

logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(minutes=5)
IDLE_WINDOW = timedelta(minutes=60)

TOOL_EVENT_TYPES = ("tool_result", "toolCall")


def classify_status(
    now: datetime,
    last_update: datetime | None,
    has_live_session_records: bool,
) -> AgentStatus:
    """Derive an agent's status from activity recency.

    Args:
        now: Reference time.
        last_update: Time of the agent's most recent update, if any.
        has_live_session_records: Whether live session records exist.

    Returns:
        ACTIVE when live records exist and the last update is under 5 minutes
        old, IDLE when it is under 60 minutes old, ENDED otherwise.
    """
    if last_update is None:
        return AgentStatus.ENDED

    age = now - last_update
    if has_live_session_records and age < ACTIVE_WINDOW:
        return AgentStatus.ACTIVE
    if age < IDLE_WINDOW:
        return AgentStatus.IDLE
    return AgentStatus.ENDED


@dataclass(frozen=True)
class SessionRecord:
    """One entry of an agent's sessions.json."""

    session_id: str
    updated_at_ms: int
    model: str = UNKNOWN_MODEL
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    label: str | None = None
    skills: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModelInfo:
    """One model entry from the openclaw.json catalog."""

    id: str
    name: str
    provider: str
    reasoning: bool = False
    context_window: int = 0
    max_tokens: int = 0


class SnapshotReader:
    """Reads the current observable state of all tracked agents.

    Attributes:
        data_dir: Root of the agent data directory.
        agents_dir: Directory holding one subdirectory per agent.
        dashboard_data_path: Path of the dashboard session list.
        config_path: Path of the model catalog.
    """

    def __init__(self, data_dir: str | Path = "~/.openclaw"):
        """Initialize the snapshot reader.

        Args:
            data_dir: Root of the agent data directory.
        """
        self.data_dir = Path(data_dir).expanduser()
        self.agents_dir = self.data_dir / "agents"
        self.dashboard_data_path = self.data_dir / "dashboard" / "data.json"
        self.config_path = self.data_dir / "openclaw.json"

    # ============================================================================
    # Snapshot
    # ============================================================================

    def take_snapshot(self, now: datetime | None = None) -> Snapshot:
        """Reconstruct the state of every tracked agent.

        Never raises for data problems: an unreadable agent is omitted and
        will reappear, or be reported ended, on a later tick.

        Args:
            now: Reference time for status classification (default: current time).

        Returns:
            A new, sealed Snapshot.
        """
        now = now or utc_now()
        sessions_by_agent = self._group_dashboard_sessions(self.read_dashboard_sessions())

        agents: list[AgentState] = []
        for agent_name in self.list_agent_names():
            try:
                agents.append(
                    self._read_agent_state(
                        agent_name, sessions_by_agent.get(agent_name, []), now
                    )
                )
            except (OSError, ValueError, TypeError, OverflowError) as e:
                logger.warning(
                    f"Skipping agent {agent_name} this tick: {e}",
                    extra={"agent_name": agent_name, "error_type": type(e).__name__},
                )

        return Snapshot.from_agents(now, agents)

    def _read_agent_state(
        self,
        agent_name: str,
        dashboard_sessions: list[SessionSummary],
        now: datetime,
    ) -> AgentState:
        records = self.read_agent_sessions(agent_name)

        latest_record = max(records, key=lambda r: r.updated_at_ms, default=None)
        latest_dashboard = max(dashboard_sessions, key=lambda s: s.updated_at_ms, default=None)

        current_model = (
            (latest_dashboard.model if latest_dashboard else None)
            or (latest_record.model if latest_record else None)
            or UNKNOWN_MODEL
        )
        total_tokens = (
            (latest_dashboard.total_tokens if latest_dashboard else 0)
            or (latest_record.total_tokens if latest_record else 0)
            or 0
        )
        context_pct = latest_dashboard.context_pct if latest_dashboard else 0.0

        last_update_ms = max(
            latest_record.updated_at_ms if latest_record else 0,
            latest_dashboard.updated_at_ms if latest_dashboard else 0,
        )
        last_update = _from_epoch_ms(last_update_ms) if last_update_ms > 0 else None

        last_activity = None
        if latest_dashboard and latest_dashboard.last_activity:
            last_activity = _parse_timestamp(latest_dashboard.last_activity)
        if last_activity is None:
            last_activity = last_update

        return AgentState(
            agent_id=f"agent:{agent_name}",
            agent_name=agent_name,
            status=classify_status(now, last_update, bool(dashboard_sessions)),
            current_model=current_model,
            total_tokens=max(total_tokens, 0),
            context_usage_percent=context_pct,
            last_activity=last_activity,
            tools_used=frozenset(self.collect_agent_tools(agent_name)),
            sessions=tuple(dashboard_sessions),
            input_tokens=latest_record.input_tokens if latest_record else 0,
            output_tokens=latest_record.output_tokens if latest_record else 0,
            skills=latest_record.skills if latest_record else (),
        )

    # ============================================================================
    # Source Readers
    # ============================================================================

    def list_agent_names(self) -> list[str]:
        """Return the sorted names of all agent directories."""
        if not self.agents_dir.is_dir():
            return []
        try:
            return sorted(p.name for p in self.agents_dir.iterdir() if p.is_dir())
        except OSError as e:
            logger.error(f"Failed to list agents directory {self.agents_dir}: {e}")
            return []

    def read_dashboard_sessions(self) -> list[SessionSummary]:
        """Read the dashboard session list.

        Returns:
            Parsed sessions, or an empty list when the file is missing or invalid.
        """
        data = self._read_json(self.dashboard_data_path)
        if not isinstance(data, dict):
            return []

        raw_sessions = data.get("sessions")
        if not isinstance(raw_sessions, list):
            return []

        sessions = []
        for raw in raw_sessions:
            if not isinstance(raw, dict):
                continue
            sessions.append(
                SessionSummary(
                    session_id=str(raw.get("sessionId", "")),
                    agent_name=str(raw.get("agent") or raw.get("agentName") or "unknown"),
                    model=str(raw.get("model") or UNKNOWN_MODEL),
                    total_tokens=_as_int(raw.get("totalTokens")),
                    context_pct=_as_float(raw.get("contextPct")),
                    last_activity=raw.get("lastActivity"),
                    updated_at_ms=_as_int(raw.get("updatedAt")),
                    session_type=str(raw.get("type", "")),
                    label=raw.get("label"),
                )
            )
        return sessions

    def read_agent_sessions(self, agent_name: str) -> list[SessionRecord]:
        """Read an agent's sessions.json.

        Args:
            agent_name: Agent directory name.

        Returns:
            Session records; empty when the file does not exist.

        Raises:
            OSError: If the file exists but cannot be read.
            ValueError: If the file is not a JSON object of session records.
        """
        sessions_file = self.agents_dir / agent_name / "sessions" / "sessions.json"
        if not sessions_file.exists():
            return []

        with sessions_file.open("r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{sessions_file} does not contain a JSON object")

        records = []
        for key, raw in data.items():
            if not isinstance(raw, dict):
                raise ValueError(f"Malformed session record {key!r} in {sessions_file}")
            records.append(
                SessionRecord(
                    session_id=str(raw.get("sessionId", key)),
                    updated_at_ms=_as_int(raw.get("updatedAt")),
                    model=str(raw.get("model") or UNKNOWN_MODEL),
                    total_tokens=_as_int(raw.get("totalTokens")),
                    input_tokens=_as_int(raw.get("inputTokens")),
                    output_tokens=_as_int(raw.get("outputTokens")),
                    label=raw.get("label"),
                    skills=_skill_names(raw.get("skillsSnapshot")),
                )
            )
        return records

    def collect_agent_tools(self, agent_name: str) -> set[str]:
        """Collect tool names from all of an agent's session transcripts.

        Raises:
            OSError: If a transcript exists but cannot be read.
        """
        sessions_dir = self.agents_dir / agent_name / "sessions"
        if not sessions_dir.is_dir():
            return set()

        tools: set[str] = set()
        for transcript in sorted(sessions_dir.glob("*.jsonl")):
            tools.update(self.parse_session_tools(transcript))
        return tools

    def parse_session_tools(self, transcript_path: Path) -> set[str]:
        """Extract tool names from one JSONL transcript, skipping invalid lines.

        Raises:
            OSError: If the transcript cannot be read.
        """
        tools: set[str] = set()
        with transcript_path.open("r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(event, dict):
                    tools.update(_tools_from_event(event))
        return tools

    def read_model_catalog(self) -> list[ModelInfo]:
        """Read the model catalog from openclaw.json.

        Returns:
            Models across all providers; empty when the file is missing or invalid.
        """
        data = self._read_json(self.config_path)
        if not isinstance(data, dict):
            return []

        models = data.get("models")
        providers = models.get("providers") if isinstance(models, dict) else None
        if not isinstance(providers, dict):
            return []

        catalog = []
        for provider, provider_config in providers.items():
            if not isinstance(provider_config, dict):
                continue
            provider_models = provider_config.get("models")
            if not isinstance(provider_models, list):
                continue
            for raw in provider_models:
                if not isinstance(raw, dict) or not raw.get("id"):
                    continue
                catalog.append(
                    ModelInfo(
                        id=str(raw["id"]),
                        name=str(raw.get("name") or raw["id"]),
                        provider=str(raw.get("provider") or provider),
                        reasoning=bool(raw.get("reasoning", False)),
                        context_window=_as_int(raw.get("contextWindow")),
                        max_tokens=_as_int(raw.get("maxTokens")),
                    )
                )
        return catalog

    # ============================================================================
    # Helpers
    # ============================================================================

    @staticmethod
    def _group_dashboard_sessions(
        sessions: list[SessionSummary],
    ) -> dict[str, list[SessionSummary]]:
        grouped: dict[str, list[SessionSummary]] = {}
        for session in sessions:
            grouped.setdefault(session.agent_name, []).append(session)
        return grouped

    @staticmethod
    def _read_json(path: Path) -> Any:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read {path}: {e}")
            return None


def _skill_names(skills_snapshot: Any) -> tuple[str, ...]:
    if not isinstance(skills_snapshot, dict):
        return ()
    skills = skills_snapshot.get("skills")
    if not isinstance(skills, list):
        return ()
    return tuple(
        s["name"]
        for s in skills
        if isinstance(s, dict) and isinstance(s.get("name"), str) and s["name"]
    )


def _tools_from_event(event: dict[str, Any]) -> set[str]:
    tools = set()

    if event.get("type") in TOOL_EVENT_TYPES:
        name = event.get("toolName") or event.get("tool") or event.get("name")
        if isinstance(name, str) and name:
            tools.add(name)

    message = event.get("message")
    if isinstance(message, dict):
        for call in message.get("tool_calls") or []:
            if not isinstance(call, dict):
                continue
            function = call.get("function")
            name = call.get("name") or (function.get("name") if isinstance(function, dict) else None)
            if isinstance(name, str) and name:
                tools.add(name)

    return tools


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
