"""Shared fixtures for activity streamer tests."""

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from activity_viz.compat import UTC
from activity_viz.monitoring.models import AgentState, AgentStatus, Snapshot

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class OpenClawDir:
    """Builder for an on-disk agent data directory."""

    def __init__(self, root: Path):
        self.root = root
        self.agents_dir = root / "agents"
        self.agents_dir.mkdir(parents=True, exist_ok=True)

    def add_agent(
        self,
        name: str,
        sessions: dict | None = None,
        transcripts: dict[str, list] | None = None,
        atomic: bool = False,
    ) -> Path:
        """Write an agent's session files.

        With ``atomic`` the agent is built in a staging directory and moved
        into place, so a concurrent reader never sees it half written.
        """
        if atomic:
            staging = OpenClawDir(self.root / ".staging")
            staging.add_agent(name, sessions, transcripts)
            (staging.agents_dir / name).rename(self.agents_dir / name)
            return self.agents_dir / name / "sessions"

        sessions_dir = self.agents_dir / name / "sessions"
        sessions_dir.mkdir(parents=True, exist_ok=True)
        if sessions is not None:
            (sessions_dir / "sessions.json").write_text(json.dumps(sessions))
        for filename, lines in (transcripts or {}).items():
            (sessions_dir / filename).write_text(
                "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines)
                + "\n"
            )
        return sessions_dir

    def write_sessions_text(self, name: str, text: str) -> None:
        sessions_dir = self.agents_dir / name / "sessions"
        sessions_dir.mkdir(parents=True, exist_ok=True)
        (sessions_dir / "sessions.json").write_text(text)

    def set_dashboard(self, sessions: list[dict]) -> None:
        dashboard_dir = self.root / "dashboard"
        dashboard_dir.mkdir(exist_ok=True)
        (dashboard_dir / "data.json").write_text(json.dumps({"sessions": sessions}))

    def set_model_catalog(self, providers: dict) -> None:
        (self.root / "openclaw.json").write_text(json.dumps({"models": {"providers": providers}}))


@pytest.fixture
def fixed_now() -> datetime:
    """Reference time used for status classification."""
    return FIXED_NOW


@pytest.fixture
def openclaw_dir(tmp_path: Path) -> OpenClawDir:
    """Create an empty agent data directory."""
    return OpenClawDir(tmp_path / "openclaw")


@pytest.fixture
def minutes_ago(fixed_now):
    """Epoch milliseconds ``n`` minutes before the reference time."""

    def _minutes_ago(n: float) -> int:
        return epoch_ms(fixed_now - timedelta(minutes=n))

    return _minutes_ago


@pytest.fixture
def make_agent():
    """Factory for AgentState values with sensible defaults."""

    def _make_agent(name: str = "alpha", status: AgentStatus = AgentStatus.ACTIVE, **kwargs):
        return AgentState(agent_id=f"agent:{name}", agent_name=name, status=status, **kwargs)

    return _make_agent


@pytest.fixture
def make_snapshot(fixed_now):
    """Factory for snapshots holding the given agents."""

    def _make_snapshot(*agents: AgentState, timestamp: datetime | None = None) -> Snapshot:
        return Snapshot.from_agents(timestamp or fixed_now, list(agents))

    return _make_snapshot
