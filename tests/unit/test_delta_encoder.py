"""Unit tests for encoding changes as wire events."""

import pytest

from activity_viz.delta_encoder import (
    connected_event,
    encode_change,
    encode_changes,
    encode_snapshot,
    heartbeat_event,
    snapshot_sync_events,
)
from activity_viz.monitoring.change_detector import detect
from activity_viz.monitoring.models import (
    AgentStatus,
    ChangeSet,
    LifecycleChange,
    ModelSwitch,
    TokenDelta,
    ToolObservation,
)
from activity_viz.wire import SYSTEM_AGENT_ID, EventType


class TestEncodeChange:
    """Tests for encode_change."""

    def test_new_agent_is_agent_started(self, fixed_now) -> None:
        event = encode_change(
            LifecycleChange("agent:alpha", None, AgentStatus.ACTIVE, timestamp=fixed_now)
        )

        assert event.event_type is EventType.AGENT_STARTED
        assert event.agent_id == "agent:alpha"
        assert event.timestamp == "2026-03-01T12:00:00.000Z"
        assert event.payload == {"previousState": None, "currentState": "active"}

    def test_ended_is_agent_ended(self, fixed_now) -> None:
        event = encode_change(
            LifecycleChange("agent:alpha", AgentStatus.IDLE, AgentStatus.ENDED, fixed_now)
        )

        assert event.event_type is EventType.AGENT_ENDED
        assert event.payload == {"previousState": "idle", "currentState": "ended"}

    def test_status_transition_is_agent_started(self, fixed_now) -> None:
        event = encode_change(
            LifecycleChange("agent:alpha", AgentStatus.ACTIVE, AgentStatus.IDLE, fixed_now)
        )

        assert event.event_type is EventType.AGENT_STARTED
        assert event.payload["currentState"] == "idle"

    def test_model_switch(self, fixed_now) -> None:
        event = encode_change(ModelSwitch("agent:alpha", "k2p5", "claude-sonnet", fixed_now))

        assert event.event_type is EventType.MODEL_SWITCHED
        assert event.payload == {"model": "claude-sonnet", "previousModel": "k2p5"}

    def test_token_delta(self, fixed_now) -> None:
        event = encode_change(
            TokenDelta("agent:alpha", 1000, 1500, 500, input_tokens=900, output_tokens=600,
                       timestamp=fixed_now)
        )

        assert event.event_type is EventType.TOKEN_UPDATE
        assert event.payload == {"input": 900, "output": 600, "delta": 500, "totalTokens": 1500}

    def test_tool_observation(self, fixed_now) -> None:
        event = encode_change(ToolObservation("agent:alpha", "exec", fixed_now))

        assert event.event_type is EventType.TOOL_CALLED
        assert event.payload == {"tool": "exec"}

    def test_missing_timestamp_is_stamped_now(self) -> None:
        event = encode_change(ToolObservation("agent:alpha", "exec"))

        assert event.timestamp.endswith("Z")

    def test_unknown_change_type_raises(self) -> None:
        with pytest.raises(TypeError):
            encode_change("not a change")  # type: ignore[arg-type]


class TestEncodeChanges:
    """Tests for encode_changes."""

    def test_preserves_delivery_order(self, make_agent, make_snapshot) -> None:
        previous = make_snapshot(make_agent("alpha", current_model="k2p5", total_tokens=10))
        current = make_snapshot(
            make_agent("alpha", current_model="claude-sonnet", total_tokens=20,
                       tools_used=frozenset({"exec"})),
            make_agent("beta"),
        )

        events = encode_changes(detect(previous, current))

        assert [(e.event_type, e.agent_id) for e in events] == [
            (EventType.AGENT_STARTED, "agent:beta"),
            (EventType.MODEL_SWITCHED, "agent:alpha"),
            (EventType.TOKEN_UPDATE, "agent:alpha"),
            (EventType.TOOL_CALLED, "agent:alpha"),
        ]

    def test_empty_changeset(self) -> None:
        assert encode_changes(ChangeSet()) == []

    def test_status_change_is_followed_by_current_attributes(
        self, make_agent, make_snapshot
    ) -> None:
        attrs = dict(current_model="k2p5", total_tokens=10, tools_used=frozenset({"read"}))
        previous = make_snapshot(make_agent("alpha", **attrs))
        current = make_snapshot(make_agent("alpha", status=AgentStatus.IDLE, **attrs))

        events = encode_changes(detect(previous, current), current)

        assert [e.event_type for e in events] == [
            EventType.AGENT_STARTED,
            EventType.MODEL_SWITCHED,
            EventType.TOKEN_UPDATE,
            EventType.TOOL_CALLED,
        ]
        assert events[0].payload == {"previousState": "active", "currentState": "idle"}
        assert events[1].payload == {"model": "k2p5"}
        assert events[2].payload["totalTokens"] == 10
        assert events[3].payload == {"tool": "read"}
        assert {e.timestamp for e in events} == {events[0].timestamp}

    def test_new_and_ended_agents_are_not_resynced(self, make_agent, make_snapshot) -> None:
        previous = make_snapshot(make_agent("alpha", current_model="k2p5"))
        current = make_snapshot(make_agent("beta", current_model="k2p5"))

        events = encode_changes(detect(previous, current), current)

        assert [(e.event_type, e.agent_id) for e in events] == [
            (EventType.AGENT_STARTED, "agent:beta"),
            (EventType.AGENT_ENDED, "agent:alpha"),
        ]


class TestSystemEvents:
    """Tests for connected and heartbeat events."""

    def test_connected_event(self) -> None:
        event = connected_event("client-7", 3)

        assert event.agent_id == SYSTEM_AGENT_ID
        assert event.event_type is EventType.AGENT_STARTED
        assert event.payload["clientId"] == "client-7"
        assert event.payload["connectedClients"] == 3
        assert "message" in event.payload

    def test_heartbeat_event(self) -> None:
        event = heartbeat_event(2, 12.34567)

        assert event.agent_id == SYSTEM_AGENT_ID
        assert event.event_type is EventType.HEARTBEAT
        assert event.payload == {"connectedClients": 2, "uptime": 12.346}


class TestSnapshotSync:
    """Tests for snapshot_sync_events and encode_snapshot."""

    def test_no_snapshot_yields_nothing(self) -> None:
        assert snapshot_sync_events(None) == []

    def test_dump_for_running_agents(self, make_agent, make_snapshot) -> None:
        snapshot = make_snapshot(
            make_agent(
                "alpha",
                current_model="k2p5",
                total_tokens=300,
                input_tokens=200,
                output_tokens=100,
                tools_used=frozenset({"read", "exec"}),
            ),
            make_agent("beta", status=AgentStatus.IDLE),
            make_agent("gamma", status=AgentStatus.ENDED),
        )

        events = snapshot_sync_events(snapshot)

        assert [(e.agent_id, e.event_type) for e in events] == [
            ("agent:alpha", EventType.AGENT_STARTED),
            ("agent:alpha", EventType.MODEL_SWITCHED),
            ("agent:alpha", EventType.TOKEN_UPDATE),
            ("agent:alpha", EventType.TOOL_CALLED),
            ("agent:alpha", EventType.TOOL_CALLED),
            ("agent:beta", EventType.AGENT_STARTED),
            ("agent:beta", EventType.TOKEN_UPDATE),
        ]
        assert events[0].payload == {"previousState": None, "currentState": "active", "sync": True}
        assert events[2].payload == {"input": 200, "output": 100, "totalTokens": 300}
        assert [e.payload["tool"] for e in events[3:5]] == ["exec", "read"]

    def test_encode_snapshot(self, make_agent, make_snapshot) -> None:
        snapshot = make_snapshot(
            make_agent("beta", total_tokens=5),
            make_agent("alpha", total_tokens=10, tools_used=frozenset({"web", "exec"})),
        )

        data = encode_snapshot(snapshot)

        assert data["timestamp"] == "2026-03-01T12:00:00.000Z"
        assert data["totalTokens"] == 15
        assert [a["agentId"] for a in data["agents"]] == ["agent:alpha", "agent:beta"]
        assert data["agents"][0]["toolsUsed"] == ["exec", "web"]
        assert data["agents"][0]["lastActivity"] is None

    def test_encode_missing_snapshot(self) -> None:
        assert encode_snapshot(None)["agents"] == []
