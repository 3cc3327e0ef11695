"""Integration tests for the Agent Activity Viz server."""

import time
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from activity_viz.compat import utc_now
from activity_viz.monitoring.config import StreamerConfig
from activity_viz.server import ActivityStreamServer, run


@pytest.fixture
def streamer_config(openclaw_dir, tmp_path):
    """Create test streamer configuration."""
    return StreamerConfig(
        data_dir=str(openclaw_dir.root),
        poll_interval_ms=20,
        heartbeat_interval_ms=60000,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def server(streamer_config):
    """Create ActivityStreamServer instance for testing."""
    return ActivityStreamServer(streamer_config, setup_logging=False)


@pytest.fixture
def test_client(server):
    """Create FastAPI test client without running the lifespan."""
    return TestClient(server.app)


def recent_ms(minutes: float) -> int:
    """Epoch milliseconds `minutes` before the real current time."""
    return int((utc_now() - timedelta(minutes=minutes)).timestamp() * 1000)


def wait_for_ticks(client: TestClient, count: int = 1, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while client.get("/health").json()["ticks"] < count:
        if time.monotonic() > deadline:
            raise AssertionError("poll loop did not tick in time")
        time.sleep(0.01)


class TestServerInitialization:
    """Test server initialization."""

    def test_server_init_with_config(self, server, streamer_config) -> None:
        assert server.config == streamer_config
        assert server.app is not None
        assert server.poll_loop.poll_interval == 0.02
        assert server.broadcaster.max_missed_probes == 2

    def test_server_sets_up_logging(self, streamer_config) -> None:
        with patch("activity_viz.server.LoggingManager") as mock_logging:
            server = ActivityStreamServer(streamer_config)

        mock_logging.assert_called_once_with(
            log_dir=streamer_config.log_dir, log_level=streamer_config.log_level
        )
        assert server.logging_manager is mock_logging.return_value


class TestHttpEndpoints:
    """Test read-only HTTP endpoints."""

    def test_health_without_poll_loop(self, test_client) -> None:
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["connectedClients"] == 0
        assert data["pollLoopRunning"] is False

    def test_snapshot_before_first_tick(self, test_client) -> None:
        data = test_client.get("/api/snapshot").json()

        assert data == {"timestamp": None, "agents": [], "totalSessions": 0, "totalTokens": 0}

    def test_models(self, test_client, openclaw_dir) -> None:
        openclaw_dir.set_model_catalog(
            {"moonshot": {"models": [{"id": "k2p5", "name": "Kimi K2.5", "reasoning": True}]}}
        )

        data = test_client.get("/api/models").json()

        assert data["models"] == [
            {
                "id": "k2p5",
                "name": "Kimi K2.5",
                "provider": "moonshot",
                "reasoning": True,
                "context_window": 0,
                "max_tokens": 0,
            }
        ]

    def test_models_with_malformed_catalog(self, test_client, openclaw_dir) -> None:
        (openclaw_dir.root / "openclaw.json").write_text('{"models": ["k2p5"]}')

        response = test_client.get("/api/models")

        assert response.status_code == 200
        assert response.json()["models"] == []

    def test_cors_headers(self, test_client) -> None:
        response = test_client.get("/health", headers={"Origin": "http://example.com"})

        assert "access-control-allow-origin" in response.headers

    def test_running_server_reports_snapshot(self, server, openclaw_dir) -> None:
        openclaw_dir.add_agent(
            "alpha", sessions={"main": {"updatedAt": recent_ms(0), "totalTokens": 42}}
        )

        with TestClient(server.app) as client:
            wait_for_ticks(client)
            health = client.get("/health").json()
            snapshot = client.get("/api/snapshot").json()

        assert health["status"] == "healthy"
        assert health["pollLoopRunning"] is True
        assert [a["agentId"] for a in snapshot["agents"]] == ["agent:alpha"]
        assert snapshot["totalTokens"] == 42
        assert not server.poll_loop.is_running()


class TestWebSocket:
    """Test the push channel endpoints."""

    @pytest.mark.parametrize("path", ["/", "/ws"])
    def test_connected_event_first(self, test_client, path) -> None:
        with test_client.websocket_connect(path) as websocket:
            message = websocket.receive_json()

        assert message["agentId"] == "system"
        assert message["eventType"] == "agent_started"
        assert message["payload"]["clientId"].startswith("client-")
        assert message["payload"]["connectedClients"] == 1

    def test_disconnect_unregisters(self, server, test_client) -> None:
        with test_client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            assert server.broadcaster.connection_count == 1

        assert server.broadcaster.connection_count == 0

    def test_late_joiner_receives_current_state(self, server, openclaw_dir) -> None:
        openclaw_dir.add_agent(
            "alpha",
            sessions={"main": {"updatedAt": recent_ms(1), "model": "k2p5", "totalTokens": 7}},
            transcripts={"s.jsonl": [{"type": "toolCall", "toolName": "exec"}]},
        )

        with TestClient(server.app) as client:
            wait_for_ticks(client)
            with client.websocket_connect("/ws") as websocket:
                messages = [websocket.receive_json() for _ in range(5)]

        assert [(m["agentId"], m["eventType"]) for m in messages] == [
            ("system", "agent_started"),
            ("agent:alpha", "agent_started"),
            ("agent:alpha", "model_switched"),
            ("agent:alpha", "token_update"),
            ("agent:alpha", "tool_called"),
        ]
        assert messages[1]["payload"]["sync"] is True
        assert messages[1]["payload"]["currentState"] == "idle"
        assert messages[4]["payload"] == {"tool": "exec"}

    def test_new_agent_is_streamed(self, server, openclaw_dir) -> None:
        with TestClient(server.app) as client:
            wait_for_ticks(client)
            with client.websocket_connect("/ws") as websocket:
                assert websocket.receive_json()["agentId"] == "system"

                openclaw_dir.add_agent(
                    "beta", sessions={"main": {"updatedAt": recent_ms(2)}}, atomic=True
                )
                message = websocket.receive_json()

        assert message["agentId"] == "agent:beta"
        assert message["eventType"] == "agent_started"
        assert message["payload"] == {"previousState": None, "currentState": "idle"}


class TestEntryPoint:
    """Test the console entry point."""

    def test_invalid_configuration_exits_with_code_2(self, monkeypatch) -> None:
        monkeypatch.setenv("POLL_INTERVAL_MS", "fast")
        monkeypatch.delenv("AGENT_VIZ_CONFIG", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            run()

        assert exc_info.value.code == 2
