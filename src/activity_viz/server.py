"""Agent Activity Viz streaming server."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import asdict

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState

from .broadcaster import PING_FRAME, Broadcaster
from .compat import isoformat_utc, utc_now
from .delta_encoder import encode_snapshot
from .logging_manager import LoggingManager
from .monitoring.config import StreamerConfig
from .monitoring.snapshot_reader import SnapshotReader
from .poll_loop import PollLoop

logger = logging.getLogger(__name__)

SERVER_NAME = "Agent Activity Viz Server"
SERVER_VERSION = "1.0.0"


class WebSocketChannel:
    """Adapts a FastAPI WebSocket to the Broadcaster's channel protocol.

    ASGI exposes no protocol-level ping, so ``ping`` sends a JSON control
    frame that clients answer with ``{"type": "pong"}``.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, text: str) -> None:
        await self.websocket.send_text(text)

    async def ping(self) -> None:
        await self.websocket.send_text(PING_FRAME)

    async def close(self) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close()


class ActivityStreamServer:
    """HTTP and WebSocket front end for the activity stream."""

    def __init__(self, config: StreamerConfig, setup_logging: bool = True):
        """Initialize the streaming server.

        Args:
            config: Configuration for the server
            setup_logging: Whether to install console and file log handlers
        """
        self.config = config

        self.logging_manager = None
        if setup_logging:
            self.logging_manager = LoggingManager(
                log_dir=config.log_dir, log_level=config.log_level
            )

        self.reader = SnapshotReader(config.data_path)
        self.broadcaster = Broadcaster(
            max_missed_probes=config.max_missed_probes,
            queue_size=config.send_queue_size,
            send_timeout=config.send_timeout_seconds,
        )
        self.poll_loop = PollLoop(
            reader=self.reader,
            broadcaster=self.broadcaster,
            poll_interval=config.poll_interval,
            heartbeat_interval=config.heartbeat_interval,
        )
        self.started_at = utc_now()

        self.app = FastAPI(
            title=SERVER_NAME,
            description="Streams agent activity deltas to connected clients",
            version=SERVER_VERSION,
            lifespan=self._lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

        logger.info(f"{SERVER_NAME} initialized (data dir: {self.reader.data_dir})")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.poll_loop.start()
        try:
            yield
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop both timers and close every registered channel."""
        await self.poll_loop.stop()
        await self.broadcaster.close_all()
        logger.info("Server shutdown complete")

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Liveness of the server and its poll loop."""
            return {
                "status": "healthy" if self.poll_loop.is_running() else "degraded",
                "connectedClients": self.broadcaster.connection_count,
                "pollLoopRunning": self.poll_loop.is_running(),
                "ticks": self.poll_loop.tick_count,
                "tickErrors": self.poll_loop.error_count,
                "startedAt": isoformat_utc(self.started_at),
                "serverTime": isoformat_utc(utc_now()),
            }

        @self.app.get("/api/snapshot")
        async def get_snapshot():
            """Latest snapshot seen by the poll loop."""
            return encode_snapshot(self.poll_loop.latest_snapshot)

        @self.app.get("/api/models")
        async def get_models():
            """Model catalog from openclaw.json."""
            catalog = await asyncio.to_thread(self.reader.read_model_catalog)
            return {"models": [asdict(model) for model in catalog]}

        @self.app.websocket("/")
        async def root_websocket(websocket: WebSocket):
            await self._serve_websocket(websocket)

        @self.app.websocket("/ws")
        async def activity_websocket(websocket: WebSocket):
            await self._serve_websocket(websocket)

    async def _serve_websocket(self, websocket: WebSocket) -> None:
        """Register a client and consume its inbound frames until it leaves.

        Any inbound frame counts as a liveness acknowledgement.
        """
        await websocket.accept()
        connection_id = self.broadcaster.register(
            WebSocketChannel(websocket), initial_events=self.poll_loop.sync_events()
        )
        logger.info(f"WebSocket client connected ({connection_id})")

        try:
            while True:
                await websocket.receive_text()
                self.broadcaster.acknowledge(connection_id)
        except WebSocketDisconnect:
            logger.info(f"WebSocket client disconnected ({connection_id})")
        except Exception as e:
            logger.error(f"WebSocket error for {connection_id}: {e}")
        finally:
            self.broadcaster.unregister(connection_id)

    async def start_server(self):
        """Serve until interrupted."""
        logger.info(f"Starting {SERVER_NAME} on {self.config.host}:{self.config.port}")

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

        # uvicorn reports bind failures by setting started=False and returning
        if not server.started:
            raise RuntimeError(
                f"Could not listen on {self.config.host}:{self.config.port}"
            )


async def main() -> None:
    """Main entry point for the server."""
    config = StreamerConfig.from_env()
    server = ActivityStreamServer(config)
    await server.start_server()


def run() -> None:
    """Console-script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except (ValueError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
