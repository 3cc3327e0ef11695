#!/usr/bin/env python3
"""Launcher script for the Agent Activity Viz streaming server.

Configuration comes from the environment (see StreamerConfig.from_env):
POLL_INTERVAL_MS, PORT, HOST, OPENCLAW_DIR, HEARTBEAT_INTERVAL_MS,
LOG_LEVEL, LOG_DIR and AGENT_VIZ_CONFIG.
"""

import asyncio
import sys
from pathlib import Path

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))


async def start_server(config):
    """Start the HTTP/WebSocket server."""
    from activity_viz.server import ActivityStreamServer

    print(f"Starting Agent Activity Viz on {config.host}:{config.port}")
    print(f"Data dir: {config.data_path}")
    print(f"Poll interval: {config.poll_interval_ms}ms")

    server = ActivityStreamServer(config)
    await server.start_server()


def main():
    """Main entry point."""
    try:
        from activity_viz.monitoring.config import StreamerConfig

        config = StreamerConfig.from_env()
        asyncio.run(start_server(config))

    except KeyboardInterrupt:
        pass
    except ImportError as e:
        print(f"Import error: {e}", file=sys.stderr)
        print("Please ensure dependencies are installed:", file=sys.stderr)
        print("pip install -e .", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
