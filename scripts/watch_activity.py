#!/usr/bin/env python3
"""
Live terminal view of the agent activity stream.
Connects to the streaming server and redraws the agent table on every event.
"""

import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from activity_viz.client import ConnectionStatus, ReconnectingClient  # noqa: E402
from activity_viz.monitoring.models import AgentStatus  # noqa: E402

FEED_LINES = 15


def clear_screen():
    """Clear terminal screen."""
    print("\033[2J\033[H", end="")


def print_dashboard(client: ReconnectingClient):
    """Print agent table and recent event feed."""
    clear_screen()

    print("=" * 100)
    print(f"  AGENT ACTIVITY - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Server: {client.url}  Status: {client.status.value}")
    if client.status is not ConnectionStatus.CONNECTED and client.last_error is not None:
        print(f"  Last error: {client.last_error}")
    print("=" * 100)

    view = client.view
    if not view:
        print("\n  Waiting for agents...")
    else:
        print(f"\n  {'Agent':<25} {'Status':<10} {'Model':<30} {'In':>10} {'Out':>10}  Tools")
        print("  " + "-" * 95)

        for agent_id in sorted(view):
            activity = view[agent_id]
            if activity.status is AgentStatus.ACTIVE:
                status = f"\033[92m{activity.status.value:<10}\033[0m"  # Green
            elif activity.status is AgentStatus.ENDED:
                status = f"\033[91m{activity.status.value:<10}\033[0m"  # Red
            else:
                status = f"{activity.status.value:<10}"

            model = (activity.current_model or "-")[:29]
            tools = ", ".join(activity.tools_used)[:40]
            usage = activity.token_usage
            print(
                f"  {agent_id[:24]:<25} {status} {model:<30} "
                f"{usage.input:>10} {usage.output:>10}  {tools}"
            )

    print("\n" + "-" * 100)
    print("\n  RECENT EVENTS:")
    for event in client.events[-FEED_LINES:]:
        print(f"    [{event.timestamp}] {event.agent_id:<20} {event.event_type.value:<16} {event.payload}")

    print("\n" + "=" * 100)
    print("  Press Ctrl+C to exit")
    print("=" * 100)


async def watch(url: str):
    """Run the client and redraw until cancelled."""
    client = ReconnectingClient(url)
    client.add_event_listener(lambda event: print_dashboard(client))
    client.add_status_listener(lambda status: print_dashboard(client))
    client.start()
    try:
        await asyncio.Event().wait()
    finally:
        await client.close()


def main():
    """Main monitoring loop."""
    url = sys.argv[1] if len(sys.argv) > 1 else f"ws://localhost:{os.getenv('PORT', '3503')}/ws"
    try:
        asyncio.run(watch(url))
    except KeyboardInterrupt:
        print("\n\nMonitoring stopped.")


if __name__ == "__main__":
    main()
