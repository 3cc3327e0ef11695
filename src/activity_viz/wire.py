"""Wire event envelope shared by the server and the reconnecting client.

Every frame on the push channel is one JSON object::

    {"timestamp": "...", "agentId": "...", "eventType": "...", "payload": {...}}
"""

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

SYSTEM_AGENT_ID = "system"


class EventType(str, Enum):
    """Closed set of wire event types."""

    AGENT_STARTED = "agent_started"
    AGENT_ENDED = "agent_ended"
    TOOL_CALLED = "tool_called"
    MODEL_SWITCHED = "model_switched"
    TOKEN_UPDATE = "token_update"
    HEARTBEAT = "heartbeat"


class WireEvent(BaseModel):
    """Immutable unit of transport and of client-side buffering."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True, extra="ignore")

    timestamp: str
    agent_id: str = Field(alias="agentId")
    event_type: EventType = Field(alias="eventType")
    payload: dict[str, Any]

    def to_json(self) -> str:
        """Serialize with the wire field names."""
        return self.model_dump_json(by_alias=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @property
    def is_system(self) -> bool:
        return self.agent_id == SYSTEM_AGENT_ID


def parse_wire_event(data: str | bytes) -> WireEvent | None:
    """Validate one inbound frame.

    A frame is accepted only when it is a JSON object with a string
    ``timestamp``, a string ``agentId``, an ``eventType`` from the closed set
    and an object ``payload``.

    Returns:
        The parsed WireEvent, or None when the frame is malformed.
    """
    try:
        raw = json.loads(data)
    except (TypeError, ValueError):
        logger.warning("Discarding frame that is not valid JSON")
        return None

    if not isinstance(raw, dict):
        logger.warning("Discarding frame that is not a JSON object")
        return None

    # Strict mode rejects the plain string for the enum, so map it first
    try:
        event_type = EventType(raw.get("eventType"))
    except ValueError:
        logger.warning(f"Discarding frame with invalid eventType: {raw.get('eventType')!r}")
        return None

    try:
        return WireEvent.model_validate({**raw, "eventType": event_type})
    except ValidationError as e:
        logger.warning(f"Discarding malformed frame: {e.error_count()} validation error(s)")
        return None
