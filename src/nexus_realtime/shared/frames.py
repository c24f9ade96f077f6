"""Wire format for realtime frames.

Every frame is a JSON object carrying at least a string ``type`` and an
event-specific ``payload``. Anything else on the wire is dropped.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class InboundMessage(BaseModel):
    """A decoded frame received from the realtime transport."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = Field(min_length=1)
    payload: Any = None

    @property
    def metadata(self) -> dict[str, Any]:
        """Top-level keys other than type and payload (timestamp, ids...)."""
        return dict(self.model_extra or {})


def parse_frame(frame: str | bytes) -> InboundMessage | None:
    """Parse a raw frame into an InboundMessage.

    Args:
        frame: Raw text (or UTF-8 bytes) received from the transport

    Returns:
        Parsed message, or None if the frame is malformed and should be dropped
    """
    try:
        data = json.loads(frame)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Dropping frame that is not valid JSON: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Dropping frame that is not a JSON object: {frame!r}")
        return None

    try:
        return InboundMessage.model_validate(data)
    except ValidationError as e:
        logger.warning(
            f"Dropping frame without a valid event type: {e.error_count()} error(s)"
        )
        return None


def serialize_message(message: dict[str, Any]) -> str:
    """Serialize an outbound message to a JSON frame.

    Args:
        message: Caller-shaped object to send

    Returns:
        JSON string representation

    Raises:
        ValueError: If the message cannot be represented as JSON
    """
    try:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message to JSON: {e}") from e
