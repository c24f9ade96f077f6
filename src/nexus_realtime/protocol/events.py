"""
Event vocabulary of the competitive-intelligence realtime channel.

The server pushes one frame per event. The frame's ``type`` names the event
and its ``payload`` carries the event body described by the models below.
Payload keys are camelCase on the wire and snake_case in Python.

## Event Flow

1. **Analysis runs** - the server emits `competitive-update` and
   `metrics-update` frames as competitor data changes
2. **Thresholds trip** - a `competitor-alert` frame announces the alert
3. **Job finishes** - `analysis-complete` carries the summary
4. **Liveness** - `heartbeat` frames flow both ways while the socket is open

Listeners receive the raw payload dict. Use parse_payload() to turn it into
the typed model for its event type.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventTypes:
    COMPETITIVE_UPDATE = "competitive-update"
    COMPETITOR_ALERT = "competitor-alert"
    ANALYSIS_COMPLETE = "analysis-complete"
    METRICS_UPDATE = "metrics-update"
    HEARTBEAT = "heartbeat"


class EventPayload(BaseModel):
    """Base for event payloads, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CompetitiveUpdate(EventPayload):
    """
    A competitor's tracked position or traffic changed.
    """

    competitor_id: str
    competitor_name: str | None = None
    message: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    """
    Per-metric change, e.g. ``{"ranking": {"from": 5, "to": 3}}``.
    """

    metrics: dict[str, Any] | None = None


class CompetitorAlert(EventPayload):
    """
    An alert rule fired for a competitor.
    """

    alert_id: str
    competitor_id: str
    alert_type: str
    message: str
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    threshold: float | None = None


class AnalysisComplete(EventPayload):
    """
    A competitive analysis job finished.
    """

    analysis_id: str
    competitor_id: str | None = None
    analysis_type: str
    results: dict[str, Any] = Field(default_factory=dict)


class MetricsUpdate(EventPayload):
    competitor_id: str
    metrics: dict[str, float] = Field(default_factory=dict)
    period: str | None = None


class Heartbeat(EventPayload):
    """
    Server liveness signal.

    A status other than ``healthy`` means the backend is still reachable but
    live updates may be delayed or incomplete.
    """

    server_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    active_connections: int = 0
    system_status: Literal["healthy", "degraded", "maintenance"] = "healthy"


EVENT_PAYLOADS: dict[str, type[EventPayload]] = {
    EventTypes.COMPETITIVE_UPDATE: CompetitiveUpdate,
    EventTypes.COMPETITOR_ALERT: CompetitorAlert,
    EventTypes.ANALYSIS_COMPLETE: AnalysisComplete,
    EventTypes.METRICS_UPDATE: MetricsUpdate,
    EventTypes.HEARTBEAT: Heartbeat,
}


def parse_payload(event_type: str, payload: Any) -> EventPayload | None:
    """Validate a raw payload against the model for its event type.

    Returns:
        The typed payload, or None for event types outside this vocabulary.

    Raises:
        pydantic.ValidationError: If the payload doesn't match its model.
    """
    model = EVENT_PAYLOADS.get(event_type)
    if model is None:
        return None
    return model.model_validate(payload)
