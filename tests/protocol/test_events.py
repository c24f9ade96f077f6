from datetime import datetime

import pytest
from pydantic import ValidationError

from nexus_realtime.protocol.events import (
    EVENT_PAYLOADS,
    CompetitorAlert,
    EventTypes,
    Heartbeat,
    MetricsUpdate,
    parse_payload,
)


class TestParsePayload:
    def test_parses_camel_case_wire_payload(self):
        # Arrange
        payload = {
            "alertId": "alert-456",
            "competitorId": "comp-123",
            "alertType": "ranking_change",
            "message": "Competitor moved up 2 positions",
            "threshold": 10,
        }

        # Act
        result = parse_payload(EventTypes.COMPETITOR_ALERT, payload)

        # Assert
        assert isinstance(result, CompetitorAlert)
        assert result.alert_id == "alert-456"
        assert result.severity == "medium"
        assert result.threshold == 10

    def test_returns_none_for_unknown_event_type(self):
        assert parse_payload("custom-event", {"anything": True}) is None

    def test_raises_for_mismatched_payload(self):
        with pytest.raises(ValidationError):
            parse_payload(EventTypes.METRICS_UPDATE, {"metrics": {"traffic": 1}})

    def test_rejects_unknown_severity(self):
        with pytest.raises(ValidationError):
            parse_payload(
                EventTypes.COMPETITOR_ALERT,
                {
                    "alertId": "a",
                    "competitorId": "c",
                    "alertType": "t",
                    "message": "m",
                    "severity": "apocalyptic",
                },
            )

    def test_unknown_payload_keys_are_kept(self):
        result = parse_payload(
            EventTypes.METRICS_UPDATE,
            {"competitorId": "c1", "metrics": {}, "region": "eu"},
        )

        assert result.model_extra == {"region": "eu"}

    def test_every_event_type_has_a_model(self):
        assert set(EVENT_PAYLOADS) == {
            "competitive-update",
            "competitor-alert",
            "analysis-complete",
            "metrics-update",
            "heartbeat",
        }


class TestToWire:
    def test_uses_camel_case_and_drops_unset_optionals(self):
        # Arrange
        update = MetricsUpdate(competitor_id="c1", metrics={"organic_traffic": 125000})

        # Act
        wire = update.to_wire()

        # Assert
        assert wire == {"competitorId": "c1", "metrics": {"organic_traffic": 125000.0}}

    def test_heartbeat_serializes_server_time_as_iso_string(self):
        wire = Heartbeat(active_connections=3).to_wire()

        assert wire["activeConnections"] == 3
        assert wire["systemStatus"] == "healthy"
        assert isinstance(datetime.fromisoformat(wire["serverTime"]), datetime)
