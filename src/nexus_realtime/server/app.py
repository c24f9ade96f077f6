"""Development event server for the realtime namespace.

Serves the same routes the hosted app exposes, so the client can be run
end to end on a laptop:

- WS   /socket.io/            realtime frames (broadcast to every client)
- GET  /api/realtime/poll     polling fallback, events since a cursor
- POST /api/realtime/poll     publish an event
- GET  /api/websocket/test    connection test description
- POST /api/websocket/test    simulate a mock event of a given type

No authentication: the hosted deployment enforces it in front of these
routes.
"""

import logging
import time
from typing import Any

import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from nexus_realtime.config import POLL_PATH, REALTIME_PATH, RealtimeSettings
from nexus_realtime.protocol.events import (
    EVENT_PAYLOADS,
    AnalysisComplete,
    CompetitiveUpdate,
    CompetitorAlert,
    EventTypes,
    Heartbeat,
    MetricsUpdate,
)
from nexus_realtime.server.store import EventStore
from nexus_realtime.shared.frames import parse_frame, serialize_message

logger = logging.getLogger(__name__)

TEST_PATH = "/api/websocket/test"

MOCK_EVENTS = {
    EventTypes.COMPETITIVE_UPDATE: CompetitiveUpdate(
        competitor_id="comp-123",
        competitor_name="Example Competitor",
        message="Rankings updated",
        changes={
            "ranking": {"from": 5, "to": 3},
            "traffic": {"from": 100000, "to": 125000},
        },
    ),
    EventTypes.COMPETITOR_ALERT: CompetitorAlert(
        alert_id="alert-456",
        competitor_id="comp-123",
        alert_type="ranking_change",
        message="Competitor moved up 2 positions",
        severity="medium",
        threshold=10,
    ),
    EventTypes.ANALYSIS_COMPLETE: AnalysisComplete(
        analysis_id="analysis-789",
        competitor_id="comp-123",
        analysis_type="seo",
        results={
            "score": 85,
            "recommendations": ["Improve meta descriptions", "Add more backlinks"],
        },
    ),
    EventTypes.METRICS_UPDATE: MetricsUpdate(
        competitor_id="comp-123",
        metrics={
            "organic_traffic": 125000,
            "keyword_count": 1250,
            "backlink_count": 850,
            "domain_authority": 65,
        },
    ),
}


class EventHub:
    """Set of connected WebSocket clients that frames are broadcast to."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def add(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)

    def discard(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send a frame to every connected client.

        Clients whose socket fails are dropped from the hub.

        Returns:
            Number of clients the frame reached.
        """
        frame = serialize_message(message)
        delivered = 0
        for websocket in list(self._clients):
            try:
                await websocket.send_text(frame)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping realtime client after failed send: {e}")
                self._clients.discard(websocket)
        return delivered


def _error(message: str, code: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


def _success(data: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        {"success": True, "data": data, "timestamp": int(time.time() * 1000)},
        status_code=status_code,
    )


async def _read_json(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_app(
    store: EventStore | None = None, hub: EventHub | None = None
) -> Starlette:
    """Build the dev server application.

    Args:
        store: Event buffer backing the polling route. Fresh one if omitted.
        hub: WebSocket broadcast hub. Fresh one if omitted.
    """
    store = store or EventStore()
    hub = hub or EventHub()

    async def publish(
        team_id: str | None, event_type: str, data: Any, project_id: str | None
    ) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "type": event_type,
            "payload": data,
            "timestamp": int(time.time() * 1000),
        }
        if project_id:
            frame["projectId"] = project_id
        if team_id:
            event = store.add(team_id, event_type, data, project_id=project_id)
            frame["id"] = event.id
            frame["timestamp"] = event.timestamp
        delivered = await hub.broadcast(frame)
        logger.debug(f"Published '{event_type}' to {delivered} realtime client(s)")
        return frame

    async def realtime_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        hub.add(websocket)
        logger.info(f"Realtime client connected ({len(hub)} active)")
        try:
            while True:
                data = await websocket.receive()
                if data["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(data.get("code", 1000))
                message = parse_frame(data.get("text") or data.get("bytes") or "")
                if message is None:
                    continue
                if message.type == EventTypes.HEARTBEAT:
                    heartbeat = Heartbeat(active_connections=len(hub))
                    reply = {"type": message.type, "payload": heartbeat.to_wire()}
                    await websocket.send_text(serialize_message(reply))
                    continue
                await publish(
                    message.metadata.get("teamId"),
                    message.type,
                    message.payload,
                    message.metadata.get("projectId"),
                )
        except WebSocketDisconnect:
            pass
        finally:
            hub.discard(websocket)
            logger.info(f"Realtime client disconnected ({len(hub)} active)")

    async def poll_events(request: Request) -> Response:
        team_id = request.query_params.get("teamId")
        if not team_id:
            return _error("Team ID is required", "INVALID_REQUEST")

        project_id = request.query_params.get("projectId")
        try:
            since = int(request.query_params.get("since") or 0)
            limit = int(request.query_params.get("limit") or 10)
        except ValueError:
            return _error("since and limit must be integers", "INVALID_REQUEST")

        events, has_more = store.events_since(
            team_id, since=since, project_id=project_id, limit=limit
        )
        next_since = events[-1].timestamp if events else since
        return _success(
            {
                "events": [event.to_wire() for event in events],
                "count": len(events),
                "hasMore": has_more,
                "nextSince": next_since,
            }
        )

    async def create_event(request: Request) -> Response:
        body = await _read_json(request)
        if body is None:
            return _error("Invalid JSON body", "INVALID_REQUEST")

        team_id = body.get("teamId")
        event_type = body.get("type")
        if not team_id or not event_type:
            return _error("Team ID and event type are required", "INVALID_REQUEST")

        frame = await publish(
            team_id, event_type, body.get("data"), body.get("projectId")
        )
        return _success(
            {
                "eventId": frame["id"],
                "message": "Event created successfully",
                "timestamp": frame["timestamp"],
            },
            status_code=201,
        )

    async def connection_test(request: Request) -> Response:
        project_id = request.query_params.get("projectId")
        if not project_id:
            return _error("Project ID required", "INVALID_REQUEST")

        return _success(
            {
                "message": "WebSocket connection test successful",
                "projectId": project_id,
                "connectionState": "connected" if len(hub) else "idle",
                "activeConnections": len(hub),
                "supportedEvents": list(EVENT_PAYLOADS),
            }
        )

    async def simulate_event(request: Request) -> Response:
        body = await _read_json(request)
        if body is None:
            return _error("Invalid JSON body", "INVALID_REQUEST")

        project_id = body.get("projectId")
        event_type = body.get("eventType")
        if not project_id or not event_type:
            return _error("Project ID and event type required", "INVALID_REQUEST")

        mock = MOCK_EVENTS.get(event_type)
        if mock is not None:
            data = mock.to_wire()
        elif body.get("data") is not None:
            data = body["data"]
        else:
            return _error(
                f"No mock data for event type '{event_type}'", "UNKNOWN_EVENT"
            )

        model = EVENT_PAYLOADS.get(event_type)
        if model is not None:
            try:
                model.model_validate(data)
            except ValidationError as e:
                return _error(
                    f"Invalid {event_type} payload: {e}", "INVALID_PAYLOAD"
                )

        frame = await publish(body.get("teamId"), event_type, data, project_id)
        return _success(
            {
                "message": f"Mock {event_type} event created",
                "projectId": project_id,
                "eventType": event_type,
                "data": data,
                "timestamp": frame["timestamp"],
            }
        )

    app = Starlette(
        routes=[
            WebSocketRoute(REALTIME_PATH, realtime_endpoint),
            Route(POLL_PATH, poll_events, methods=["GET"]),
            Route(POLL_PATH, create_event, methods=["POST"]),
            Route(TEST_PATH, connection_test, methods=["GET"]),
            Route(TEST_PATH, simulate_event, methods=["POST"]),
        ]
    )
    app.state.store = store
    app.state.hub = hub
    return app


def main() -> None:
    """Run the dev event server with uvicorn."""
    settings = RealtimeSettings.from_env()
    uvicorn.run(
        create_app(),
        host=settings.dev_server_host,
        port=settings.dev_server_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
