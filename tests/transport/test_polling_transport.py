import json

import httpx
import pytest

from nexus_realtime.transport.polling import PollingTransport

POLL_URL = "http://localhost:3000/api/realtime/poll"


def poll_response(events: list[dict]) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "success": True,
            "data": {"events": events, "hasMore": False},
            "timestamp": 0,
        },
    )


class FakePollServer:
    """httpx handler serving queued poll responses and recording requests."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(201, json={"success": True})
        if self.responses:
            return self.responses.pop(0)
        return poll_response([])


@pytest.fixture
def server() -> FakePollServer:
    return FakePollServer()


@pytest.fixture
async def transport(server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    transport = PollingTransport(
        POLL_URL, "team-1", project_id="proj-1", interval=0.01, http_client=client
    )
    yield transport
    await transport.close()
    await client.aclose()


class TestPollingTransportOpen:
    async def test_open_probes_route_with_team_and_cursor(self, transport, server):
        # Act
        await transport.open()

        # Assert
        assert transport.is_open
        params = server.requests[0].url.params
        assert params["teamId"] == "team-1"
        assert params["projectId"] == "proj-1"
        assert params["limit"] == "10"
        assert int(params["since"]) == transport.since

    async def test_open_raises_connection_error_on_http_error(self, transport, server):
        # Arrange
        server.responses.append(httpx.Response(500, json={"error": "boom"}))

        # Act & Assert
        with pytest.raises(ConnectionError):
            await transport.open()
        assert not transport.is_open

    async def test_open_raises_connection_error_on_unexpected_body(
        self, transport, server
    ):
        server.responses.append(httpx.Response(200, json={"unexpected": True}))

        with pytest.raises(ConnectionError):
            await transport.open()

    @pytest.mark.parametrize(
        "events",
        [
            ["not an event"],
            [{"type": "metrics-update", "timestamp": "yesterday"}],
            42,
        ],
    )
    async def test_open_raises_connection_error_on_malformed_events(
        self, transport, server, events
    ):
        # Arrange
        server.responses.append(poll_response(events))

        # Act & Assert
        with pytest.raises(ConnectionError):
            await transport.open()

    async def test_open_raises_connection_error_when_unreachable(self):
        # Arrange
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        transport = PollingTransport(POLL_URL, "team-1", http_client=client)

        # Act & Assert
        with pytest.raises(ConnectionError):
            await transport.open()
        await client.aclose()


class TestPollingTransportMessages:
    async def test_events_become_frames_and_advance_cursor(self, transport, server):
        # Arrange - second poll returns two events
        await transport.open()
        start = transport.since
        server.responses.append(
            poll_response(
                [
                    {
                        "id": "event-1",
                        "type": "metrics-update",
                        "data": {"competitorId": "c1"},
                        "timestamp": start + 10,
                    },
                    {
                        "id": "event-2",
                        "type": "competitor-alert",
                        "data": {"alertId": "a1"},
                        "timestamp": start + 20,
                    },
                ]
            )
        )

        # Act
        messages = transport.messages()
        frames = [await anext(messages), await anext(messages)]
        await messages.aclose()

        # Assert
        assert json.loads(frames[0]) == {
            "type": "metrics-update",
            "payload": {"competitorId": "c1"},
            "id": "event-1",
            "timestamp": start + 10,
        }
        assert json.loads(frames[1])["type"] == "competitor-alert"
        assert transport.since == start + 20

    async def test_iteration_ends_when_closed(self, transport):
        # Arrange
        await transport.open()
        await transport.close()

        # Act
        frames = [frame async for frame in transport.messages()]

        # Assert
        assert frames == []

    async def test_poll_failure_raises_from_iterator(self, transport, server):
        # Arrange
        await transport.open()
        server.responses.append(httpx.Response(503))

        # Act & Assert
        with pytest.raises(ConnectionError):
            async for _ in transport.messages():
                pass


class TestPollingTransportSend:
    async def test_send_posts_event(self, transport, server):
        # Arrange
        await transport.open()

        # Act
        await transport.send(
            json.dumps(
                {"type": "competitive-update", "payload": {"competitorId": "c1"}}
            )
        )

        # Assert
        request = server.requests[-1]
        assert request.method == "POST"
        assert json.loads(request.content) == {
            "teamId": "team-1",
            "projectId": "proj-1",
            "type": "competitive-update",
            "data": {"competitorId": "c1"},
        }

    async def test_send_when_closed_raises(self, transport):
        with pytest.raises(ConnectionError):
            await transport.send('{"type": "ping"}')

    async def test_send_rejected_raises(self):
        # Arrange
        def reject(request):
            if request.method == "POST":
                return httpx.Response(400, json={"error": "bad"})
            return poll_response([])

        client = httpx.AsyncClient(transport=httpx.MockTransport(reject))
        transport = PollingTransport(POLL_URL, "team-1", http_client=client)
        await transport.open()

        # Act & Assert
        with pytest.raises(ConnectionError):
            await transport.send('{"type": "ping"}')
        await transport.close()
        await client.aclose()

    async def test_close_leaves_borrowed_client_open(self, transport):
        await transport.open()

        await transport.close()

        assert not transport.is_open
        assert not transport._http_client.is_closed
