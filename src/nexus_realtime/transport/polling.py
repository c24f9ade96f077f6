"""HTTP polling transport, for hosts that can't hold a WebSocket open."""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator

import httpx

from nexus_realtime.transport.base import Connector, Transport

logger = logging.getLogger(__name__)


class PollingTransport(Transport):
    """Transport that polls the realtime poll route for new events.

    Inbound: GET <url>?teamId=..&since=.. every `interval` seconds. Each
    returned event becomes a frame shaped like a WebSocket frame, so the
    connection manager can't tell the two transports apart.

    Outbound: each frame is POSTed to the same URL as
    {teamId, projectId, type, data}.
    """

    def __init__(
        self,
        url: str,
        team_id: str,
        project_id: str | None = None,
        interval: float = 5.0,
        limit: int = 10,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport. Call open() before use.

        Args:
            url: http(s) URL of the poll route
            team_id: Team whose event stream to follow
            project_id: Optional project filter
            interval: Seconds between polls
            limit: Max events requested per poll
            headers: Extra request headers, e.g. Authorization
            http_client: Client to reuse. Created (and owned) if omitted.
        """
        self.url = url
        self.team_id = team_id
        self.project_id = project_id
        self.interval = interval
        self.limit = limit
        self._headers = headers or {}
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=10.0)
        self._since = 0
        self._pending: list[str] = []
        self._open = False
        self._closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed.is_set()

    @property
    def since(self) -> int:
        """Timestamp (ms) of the newest event seen so far."""
        return self._since

    async def open(self) -> None:
        """Probe the poll route and start following events from now.

        Raises:
            ConnectionError: If the route is unreachable or rejects the request
        """
        self._since = int(time.time() * 1000)
        self._pending.extend(await self._poll())
        self._open = True
        logger.debug(f"Polling transport open: {self.url} (team {self.team_id})")

    async def send(self, frame: str) -> None:
        """POST one frame to the poll route.

        Raises:
            ConnectionError: If the transport is closed or the request fails
        """
        if not self.is_open:
            raise ConnectionError("Polling transport is closed")

        message = json.loads(frame)
        body: dict[str, Any] = {
            "teamId": self.team_id,
            "type": message.get("type"),
            "data": message.get("payload"),
        }
        if self.project_id:
            body["projectId"] = self.project_id

        try:
            response = await self._http_client.post(
                self.url, json=body, headers=self._headers
            )
        except httpx.RequestError as e:
            raise ConnectionError(f"POST to {self.url} failed: {e}") from e
        if response.status_code >= 400:
            raise ConnectionError(
                f"POST to {self.url} rejected with status {response.status_code}"
            )

    def messages(self) -> AsyncIterator[str]:
        return self._frame_iterator()

    async def _frame_iterator(self) -> AsyncIterator[str]:
        while self.is_open:
            while self._pending:
                yield self._pending.pop(0)

            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self.interval)
                return
            except TimeoutError:
                pass

            if not self.is_open:
                return
            self._pending.extend(await self._poll())

    async def _poll(self) -> list[str]:
        """Fetch events newer than `since` and turn them into frames."""
        params: dict[str, Any] = {
            "teamId": self.team_id,
            "since": self._since,
            "limit": self.limit,
        }
        if self.project_id:
            params["projectId"] = self.project_id

        try:
            response = await self._http_client.get(
                self.url, params=params, headers=self._headers
            )
        except httpx.RequestError as e:
            raise ConnectionError(f"Polling {self.url} failed: {e}") from e

        if response.status_code >= 400:
            raise ConnectionError(
                f"Polling {self.url} rejected with status {response.status_code}"
            )

        try:
            body = response.json()
            events = body["data"]["events"]
        except (ValueError, KeyError, TypeError) as e:
            raise ConnectionError(
                f"Unexpected poll response from {self.url}: {e}"
            ) from e

        frames = []
        since = self._since
        try:
            for event in events:
                timestamp = event.get("timestamp", 0)
                if not isinstance(timestamp, int):
                    raise TypeError(f"timestamp {timestamp!r} is not an integer")
                since = max(since, timestamp)
                frames.append(
                    json.dumps(
                        {
                            "type": event.get("type"),
                            "payload": event.get("data"),
                            "id": event.get("id"),
                            "timestamp": timestamp,
                        }
                    )
                )
        except (AttributeError, TypeError) as e:
            raise ConnectionError(
                f"Malformed event in poll response from {self.url}: {e}"
            ) from e
        self._since = since
        if frames:
            logger.debug(f"Polled {len(frames)} event(s) from {self.url}")
        return frames

    async def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._owns_client and not self._http_client.is_closed:
            await self._http_client.aclose()


def polling_connector(
    team_id: str,
    project_id: str | None = None,
    interval: float = 5.0,
    limit: int = 10,
    headers: dict[str, str] | None = None,
) -> Connector:
    """Build a connector that opens PollingTransports for a team.

    Returns:
        Async callable suitable for ConnectionManager(connector=...)
    """

    async def connect_polling(url: str) -> PollingTransport:
        transport = PollingTransport(
            url,
            team_id,
            project_id=project_id,
            interval=interval,
            limit=limit,
            headers=headers,
        )
        try:
            await transport.open()
        except BaseException:
            await transport.close()
            raise
        return transport

    return connect_polling
