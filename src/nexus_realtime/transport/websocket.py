"""WebSocket transport for the realtime namespace."""

import logging
from typing import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.protocol import State

from nexus_realtime.transport.base import Transport

logger = logging.getLogger(__name__)


class WebSocketTransport(Transport):
    """Transport over a single open WebSocket connection.

    Wraps a connection that is already open. Use connect_websocket() to
    create one; the constructor does no I/O.
    """

    def __init__(self, connection: ClientConnection, url: str) -> None:
        self._connection = connection
        self._url = url
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self._connection.state is State.OPEN

    async def send(self, frame: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionError: If the socket is closed or closes mid-write
        """
        if self._closed:
            raise ConnectionError("WebSocket transport is closed")
        try:
            await self._connection.send(frame)
        except ConnectionClosed as e:
            raise ConnectionError(f"WebSocket closed while sending: {e}") from e
        logger.debug(f"Sent frame to {self._url}: {frame}")

    def messages(self) -> AsyncIterator[str]:
        return self._frame_iterator()

    async def _frame_iterator(self) -> AsyncIterator[str]:
        """Yield text frames until the socket closes.

        A normal close ends iteration; an abnormal close raises.
        """
        try:
            async for data in self._connection:
                if isinstance(data, bytes):
                    try:
                        data = data.decode("utf-8")
                    except UnicodeDecodeError:
                        logger.warning(
                            f"Dropping undecodable binary frame from {self._url}"
                        )
                        continue
                logger.debug(f"Received frame from {self._url}: {data}")
                yield data
        except ConnectionClosedError as e:
            raise ConnectionError(f"WebSocket connection lost: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._connection.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket to {self._url}: {e}")


async def connect_websocket(
    url: str, headers: dict[str, str] | None = None
) -> WebSocketTransport:
    """Open a WebSocket to url and wrap it in a transport.

    Args:
        url: ws:// or wss:// address of the realtime namespace
        headers: Extra handshake headers, e.g. a bearer token or session cookie

    Returns:
        An open WebSocketTransport

    Raises:
        ConnectionError: If the handshake fails or the host is unreachable
    """
    try:
        connection = await connect(url, additional_headers=headers)
    except OSError:
        raise
    except Exception as e:
        raise ConnectionError(f"WebSocket handshake with {url} failed: {e}") from e

    logger.debug(f"WebSocket opened to {url}")
    return WebSocketTransport(connection, url)
