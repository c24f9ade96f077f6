from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from types import TracebackType
from typing import Self


class Transport(ABC):
    """Abstract transport for realtime frame delivery.

    Moves raw text frames in and out without knowing anything about event
    types, listeners or reconnection. A transport is handed out already open
    by a connector; once it closes it is never reopened.

    - Send frames via send()
    - Receive frames by iterating over messages()

    When the connection fails, the message iterator raises ConnectionError.
    When the connection closes cleanly, the iterator simply ends.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True if the transport is open and can carry frames."""

    @abstractmethod
    async def send(self, frame: str) -> None:
        """Send one serialized frame.

        Args:
            frame: JSON text to transmit

        Raises:
            ConnectionError: If transport is closed or the write failed
        """

    @abstractmethod
    def messages(self) -> AsyncIterator[str]:
        """Stream of incoming raw frames in arrival order.

        Yields frames as they arrive. Iterator ends when transport closes.

        Yields:
            str: Each incoming frame, undecoded

        Raises:
            ConnectionError: When the transport connection fails
            asyncio.CancelledError: When iteration is cancelled
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and stop message iteration.

        Safe to call multiple times.
        """

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        return None


Connector = Callable[[str], Awaitable[Transport]]
"""Async factory that opens a transport to a URL or raises."""
