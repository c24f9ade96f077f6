import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Awaitable[None] | None]


class ListenerRegistry:
    """Ordered listeners keyed by event type.

    Each event type keeps its listeners in registration order, and the same
    callable may be registered more than once. Dispatch iterates over a
    snapshot, so listeners may call add() or remove() while being invoked.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add(self, event_type: str, listener: Listener) -> None:
        """Register a listener for an event type.

        Args:
            event_type: Frame type to listen for, e.g. "metrics-update".
            listener: Function or coroutine function called with the payload.
        """
        if not callable(listener):
            raise TypeError(f"Listener for '{event_type}' must be callable")
        self._listeners.setdefault(event_type, []).append(listener)

    def remove(self, event_type: str, listener: Listener) -> None:
        """Unregister the earliest registration of a listener.

        Safe to call for listeners that were never registered.
        """
        listeners = self._listeners.get(event_type)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event_type]

    def listeners_for(self, event_type: str) -> list[Listener]:
        """Copy of the listeners currently registered for an event type."""
        return list(self._listeners.get(event_type, ()))

    def count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, ()))
        return sum(len(listeners) for listeners in self._listeners.values())

    def clear(self) -> None:
        self._listeners.clear()

    async def dispatch(self, event_type: str, payload: Any) -> int:
        """Invoke every listener for an event type with the payload.

        Listeners run one after another in registration order. A listener
        that raises is logged and skipped; the rest still run.

        Returns:
            Number of listeners invoked.
        """
        snapshot = self.listeners_for(event_type)
        for listener in snapshot:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Listener for '{event_type}' failed: {e!r}")
        return len(snapshot)
