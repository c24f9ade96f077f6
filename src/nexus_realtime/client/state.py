from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.FAILED, ConnectionState.CLOSED)


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of a manager's connection health.

    Delivered to state-change callbacks on every transition.
    """

    state: ConnectionState
    url: str
    reconnect_attempts: int = 0
    next_retry_delay: float | None = None  # Seconds, while a retry is pending
    error: str | None = None
