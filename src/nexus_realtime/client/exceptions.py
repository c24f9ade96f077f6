"""Exception hierarchy for the realtime connection manager."""


class RealtimeError(Exception):
    """Base exception for realtime client errors."""

    pass


class ConnectionFailedError(RealtimeError, ConnectionError):
    """Raised when the transport could not be opened.

    Covers connector exceptions and errors reported before the transport
    signalled open.
    """

    pass


class ConnectTimeoutError(ConnectionFailedError):
    """Raised when the transport did not open within the connect timeout."""

    pass


class ManagerClosedError(RealtimeError):
    """Raised when a manager is used after disconnect().

    A closed manager is terminal; build a fresh one to reconnect.
    """

    pass
