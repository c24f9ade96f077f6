"""Process-wide access to a single ConnectionManager.

Prefer building a ConnectionManager at startup and passing it to the
components that need it. When that's not practical, get_connection_manager()
lazily builds one manager on first use and returns the same instance after.
"""

from nexus_realtime.client.connection import ConnectionManager
from nexus_realtime.config import RealtimeSettings
from nexus_realtime.transport.base import Connector

_manager: ConnectionManager | None = None


def get_connection_manager(
    settings: RealtimeSettings | None = None, connector: Connector | None = None
) -> ConnectionManager:
    """Return the process-wide manager, creating it on first call.

    Arguments only take effect on the call that creates the manager.

    Args:
        settings: Settings to build from. Defaults to RealtimeSettings.from_env().
        connector: Transport connector. Defaults to the WebSocket connector.
    """
    global _manager
    if _manager is None:
        if settings is None:
            settings = RealtimeSettings.from_env()
        _manager = ConnectionManager.from_settings(settings, connector=connector)
    return _manager


async def reset_connection_manager() -> None:
    """Disconnect and forget the process-wide manager.

    The next get_connection_manager() call builds a fresh one.
    """
    global _manager
    manager, _manager = _manager, None
    if manager is not None:
        await manager.disconnect()
