from urllib.parse import urlencode

from nexus_realtime.config import (
    DEVELOPMENT_HOST,
    POLL_PATH,
    REALTIME_CHANNEL,
    RealtimeSettings,
)


def realtime_url(
    settings: RealtimeSettings,
    page_scheme: str | None = None,
    page_host: str | None = None,
) -> str:
    """Derive the realtime WebSocket address for this deployment.

    Args:
        settings: Realtime settings
        page_scheme: Scheme the hosting page was served over ("https"/"http").
            Defaults to https when settings.secure is set.
        page_host: Host the page was served from. Defaults to
            settings.public_host. Only used in production.

    Returns:
        ws:// or wss:// URL of the realtime namespace
    """
    if page_scheme is None:
        page_scheme = "https" if settings.secure else "http"
    scheme = "wss" if page_scheme.lower() == "https" else "ws"

    if settings.is_production:
        host = page_host or settings.public_host
    else:
        host = DEVELOPMENT_HOST

    path = settings.realtime_path
    if not path.startswith("/"):
        path = "/" + path

    params = {}
    if settings.project_id:
        params["projectId"] = settings.project_id
    if settings.user_id:
        params["userId"] = settings.user_id
    if params:
        params["channel"] = REALTIME_CHANNEL
        return f"{scheme}://{host}{path}?{urlencode(params)}"

    return f"{scheme}://{host}{path}"


def poll_url(
    settings: RealtimeSettings,
    page_scheme: str | None = None,
    page_host: str | None = None,
) -> str:
    """Derive the HTTP polling route, the fallback for the realtime namespace."""
    if page_scheme is None:
        page_scheme = "https" if settings.secure else "http"
    scheme = "https" if page_scheme.lower() == "https" else "http"
    if settings.is_production:
        host = page_host or settings.public_host
    else:
        host = DEVELOPMENT_HOST
    return f"{scheme}://{host}{POLL_PATH}"
