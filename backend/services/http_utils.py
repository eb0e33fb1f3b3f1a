import logging

import httpx

logger = logging.getLogger(__name__)


def content_length(response: httpx.Response) -> int:
    """Declared body size, or 0 when the header is missing or malformed."""
    raw = response.headers.get("content-length")
    if not raw:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning(f"Ignoring malformed Content-Length {raw!r}")
        return 0
