import logging
from urllib.parse import urlsplit

from .errors import ClientInputError, ForbiddenHostError

logger = logging.getLogger(__name__)


def parse_target_url(url):
    """Validate the upstream playlist URL taken from the query string."""
    if not url:
        raise ClientInputError("Missing query param: url")

    try:
        parts = urlsplit(url)
        parts.port  # raises on a non-numeric or out of range port
    except ValueError as err:
        raise ClientInputError(f"Invalid url: {err}") from err

    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ClientInputError(f"Invalid url: {url}")

    return parts


def check_allowed(url, allowlist):
    """Reject targets outside the allowlist. An empty allowlist allows everything.

    Entries match either the bare host name or ``host:port``.
    """
    if not allowlist:
        return

    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    candidates = {host}
    if parts.port:
        candidates.add(f"{host}:{parts.port}")

    if candidates.isdisjoint(allowlist):
        logger.warning(f"refusing upstream host {host}, not on allowlist")
        raise ForbiddenHostError("Origin not allowed by proxy")
