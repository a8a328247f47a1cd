import logging
import os
import sys
from dataclasses import dataclass, field

from multidict import CIMultiDict, CIMultiDictProxy

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3999
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_TIMEOUT = 15.0
DEFAULT_HEADER_PREFIX = "h_"

if sys.platform.startswith("linux"):
    DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
else:
    DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"

# header name -> (environment variable, fallback)
DEFAULT_HEADER_SOURCES = (
    ("User-Agent", "UPSTREAM_UA", DEFAULT_USER_AGENT),
    ("Referer", "UPSTREAM_REFERER", ""),
    ("Origin", "UPSTREAM_ORIGIN", ""),
    ("Accept", "UPSTREAM_ACCEPT", "application/vnd.apple.mpegurl,*/*;q=0.9"),
    ("Accept-Language", "UPSTREAM_ACCEPT_LANGUAGE", "en-US,en;q=0.9"),
    ("Accept-Encoding", "UPSTREAM_ACCEPT_ENCODING", "identity"),
    ("Cookie", "UPSTREAM_COOKIE", ""),
)


def build_default_headers(environ=None) -> CIMultiDictProxy:
    """Collect the process-wide upstream headers, skipping empty values."""
    environ = os.environ if environ is None else environ
    headers = CIMultiDict()
    for name, var, fallback in DEFAULT_HEADER_SOURCES:
        value = environ.get(var) or fallback
        if value:
            headers[name] = value
    return CIMultiDictProxy(headers)


def parse_allowlist(raw) -> frozenset:
    if not raw:
        return frozenset()
    return frozenset(h.strip().lower() for h in raw.split(",") if h.strip())


def _env_int(environ, var, default):
    raw = environ.get(var)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{var} must be an integer, got {raw!r}") from None


def _env_float(environ, var, default):
    raw = environ.get(var)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{var} must be a number of seconds, got {raw!r}") from None


def _env_bool(environ, var, default):
    raw = environ.get(var)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Startup configuration shared read-only by every request."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    default_headers: CIMultiDictProxy = field(default_factory=lambda: CIMultiDictProxy(CIMultiDict()))
    allowlist: frozenset = frozenset()
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    timeout: float = DEFAULT_TIMEOUT
    header_prefix: str = DEFAULT_HEADER_PREFIX
    ipv4_only: bool = False

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ

        settings = cls(
            host=environ.get("PROXY_HOST") or "0.0.0.0",
            port=_env_int(environ, "PROXY_PORT", DEFAULT_PORT),
            default_headers=build_default_headers(environ),
            allowlist=parse_allowlist(environ.get("ALLOWLIST", "")),
            max_redirects=_env_int(environ, "UPSTREAM_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS),
            timeout=_env_float(environ, "UPSTREAM_TIMEOUT", DEFAULT_TIMEOUT),
            header_prefix=(environ.get("HEADER_PARAM_PREFIX") or DEFAULT_HEADER_PREFIX).lower(),
            ipv4_only=_env_bool(environ, "UPSTREAM_IPV4_ONLY", False),
        )

        if settings.allowlist:
            logger.info(f"upstream allowlist: {', '.join(sorted(settings.allowlist))}")
        else:
            logger.info("upstream allowlist disabled")

        return settings
