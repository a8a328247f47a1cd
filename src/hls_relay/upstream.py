import asyncio
import ipaddress
import logging
import socket
import ssl
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy

from .errors import TooManyRedirectsError, UpstreamNetworkError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset((301, 302, 303, 307, 308))

# The upstream edge answers 403 to anything that does not look like this
# handshake: TLS 1.2 only, ECDHE with AEAD ciphers, HTTP/1.1 over ALPN.
TLS12_CIPHERS = ":".join((
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
))
ALPN_PROTOCOLS = ["http/1.1"]


def build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(TLS12_CIPHERS)
    context.set_alpn_protocols(ALPN_PROTOCOLS)
    return context


@dataclass(frozen=True)
class FetchRequest:
    url: str
    headers: CIMultiDictProxy
    max_redirects: int = 5
    timeout: float = 15.0


@dataclass(frozen=True)
class FetchResult:
    status: int
    headers: CIMultiDictProxy
    body: str
    final_url: str
    redirects: int = 0


@dataclass(frozen=True)
class _Redirect:
    location: str


async def fetch(request: FetchRequest, ssl_context=None, ipv4_only=False) -> FetchResult:
    """GET the playlist, following at most ``request.max_redirects`` redirects.

    Every attempt gets its own timeout. Redirect bodies are discarded and the
    Location is resolved against the URL that produced it. A redirect without a
    Location is returned as the final response with an empty body.
    """
    headers = CIMultiDict(request.headers)
    if "Accept-Encoding" not in headers:
        headers["Accept-Encoding"] = "identity"

    connector = aiohttp.TCPConnector(
        ssl=ssl_context if ssl_context is not None else True,
        family=socket.AF_INET if ipv4_only else 0,
        force_close=True,
    )
    timeout = aiohttp.ClientTimeout(total=request.timeout)

    current = request.url
    redirects = 0

    async with aiohttp.ClientSession(connector=connector, cookie_jar=aiohttp.DummyCookieJar()) as session:
        while True:
            outcome = await _attempt(session, current, headers, timeout, redirects, ipv4_only)

            if isinstance(outcome, FetchResult):
                return outcome

            if redirects >= request.max_redirects:
                logger.error(f"giving up on {request.url} after {redirects} redirects")
                raise TooManyRedirectsError(f"Too many redirects ({request.max_redirects})")

            redirects += 1
            current = outcome.location
            logger.info(f"following redirect {redirects} to {current}")


async def _attempt(session, url, headers, timeout, redirects, ipv4_only):
    host = urlsplit(url).hostname
    server_hostname = host if url.lower().startswith("https:") else None

    if ipv4_only and _is_ipv6_literal(host):
        logger.error(f"cannot reach IPv6 address {host} with IPv4-only resolution")
        raise UpstreamNetworkError(f"Upstream host {host} is an IPv6 address but UPSTREAM_IPV4_ONLY is set")

    logger.info(f"sending request to {url}")
    try:
        async with session.get(url,
                               headers=headers,
                               allow_redirects=False,
                               timeout=timeout,
                               server_hostname=server_hostname) as res:
            logger.info(f"response received, status {res.status}")
            response_headers = CIMultiDictProxy(CIMultiDict(res.headers))

            if res.status in REDIRECT_STATUSES:
                location = res.headers.get("Location")
                if location:
                    return _Redirect(urljoin(url, location))
                logger.warning(f"redirect {res.status} from {url} carries no Location")
                return FetchResult(res.status, response_headers, "", url, redirects)

            raw = await res.read()

    except asyncio.TimeoutError as err:
        logger.error(f"timed out after {timeout.total} s waiting for {url}")
        raise UpstreamTimeoutError(f"Upstream request timeout after {timeout.total} s") from err
    except (aiohttp.ClientError, OSError) as err:
        logger.error(f"request to {url} failed: {err!r}")
        raise UpstreamNetworkError(f"Upstream request failed: {err}") from err

    return FetchResult(res.status, response_headers, decode_body(raw, res.charset), url, redirects)


def _is_ipv6_literal(host):
    try:
        return ipaddress.ip_address(host or "").version == 6
    except ValueError:
        return False


def decode_body(raw, charset=None):
    """Decode a playlist body, dropping a UTF-8 byte order mark.

    An unknown declared charset falls back to UTF-8.
    """
    if charset:
        try:
            return raw.decode(charset, errors="replace")
        except LookupError:
            logger.warning(f"unknown upstream charset {charset!r}, decoding as utf-8")
    return raw.decode("utf-8-sig", errors="replace")
