import enum
import logging

from aiohttp import web

from .rewriter import rewrite_manifest
from .upstream import FetchResult

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
CACHE_CONTROL = "no-store, must-revalidate"
VALIDATORS = ("ETag", "Last-Modified")


class RelayState(enum.Enum):
    NOT_MODIFIED = "not-modified"
    UPSTREAM_ERROR = "upstream-error"
    SUCCESS = "success"


def classify_result(result: FetchResult) -> RelayState:
    if result.status == 304:
        return RelayState.NOT_MODIFIED
    if 200 <= result.status < 300:
        return RelayState.SUCCESS
    return RelayState.UPSTREAM_ERROR


def copy_validators(result, headers):
    for name in VALIDATORS:
        value = result.headers.get(name)
        if value:
            headers[name] = value
    return headers


def relay_response(result: FetchResult, extra_headers=None) -> web.Response:
    """Turn one upstream outcome into the client response. Never retries."""
    state = classify_result(result)
    headers = dict(extra_headers or {})
    logger.info(f"relaying {result.final_url} as {state.value} (upstream {result.status})")

    if state is RelayState.NOT_MODIFIED:
        copy_validators(result, headers)
        headers["Cache-Control"] = CACHE_CONTROL
        return web.Response(status=304, headers=headers)

    if state is RelayState.UPSTREAM_ERROR:
        logger.warning(f"upstream returned {result.status} for {result.final_url}")
        return web.Response(
            status=result.status or 502,
            text=f"Upstream returned {result.status}\n{result.body or ''}",
            content_type="text/plain",
            charset="utf-8",
            headers=headers,
        )

    manifest = rewrite_manifest(result.body or "", result.final_url)
    if manifest.warning:
        headers["X-Warning"] = manifest.warning
    if manifest.notice:
        headers["X-Notice"] = manifest.notice
    copy_validators(result, headers)
    headers["Cache-Control"] = CACHE_CONTROL

    return web.Response(
        status=200,
        text=manifest.text,
        content_type=PLAYLIST_CONTENT_TYPE,
        charset="utf-8",
        headers=headers,
    )
