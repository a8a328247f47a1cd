import logging

from aiohttp import web

from .config import Settings
from .errors import RelayError
from .guard import check_allowed, parse_target_url
from .headers import resolve_headers
from .relay import relay_response
from .upstream import FetchRequest, build_ssl_context, fetch

logger = logging.getLogger(__name__)

EXPOSED_HEADERS = "ETag, Last-Modified, X-Warning, X-Notice"


def cors_headers():
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "*",
        "Access-Control-Expose-Headers": EXPOSED_HEADERS,
    }


class WebServer:
    def __init__(self, settings: Settings = None, ssl_context=None):

        self.settings = settings or Settings()
        self.ssl_context = ssl_context or build_ssl_context()
        self.app = web.Application()

        self.app.router.add_get("/health", self.serve_health)
        self.app.router.add_get("/playlist", self.serve_playlist)
        self.app.router.add_route("OPTIONS", "/health", self.serve_options)
        self.app.router.add_route("OPTIONS", "/playlist", self.serve_options)

    def start(self):
        host = self.settings.host
        port = self.settings.port
        logger.info(f"Starting web server at http://{host}:{port}")
        # cancelling the handler on disconnect also closes its upstream session
        web.run_app(self.app, host=host, port=port, handler_cancellation=True, print=None)

    async def serve_health(self, request: web.Request):
        return web.Response(text="ok", headers=cors_headers())

    async def serve_playlist(self, request: web.Request):
        client_ip = request.remote or "unknown"
        logger.info(f"Received request from {client_ip}: {request.method} {request.path_qs}")

        try:
            url = request.query.get("url")
            parse_target_url(url)
            check_allowed(url, self.settings.allowlist)

            headers = resolve_headers(self.settings.default_headers,
                                      request.query,
                                      self.settings.header_prefix)

            result = await fetch(FetchRequest(url=url,
                                              headers=headers,
                                              max_redirects=self.settings.max_redirects,
                                              timeout=self.settings.timeout),
                                 ssl_context=self.ssl_context,
                                 ipv4_only=self.settings.ipv4_only)

            return relay_response(result, cors_headers())

        except RelayError as err:
            if err.status < 500:
                logger.warning(f"rejecting request from {client_ip}: {err.message}")
                text = err.message
            else:
                logger.error(f"proxy error for {client_ip}: {err.message}")
                text = f"Proxy error: {err.message}"
            return web.Response(status=err.status, text=text, headers=cors_headers())

        except Exception as err:
            logger.exception(f"unexpected failure serving {request.path_qs}")
            return web.Response(status=500, text=f"Proxy error: {err}", headers=cors_headers())

    async def serve_options(self, request: web.Request):
        return web.Response(
            status=200,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET, OPTIONS",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Max-Age": "86400"
            }
        )
