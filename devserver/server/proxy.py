"""
Request forwarding to an upstream origin.

Used twice: by the content server for requests no local file matched, and by
the live-reload sidecar to reach the content server on its internal port.
"""

import logging
from email.utils import formatdate
from typing import Callable, Iterable, List, Optional, Tuple

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from devserver.config import ServerConfig

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Recomputed from the forwarded body
REQUEST_SKIP_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}

HeaderRewrite = Callable[[httpx.Headers], httpx.Headers]


def target_authority(target: str) -> str:
    """Host and optional port of a URL, without the scheme."""
    return httpx.URL(target).netloc.decode("ascii")


def apply_proxy_headers(headers: httpx.Headers, config: ServerConfig) -> httpx.Headers:
    """
    Set Host and Origin for the configured proxy target, then overlay the
    user headers. A user supplied host or origin therefore wins.
    """
    outgoing = httpx.Headers(headers)
    outgoing["host"] = target_authority(config.proxy_target)
    outgoing["origin"] = config.proxy_target
    for name, value in config.extra_headers.items():
        outgoing[name] = value
    return outgoing


def request_headers(request: Request) -> httpx.Headers:
    """End-to-end headers of an incoming request."""
    return httpx.Headers([
        (name, value) for name, value in request.headers.raw
        if name.decode("latin-1").lower() not in REQUEST_SKIP_HEADERS
    ])


def response_headers(
    upstream: httpx.Response, exclude: Iterable[str] = ()
) -> List[Tuple[bytes, bytes]]:
    """End-to-end headers of an upstream response, as raw pairs."""
    skip = HOP_BY_HOP_HEADERS | {name.lower() for name in exclude}
    return [
        (name.lower(), value) for name, value in upstream.headers.raw
        if name.decode("latin-1").lower() not in skip
    ]


def with_date(response: Response) -> Response:
    """Date header for responses generated here; relayed ones keep the upstream's."""
    response.headers["date"] = formatdate(usegmt=True)
    return response


def gateway_error(exc: httpx.RequestError) -> Response:
    """Map an upstream failure to the response the client gets."""
    if isinstance(exc, httpx.TimeoutException):
        return with_date(PlainTextResponse("Gateway Timeout", status_code=504))
    return with_date(PlainTextResponse("Bad Gateway", status_code=502))


class ProxyForwarder:
    """Forwards requests to a single upstream and streams responses back."""

    def __init__(
        self,
        target: str,
        rewrite: Optional[HeaderRewrite] = None,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.target = target.rstrip("/")
        self._rewrite = rewrite
        self._debug = debug
        # Default httpx timeouts apply
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=False)

    def upstream_url(self, request: Request) -> str:
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path
        url = self.target + path
        if request.url.query:
            url += "?" + request.url.query
        return url

    async def send(self, request: Request) -> httpx.Response:
        """
        Send the request upstream and return the response with its body
        still unread. The caller must close it. Raises httpx.RequestError.
        """
        headers = request_headers(request)
        if self._rewrite is not None:
            headers = self._rewrite(headers)

        body = await request.body()
        upstream_request = self._client.build_request(
            request.method,
            self.upstream_url(request),
            headers=headers,
            content=body or None,
        )

        if self._debug:
            logger.debug(f"Proxy {request.method} {request.url.path} -> {upstream_request.url}")

        upstream = await self._client.send(upstream_request, stream=True)

        if self._debug:
            logger.debug(f"Proxy {request.method} {upstream_request.url} <- {upstream.status_code}")

        return upstream

    async def forward(self, request: Request) -> Response:
        """Relay the request and stream the upstream response verbatim."""
        try:
            upstream = await self.send(request)
        except httpx.RequestError as e:
            logger.error(f"Proxy error for {request.method} {self.upstream_url(request)}: {e!r}")
            return gateway_error(e)

        return self.stream(upstream)

    def stream(self, upstream: httpx.Response, exclude: Iterable[str] = ()) -> Response:
        """Stream an unread upstream response back, closing it when done."""
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = response_headers(upstream, exclude)
        return response

    async def aclose(self) -> None:
        await self._client.aclose()
