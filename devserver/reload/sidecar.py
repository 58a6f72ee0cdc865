"""
Live-reload sidecar.

Fronts the content server on the public port: relays every request to the
internal port, injects the reload client into HTML pages and runs the file
watcher for as long as the application lives.
"""

import asyncio
import re
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response

from devserver.config import ServerConfig, get_settings
from devserver.reload.broadcaster import ReloadBroadcaster
from devserver.reload.routes import CLIENT_PATH, router
from devserver.reload.watcher import FileWatcher
from devserver.server.app import ALL_METHODS
from devserver.server.proxy import ProxyForwarder, gateway_error, response_headers

logger = structlog.get_logger(__name__)

SNIPPET = f'<script async src="{CLIENT_PATH}"></script>'.encode("ascii")
BODY_CLOSE = re.compile(rb"</body>", re.IGNORECASE)


def inject_snippet(body: bytes, snippet: bytes = SNIPPET) -> bytes:
    """Insert the snippet right before the first </body>; no tag, no change."""
    match = BODY_CLOSE.search(body)
    if match is None:
        return body
    return body[:match.start()] + snippet + body[match.start():]


def is_html(upstream: httpx.Response) -> bool:
    return upstream.headers.get("content-type", "").lower().startswith("text/html")


def identity_encoding(headers: httpx.Headers) -> httpx.Headers:
    """Ask the content server for uncompressed bodies so HTML can be rewritten."""
    outgoing = httpx.Headers(headers)
    outgoing["accept-encoding"] = "identity"
    return outgoing


async def relay(request: Request, forwarder: ProxyForwarder) -> Response:
    """Forward one request to the content server, injecting into HTML."""
    try:
        upstream = await forwarder.send(request)
    except httpx.RequestError as e:
        logger.error("Content server unreachable", path=request.url.path, error=repr(e))
        return gateway_error(e)

    if not is_html(upstream):
        return forwarder.stream(upstream)

    if request.method == "HEAD":
        # The length of the injected GET body is unknown without the body
        return forwarder.stream(upstream, exclude=["content-length"])

    try:
        body = b"".join([chunk async for chunk in upstream.aiter_raw()])
    finally:
        await upstream.aclose()

    encoding = upstream.headers.get("content-encoding", "identity").lower()
    if encoding == "identity":
        body = inject_snippet(body)

    response = Response(content=body, status_code=upstream.status_code)
    response.raw_headers = response_headers(upstream, exclude=["content-length"]) + [
        (b"content-length", str(len(body)).encode("latin-1")),
    ]
    return response


def create_sidecar_app(
    internal_port: int,
    config: ServerConfig,
    broadcaster: Optional[ReloadBroadcaster] = None,
    watcher: Optional[FileWatcher] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the public-facing reload application pointed at the internal port."""
    settings = get_settings()
    broadcaster = broadcaster or ReloadBroadcaster()
    if watcher is None:
        watcher = FileWatcher(
            config.root,
            config.ignore_set,
            broadcaster,
            debounce_ms=settings.reload_debounce_ms,
        )

    # A wildcard bind is reached over loopback
    internal_host = "127.0.0.1" if config.host in ("", "0.0.0.0") else config.host
    forwarder = ProxyForwarder(
        f"http://{internal_host}:{internal_port}",
        rewrite=identity_encoding,
        debug=config.debug,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(watcher.run())
        logger.debug("Live reload started", internal_port=internal_port)

        yield

        watcher.stop()
        try:
            await asyncio.wait_for(task, timeout=settings.shutdown_timeout)
        except asyncio.TimeoutError:
            task.cancel()
        await forwarder.aclose()

    app = FastAPI(
        title="devserver live reload",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.broadcaster = broadcaster
    app.state.watcher = watcher
    app.state.internal_port = internal_port

    app.include_router(router)

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def proxy_to_content(request: Request):
        return await relay(request, forwarder)

    return app
