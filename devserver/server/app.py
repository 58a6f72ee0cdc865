"""
Content application: static files first, then the proxy target, then 404.
"""

from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from devserver.config import ServerConfig
from devserver.server.proxy import ProxyForwarder, apply_proxy_headers, with_date
from devserver.server.static import StaticResolver

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_content_app(
    config: ServerConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the static + proxy handler chain for one server run."""
    resolver = StaticResolver(config.root)

    forwarder = None
    if config.proxy_target:
        forwarder = ProxyForwarder(
            config.proxy_target,
            rewrite=partial(apply_proxy_headers, config=config),
            debug=config.debug,
            transport=transport,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if forwarder is not None:
            await forwarder.aclose()

    app = FastAPI(
        title="devserver content",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def serve(request: Request):
        response = await resolver.resolve(request)
        if response is not None:
            return with_date(response)

        if forwarder is not None:
            return await forwarder.forward(request)

        return with_date(PlainTextResponse("Not Found", status_code=404))

    return app
