"""
Startup orchestration.

Negotiates ports, decides on TLS, binds the listeners and runs the content
server and, when live reload is on, the reload sidecar in front of it.
"""

import asyncio
import logging
import socket
import ssl
from typing import Callable, List, Optional

import structlog
import uvicorn
from fastapi import FastAPI

from devserver.config import BoundPorts, ServerConfig, Settings, get_settings
from devserver.reload import create_sidecar_app
from devserver.server import create_content_app, find_available, format_urls, interface_addresses, provision

logger = structlog.get_logger(__name__)

PortFinder = Callable[..., int]


class StartupError(RuntimeError):
    """A server stopped before it finished starting."""


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening socket the way uvicorn does for a single process."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class DevServer:
    """
    Owns the listener sockets and uvicorn servers for one process.

    Start order: public port, internal port (live reload only), TLS
    (live reload off only), content listener, sidecar listener, address
    report. Anything failing before the listeners are up aborts `start`.
    """

    def __init__(
        self,
        config: ServerConfig,
        settings: Optional[Settings] = None,
        port_finder: PortFinder = find_available,
    ):
        self.config = config
        self._settings = settings or get_settings()
        self._find_port = port_finder
        self.ports: Optional[BoundPorts] = None
        self.ssl_context: Optional[ssl.SSLContext] = None
        self._sockets: List[socket.socket] = []
        self._servers: List[uvicorn.Server] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_context is not None else "http"

    def negotiate_ports(self) -> BoundPorts:
        """Probe the public port and, with live reload, an internal one above it."""
        attempts = self._settings.port_attempts
        public_port = self._find_port(self.config.requested_port, attempts, self.config.host)

        internal_port = None
        if self.config.live_reload:
            internal_port = self._find_port(public_port + 1, attempts, self.config.host)

        return BoundPorts(public_port=public_port, internal_port=internal_port)

    def build_ssl_context(self) -> Optional[ssl.SSLContext]:
        """TLS is only terminated when the content server faces the user directly."""
        if not self.config.tls_enabled:
            return None

        if self.config.live_reload:
            # TODO: terminate TLS on the sidecar listener once HTTPS with live reload is wanted
            logger.warning("HTTPS is not applied while live reload is enabled; use --noHot for HTTPS")
            return None

        return provision(self.config).ssl_context()

    def _server(self, app: FastAPI, ssl_context: Optional[ssl.SSLContext] = None) -> uvicorn.Server:
        config = uvicorn.Config(
            app,
            log_config=None,
            log_level=logging.DEBUG if self.config.debug else logging.WARNING,
            access_log=self.config.debug,
            lifespan="on",
            timeout_graceful_shutdown=self._settings.shutdown_timeout,
            # Relayed responses carry the upstream's own Date and Server
            server_header=False,
            date_header=False,
        )
        config.load()
        config.ssl = ssl_context
        return uvicorn.Server(config)

    def _launch(self, server: uvicorn.Server, port: int) -> None:
        sock = bind_socket(self.config.host, port)
        self._sockets.append(sock)
        self._servers.append(server)
        self._tasks.append(asyncio.create_task(server.serve(sockets=[sock])))

    async def _wait_started(self) -> None:
        while not all(server.started for server in self._servers):
            for task in self._tasks:
                if task.done():
                    task.result()
                    raise StartupError("Server exited during startup")
            await asyncio.sleep(0.05)

    async def start(self) -> BoundPorts:
        """Bring every listener up and report where the server is reachable."""
        self.ports = self.negotiate_ports()
        self.ssl_context = self.build_ssl_context()

        content_app = create_content_app(self.config)
        try:
            self._launch(self._server(content_app, self.ssl_context), self.ports.content_port)

            if self.config.live_reload:
                sidecar_app = create_sidecar_app(self.ports.internal_port, self.config)
                self._launch(self._server(sidecar_app), self.ports.public_port)

            await self._wait_started()
        except BaseException:
            await self.stop()
            raise

        logger.info(
            "Server started",
            public_port=self.ports.public_port,
            internal_port=self.ports.internal_port,
            scheme=self.scheme,
            root=str(self.config.root),
        )
        self.report()
        return self.ports

    def report(self) -> None:
        print("Server is running on:")
        for url in format_urls(self.scheme, self.ports.public_port, interface_addresses()):
            print(f"  {url}")

    async def wait(self) -> None:
        """Run until any server exits, then bring the others down."""
        if not self._tasks:
            return
        await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        await self.stop()

    async def stop(self) -> None:
        for server in self._servers:
            server.should_exit = True
        await asyncio.gather(*self._tasks, return_exceptions=True)
        for sock in self._sockets:
            sock.close()

    async def serve(self) -> None:
        await self.start()
        await self.wait()
