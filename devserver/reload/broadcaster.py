"""
Fan-out of reload events to connected browsers over server-sent events.
"""

import asyncio
import logging
from typing import AsyncIterator, Set

logger = logging.getLogger(__name__)

RELOAD = "reload"
CSS = "css"

KEEPALIVE_SECONDS = 15.0


class ReloadBroadcaster:
    """
    Keeps one bounded queue per connected client.

    A client that stops reading loses its oldest pending events instead of
    blocking the others.
    """

    def __init__(self, max_pending: int = 8):
        self._max_pending = max_pending
        self._clients: Set[asyncio.Queue] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_pending)
        self._clients.add(queue)
        logger.debug(f"Reload client connected ({len(self._clients)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._clients.discard(queue)
        logger.debug(f"Reload client disconnected ({len(self._clients)} total)")

    def publish(self, event: str) -> int:
        """Queue an event for every client. Returns the number of clients reached."""
        for queue in list(self._clients):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
        return len(self._clients)

    async def stream(self, keepalive: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
        """SSE frames for one client, until the client goes away."""
        queue = self.subscribe()
        try:
            yield "retry: 1000\n\n"
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {event}\ndata: {event}\n\n"
        finally:
            self.unsubscribe(queue)
