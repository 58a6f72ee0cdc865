"""
File watching for live reload.

Watches the served directory for HTML, CSS and script changes and turns each
batch of changes into a reload event for the browsers.
"""

import asyncio
import logging
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Optional, Sequence, Set, Tuple, Union

from watchfiles import Change, DefaultFilter, awatch

from devserver.reload.broadcaster import CSS, RELOAD, ReloadBroadcaster

logger = logging.getLogger(__name__)

WATCHED_SUFFIXES = (".html", ".css", ".js")


class WatcherStatus(str, Enum):
    """Watcher status."""
    STOPPED = "stopped"
    WATCHING = "watching"


def is_ignored(path: Union[str, Path], root: Path, patterns: Sequence[str]) -> bool:
    """Match glob patterns against each path component and the root-relative path."""
    path = Path(path)
    try:
        relative = path.relative_to(root)
    except ValueError:
        relative = path

    parts = relative.parts
    posix = relative.as_posix()
    for pattern in patterns:
        if fnmatch(posix, pattern):
            return True
        if any(fnmatch(part, pattern) for part in parts):
            return True
    return False


def classify(changes: Iterable[Tuple[Change, str]]) -> str:
    """Stylesheet-only batches refresh styles in place, anything else reloads."""
    paths = [path for _, path in changes]
    if paths and all(path.endswith(".css") for path in paths):
        return CSS
    return RELOAD


class ReloadFilter(DefaultFilter):
    """watchfiles filter restricted to web assets outside the ignore set."""

    def __init__(self, root: Path, ignore: Sequence[str]):
        self.root = root
        self.ignore = tuple(ignore)
        super().__init__()

    def __call__(self, change: Change, path: str) -> bool:
        if not path.endswith(WATCHED_SUFFIXES):
            return False
        if is_ignored(path, self.root, self.ignore):
            return False
        return super().__call__(change, path)


class FileWatcher:
    """Publishes a reload event to the broadcaster for every change batch."""

    def __init__(
        self,
        root: Union[str, Path],
        ignore: Sequence[str],
        broadcaster: ReloadBroadcaster,
        debounce_ms: int = 100,
    ):
        self.root = Path(root).resolve()
        self.filter = ReloadFilter(self.root, ignore)
        self._broadcaster = broadcaster
        self._debounce_ms = debounce_ms
        self._status = WatcherStatus.STOPPED
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def status(self) -> WatcherStatus:
        return self._status

    def handle(self, changes: Set[Tuple[Change, str]]) -> str:
        event = classify(changes)
        clients = self._broadcaster.publish(event)
        logger.info(f"{len(changes)} file change(s), sent '{event}' to {clients} client(s)")
        return event

    async def run(self) -> None:
        """
        Watch until stopped. A watcher that cannot start or breaks down
        logs a warning and returns; serving continues without live reload.
        """
        self._stop_event = asyncio.Event()
        self._status = WatcherStatus.WATCHING
        logger.debug(f"Watching {self.root} (ignoring {', '.join(self.filter.ignore)})")

        try:
            async for changes in awatch(
                self.root,
                watch_filter=self.filter,
                debounce=self._debounce_ms,
                stop_event=self._stop_event,
            ):
                self.handle(changes)
        # watchfiles reports failures inside the watch loop as RuntimeError
        except (OSError, RuntimeError) as e:
            logger.warning(f"File watcher unavailable, continuing without live reload: {e}")
        finally:
            self._status = WatcherStatus.STOPPED

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
