"""Live reload module."""

from devserver.reload.broadcaster import ReloadBroadcaster
from devserver.reload.sidecar import create_sidecar_app, inject_snippet
from devserver.reload.watcher import FileWatcher, WatcherStatus

__all__ = [
    "ReloadBroadcaster",
    "create_sidecar_app",
    "inject_snippet",
    "FileWatcher",
    "WatcherStatus",
]
