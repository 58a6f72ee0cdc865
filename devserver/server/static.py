"""
Static file resolution against the served root directory.

A miss is not an error here: `resolve` returns None so the caller can hand
the request to the proxy stage.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Optional, Tuple, Union

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"


class StaticResolver:
    """Serves readable files below the root directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self._files = StaticFiles(directory=str(self.root))

    async def _lookup(self, path: str) -> Tuple[str, Optional[os.stat_result]]:
        try:
            return await run_in_threadpool(self._files.lookup_path, path)
        except OSError as e:
            logger.debug(f"Static lookup failed for {path}: {e}")
            return "", None

    async def resolve(self, request: Request) -> Optional[Response]:
        """Return a file response for the request, or None to pass it on."""
        if request.method not in ("GET", "HEAD"):
            return None

        path = self._files.get_path(request.scope)
        full_path, stat_result = await self._lookup(path)

        if stat_result is not None and stat.S_ISDIR(stat_result.st_mode):
            full_path, stat_result = await self._lookup(os.path.join(path, INDEX_FILE))
            if _is_readable_file(full_path, stat_result) and not request.url.path.endswith("/"):
                url = request.url.replace(path=request.url.path + "/")
                return RedirectResponse(url=str(url), status_code=301)

        if not _is_readable_file(full_path, stat_result):
            return None

        return self._files.file_response(full_path, stat_result, request.scope)


def _is_readable_file(full_path: str, stat_result: Optional[os.stat_result]) -> bool:
    return (
        stat_result is not None
        and stat.S_ISREG(stat_result.st_mode)
        and os.access(full_path, os.R_OK)
    )
