"""
Routes the injected browser client talks to.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse

PREFIX = "/__devserver__"
EVENTS_PATH = f"{PREFIX}/events"
CLIENT_PATH = f"{PREFIX}/client.js"

CLIENT_SCRIPT = """\
(function () {
  if (!window.EventSource) { return; }
  var source = new EventSource("%(events)s");
  source.addEventListener("reload", function () {
    window.location.reload();
  });
  source.addEventListener("css", function () {
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    Array.prototype.forEach.call(links, function (link) {
      var url = new URL(link.href, window.location.href);
      url.searchParams.set("_devserver", Date.now());
      link.href = url.toString();
    });
  });
})();
""" % {"events": EVENTS_PATH}

router = APIRouter(prefix=PREFIX)


@router.get("/client.js")
async def client_script():
    """Browser side of live reload."""
    return Response(
        CLIENT_SCRIPT,
        media_type="application/javascript",
        headers={"Cache-Control": "no-store"},
    )


@router.get("/events")
async def reload_events(request: Request):
    """Server-sent event stream of reload notifications."""
    broadcaster = request.app.state.broadcaster
    return StreamingResponse(
        broadcaster.stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
