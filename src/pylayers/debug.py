"""Read-only debug endpoints for a running engine.

Endpoints::

    GET /debug/snapshot              Current state
    GET /debug/history?last=50       Most recent history entries
    GET /debug/history/{cycle}       One history entry (404 if not retained)
    GET /debug/stats                 Engine and history statistics

Handlers only read: they use ``StateStore.dump`` and the history recorder,
never the live state tree.
"""

from __future__ import annotations

import functools
import json
import logging

from aiohttp import web

from pylayers.engine import Engine

_logger = logging.getLogger(__name__)

ENGINE_KEY: web.AppKey[Engine] = web.AppKey("engine", Engine)

_DEFAULT_LAST = 50

# State may hold scalars json cannot encode natively.
_dumps = functools.partial(json.dumps, default=repr)


def _engine(request: web.Request) -> Engine:
    return request.app[ENGINE_KEY]


async def _snapshot(request: web.Request) -> web.Response:
    engine = _engine(request)
    return web.json_response({"cycle_id": engine.cycle_id, "state": engine.store.dump()}, dumps=_dumps)


async def _history(request: web.Request) -> web.Response:
    raw_last = request.query.get("last", str(_DEFAULT_LAST))
    try:
        last = int(raw_last)
    except ValueError as exc:
        raise web.HTTPBadRequest(reason=f"last must be an integer, got {raw_last!r}") from exc
    entries = _engine(request).history.get_recent(last)
    payload = {"entries": [entry.model_dump(mode="json") for entry in entries]}
    return web.json_response(payload, dumps=_dumps)


async def _history_entry(request: web.Request) -> web.Response:
    raw_cycle = request.match_info["cycle"]
    try:
        cycle = int(raw_cycle)
    except ValueError as exc:
        raise web.HTTPBadRequest(reason=f"cycle must be an integer, got {raw_cycle!r}") from exc
    entry = _engine(request).history.get_entry(cycle)
    if entry is None:
        raise web.HTTPNotFound(reason=f"cycle {cycle} is not in history")
    return web.json_response(entry.model_dump(mode="json"), dumps=_dumps)


async def _stats(request: web.Request) -> web.Response:
    engine = _engine(request)
    return web.json_response(
        {
            "cycle_id": engine.cycle_id,
            "running": engine.running,
            "mode": engine.mode.value,
            "layers": [layer.name for layer in engine.layers],
            "history": engine.history.get_stats().model_dump(mode="json"),
        },
        dumps=_dumps,
    )


def create_debug_app(engine: Engine) -> web.Application:
    """Build an aiohttp application exposing *engine* for inspection."""
    app = web.Application()
    app[ENGINE_KEY] = engine
    app.router.add_get("/debug/snapshot", _snapshot)
    app.router.add_get("/debug/history", _history)
    app.router.add_get("/debug/history/{cycle}", _history_entry)
    app.router.add_get("/debug/stats", _stats)
    _logger.debug("Debug app created for %r", engine)
    return app
