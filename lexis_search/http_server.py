"""
HTTP front door for the records-search flow.

    GET  /                     health check
    POST /lexis_search/begin   run to the CAPTCHA, suspend
    POST /lexis_search/resume  {"sessionId": ...} finish a suspended session
    POST /lexis_search         single call with automated CAPTCHA solving
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from lexis_search.core.context import RuntimeContext
from lexis_search.core.flow import FlowController, FlowResult

logger = logging.getLogger("lexis.http")

CONTEXT_KEY = web.AppKey("context", RuntimeContext)
CONTROLLER_KEY = web.AppKey("controller", FlowController)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"[HTTP] Unhandled error on {request.path}: {e}")
        return web.json_response({"ok": False, "error": str(e) or type(e).__name__}, status=500)


async def _json_body(request: web.Request) -> Optional[dict[str, Any]]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError):
        return None
    return body if isinstance(body, dict) else None


def _bad_request(message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message, "errorKind": "InvalidCriteria"}, status=400)


def _respond(result: FlowResult) -> web.Response:
    return web.json_response(result.to_dict(), status=result.status)


async def health(_: web.Request) -> web.Response:
    return web.Response(text="OK")


async def begin(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")
    return _respond(await request.app[CONTROLLER_KEY].begin(body))


async def resume(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")
    session_id = body.get("sessionId") or body.get("session_id")
    if not isinstance(session_id, str) or not session_id.strip():
        return _bad_request("sessionId required")
    return _respond(await request.app[CONTROLLER_KEY].resume(session_id.strip()))


async def search(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")
    use_remote = body.get("useRemoteSolver")
    result = await request.app[CONTROLLER_KEY].run(
        body,
        use_remote_solver=use_remote if isinstance(use_remote, bool) else None,
    )
    return _respond(result)


def create_app(context: RuntimeContext, controller: FlowController | None = None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[CONTEXT_KEY] = context
    app[CONTROLLER_KEY] = controller or FlowController(context)

    async def close_context(app: web.Application) -> None:
        await app[CONTEXT_KEY].close()

    app.on_cleanup.append(close_context)
    app.router.add_get("/", health)
    app.router.add_post("/lexis_search/begin", begin)
    app.router.add_post("/lexis_search/resume", resume)
    app.router.add_post("/lexis_search", search)
    return app


def run() -> None:
    logging.basicConfig(
        level=os.getenv("LEXIS_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    port = int(os.getenv("PORT", "8080"))
    logger.info(f"[HTTP] Listening on :{port}")
    web.run_app(create_app(RuntimeContext.from_env()), port=port, print=None)


if __name__ == "__main__":
    run()
