"""Local HTTP interface of the bridge.

Every path is served by a single catch-all route. The root path and
``/serverVersion`` are answered locally for any method. Every other path is
forwarded to the extension when the request is a POST and rejected with 400
otherwise.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from yomitan_bridge import __version__
from yomitan_bridge.bridge import Bridge, BridgeResponse, parse_query_string

logger = logging.getLogger(__name__)

# Version of the HTTP API exposed to clients.
API_VERSION = 1

RESERVED_ACTIONS = {"", "serverVersion"}

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

COMMON_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-store, no-cache, must-revalidate",
}


def make_response(result: BridgeResponse) -> Response:
    """Render a BridgeResponse with the headers every answer carries."""
    headers = dict(COMMON_HEADERS)
    if result.has_body:
        content = json.dumps(result.data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers["Content-Type"] = "application/json"
    else:
        content = b""
        headers["Content-Type"] = "text/plain"
    return Response(content=content, status_code=result.status_code, headers=headers)


def version_response() -> Response:
    """Answer for the reserved actions."""
    return make_response(BridgeResponse.json(200, {"version": API_VERSION}))


def request_action(request: Request) -> str:
    """The action named by the request: its raw path without leading slashes.

    The path is taken before percent-decoding, so ``%2F`` in an action is
    forwarded as is and never confused with ``/``.
    """
    raw_path: Optional[bytes] = request.scope.get("raw_path")
    if raw_path is None:
        raw_path = request.scope["path"].encode("utf-8")
    # Some clients include the query string in raw_path.
    raw_path = raw_path.partition(b"?")[0]
    return raw_path.lstrip(b"/").decode("utf-8", errors="replace")


async def dispatch(request: Request) -> Response:
    """Answer reserved actions locally, reject non-POSTs, forward the rest."""
    action = request_action(request)
    if action in RESERVED_ACTIONS:
        return version_response()

    if request.method != "POST":
        logger.info(f"Rejected {request.method} /{action}")
        return make_response(BridgeResponse.empty(400))

    query_string: bytes = request.scope.get("query_string", b"")
    # surrogateescape keeps raw non-ASCII bytes intact for percent-decoding.
    params = parse_query_string(query_string.decode("utf-8", errors="surrogateescape"))
    body = await request.body()
    result = await request.app.state.bridge.handle(action, params, body)
    return make_response(result)


def create_app(bridge: Bridge) -> FastAPI:
    """Build the HTTP application around a bridge."""
    app = FastAPI(
        title="Yomitan API Bridge",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.bridge = bridge

    @app.api_route("/{action:path}", methods=ALL_METHODS)
    async def forward(request: Request) -> Response:
        return await dispatch(request)

    @app.exception_handler(405)
    async def unlisted_method(request: Request, exc: StarletteHTTPException) -> Response:
        # Methods outside ALL_METHODS (TRACE, PROPFIND, ...) fail routing.
        return await dispatch(request)

    return app
