"""Routes API — Proxy MCP.

Traduit les appels HTTP en requêtes JSON-RPC 2.0 corrélées vers le serveur MCP
enfant et renvoie la réponse JSON-RPC telle quelle (result ou error).
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..dependencies import get_bridge
from ..errors import bridge_error_response
from ...core.exceptions import BridgeError, NotReadyError
from ...features.bridge import BridgeSession

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_json_object(request: Request) -> dict[str, object] | None:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        obj = json.loads(body)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=400)


@router.post("/mcp")
async def mcp_proxy(request: Request, bridge: BridgeSession = Depends(get_bridge)):
    """Forwarde `{method, params, id?}` au serveur MCP et renvoie sa réponse."""

    if not bridge.is_ready():
        return bridge_error_response(NotReadyError(state=bridge.status().get("state")))

    body = await _read_json_object(request)
    if body is None:
        return _bad_request("Invalid JSON body (expected object)")

    method = body.get("method")
    if not isinstance(method, str) or not method:
        return _bad_request("Missing method parameter")

    params = body.get("params")
    if params is None:
        params = {}

    try:
        return await bridge.invoke(method, params, request_id=body.get("id"))
    except BridgeError as e:
        logger.error("MCP proxy error: %s", e)
        return bridge_error_response(e)
    except ValueError as e:
        return _bad_request(str(e))


@router.get("/tools")
async def list_tools(bridge: BridgeSession = Depends(get_bridge)):
    """Liste les outils exposés par le serveur MCP (`tools/list`)."""

    try:
        return await bridge.list_tools()
    except BridgeError as e:
        logger.error("Tools list error: %s", e)
        return bridge_error_response(e)


@router.post("/tools/{tool_name}")
async def execute_tool(tool_name: str, request: Request, bridge: BridgeSession = Depends(get_bridge)):
    """Exécute un outil MCP (`tools/call`) avec `{arguments}`."""

    body = await _read_json_object(request)
    if body is None:
        return _bad_request("Invalid JSON body (expected object)")

    arguments = body.get("arguments")
    if arguments is not None and not isinstance(arguments, dict):
        return _bad_request("arguments must be an object")

    try:
        return await bridge.call_tool(tool_name, arguments)
    except BridgeError as e:
        logger.error("Tool execution error (%s): %s", tool_name, e)
        return bridge_error_response(e)
