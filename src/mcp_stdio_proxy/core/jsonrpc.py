"""mcp_stdio_proxy.core.jsonrpc

Helpers JSON-RPC 2.0 sans I/O.

Construit les enveloppes (requête, notification, résultat, erreur) et classe les
messages reçus du processus enfant.
"""

from __future__ import annotations

from .constants import JSONRPC_VERSION


def safe_jsonrpc_id(req_id: object | None) -> str | int | float | None:
    # JSON-RPC 2.0: id is string | number | null.
    if req_id is None or isinstance(req_id, bool):
        return None
    if isinstance(req_id, float) and req_id.is_integer():
        # Un pair JSON (Node) renvoie 10.0 sous la forme 10.
        return int(req_id)
    if isinstance(req_id, (str, int, float)):
        return req_id
    return None


def id_key(req_id: object | None) -> str | None:
    """Forme texte d'un id, utilisée comme clé de corrélation (égalité exacte)."""

    safe = safe_jsonrpc_id(req_id)
    if safe is None:
        return None
    if isinstance(safe, str):
        return safe
    return str(safe)


def build_request(method: str, params: object | None, req_id: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": req_id,
        "method": method,
    }
    if params is not None:
        payload["params"] = params
    return payload


def build_notification(method: str, params: object | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def build_result(req_id: object | None, result: object) -> dict[str, object]:
    return {"jsonrpc": JSONRPC_VERSION, "id": req_id, "result": result}


def build_error(
    req_id: object | None,
    *,
    code: int,
    message: str,
    data: object | None = None,
) -> dict[str, object]:
    """Construit une réponse d'erreur JSON-RPC 2.0."""

    error: dict[str, object] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "error": error, "id": req_id}


def is_response(obj: object) -> bool:
    return isinstance(obj, dict) and "id" in obj and ("result" in obj or "error" in obj) and "method" not in obj


def is_request(obj: object) -> bool:
    """Requête initiée par le pair (méthode + id non nul)."""

    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and obj.get("id") is not None


def is_notification(obj: object) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and obj.get("id") is None
