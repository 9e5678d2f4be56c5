"""
Traduction des erreurs du bridge en réponses HTTP structurées.
"""
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    BridgeError,
    DuplicateIdError,
    NotReadyError,
    ProcessClosedError,
    RequestTimeoutError,
    WriteError,
)

# (statut HTTP, libellé) par type d'erreur; le premier match gagne.
_ERROR_MAPPING = [
    (NotReadyError, 503, "MCP server not ready"),
    (DuplicateIdError, 409, "Duplicate request id"),
    (RequestTimeoutError, 504, "MCP response timeout"),
    (ProcessClosedError, 502, "MCP process closed"),
    (WriteError, 502, "MCP write failed"),
]


def bridge_error_payload(exc: BridgeError) -> tuple[int, dict]:
    """Retourne (statut HTTP, enveloppe d'erreur) pour une erreur du bridge."""
    status, label = 500, "Internal server error"
    for error_type, mapped_status, mapped_label in _ERROR_MAPPING:
        if isinstance(exc, error_type):
            status, label = mapped_status, mapped_label
            break

    message = exc.message
    if isinstance(exc, NotReadyError):
        message = f"{exc.message}. Please wait for the MCP server to initialize"

    return status, {
        "error": label,
        "message": message,
        "code": exc.code,
        "retryable": exc.retryable,
        "details": exc.details,
    }


def bridge_error_response(exc: BridgeError) -> JSONResponse:
    status, payload = bridge_error_payload(exc)
    return JSONResponse(content=payload, status_code=status)
