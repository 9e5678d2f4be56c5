"""
Exceptions personnalisées pour MCP Stdio Proxy.
"""


class MCPProxyError(Exception):
    """Exception de base pour toutes les erreurs du proxy."""

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(MCPProxyError):
    """Erreur de configuration (fichier manquant, valeur invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {}
        )


class BridgeError(MCPProxyError):
    """Erreur du bridge stdio (processus enfant ou corrélation JSON-RPC)."""

    retryable: bool = False


class SpawnError(BridgeError):
    """Lancement impossible: configuration manquante ou échec OS."""

    def __init__(self, message: str, missing: list = None, details: dict = None):
        merged = dict(details or {})
        if missing:
            merged["missing"] = list(missing)
        super().__init__(message=message, code="spawn_error", details=merged)
        self.missing = list(missing or [])


class InitTimeoutError(BridgeError):
    """Le processus enfant n'a pas signalé sa disponibilité à temps."""

    def __init__(self, message: str, timeout_s: float = None):
        super().__init__(
            message=message,
            code="init_timeout",
            details={"timeout_s": timeout_s} if timeout_s is not None else {}
        )
        self.timeout_s = timeout_s


class NotReadyError(BridgeError):
    """Appel avant la disponibilité du serveur MCP ou après son arrêt."""

    retryable = True

    def __init__(self, message: str = "Serveur MCP non prêt", state: str = None):
        super().__init__(
            message=message,
            code="not_ready",
            details={"state": state} if state else {}
        )


class WriteError(BridgeError):
    """Écriture impossible sur le stdin du processus enfant."""

    def __init__(self, message: str, request_id: object = None):
        super().__init__(
            message=message,
            code="write_error",
            details={"id": request_id} if request_id is not None else {}
        )
        self.request_id = request_id


class RequestTimeoutError(BridgeError):
    """Aucune réponse reçue pour une requête dans le délai imparti."""

    retryable = True

    def __init__(self, message: str, request_id: object = None, method: str = None, timeout_s: float = None):
        super().__init__(
            message=message,
            code="timeout",
            details={
                "id": request_id,
                "method": method,
                "timeout_s": timeout_s,
            }
        )
        self.request_id = request_id
        self.method = method
        self.timeout_s = timeout_s


class ProcessClosedError(BridgeError):
    """Le processus enfant s'est terminé avec des requêtes en vol."""

    def __init__(self, message: str, returncode: int = None, request_id: object = None):
        details = {}
        if returncode is not None:
            details["returncode"] = returncode
        if request_id is not None:
            details["id"] = request_id
        super().__init__(message=message, code="process_closed", details=details)
        self.returncode = returncode
        self.request_id = request_id


class DuplicateIdError(BridgeError):
    """Identifiant de requête déjà en vol (fourni par l'appelant)."""

    def __init__(self, message: str, request_id: object = None):
        super().__init__(
            message=message,
            code="duplicate_id",
            details={"id": request_id} if request_id is not None else {}
        )
        self.request_id = request_id
