"""
Bridge stdio - transport JSON-RPC vers un serveur MCP enfant.
"""

from .framing import LineFramer, FramedLine, LineKind, classify_line
from .process import ProcessSupervisor, find_missing_env
from .readiness import (
    ReadinessDetector,
    ReadinessState,
    ReadinessMatcher,
    TextMarkerMatcher,
    NotificationMatcher,
    ResponseIdMatcher,
)
from .correlator import RequestCorrelator, PendingRequest, generate_request_id
from .monitor import BridgeMonitor
from .session import BridgeSession, build_default_matchers

__all__ = [
    # Framing
    "LineFramer",
    "FramedLine",
    "LineKind",
    "classify_line",
    # Process
    "ProcessSupervisor",
    "find_missing_env",
    # Readiness
    "ReadinessDetector",
    "ReadinessState",
    "ReadinessMatcher",
    "TextMarkerMatcher",
    "NotificationMatcher",
    "ResponseIdMatcher",
    # Correlator
    "RequestCorrelator",
    "PendingRequest",
    "generate_request_id",
    # Monitor
    "BridgeMonitor",
    # Session
    "BridgeSession",
    "build_default_matchers",
]
