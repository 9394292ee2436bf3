"""
Stream viewer package.

The viewer negotiates a WebRTC session with a remote streaming server over
one of two signaling transports (a single HTTP exchange or a persistent
WebSocket channel) and hands the negotiated media to a local sink.
"""

from __future__ import annotations

from .config import ViewerConfig, load_config
from .errors import (
    CandidateApplyFailure,
    DecodeError,
    NegotiationError,
    ProtocolWarning,
    SessionActiveError,
    SetupError,
    SignalingError,
    TransportError,
)
from .session import Session, SessionObserver, SessionOrchestrator, SessionState

__all__ = [
    "CandidateApplyFailure",
    "DecodeError",
    "NegotiationError",
    "ProtocolWarning",
    "Session",
    "SessionActiveError",
    "SessionObserver",
    "SessionOrchestrator",
    "SessionState",
    "SetupError",
    "SignalingError",
    "TransportError",
    "ViewerConfig",
    "load_config",
]
