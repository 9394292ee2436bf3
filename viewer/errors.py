"""
Error taxonomy shared by the signaling layers.
"""

from __future__ import annotations

from typing import Optional


class SignalingError(RuntimeError):
    """Base class for signaling related errors."""


class SetupError(SignalingError):
    """Raised when the peer session cannot be constructed."""


class SessionActiveError(SetupError):
    """Raised when ``start()`` is called while a session is still live."""


class TransportError(SignalingError):
    """Raised when a signaling exchange fails at the transport level."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NegotiationError(SignalingError):
    """Raised when a description is malformed or applied out of turn."""


class DecodeError(NegotiationError):
    """Raised when a wire token is not valid encoded structured text."""


class ProtocolWarning(SignalingError):
    """Non-fatal: an inbound channel message could not be routed."""


class CandidateApplyFailure(SignalingError):
    """Best-effort trickled candidate could not be applied."""


__all__ = [
    "CandidateApplyFailure",
    "DecodeError",
    "NegotiationError",
    "ProtocolWarning",
    "SessionActiveError",
    "SetupError",
    "SignalingError",
    "TransportError",
]
