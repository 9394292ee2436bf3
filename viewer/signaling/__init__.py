"""
Signaling transports.
"""

from __future__ import annotations

from typing import Optional

import httpx

from ..config import ViewerConfig
from .base import SignalingListener, SignalingTransport
from .channel import WebSocketSignalingTransport
from .http import HttpSignalingTransport


def create_transport(config: ViewerConfig, *, client: Optional[httpx.AsyncClient] = None) -> SignalingTransport:
    """
    Build the transport selected by ``config.signalling``.
    """

    if config.signalling == "http":
        return HttpSignalingTransport(config.stream_url, client=client, timeout=config.request_timeout)
    return WebSocketSignalingTransport(
        config.ws_url,
        credentials=config.credentials,
        handshake_delay=config.handshake_delay,
    )


__all__ = [
    "HttpSignalingTransport",
    "SignalingListener",
    "SignalingTransport",
    "WebSocketSignalingTransport",
    "create_transport",
]
