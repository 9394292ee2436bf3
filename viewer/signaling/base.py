"""
Signaling transport contract.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..errors import ProtocolWarning, SignalingError

LOG = logging.getLogger(__name__)


class SignalingListener:
    """
    Receiver for inbound signaling traffic.

    Every callback carries the id of the session the traffic belongs to, so
    the receiver can discard anything addressed to a session it has already
    closed.
    """

    async def on_answer(self, session_id: str, token: str) -> None:
        pass

    async def on_remote_candidate(self, session_id: str, payload: Mapping[str, Any]) -> None:
        pass

    async def on_remote_disconnect(self, session_id: str, reason: Optional[str]) -> None:
        pass

    async def on_protocol_warning(self, session_id: str, warning: ProtocolWarning) -> None:
        pass

    async def on_transport_error(self, session_id: str, error: SignalingError) -> None:
        pass


class SignalingTransport:
    """
    Base class for signaling transports.

    ``handshake_delay`` describes when the offer may be sent: ``None`` means
    the transport cannot trickle and the offer must wait for the end of
    candidate gathering; a number is the debounce applied to local candidate
    discovery before the handshake is attempted.
    """

    name = "transport"
    handshake_delay: Optional[float] = None

    def __init__(self) -> None:
        self._listener: SignalingListener = SignalingListener()

    @property
    def listener(self) -> SignalingListener:
        return self._listener

    def bind(self, listener: SignalingListener) -> None:
        self._listener = listener

    @property
    def trickles(self) -> bool:
        return self.handshake_delay is not None

    async def send_offer(self, session_id: str, token: str) -> Optional[str]:
        """
        Hand the encoded offer to the remote side.

        Returns the encoded answer when the transport gets it back
        synchronously, ``None`` when it will arrive through the listener.
        """

        raise NotImplementedError

    async def release(self, session_id: str) -> None:
        """
        Ask the remote side to tear down ``session_id``.  Must be idempotent.
        """

        raise NotImplementedError

    async def aclose(self) -> None:
        """
        Release backing resources.  Subclasses should override when required.
        """


__all__ = ["SignalingListener", "SignalingTransport"]
