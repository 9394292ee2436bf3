"""
Persistent WebSocket signaling channel.

Once the socket opens the client sends exactly one ``connect`` frame carrying
the encoded offer and its credentials.  The server answers over the same
socket with ``answer``, trickles ``new_candidate`` frames and may end the
session with ``disconnect``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import Credentials
from ..errors import ProtocolWarning, TransportError
from .base import SignalingTransport
from .messages import (
    AnswerMessage,
    ConnectMessage,
    DisconnectMessage,
    NewCandidateMessage,
    connect_message,
    disconnect_message,
    dump_message,
    parse_message,
)

LOG = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_DELAY = 2.0

ConnectFactory = Callable[[str], Awaitable[Any]]


class WebSocketSignalingTransport(SignalingTransport):
    name = "websocket"

    def __init__(
        self,
        url: str,
        *,
        credentials: Optional[Credentials] = None,
        handshake_delay: float = DEFAULT_HANDSHAKE_DELAY,
        connect: Optional[ConnectFactory] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.credentials = credentials
        self.handshake_delay = float(handshake_delay)
        self._connect: ConnectFactory = connect or websockets.connect
        self._connection: Optional[Any] = None
        self._session_id: Optional[str] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    async def open(self, session_id: str) -> None:
        if self._connection is not None:
            if self._session_id == session_id:
                return
            raise TransportError(f"channel is bound to session {self._session_id}")
        try:
            connection = await self._connect(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(f"unable to open signaling channel {self.url}: {exc}") from exc

        LOG.info("Signaling channel open: %s", self.url)
        self._connection = connection
        self._session_id = session_id
        self._reader = asyncio.ensure_future(self._read_loop(session_id, connection))

    async def send_offer(self, session_id: str, token: str) -> Optional[str]:
        await self.open(session_id)
        user = self.credentials.user if self.credentials else ""
        password = self.credentials.password if self.credentials else ""
        await self._send(connect_message(token, user, password))
        LOG.info("Sent connect for session %s", session_id[:8])
        return None

    async def release(self, session_id: str) -> None:
        connection = self._connection
        if connection is None or self._session_id != session_id:
            return
        try:
            await self._send(disconnect_message())
        except TransportError as exc:
            LOG.debug("Disconnect frame not delivered: %s", exc)
        await self._close_channel()

    async def aclose(self) -> None:
        await self._close_channel()

    # ------------------------------------------------------------------ helpers

    async def _send(self, message: Any) -> None:
        connection = self._connection
        if connection is None:
            raise TransportError("signaling channel is not open")
        try:
            await connection.send(dump_message(message))
        except (ConnectionClosed, OSError) as exc:
            raise TransportError(f"failed to send '{message.type}' frame: {exc}") from exc

    async def _close_channel(self) -> None:
        connection, reader = self._connection, self._reader
        self._connection = None
        self._session_id = None
        self._reader = None
        if connection is not None:
            try:
                await connection.close()
            except (ConnectionClosed, OSError):
                LOG.debug("Signaling channel already closed.", exc_info=True)
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    async def _read_loop(self, session_id: str, connection: Any) -> None:
        reason = "signaling channel closed by server"
        try:
            async for raw in connection:
                try:
                    await self._route(session_id, raw)
                except Exception:  # pragma: no cover - listener failures must not kill the channel
                    LOG.exception("Failed to handle inbound frame for session %s", session_id[:8])
        except (ConnectionClosed, OSError) as exc:
            reason = f"signaling channel closed unexpectedly: {exc}"

        # release() and a server disconnect detach the connection first.
        lost = self._connection is connection
        if lost:
            self._connection = None
            self._session_id = None
            self._reader = None
        LOG.info("Signaling channel closed: %s", self.url)
        if lost:
            await self.listener.on_transport_error(session_id, TransportError(reason))

    async def _route(self, session_id: str, raw: Any) -> None:
        try:
            message = parse_message(raw)
        except ProtocolWarning as warning:
            await self.listener.on_protocol_warning(session_id, warning)
            return

        LOG.debug("Inbound '%s' frame for session %s", message.type, session_id[:8])
        if isinstance(message, AnswerMessage):
            await self.listener.on_answer(session_id, message.payload.answer)
        elif isinstance(message, NewCandidateMessage):
            await self.listener.on_remote_candidate(session_id, message.payload)
        elif isinstance(message, DisconnectMessage):
            await self._close_channel()
            await self.listener.on_remote_disconnect(session_id, message.payload.message)
        elif isinstance(message, ConnectMessage):
            await self.listener.on_protocol_warning(
                session_id, ProtocolWarning("unexpected 'connect' frame from server")
            )
        else:
            await self.listener.on_protocol_warning(
                session_id, ProtocolWarning(f"unsupported message type '{message.type}'")
            )


__all__ = ["DEFAULT_HANDSHAKE_DELAY", "WebSocketSignalingTransport"]
