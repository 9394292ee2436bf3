"""
Peer engine adapter.

:class:`PeerEngine` is the contract the session orchestrator consumes;
:class:`AiortcPeerEngine` realises it on top of ``aiortc``.  The adapter owns
no session state of its own beyond the per-handle guards: callers pass the
:class:`SessionHandle` they got from :meth:`PeerEngine.create_session` into
every operation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.sdp import SessionDescription, candidate_from_sdp, candidate_to_sdp

from ..errors import CandidateApplyFailure, NegotiationError, SetupError

LOG = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"
TRANSCEIVER_KINDS = ("video", "audio")


class PeerEngineListener:
    """
    Receiver for engine events.  Every method defaults to a no-op.

    Events are delivered from the engine's own callbacks and may interleave
    with operations the caller is awaiting.
    """

    def on_local_candidate(self, handle: "SessionHandle", candidate: Optional[RTCIceCandidate]) -> None:
        """``candidate`` is ``None`` once gathering has completed."""

    def on_connection_state(self, handle: "SessionHandle", state: str) -> None:
        pass

    def on_remote_track(self, handle: "SessionHandle", track: MediaStreamTrack) -> None:
        pass


@dataclass
class SessionHandle:
    """Engine-side state of one negotiation."""

    connection: Any
    listener: PeerEngineListener
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    offer_created: bool = False
    answer_applied: bool = False
    closed: bool = False


def parse_candidate(payload: Mapping[str, Any]) -> Optional[RTCIceCandidate]:
    """
    Build an ``RTCIceCandidate`` from an ``RTCIceCandidateInit``-like mapping.

    Both the bare form and the wrapped ``{"candidate": {...}}`` form are
    accepted.  An empty candidate string signals end-of-candidates and yields
    ``None``.
    """

    if not isinstance(payload, Mapping):
        raise CandidateApplyFailure(f"candidate payload must be an object, got {type(payload).__name__}")
    inner = payload.get("candidate")
    if isinstance(inner, Mapping):
        payload = inner
        inner = payload.get("candidate")
    if not isinstance(inner, str):
        raise CandidateApplyFailure("candidate payload has no 'candidate' string")
    text = inner.strip()
    if not text:
        return None
    if text.startswith(CANDIDATE_PREFIX):
        text = text[len(CANDIDATE_PREFIX):]
    try:
        candidate = candidate_from_sdp(text)
    except (AssertionError, IndexError, TypeError, ValueError) as exc:
        raise CandidateApplyFailure(f"unparseable candidate {inner[:60]!r}: {exc}") from exc
    candidate.sdpMid = payload.get("sdpMid")
    mline_index = payload.get("sdpMLineIndex")
    candidate.sdpMLineIndex = int(mline_index) if mline_index is not None else None
    return candidate


def candidate_to_dict(candidate: RTCIceCandidate) -> Dict[str, Any]:
    return {
        "candidate": CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def build_configuration(ice_servers: Sequence[Mapping[str, Any]]) -> RTCConfiguration:
    servers: List[RTCIceServer] = []
    for entry in ice_servers:
        if isinstance(entry, RTCIceServer):
            servers.append(entry)
            continue
        try:
            servers.append(
                RTCIceServer(
                    urls=entry["urls"],
                    username=entry.get("username"),
                    credential=entry.get("credential"),
                )
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise SetupError(f"invalid ICE server descriptor {entry!r}") from exc
    return RTCConfiguration(iceServers=servers)


class PeerEngine:
    """
    Base class for peer engine adapters.
    """

    def create_session(
        self,
        ice_servers: Sequence[Mapping[str, Any]],
        listener: PeerEngineListener,
    ) -> SessionHandle:
        raise NotImplementedError

    async def create_local_offer(self, handle: SessionHandle) -> RTCSessionDescription:
        raise NotImplementedError

    async def set_remote_answer(self, handle: SessionHandle, answer: RTCSessionDescription) -> None:
        raise NotImplementedError

    async def add_remote_candidate(self, handle: SessionHandle, payload: Mapping[str, Any]) -> None:
        raise NotImplementedError

    async def close(self, handle: SessionHandle) -> None:
        raise NotImplementedError


class AiortcPeerEngine(PeerEngine):
    """
    Peer engine backed by ``aiortc.RTCPeerConnection``.

    aiortc gathers every local candidate while the local description is
    committed, so discovery events are replayed from the finished SDP followed
    by the end-of-gathering sentinel.
    """

    def create_session(
        self,
        ice_servers: Sequence[Mapping[str, Any]],
        listener: PeerEngineListener,
    ) -> SessionHandle:
        configuration = build_configuration(ice_servers)
        try:
            connection = RTCPeerConnection(configuration=configuration)
        except (TypeError, ValueError) as exc:
            raise SetupError(f"unable to create peer connection: {exc}") from exc

        handle = SessionHandle(connection=connection, listener=listener)
        logger = LOG.getChild(handle.id[:8])

        @connection.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.info("Remote %s track %s", track.kind, track.id)
            listener.on_remote_track(handle, track)

        @connection.on("connectionstatechange")
        def on_connection_state() -> None:
            state = connection.connectionState
            logger.info("Connection state: %s", state)
            listener.on_connection_state(handle, state)

        @connection.on("iceconnectionstatechange")
        def on_ice_state() -> None:
            logger.debug("ICE connection state: %s", connection.iceConnectionState)

        # Offer to exchange one video and one audio stream.
        for kind in TRANSCEIVER_KINDS:
            connection.addTransceiver(kind, direction="sendrecv")

        logger.debug("Peer connection created with %d ICE servers", len(configuration.iceServers or []))
        return handle

    async def create_local_offer(self, handle: SessionHandle) -> RTCSessionDescription:
        if handle.closed:
            raise NegotiationError("session is closed")
        if handle.offer_created:
            raise NegotiationError("local offer already created for this session")
        handle.offer_created = True

        connection: RTCPeerConnection = handle.connection
        try:
            offer = await connection.createOffer()
            await connection.setLocalDescription(offer)
        except (InvalidStateError, ValueError) as exc:
            raise NegotiationError(f"failed to create local offer: {exc}") from exc

        description = connection.localDescription
        for candidate in self._gathered_candidates(description.sdp):
            handle.listener.on_local_candidate(handle, candidate)
        handle.listener.on_local_candidate(handle, None)
        return description

    async def set_remote_answer(self, handle: SessionHandle, answer: RTCSessionDescription) -> None:
        if handle.closed:
            raise NegotiationError("session is closed")
        if handle.answer_applied:
            raise NegotiationError("remote answer already applied")
        if not handle.offer_created:
            raise NegotiationError("remote answer received before the local offer")
        if answer.type != "answer":
            raise NegotiationError(f"expected an answer description, got {answer.type!r}")
        try:
            await handle.connection.setRemoteDescription(answer)
        except (InvalidAccessError, InvalidStateError, ValueError) as exc:
            raise NegotiationError(f"remote answer rejected: {exc}") from exc
        handle.answer_applied = True

    async def add_remote_candidate(self, handle: SessionHandle, payload: Mapping[str, Any]) -> None:
        if handle.closed:
            raise CandidateApplyFailure("session is closed")
        candidate = parse_candidate(payload)
        if candidate is None:
            LOG.debug("End of remote candidates for %s", handle.id[:8])
            return
        try:
            await handle.connection.addIceCandidate(candidate)
        except Exception as exc:
            raise CandidateApplyFailure(f"addIceCandidate failed: {exc}") from exc

    async def close(self, handle: SessionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        await handle.connection.close()

    @staticmethod
    def _gathered_candidates(sdp: str) -> List[RTCIceCandidate]:
        candidates: List[RTCIceCandidate] = []
        for index, media in enumerate(SessionDescription.parse(sdp).media):
            for candidate in media.ice_candidates:
                candidate.sdpMid = media.rtp.muxId
                candidate.sdpMLineIndex = index
                candidates.append(candidate)
        return candidates


__all__ = [
    "AiortcPeerEngine",
    "PeerEngine",
    "PeerEngineListener",
    "SessionHandle",
    "build_configuration",
    "candidate_to_dict",
    "parse_candidate",
]
