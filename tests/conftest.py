"""Shared fakes for the viewer tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pytest
from aiortc import RTCIceCandidate, RTCSessionDescription

from viewer.errors import CandidateApplyFailure, NegotiationError, SetupError
from viewer.rtc.media import PlaybackSink, RemoteStream
from viewer.rtc.peer import PeerEngine, PeerEngineListener, SessionHandle, parse_candidate
from viewer.session import Session, SessionObserver, SessionState

OFFER_SDP = (
    "v=0\r\n"
    "o=- 3921830001 3921830001 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "a=group:BUNDLE 0 1\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:0\r\n"
    "a=sendrecv\r\n"
    "a=rtpmap:96 VP8/90000\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:1\r\n"
    "a=sendrecv\r\n"
    "a=rtpmap:111 opus/48000/2\r\n"
)
ANSWER_SDP = OFFER_SDP.replace("3921830001", "1710000000")

REMOTE_CANDIDATE = {
    "candidate": "candidate:1467250027 1 udp 2122260223 192.168.1.20 46243 typ host",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


def make_offer() -> RTCSessionDescription:
    return RTCSessionDescription(sdp=OFFER_SDP, type="offer")


def make_answer() -> RTCSessionDescription:
    return RTCSessionDescription(sdp=ANSWER_SDP, type="answer")


def make_local_candidate(index: int) -> RTCIceCandidate:
    return RTCIceCandidate(
        component=1,
        foundation=str(index + 1),
        ip=f"10.0.0.{index + 1}",
        port=50000 + index,
        priority=2122260223 - index,
        protocol="udp",
        type="host",
        sdpMid="0",
        sdpMLineIndex=0,
    )


class FakeTrack:
    def __init__(self, kind: str, track_id: str) -> None:
        self.kind = kind
        self.id = track_id


class FakePeerEngine(PeerEngine):
    """
    Scripted peer engine: emits ``candidates`` local candidates while the
    offer is created and two remote tracks when the answer is applied.
    """

    def __init__(
        self,
        *,
        candidates: int = 2,
        complete_gathering: bool = True,
        fail_create: bool = False,
        offer_error: Optional[Exception] = None,
        reject_candidates_before_answer: bool = False,
    ) -> None:
        self.candidates = candidates
        self.complete_gathering = complete_gathering
        self.fail_create = fail_create
        self.offer_error = offer_error
        self.reject_candidates_before_answer = reject_candidates_before_answer
        self.handles: List[SessionHandle] = []
        self.ice_servers: List[Sequence[Mapping[str, Any]]] = []
        self.answers: List[RTCSessionDescription] = []
        self.applied_candidates: List[Dict[str, Any]] = []
        self.closed: List[str] = []

    def create_session(
        self,
        ice_servers: Sequence[Mapping[str, Any]],
        listener: PeerEngineListener,
    ) -> SessionHandle:
        if self.fail_create:
            raise SetupError("engine unavailable")
        self.ice_servers.append(ice_servers)
        handle = SessionHandle(connection=object(), listener=listener)
        self.handles.append(handle)
        return handle

    async def create_local_offer(self, handle: SessionHandle) -> RTCSessionDescription:
        if handle.offer_created:
            raise NegotiationError("local offer already created for this session")
        handle.offer_created = True
        if self.offer_error is not None:
            error, self.offer_error = self.offer_error, None
            raise error
        for index in range(self.candidates):
            handle.listener.on_local_candidate(handle, make_local_candidate(index))
        if self.complete_gathering:
            handle.listener.on_local_candidate(handle, None)
        return make_offer()

    async def set_remote_answer(self, handle: SessionHandle, answer: RTCSessionDescription) -> None:
        if handle.answer_applied:
            raise NegotiationError("remote answer already applied")
        await asyncio.sleep(0)
        handle.answer_applied = True
        self.answers.append(answer)
        handle.listener.on_remote_track(handle, FakeTrack("video", f"{handle.id}-video"))
        handle.listener.on_remote_track(handle, FakeTrack("audio", f"{handle.id}-audio"))

    async def add_remote_candidate(self, handle: SessionHandle, payload: Mapping[str, Any]) -> None:
        candidate = parse_candidate(payload)
        if self.reject_candidates_before_answer and not handle.answer_applied:
            raise CandidateApplyFailure("no remote description")
        if candidate is not None:
            self.applied_candidates.append(dict(payload))

    async def close(self, handle: SessionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        self.closed.append(handle.id)


class RecordingSink(PlaybackSink):
    def __init__(self) -> None:
        super().__init__()
        self.attach_calls = 0
        self.closed = False

    async def attach(self, stream: RemoteStream) -> None:
        self.attach_calls += 1
        self._stream = stream

    async def close(self) -> None:
        self.closed = True


class RecordingObserver(SessionObserver):
    def __init__(self) -> None:
        self.transitions: List[tuple] = []
        self.ready: List[str] = []
        self.errors: List[BaseException] = []
        self.warnings: List[BaseException] = []

    def on_state_changed(self, session: Session, previous: SessionState, current: SessionState) -> None:
        self.transitions.append((previous, current))

    def on_ready(self, session: Session) -> None:
        self.ready.append(session.id)

    def on_error(self, session: Optional[Session], error: BaseException) -> None:
        self.errors.append(error)

    def on_warning(self, session: Optional[Session], warning: BaseException) -> None:
        self.warnings.append(warning)


class FakeChannel:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbound.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self._inbound.put_nowait(exc)

    def hang_up(self) -> None:
        """End the inbound stream as a clean server-side close would."""
        self._inbound.put_nowait(None)

    def push(self, frame: Any) -> None:
        self._inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def __aiter__(self) -> "FakeChannel":
        return self

    async def __anext__(self) -> str:
        frame = await self._inbound.get()
        if frame is None:
            raise StopAsyncIteration
        if isinstance(frame, BaseException):
            raise frame
        return frame


class FakeConnector:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.urls: List[str] = []
        self.channels: List[FakeChannel] = []

    async def __call__(self, url: str) -> FakeChannel:
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]


async def static_ice_servers() -> List[Dict[str, Any]]:
    return [{"urls": ["stun:stun.l.google.com:19302"]}]


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
