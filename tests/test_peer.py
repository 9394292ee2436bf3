from typing import List, Optional

import pytest
from aiortc import RTCIceCandidate, RTCSessionDescription

from viewer.errors import CandidateApplyFailure, NegotiationError
from viewer.rtc.peer import (
    AiortcPeerEngine,
    PeerEngineListener,
    SessionHandle,
    candidate_to_dict,
    parse_candidate,
)

from conftest import REMOTE_CANDIDATE, make_local_candidate


class CollectingListener(PeerEngineListener):
    def __init__(self) -> None:
        self.candidates: List[Optional[RTCIceCandidate]] = []

    def on_local_candidate(self, handle: SessionHandle, candidate: Optional[RTCIceCandidate]) -> None:
        self.candidates.append(candidate)


def test_parse_bare_candidate() -> None:
    candidate = parse_candidate(REMOTE_CANDIDATE)

    assert candidate is not None
    assert candidate.ip == "192.168.1.20"
    assert candidate.port == 46243
    assert candidate.type == "host"
    assert candidate.sdpMid == "0"
    assert candidate.sdpMLineIndex == 0


def test_parse_wrapped_candidate() -> None:
    candidate = parse_candidate({"candidate": dict(REMOTE_CANDIDATE, sdpMLineIndex="1")})

    assert candidate is not None
    assert candidate.sdpMLineIndex == 1


def test_empty_candidate_is_end_of_candidates() -> None:
    assert parse_candidate({"candidate": "", "sdpMid": "0"}) is None


@pytest.mark.parametrize(
    "payload",
    [
        "candidate:1 1 udp 1 10.0.0.1 5000 typ host",
        {},
        {"candidate": 42},
        {"candidate": "candidate:garbage"},
    ],
)
def test_malformed_candidates(payload: object) -> None:
    with pytest.raises(CandidateApplyFailure):
        parse_candidate(payload)  # type: ignore[arg-type]


def test_candidate_to_dict_round_trips_through_parse() -> None:
    local = make_local_candidate(3)

    data = candidate_to_dict(local)
    assert data["candidate"].startswith("candidate:")
    parsed = parse_candidate(data)
    assert parsed is not None
    assert (parsed.ip, parsed.port, parsed.sdpMid) == (local.ip, local.port, local.sdpMid)


@pytest.mark.asyncio
async def test_aiortc_engine_offer_lifecycle() -> None:
    engine = AiortcPeerEngine()
    listener = CollectingListener()
    handle = engine.create_session([], listener)
    try:
        offer = await engine.create_local_offer(handle)

        assert offer.type == "offer"
        assert "m=video" in offer.sdp and "m=audio" in offer.sdp
        assert listener.candidates[-1] is None
        assert all(candidate is not None for candidate in listener.candidates[:-1])

        with pytest.raises(NegotiationError):
            await engine.create_local_offer(handle)
        with pytest.raises(NegotiationError):
            await engine.set_remote_answer(handle, RTCSessionDescription(sdp=offer.sdp, type="offer"))
    finally:
        await engine.close(handle)
        await engine.close(handle)

    assert handle.closed is True
    with pytest.raises(CandidateApplyFailure):
        await engine.add_remote_candidate(handle, REMOTE_CANDIDATE)


@pytest.mark.asyncio
async def test_aiortc_engine_rejects_answer_before_offer() -> None:
    engine = AiortcPeerEngine()
    handle = engine.create_session([], PeerEngineListener())
    try:
        with pytest.raises(NegotiationError):
            await engine.set_remote_answer(handle, RTCSessionDescription(sdp="v=0\r\n", type="answer"))
    finally:
        await engine.close(handle)
