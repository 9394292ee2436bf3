"""
Session orchestration.

:class:`SessionOrchestrator` owns at most one live :class:`Session` and walks
it through ``IDLE -> OFFER_READY -> NEGOTIATING -> CONNECTED -> CLOSED``:

* ``start()`` asks the peer engine for a session and a local offer;
* the offer is dispatched through the selected signaling transport, either
  once candidate gathering finished (request/response) or after a short
  debounce on local candidate discovery (persistent channel);
* inbound answers, trickled candidates and disconnects are applied to the
  session as they arrive;
* ``stop()`` releases the server side, the sink and the engine.

Only the orchestrator mutates the session.  Failures stay scoped to the
operation that produced them: nothing here retries, and nothing except an
explicit ``stop()`` or a server ``disconnect`` closes the session.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from aiortc import MediaStreamTrack, RTCIceCandidate, RTCSessionDescription

from .errors import (
    CandidateApplyFailure,
    NegotiationError,
    ProtocolWarning,
    SessionActiveError,
    SetupError,
    SignalingError,
)
from .rtc.codec import decode, encode
from .rtc.media import PlaybackSink, RecorderSink, RemoteStream
from .rtc.peer import PeerEngine, PeerEngineListener, SessionHandle, candidate_to_dict
from .signaling.base import SignalingListener, SignalingTransport
from .utils.debounce import Debouncer

LOG = logging.getLogger(__name__)

IceServersProvider = Callable[[], Awaitable[Sequence[Mapping[str, Any]]]]
SinkFactory = Callable[[], PlaybackSink]


class SessionState(str, Enum):
    IDLE = "idle"
    OFFER_READY = "offer_ready"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


ANSWERABLE_STATES = frozenset({SessionState.OFFER_READY, SessionState.NEGOTIATING, SessionState.CONNECTED})


@dataclass
class Session:
    """
    One negotiation, from ``start()`` until it is closed.
    """

    handle: SessionHandle
    sink: PlaybackSink
    state: SessionState = SessionState.IDLE
    remote_stream: RemoteStream = field(default_factory=RemoteStream)
    local_description: Optional[RTCSessionDescription] = None
    answer_applied: bool = False
    handshake_sent: bool = False
    stream_attached: bool = False
    ready_notified: bool = False
    gathering_complete: bool = False
    local_candidates: int = 0
    pending_candidates: List[Dict[str, Any]] = field(default_factory=list)
    close_reason: Optional[str] = None
    debouncer: Optional[Debouncer] = None
    _dispatching: bool = field(default=False, repr=False)
    _applying_answer: bool = field(default=False, repr=False)

    @property
    def id(self) -> str:
        return self.handle.id

    @property
    def log(self) -> logging.Logger:
        return LOG.getChild(f"session.{self.id[:8]}")


class SessionObserver:
    """
    Notification capability used to surface session progress to a UI.

    Every method defaults to a no-op.
    """

    def on_state_changed(self, session: Session, previous: SessionState, current: SessionState) -> None:
        pass

    def on_ready(self, session: Session) -> None:
        """The remote stream is attached; a one-time user gesture may start playback."""

    def on_error(self, session: Optional[Session], error: BaseException) -> None:
        pass

    def on_warning(self, session: Optional[Session], warning: SignalingError) -> None:
        pass

    def on_connection_state(self, session: Session, state: str) -> None:
        pass


class LoggingObserver(SessionObserver):
    """Observer that only writes to the log; used by the CLI."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOG.getChild("observer")

    def on_state_changed(self, session: Session, previous: SessionState, current: SessionState) -> None:
        if current is SessionState.CLOSED and session.close_reason:
            self.logger.info("Session %s closed: %s", session.id[:8], session.close_reason)

    def on_ready(self, session: Session) -> None:
        self.logger.info("Remote stream ready (%s)", ", ".join(session.remote_stream.kinds()) or "no tracks")

    def on_error(self, session: Optional[Session], error: BaseException) -> None:
        self.logger.error("Session error: %s", error)

    def on_warning(self, session: Optional[Session], warning: SignalingError) -> None:
        self.logger.warning("Session warning: %s", warning)

    def on_connection_state(self, session: Session, state: str) -> None:
        self.logger.info("Peer connection %s", state)


class SessionOrchestrator(PeerEngineListener, SignalingListener):
    """
    Drive one session through negotiation over a signaling transport.

    Parameters
    ----------
    engine:
        Peer engine adapter used to build and mutate the peer connection.
    transport:
        Signaling transport; the orchestrator binds itself as its listener.
    ice_servers:
        Coroutine function returning the ICE server descriptors for a new
        session.  Raising :class:`SetupError` aborts ``start()``.
    sink_factory:
        Builds the playback sink for each new session.
    observer:
        Receives state transitions, readiness, warnings and errors.
    buffer_early_candidates:
        Hold remote candidates that arrive before the answer and replay them
        once it is applied.  When false they are applied immediately and a
        failure is only logged.
    """

    def __init__(
        self,
        engine: PeerEngine,
        transport: SignalingTransport,
        *,
        ice_servers: IceServersProvider,
        sink_factory: Optional[SinkFactory] = None,
        observer: Optional[SessionObserver] = None,
        buffer_early_candidates: bool = True,
    ) -> None:
        self._engine = engine
        self._transport = transport
        self._ice_servers = ice_servers
        self._sink_factory: SinkFactory = sink_factory or RecorderSink
        self._observer = observer or SessionObserver()
        self._buffer_early_candidates = buffer_early_candidates
        self._session: Optional[Session] = None
        self._starting = False
        self._tasks: Set[asyncio.Task] = set()
        self._waiters: List[Tuple[SessionState, asyncio.Future]] = []
        transport.bind(self)

    # ------------------------------------------------------------------ public API

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    @property
    def transport(self) -> SignalingTransport:
        return self._transport

    async def start(self) -> Session:
        """
        Create a session and its local offer.

        Returns once the session is ``OFFER_READY``; dispatch follows from
        candidate gathering events.
        """

        if self._starting or (self._session is not None and self._session.state is not SessionState.CLOSED):
            raise SessionActiveError("a session is already active")

        self._starting = True
        try:
            ice_servers = await self._ice_servers()
            try:
                sink = self._sink_factory()
            except Exception as exc:
                raise SetupError(f"unable to build the playback sink: {exc}") from exc
            try:
                handle = self._engine.create_session(ice_servers, self)
            except SetupError:
                raise
            except Exception as exc:
                raise SetupError(f"unable to create peer session: {exc}") from exc

            session = Session(handle=handle, sink=sink)
            if self._transport.trickles:
                session.debouncer = Debouncer(
                    self._transport.handshake_delay or 0.0,
                    functools.partial(self._dispatch_from_event, session),
                )
            self._session = session

            try:
                session.local_description = await self._engine.create_local_offer(handle)
            except Exception as exc:
                # Roll back so the caller can start again.
                self._session = None
                if session.debouncer is not None:
                    session.debouncer.cancel()
                await self._engine.close(handle)
                raise SetupError(f"unable to create local offer: {exc}") from exc
        finally:
            self._starting = False

        self._transition(session, SessionState.OFFER_READY)
        if session.gathering_complete:
            self._handshake_now(session)
        return session

    async def dispatch(self) -> bool:
        """
        Send the encoded local offer through the transport.

        At most one handshake is ever sent per session; later calls return
        ``False``.  Transport failures propagate and leave the state as is.
        """

        session = self._session
        if session is None:
            raise NegotiationError("no session to dispatch")
        if session.handshake_sent or session._dispatching:
            return False
        if session.state is not SessionState.OFFER_READY or session.local_description is None:
            raise NegotiationError(f"cannot dispatch an offer while {session.state.value}")

        session._dispatching = True
        try:
            token = encode(session.local_description)
            answer_token = await self._transport.send_offer(session.id, token)
        finally:
            session._dispatching = False

        if session.state is SessionState.CLOSED:
            session.log.warning("Session closed while the offer was in flight; discarding the reply.")
            return False

        session.handshake_sent = True
        if session.debouncer is not None:
            session.debouncer.cancel()
        if session.state is SessionState.OFFER_READY:
            self._transition(session, SessionState.NEGOTIATING)
        if answer_token is not None:
            await self._apply_answer(session, answer_token)
        return True

    async def stop(self) -> None:
        """
        Release the server side session, the sink and the peer engine.
        """

        session = self._session
        if session is None or session.state is SessionState.CLOSED:
            return
        await self._close_session(session, release=True)

    async def aclose(self) -> None:
        await self.stop()
        await self._transport.aclose()

    async def wait_for_state(self, state: SessionState, timeout: Optional[float] = None) -> None:
        if self.state is state:
            return
        future = asyncio.get_running_loop().create_future()
        entry = (state, future)
        self._waiters.append(entry)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    # ------------------------------------------------------------------ engine events

    def on_local_candidate(self, handle: SessionHandle, candidate: Optional[RTCIceCandidate]) -> None:
        session = self._session_for_handle(handle)
        if session is None:
            return
        if candidate is None:
            session.gathering_complete = True
            session.log.debug("Local candidate gathering complete (%d candidates)", session.local_candidates)
            # start() sends the handshake itself when gathering beats the offer.
            if session.state is SessionState.OFFER_READY:
                self._handshake_now(session)
            return

        session.local_candidates += 1
        session.log.debug("Local candidate: %s", candidate_to_dict(candidate)["candidate"])
        if session.debouncer is not None:
            session.debouncer.trigger()

    def on_connection_state(self, handle: SessionHandle, state: str) -> None:
        session = self._session_for_handle(handle)
        if session is None:
            return
        if state == "failed":
            session.log.warning("Peer connection failed")
        self._notify("on_connection_state", session, state)

    def on_remote_track(self, handle: SessionHandle, track: MediaStreamTrack) -> None:
        session = self._session_for_handle(handle)
        if session is None:
            return
        if session.remote_stream.add_track(track):
            session.log.debug("Remote %s track added to stream", track.kind)

    # ------------------------------------------------------------------ signaling events

    async def on_answer(self, session_id: str, token: str) -> None:
        session = self._live_session(session_id, "answer")
        if session is None:
            return
        try:
            await self._apply_answer(session, token)
        except NegotiationError as exc:
            self._report_error(session, exc)

    async def on_remote_candidate(self, session_id: str, payload: Mapping[str, Any]) -> None:
        session = self._live_session(session_id, "candidate")
        if session is None:
            return
        if self._buffer_early_candidates and not session.answer_applied:
            session.pending_candidates.append(dict(payload))
            session.log.debug("Buffered early remote candidate (%d pending)", len(session.pending_candidates))
            return
        await self._apply_candidate(session, payload)

    async def on_remote_disconnect(self, session_id: str, reason: Optional[str]) -> None:
        session = self._live_session(session_id, "disconnect")
        if session is None:
            return
        session.close_reason = reason or "remote disconnect"
        session.log.info("Server ended the session: %s", session.close_reason)
        await self._close_session(session, release=False)

    async def on_protocol_warning(self, session_id: str, warning: ProtocolWarning) -> None:
        session = self._session if self._session is not None and self._session.id == session_id else None
        LOG.warning("Protocol warning for session %s: %s", session_id[:8], warning)
        self._notify("on_warning", session, warning)

    async def on_transport_error(self, session_id: str, error: SignalingError) -> None:
        session = self._live_session(session_id, "transport error")
        if session is None:
            return
        self._report_error(session, error)

    # ------------------------------------------------------------------ helpers

    def _handshake_now(self, session: Session) -> None:
        if session.debouncer is not None:
            self._spawn(session.debouncer.flush())
        else:
            self._spawn(self._dispatch_from_event(session))

    async def _dispatch_from_event(self, session: Session) -> None:
        if session is not self._session or session.state is not SessionState.OFFER_READY:
            return
        try:
            await self.dispatch()
        except SignalingError as exc:
            self._report_error(session, exc)

    async def _apply_answer(self, session: Session, token: str) -> None:
        if session.answer_applied or session._applying_answer:
            session.log.info("Duplicate answer ignored")
            return
        if session.state not in ANSWERABLE_STATES:
            raise NegotiationError(f"cannot apply an answer while {session.state.value}")

        answer = decode(token)
        session._applying_answer = True
        try:
            await self._engine.set_remote_answer(session.handle, answer)
        finally:
            session._applying_answer = False
        if session.state is SessionState.CLOSED:
            return

        session.answer_applied = True
        if session.state is SessionState.OFFER_READY:
            self._transition(session, SessionState.NEGOTIATING)
        self._transition(session, SessionState.CONNECTED)
        await self._attach_stream(session)
        await self._replay_pending_candidates(session)

    async def _attach_stream(self, session: Session) -> None:
        if session.stream_attached:
            return
        session.stream_attached = True
        try:
            await session.sink.attach(session.remote_stream)
        except (OSError, RuntimeError, ValueError) as exc:
            session.log.exception("Failed to attach the remote stream")
            self._notify("on_error", session, exc)
            return
        if not session.ready_notified:
            session.ready_notified = True
            self._notify("on_ready", session)

    async def _replay_pending_candidates(self, session: Session) -> None:
        pending, session.pending_candidates = session.pending_candidates, []
        if pending:
            session.log.debug("Replaying %d buffered remote candidates", len(pending))
        for payload in pending:
            await self._apply_candidate(session, payload)

    async def _apply_candidate(self, session: Session, payload: Mapping[str, Any]) -> None:
        try:
            await self._engine.add_remote_candidate(session.handle, payload)
        except CandidateApplyFailure as exc:
            session.log.warning("Remote candidate not applied: %s", exc)

    async def _close_session(self, session: Session, *, release: bool) -> None:
        if session.debouncer is not None:
            session.debouncer.cancel()
        session.pending_candidates.clear()
        self._transition(session, SessionState.CLOSED)

        if release:
            try:
                await self._transport.release(session.id)
            except SignalingError as exc:
                session.log.warning("Server side release failed: %s", exc)
        if session.stream_attached:
            await session.sink.close()
        await self._engine.close(session.handle)

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    def _transition(self, session: Session, state: SessionState) -> None:
        previous = session.state
        if previous is state:
            return
        session.state = state
        session.log.info("%s -> %s", previous.value, state.value)
        self._notify("on_state_changed", session, previous, state)
        for entry in list(self._waiters):
            wanted, future = entry
            if wanted is state and not future.done():
                future.set_result(None)

    def _report_error(self, session: Optional[Session], error: BaseException) -> None:
        (session.log if session is not None else LOG).error("%s: %s", type(error).__name__, error)
        self._notify("on_error", session, error)

    def _notify(self, method: str, *args: Any) -> None:
        try:
            getattr(self._observer, method)(*args)
        except Exception:  # pragma: no cover - observer failures should not break negotiation
            LOG.exception("Session observer %s failed.", method)

    def _session_for_handle(self, handle: SessionHandle) -> Optional[Session]:
        session = self._session
        if session is None or session.handle is not handle or session.state is SessionState.CLOSED:
            LOG.debug("Ignoring engine event for inactive session %s", handle.id[:8])
            return None
        return session

    def _live_session(self, session_id: str, what: str) -> Optional[Session]:
        session = self._session
        if session is None or session.id != session_id or session.state is SessionState.CLOSED:
            LOG.warning("Discarding %s for closed or unknown session %s", what, session_id[:8])
            return None
        return session

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


__all__ = [
    "LoggingObserver",
    "Session",
    "SessionObserver",
    "SessionOrchestrator",
    "SessionState",
]
