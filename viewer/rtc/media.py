"""
Remote media accumulation and playback sinks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

LOG = logging.getLogger(__name__)

TrackListener = Callable[[MediaStreamTrack], None]


@dataclass
class RemoteStream:
    """
    Tracks received from the remote peer for one session.

    Tracks are kept in arrival order and de-duplicated by id; listeners are
    told about every track added after they subscribed.
    """

    tracks: List[MediaStreamTrack] = field(default_factory=list)
    _listeners: Dict[int, TrackListener] = field(default_factory=dict, repr=False)
    _listener_counter: int = field(default=0, repr=False)

    def add_track(self, track: MediaStreamTrack) -> bool:
        if any(existing.id == track.id for existing in self.tracks):
            return False
        self.tracks.append(track)
        for token, listener in list(self._listeners.items()):
            try:
                listener(track)
            except Exception:  # pragma: no cover - listener failures stay local
                LOG.exception("Remote stream listener %s failed.", token)
        return True

    def subscribe(self, listener: TrackListener) -> int:
        self._listener_counter += 1
        token = self._listener_counter
        self._listeners[token] = listener
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def kinds(self) -> List[str]:
        return [track.kind for track in self.tracks]


class PlaybackSink:
    """
    Base class for consumers of the remote stream.
    """

    def __init__(self) -> None:
        self._stream: Optional[RemoteStream] = None

    @property
    def attached(self) -> bool:
        return self._stream is not None

    async def attach(self, stream: RemoteStream) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """
        Release backing resources.  Subclasses should override when required.
        """


class RecorderSink(PlaybackSink):
    """
    Feed the remote tracks into an aiortc recorder.

    With ``path`` set, media is written to that file; otherwise frames are
    consumed and dropped so the peer connection keeps flowing.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        super().__init__()
        self.path = path
        self._recorder: Optional[Union[MediaRecorder, MediaBlackhole]] = None
        self._subscription: Optional[int] = None
        self._started = False

    async def attach(self, stream: RemoteStream) -> None:
        if self._stream is not None:
            raise RuntimeError("sink is already attached to a stream")
        # The output container is only opened once there is media to write.
        self._recorder = MediaRecorder(self.path) if self.path else MediaBlackhole()
        self._stream = stream
        for track in stream.tracks:
            self._recorder.addTrack(track)
        self._subscription = stream.subscribe(self._on_late_track)
        await self._recorder.start()
        self._started = True
        LOG.info(
            "Remote stream attached to %s (%s)",
            self.path or "blackhole",
            ", ".join(stream.kinds()) or "no tracks",
        )

    async def close(self) -> None:
        if self._stream is not None and self._subscription is not None:
            self._stream.unsubscribe(self._subscription)
            self._subscription = None
        if self._started and self._recorder is not None:
            self._started = False
            await self._recorder.stop()

    def _on_late_track(self, track: MediaStreamTrack) -> None:
        LOG.warning("%s track %s arrived after the recorder started; not recorded.", track.kind, track.id)


__all__ = ["PlaybackSink", "RecorderSink", "RemoteStream"]
