"""
WebRTC helpers: peer engine adapter, description codec, media sinks and ICE
server resolution.
"""

from __future__ import annotations

from .codec import decode, encode
from .ice import IceServerResolver, RelayCredentialsClient
from .media import PlaybackSink, RecorderSink, RemoteStream
from .peer import AiortcPeerEngine, PeerEngine, PeerEngineListener, SessionHandle

__all__ = [
    "AiortcPeerEngine",
    "IceServerResolver",
    "PeerEngine",
    "PeerEngineListener",
    "PlaybackSink",
    "RecorderSink",
    "RelayCredentialsClient",
    "RemoteStream",
    "SessionHandle",
    "decode",
    "encode",
]
