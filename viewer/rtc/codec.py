"""
Wire codec for session descriptions.

Descriptions travel as ``base64(json({"type": ..., "sdp": ...}))``, the same
shape a browser produces with ``btoa(JSON.stringify(pc.localDescription))``.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Union

from aiortc import RTCSessionDescription

from ..errors import DecodeError

DESCRIPTION_TYPES = frozenset({"offer", "pranswer", "answer", "rollback"})


def description_to_dict(description: RTCSessionDescription) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def encode(description: RTCSessionDescription) -> str:
    payload = json.dumps(description_to_dict(description), separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode(token: Union[str, bytes]) -> RTCSessionDescription:
    """
    Inverse of :func:`encode`.

    Raises :class:`DecodeError` when the token is not base64, not JSON, or
    does not describe a session.
    """

    if isinstance(token, str):
        try:
            token = token.encode("ascii")
        except UnicodeEncodeError as exc:
            raise DecodeError("description token is not ASCII") from exc
    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"description token is not valid base64: {exc}") from exc

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"description token is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError("description token must encode a JSON object")
    kind = data.get("type")
    sdp = data.get("sdp")
    if kind not in DESCRIPTION_TYPES:
        raise DecodeError(f"unsupported description type {kind!r}")
    if not isinstance(sdp, str):
        raise DecodeError("description is missing its 'sdp' text")
    return RTCSessionDescription(sdp=sdp, type=kind)


__all__ = ["DESCRIPTION_TYPES", "decode", "description_to_dict", "encode"]
