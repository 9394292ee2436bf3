"""
Pydantic schemas for the persistent channel protocol.

Every frame is an envelope ``{"type": ..., "payload": {...}}``.  Known types
decode into their own model through a discriminated union; any other type
lands in :class:`UnknownMessage` instead of failing.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..errors import ProtocolWarning

CONNECT = "connect"
ANSWER = "answer"
NEW_CANDIDATE = "new_candidate"
DISCONNECT = "disconnect"

KNOWN_TYPES = frozenset({CONNECT, ANSWER, NEW_CANDIDATE, DISCONNECT})


class ConnectPayload(BaseModel):
    sdp: str
    user: str = ""
    password: str = ""

    @field_validator("sdp")
    @classmethod
    def _require_sdp(cls, value: str) -> str:
        if not value:
            raise ValueError("sdp is required")
        return value


class AnswerPayload(BaseModel):
    answer: str

    @field_validator("answer")
    @classmethod
    def _require_answer(cls, value: str) -> str:
        if not value:
            raise ValueError("answer is required")
        return value


class DisconnectPayload(BaseModel):
    message: Optional[str] = None


class ConnectMessage(BaseModel):
    type: Literal["connect"] = CONNECT
    payload: ConnectPayload


class AnswerMessage(BaseModel):
    type: Literal["answer"] = ANSWER
    payload: AnswerPayload


class NewCandidateMessage(BaseModel):
    """The payload is forwarded untouched to the peer engine."""

    type: Literal["new_candidate"] = NEW_CANDIDATE
    payload: Dict[str, Any] = Field(default_factory=dict)


class DisconnectMessage(BaseModel):
    type: Literal["disconnect"] = DISCONNECT
    payload: DisconnectPayload = Field(default_factory=DisconnectPayload)

    @field_validator("payload", mode="before")
    @classmethod
    def _empty_payload(cls, value: Any) -> Any:
        return {} if value is None else value


class UnknownMessage(BaseModel):
    type: str
    payload: Any = None
    model_config = ConfigDict(extra="allow")


KnownMessage = Annotated[
    Union[ConnectMessage, AnswerMessage, NewCandidateMessage, DisconnectMessage],
    Field(discriminator="type"),
]
SignalingMessage = Union[ConnectMessage, AnswerMessage, NewCandidateMessage, DisconnectMessage, UnknownMessage]

_KNOWN_ADAPTER: TypeAdapter = TypeAdapter(KnownMessage)


def parse_message(raw: Union[str, bytes, Dict[str, Any]]) -> SignalingMessage:
    """
    Decode one inbound frame.

    Raises :class:`ProtocolWarning` when the frame is not a JSON envelope or a
    known type fails its schema.
    """

    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ProtocolWarning(f"frame is not valid JSON: {exc}") from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise ProtocolWarning("frame is not a JSON object")
    kind = data.get("type")
    if not isinstance(kind, str):
        raise ProtocolWarning("frame has no 'type' field")

    if kind not in KNOWN_TYPES:
        return UnknownMessage(**data)
    try:
        return _KNOWN_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolWarning(f"invalid '{kind}' frame: {exc.errors()[0].get('msg', exc)}") from exc


def connect_message(sdp: str, user: str = "", password: str = "") -> ConnectMessage:
    return ConnectMessage(payload=ConnectPayload(sdp=sdp, user=user, password=password))


def disconnect_message(message: Optional[str] = None) -> DisconnectMessage:
    return DisconnectMessage(payload=DisconnectPayload(message=message))


def dump_message(message: BaseModel) -> str:
    return message.model_dump_json(exclude_none=True)


__all__ = [
    "ANSWER",
    "CONNECT",
    "DISCONNECT",
    "KNOWN_TYPES",
    "NEW_CANDIDATE",
    "AnswerMessage",
    "AnswerPayload",
    "ConnectMessage",
    "ConnectPayload",
    "DisconnectMessage",
    "DisconnectPayload",
    "NewCandidateMessage",
    "SignalingMessage",
    "UnknownMessage",
    "connect_message",
    "disconnect_message",
    "dump_message",
    "parse_message",
]
