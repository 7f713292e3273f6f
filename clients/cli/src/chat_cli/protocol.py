"""Chat payloads carried over a gossip topic.

Every payload is a JSON envelope ``{"body": {<Tag>: {...}}, "nonce": [...]}``.
The nonce is 16 random bytes so that two otherwise identical bodies never
encode to the same bytes; the gossip layer drops byte-identical repeats.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Union

from gossip_net import NodeId

NONCE_LENGTH = 16


class ProtocolError(ValueError):
    """Raised when inbound bytes are not a chat payload."""


class CorruptMessage(ProtocolError):
    """The payload failed to parse or carries an unknown tag."""


@dataclass(frozen=True)
class WhoIsThere:
    from_: NodeId


@dataclass(frozen=True)
class AboutMe:
    from_: NodeId
    name: str


@dataclass(frozen=True)
class Message:
    from_: NodeId
    text: str


MessageBody = Union[WhoIsThere, AboutMe, Message]


@dataclass(frozen=True)
class ProtocolMessage:
    body: MessageBody
    nonce: bytes


def _body_to_json(body: MessageBody) -> Dict[str, Any]:
    if isinstance(body, WhoIsThere):
        return {"WhoIsThere": {"from": str(body.from_)}}
    if isinstance(body, AboutMe):
        return {"AboutMe": {"from": str(body.from_), "name": body.name}}
    if isinstance(body, Message):
        return {"Message": {"from": str(body.from_), "text": body.text}}
    raise TypeError(f"unsupported message body: {body!r}")


def _string_field(fields: Dict[str, Any], key: str) -> str:
    value = fields[key]
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _parse_who_is_there(fields: Dict[str, Any]) -> MessageBody:
    return WhoIsThere(from_=NodeId.from_hex(fields["from"]))


def _parse_about_me(fields: Dict[str, Any]) -> MessageBody:
    return AboutMe(from_=NodeId.from_hex(fields["from"]), name=_string_field(fields, "name"))


def _parse_message(fields: Dict[str, Any]) -> MessageBody:
    return Message(from_=NodeId.from_hex(fields["from"]), text=_string_field(fields, "text"))


_PARSERS: Dict[str, tuple[frozenset[str], Callable[[Dict[str, Any]], MessageBody]]] = {
    "WhoIsThere": (frozenset({"from"}), _parse_who_is_there),
    "AboutMe": (frozenset({"from", "name"}), _parse_about_me),
    "Message": (frozenset({"from", "text"}), _parse_message),
}


def _parse_nonce(value: object) -> bytes:
    if not isinstance(value, list) or len(value) != NONCE_LENGTH:
        raise ValueError(f"nonce must be a list of {NONCE_LENGTH} bytes")
    if any(isinstance(b, bool) or not isinstance(b, int) or not 0 <= b <= 255 for b in value):
        raise ValueError("nonce entries must be integers in 0..255")
    return bytes(value)


def encode(body: MessageBody) -> bytes:
    """Wrap ``body`` with a fresh nonce and serialize it."""

    message = ProtocolMessage(body=body, nonce=secrets.token_bytes(NONCE_LENGTH))
    return to_bytes(message)


def to_bytes(message: ProtocolMessage) -> bytes:
    payload = {"body": _body_to_json(message.body), "nonce": list(message.nonce)}
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode(data: bytes) -> ProtocolMessage:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise CorruptMessage("payload is not JSON") from exc
    if not isinstance(payload, dict) or set(payload) != {"body", "nonce"}:
        raise CorruptMessage("envelope must have exactly body and nonce")
    body = payload["body"]
    if not isinstance(body, dict) or len(body) != 1:
        raise CorruptMessage("body must carry exactly one tag")
    (tag, fields), = body.items()
    entry = _PARSERS.get(tag)
    if entry is None:
        raise CorruptMessage(f"unknown message tag: {tag!r}")
    expected, parser = entry
    if not isinstance(fields, dict) or set(fields) != expected:
        raise CorruptMessage(f"{tag} expects fields {sorted(expected)}")
    try:
        return ProtocolMessage(body=parser(fields), nonce=_parse_nonce(payload["nonce"]))
    except ValueError as exc:
        raise CorruptMessage(str(exc)) from exc
