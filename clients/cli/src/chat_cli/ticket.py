"""Rendezvous tickets: a topic plus bootstrap peers as a copy-pasteable token."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Sequence

from gossip_net import NodeAddr, TopicId


class TicketDecodeError(ValueError):
    """Raised when a ticket token cannot be decoded."""


class TicketEncodingError(TicketDecodeError):
    """The token is not valid unpadded base32."""


class TicketMalformedError(TicketDecodeError):
    """The decoded bytes do not describe a ticket."""


@dataclass(frozen=True)
class Ticket:
    topic: TopicId
    nodes: tuple[NodeAddr, ...] = ()

    def to_bytes(self) -> bytes:
        payload = {"topic": str(self.topic), "nodes": [node.to_dict() for node in self.nodes]}
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Ticket":
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError, RecursionError) as exc:
            raise TicketMalformedError("ticket payload is not JSON") from exc
        if not isinstance(payload, dict) or set(payload) != {"topic", "nodes"}:
            raise TicketMalformedError("ticket must have exactly topic and nodes")
        nodes = payload["nodes"]
        if not isinstance(nodes, list):
            raise TicketMalformedError("ticket nodes must be a list")
        try:
            topic = TopicId.from_hex(payload["topic"])
            parsed = tuple(NodeAddr.from_dict(node) for node in nodes)
        except ValueError as exc:
            raise TicketMalformedError(str(exc)) from exc
        return cls(topic=topic, nodes=parsed)

    def __str__(self) -> str:
        return encode_ticket(self.topic, self.nodes)

    @classmethod
    def from_str(cls, token: str) -> "Ticket":
        topic, nodes = decode_ticket(token)
        return cls(topic=topic, nodes=nodes)


def encode_ticket(topic: TopicId, nodes: Sequence[NodeAddr]) -> str:
    data = Ticket(topic=topic, nodes=tuple(nodes)).to_bytes()
    return base64.b32encode(data).decode("ascii").rstrip("=").lower()


def decode_ticket(token: str) -> tuple[TopicId, tuple[NodeAddr, ...]]:
    text = token.strip().upper()
    if not text or "=" in text:
        raise TicketEncodingError("ticket must be non-empty unpadded base32")
    padded = text + "=" * (-len(text) % 8)
    try:
        data = base64.b32decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise TicketEncodingError("ticket is not valid base32") from exc
    ticket = Ticket.from_bytes(data)
    return ticket.topic, ticket.nodes
