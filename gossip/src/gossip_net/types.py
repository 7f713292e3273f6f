"""Identifiers and addresses shared by gossip peers."""

from __future__ import annotations

import binascii
import secrets
from dataclasses import dataclass
from typing import Any, Dict

ID_LENGTH = 32


def _parse_hex_id(value: object, kind: str) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"{kind} must be a hex string")
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError(f"{kind} must be valid hex") from exc
    if len(raw) != ID_LENGTH:
        raise ValueError(f"{kind} must be {ID_LENGTH} bytes")
    return raw


@dataclass(frozen=True)
class TopicId:
    """Opaque 32-byte name of a gossip topic."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, bytes) or len(self.raw) != ID_LENGTH:
            raise ValueError(f"topic id must be {ID_LENGTH} bytes")

    @classmethod
    def random(cls) -> "TopicId":
        return cls(secrets.token_bytes(ID_LENGTH))

    @classmethod
    def from_hex(cls, value: object) -> "TopicId":
        return cls(_parse_hex_id(value, "topic id"))

    def __str__(self) -> str:
        return self.raw.hex()


@dataclass(frozen=True)
class NodeId:
    """Endpoint identity of a gossip node."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, bytes) or len(self.raw) != ID_LENGTH:
            raise ValueError(f"node id must be {ID_LENGTH} bytes")

    @classmethod
    def random(cls) -> "NodeId":
        return cls(secrets.token_bytes(ID_LENGTH))

    @classmethod
    def from_hex(cls, value: object) -> "NodeId":
        return cls(_parse_hex_id(value, "node id"))

    def fmt_short(self) -> str:
        return binascii.hexlify(self.raw[:5]).decode("ascii")

    def __str__(self) -> str:
        return self.raw.hex()


@dataclass(frozen=True)
class NodeAddr:
    """A node id plus the ``host:port`` pairs it can be dialed on."""

    node_id: NodeId
    direct_addresses: tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"node_id": str(self.node_id), "direct_addresses": list(self.direct_addresses)}

    @classmethod
    def from_dict(cls, data: object) -> "NodeAddr":
        if not isinstance(data, dict):
            raise ValueError("node address must be an object")
        addresses = data.get("direct_addresses")
        if not isinstance(addresses, list) or any(not isinstance(a, str) for a in addresses):
            raise ValueError("direct_addresses must be a list of strings")
        for address in addresses:
            split_host_port(address)
        return cls(node_id=NodeId.from_hex(data.get("node_id")), direct_addresses=tuple(addresses))


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""

    host, sep, port_text = address.rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise ValueError(f"invalid address: {address!r}")
    port = int(port_text)
    if not 0 < port < 65536:
        raise ValueError(f"invalid port in address: {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port
