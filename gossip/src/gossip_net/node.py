"""Flood-gossip node over aiohttp WebSockets.

Every node runs a small aiohttp server and dials its bootstrap peers. Each
WebSocket carries exactly one topic. Frames are JSON objects shaped like
``{"v": 1, "t": <type>, "body": {...}}``:

``hello``
    First frame in both directions: ``node_id``, ``addrs`` and ``topic``.
``peers``
    Sent by the accepting side after ``hello`` with the addresses of its
    other neighbors so the dialer can widen its mesh.
``gossip``
    ``id`` (SHA-256 hex of the content), ``origin`` and base64 ``content``.
    Ids already seen are dropped; everything else is delivered locally and
    forwarded to every other neighbor on the topic.
``error``
    ``code`` and ``message``; the sender closes the socket afterwards.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import socket
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

import aiohttp
from aiohttp import WSMsgType, web

from .errors import TransportError
from .hub import Link, SeenCache, TopicHub
from .types import NodeAddr, NodeId, TopicId

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
GOSSIP_PATH = "/v1/gossip"


@dataclass
class NodeConfig:
    host: str = "0.0.0.0"
    port: int = 0
    heartbeat_s: float = 20.0
    connect_timeout_s: float = 5.0
    max_msg_size: int = 1_048_576
    max_neighbors: int = 8
    seen_cache_size: int = 4096
    shutdown_timeout_s: float = 2.0


@dataclass(frozen=True)
class Received:
    content: bytes
    delivered_from: NodeId


@dataclass(frozen=True)
class NeighborUp:
    node_id: NodeId


@dataclass(frozen=True)
class NeighborDown:
    node_id: NodeId


GossipEvent = Union[Received, NeighborUp, NeighborDown]


def _error_frame(code: str, message: str) -> dict[str, Any]:
    return {"v": PROTOCOL_VERSION, "t": "error", "body": {"code": code, "message": message}}


def _frame_from_message(msg: aiohttp.WSMessage) -> dict[str, Any] | None:
    if msg.type != WSMsgType.TEXT:
        return None
    try:
        frame = json.loads(msg.data)
    except (ValueError, RecursionError):
        return None
    if not isinstance(frame, dict):
        return None
    return frame


def _parse_hello(body: object) -> tuple[NodeAddr, TopicId]:
    if not isinstance(body, dict):
        raise ValueError("hello body must be an object")
    peer = NodeAddr.from_dict({"node_id": body.get("node_id"), "direct_addresses": body.get("addrs", [])})
    return peer, TopicId.from_hex(body.get("topic"))


def message_id(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _lan_address() -> str | None:
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("192.0.2.1", 9))
            return probe.getsockname()[0]
    except OSError:
        return None


def advertised_addresses(host: str, port: int) -> tuple[str, ...]:
    if host not in ("", "0.0.0.0", "::"):
        return (_join_host_port(host, port),)
    hosts = ["127.0.0.1"]
    lan = _lan_address()
    if lan and lan not in hosts:
        hosts.append(lan)
    return tuple(_join_host_port(h, port) for h in hosts)


class GossipSender:
    """Outbound half of a topic subscription."""

    def __init__(self, node: "GossipNode", topic: TopicId) -> None:
        self._node = node
        self.topic = topic

    async def broadcast(self, content: bytes) -> None:
        await self._node._broadcast(self.topic, content)

    def neighbors(self) -> list[NodeId]:
        return self._node._hub.neighbors(self.topic)


class GossipReceiver:
    """Inbound half of a topic subscription.

    ``recv`` raises :class:`TransportError` once the node has been closed;
    async iteration simply stops instead.
    """

    def __init__(self, topic: TopicId, queue: "asyncio.Queue[Optional[GossipEvent]]") -> None:
        self.topic = topic
        self._queue = queue

    async def recv(self) -> GossipEvent:
        event = await self._queue.get()
        if event is None:
            # Leave the marker in place so every later call fails the same way.
            self._queue.put_nowait(None)
            raise TransportError("gossip node closed")
        return event

    def __aiter__(self) -> "GossipReceiver":
        return self

    async def __anext__(self) -> GossipEvent:
        try:
            return await self.recv()
        except TransportError:
            raise StopAsyncIteration


class GossipNode:
    def __init__(self, config: NodeConfig | None = None, *, node_id: NodeId | None = None) -> None:
        self.config = config or NodeConfig()
        self.node_id = node_id or NodeId.random()
        self._hub = TopicHub()
        self._seen = SeenCache(self.config.seen_cache_size)
        self._subscriptions: Dict[TopicId, asyncio.Queue[Optional[GossipEvent]]] = {}
        self._runner: web.AppRunner | None = None
        self._session: aiohttp.ClientSession | None = None
        self._tasks: set[asyncio.Task] = set()
        self._addresses: tuple[str, ...] = ()
        self._closed = False

    async def start(self) -> NodeAddr:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get(GOSSIP_PATH, self._handle_ws)
        runner = web.AppRunner(app, shutdown_timeout=self.config.shutdown_timeout_s)
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        bound_port = runner.addresses[0][1]
        self._addresses = advertised_addresses(self.config.host, bound_port)
        self._session = aiohttp.ClientSession()
        logger.info("gossip node %s listening on %s", self.node_id.fmt_short(), ", ".join(self._addresses))
        return self.node_addr()

    def node_addr(self) -> NodeAddr:
        return NodeAddr(node_id=self.node_id, direct_addresses=self._addresses)

    @property
    def closed(self) -> bool:
        return self._closed

    async def subscribe_and_join(
        self, topic: TopicId, bootstrap: Iterable[NodeAddr] = ()
    ) -> tuple[GossipSender, GossipReceiver]:
        """Subscribe to ``topic`` and dial every bootstrap peer.

        Raises :class:`TransportError` when bootstrap peers were given but
        none of them could be reached.
        """

        if self._closed or self._session is None:
            raise TransportError("gossip node is not running")
        queue = self._subscriptions.get(topic)
        if queue is None:
            queue = asyncio.Queue()
            self._subscriptions[topic] = queue

        peers = [peer for peer in bootstrap if peer.node_id != self.node_id]
        if peers:
            results = await asyncio.gather(*(self._dial(topic, peer) for peer in peers))
            if not any(results):
                raise TransportError(f"could not connect to any of {len(peers)} bootstrap peers")
        return GossipSender(self, topic), GossipReceiver(topic, queue)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscriptions.values():
            queue.put_nowait(None)
        for link in self._hub.all_links():
            try:
                await link.close()
            except (ConnectionResetError, RuntimeError) as exc:
                logger.debug("error closing link to %s: %s", link.node_id.fmt_short(), exc)
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
        if self._runner is not None:
            await self._runner.cleanup()
        logger.info("gossip node %s closed", self.node_id.fmt_short())

    async def __aenter__(self) -> "GossipNode":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _hello_frame(self, topic: TopicId) -> dict[str, Any]:
        return {
            "v": PROTOCOL_VERSION,
            "t": "hello",
            "body": {"node_id": str(self.node_id), "addrs": list(self._addresses), "topic": str(topic)},
        }

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _register(self, link: Link) -> bool:
        if self._closed or not self._hub.add(link):
            return False
        logger.info("neighbor up %s on topic %s", link.node_id.fmt_short(), str(link.topic)[:10])
        queue = self._subscriptions.get(link.topic)
        if queue is not None:
            queue.put_nowait(NeighborUp(link.node_id))
        return True

    def _unregister(self, link: Link) -> None:
        if not self._hub.remove(link):
            return
        logger.info("neighbor down %s on topic %s", link.node_id.fmt_short(), str(link.topic)[:10])
        queue = self._subscriptions.get(link.topic)
        if queue is not None and not self._closed:
            queue.put_nowait(NeighborDown(link.node_id))

    async def _dial(self, topic: TopicId, peer: NodeAddr) -> bool:
        assert self._session is not None
        timeout = self.config.connect_timeout_s
        for address in peer.direct_addresses:
            if self._hub.is_connected(topic, peer.node_id):
                return True
            url = f"http://{address}{GOSSIP_PATH}"
            try:
                ws = await asyncio.wait_for(
                    self._session.ws_connect(
                        url, heartbeat=self.config.heartbeat_s, max_msg_size=self.config.max_msg_size
                    ),
                    timeout,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                logger.info("dial %s at %s failed: %s", peer.node_id.fmt_short(), address, exc)
                continue

            try:
                await ws.send_json(self._hello_frame(topic))
                frame = _frame_from_message(await ws.receive(timeout=timeout))
                if frame is None or frame.get("v") != PROTOCOL_VERSION or frame.get("t") != "hello":
                    body = frame.get("body") if frame else None
                    logger.warning("peer at %s rejected hello: %s", address, body)
                    await ws.close()
                    continue
                remote, _ = _parse_hello(frame.get("body"))
            except (asyncio.TimeoutError, ConnectionResetError, RuntimeError, ValueError) as exc:
                logger.warning("handshake with %s failed: %s", address, exc)
                await ws.close()
                continue

            if remote.node_id != peer.node_id:
                logger.warning(
                    "peer at %s is %s, expected %s", address, remote.node_id.fmt_short(), peer.node_id.fmt_short()
                )
                await ws.close()
                continue

            link = Link(topic=topic, peer=remote, send=ws.send_json, close=ws.close, outbound=True)
            if not self._register(link):
                await ws.close()
                return self._hub.is_connected(topic, peer.node_id)
            self._spawn(self._serve_link(link, ws))
            return True
        return False

    async def _handle_health(self, _: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.config.heartbeat_s, max_msg_size=self.config.max_msg_size)
        await ws.prepare(request)

        try:
            first = await ws.receive(timeout=self.config.connect_timeout_s)
        except asyncio.TimeoutError:
            await ws.close(code=1002, message=b"handshake timeout")
            return ws
        frame = _frame_from_message(first)
        if frame is None:
            await ws.close(code=1002, message=b"invalid handshake")
            return ws
        if frame.get("v") != PROTOCOL_VERSION:
            await ws.send_json(_error_frame("invalid_request", "unsupported version"))
            await ws.close()
            return ws
        if frame.get("t") != "hello":
            await ws.send_json(_error_frame("invalid_request", "first frame must be hello"))
            await ws.close()
            return ws
        try:
            remote, topic = _parse_hello(frame.get("body"))
        except ValueError as exc:
            await ws.send_json(_error_frame("invalid_request", str(exc)))
            await ws.close()
            return ws
        if topic not in self._subscriptions or self._closed:
            await ws.send_json(_error_frame("unknown_topic", "not subscribed to topic"))
            await ws.close()
            return ws
        if remote.node_id == self.node_id:
            await ws.send_json(_error_frame("invalid_request", "refusing to link to self"))
            await ws.close()
            return ws

        await ws.send_json(self._hello_frame(topic))
        link = Link(topic=topic, peer=remote, send=ws.send_json, close=ws.close, outbound=False)
        if not self._register(link):
            await ws.close()
            return ws

        others = [
            other.peer.to_dict()
            for other in self._hub.links(topic)
            if other.node_id != remote.node_id and other.peer.direct_addresses
        ]
        if others:
            await ws.send_json({"v": PROTOCOL_VERSION, "t": "peers", "body": {"nodes": others}})
        await self._serve_link(link, ws)
        return ws

    async def _serve_link(self, link: Link, ws: Any) -> None:
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning("link to %s errored: %s", link.node_id.fmt_short(), ws.exception())
                    break
                frame = _frame_from_message(msg)
                if frame is None or frame.get("v") != PROTOCOL_VERSION:
                    logger.debug("ignoring malformed frame from %s", link.node_id.fmt_short())
                    continue
                frame_type = frame.get("t")
                if frame_type == "gossip":
                    await self._on_gossip(link, frame)
                elif frame_type == "peers":
                    self._on_peers(link, frame.get("body"))
                elif frame_type == "error":
                    logger.warning("error from %s: %s", link.node_id.fmt_short(), frame.get("body"))
        finally:
            self._unregister(link)
            if not ws.closed:
                await ws.close()

    async def _on_gossip(self, link: Link, frame: dict[str, Any]) -> None:
        body = frame.get("body")
        if not isinstance(body, dict):
            return
        msg_id = body.get("id")
        try:
            content = base64.b64decode(body.get("content"), validate=True)
            origin = NodeId.from_hex(body.get("origin"))
        except (binascii.Error, TypeError, ValueError):
            logger.debug("dropping undecodable gossip from %s", link.node_id.fmt_short())
            return
        if msg_id != message_id(content):
            logger.debug("dropping gossip with mismatched id from %s", link.node_id.fmt_short())
            return
        if self._seen.record(msg_id) or origin == self.node_id:
            return
        queue = self._subscriptions.get(link.topic)
        if queue is not None:
            queue.put_nowait(Received(content=content, delivered_from=origin))
        await self._fan_out(link.topic, frame, exclude=link)

    def _on_peers(self, link: Link, body: object) -> None:
        nodes = body.get("nodes") if isinstance(body, dict) else None
        if not isinstance(nodes, list):
            return
        for entry in nodes:
            try:
                addr = NodeAddr.from_dict(entry)
            except ValueError:
                continue
            if addr.node_id == self.node_id or self._hub.is_connected(link.topic, addr.node_id):
                continue
            if len(self._hub.neighbors(link.topic)) >= self.config.max_neighbors:
                break
            self._spawn(self._dial(link.topic, addr))

    async def _fan_out(self, topic: TopicId, frame: dict[str, Any], exclude: Link | None = None) -> None:
        for link in self._hub.links(topic):
            if link is exclude:
                continue
            try:
                await link.deliver(frame)
            except (ConnectionResetError, RuntimeError, aiohttp.ClientError) as exc:
                logger.warning("dropping link to %s: %s", link.node_id.fmt_short(), exc)
                self._unregister(link)

    async def _broadcast(self, topic: TopicId, content: bytes) -> None:
        if self._closed:
            raise TransportError("gossip node is closed")
        if topic not in self._subscriptions:
            raise TransportError("not subscribed to topic")
        msg_id = message_id(content)
        self._seen.record(msg_id)
        frame = {
            "v": PROTOCOL_VERSION,
            "t": "gossip",
            "body": {
                "id": msg_id,
                "origin": str(self.node_id),
                "content": base64.b64encode(content).decode("ascii"),
            },
        }
        await self._fan_out(topic, frame)
