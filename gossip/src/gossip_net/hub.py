from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

from .types import NodeAddr, NodeId, TopicId


Sender = Callable[[dict], Awaitable[None]]
Closer = Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class Link:
    """One live WebSocket connection to a neighbor on a single topic."""

    topic: TopicId
    peer: NodeAddr
    send: Sender
    close: Closer
    outbound: bool

    @property
    def node_id(self) -> NodeId:
        return self.peer.node_id

    async def deliver(self, frame: dict) -> None:
        await self.send(frame)


class TopicHub:
    """Registers neighbor links per topic and fans frames out to them."""

    def __init__(self) -> None:
        self._links: Dict[TopicId, List[Link]] = {}

    def add(self, link: Link) -> bool:
        links = self._links.setdefault(link.topic, [])
        if any(existing.node_id == link.node_id for existing in links):
            return False
        links.append(link)
        return True

    def remove(self, link: Link) -> bool:
        links = self._links.get(link.topic)
        if not links:
            return False
        try:
            links.remove(link)
        except ValueError:
            return False
        if not links:
            self._links.pop(link.topic, None)
        return True

    def links(self, topic: TopicId) -> List[Link]:
        return list(self._links.get(topic, []))

    def neighbors(self, topic: TopicId) -> List[NodeId]:
        return [link.node_id for link in self._links.get(topic, [])]

    def is_connected(self, topic: TopicId, node_id: NodeId) -> bool:
        return any(link.node_id == node_id for link in self._links.get(topic, []))

    def all_links(self) -> List[Link]:
        return [link for links in self._links.values() for link in links]


class SeenCache:
    """Bounded memory of gossip message ids already handled."""

    def __init__(self, max_size: int = 4096) -> None:
        self.max_size = max_size
        self._order: deque[str] = deque()
        self._ids: set[str] = set()

    def record(self, msg_id: str) -> bool:
        """Remember ``msg_id``; return ``True`` if it had been seen before."""

        if msg_id in self._ids:
            return True
        self._order.append(msg_id)
        self._ids.add(msg_id)
        if len(self._order) > self.max_size:
            evicted = self._order.popleft()
            self._ids.discard(evicted)
        return False

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
