"""Topic-scoped flood gossip over aiohttp WebSockets."""

import logging

from .errors import TransportError
from .hub import Link, SeenCache, TopicHub
from .node import (
    GossipEvent,
    GossipNode,
    GossipReceiver,
    GossipSender,
    NeighborDown,
    NeighborUp,
    NodeConfig,
    Received,
)
from .types import NodeAddr, NodeId, TopicId

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "GossipEvent",
    "GossipNode",
    "GossipReceiver",
    "GossipSender",
    "Link",
    "NeighborDown",
    "NeighborUp",
    "NodeAddr",
    "NodeConfig",
    "NodeId",
    "Received",
    "SeenCache",
    "TopicHub",
    "TopicId",
    "TransportError",
]
