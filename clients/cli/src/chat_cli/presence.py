from __future__ import annotations

from typing import Dict, Optional

from gossip_net import NodeId

SYSTEM_LABEL = "System"


class PresenceDirectory:
    """Display names last announced by each participant.

    Entries are only written by ``AboutMe`` announcements (and once for the
    local participant at startup). The newest arrival wins and nothing is
    ever evicted, so a participant who leaves silently stays listed.
    """

    def __init__(self) -> None:
        self._names: Dict[NodeId, str] = {}

    def register_self(self, node_id: NodeId, name: str) -> None:
        self._names[node_id] = name

    def observe_about_me(self, from_: NodeId, name: str) -> Optional[tuple[str, str]]:
        """Record ``name`` for ``from_``.

        Returns the ``(label, text)`` notice to log when this is the first
        announcement seen from ``from_``, otherwise ``None``.
        """

        notice = None
        if from_ not in self._names:
            notice = (SYSTEM_LABEL, f"{name} joined")
        self._names[from_] = name
        return notice

    def resolve_label(self, node_id: NodeId) -> str:
        name = self._names.get(node_id)
        if name is not None:
            return name
        return node_id.fmt_short()

    def contains(self, node_id: NodeId) -> bool:
        return node_id in self._names

    def names(self) -> Dict[NodeId, str]:
        return dict(self._names)

    def __len__(self) -> int:
        return len(self._names)
