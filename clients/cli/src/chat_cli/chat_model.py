"""Pure-Python state machine for a chat session.

``ChatModel`` owns the whole mutable session state: the message log, the
input line, the scroll offset and the presence directory. Its handlers never
touch the network; they return effects for the event loop to carry out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from gossip_net import NodeId

from chat_cli import protocol
from chat_cli.presence import PresenceDirectory
from chat_cli.protocol import AboutMe, Message, MessageBody, ProtocolError, WhoIsThere

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
QUIT_KEYS = frozenset({"ESC", "CTRL_C", "CTRL_Q"})
ANONYMOUS_SELF_LABEL = "You"


@dataclass(frozen=True)
class Broadcast:
    body: MessageBody


@dataclass(frozen=True)
class Quit:
    pass


Effect = Union[Broadcast, Quit]


@dataclass(frozen=True)
class RenderState:
    messages: tuple[tuple[str, str], ...]
    input_text: str
    scroll: int
    participants: tuple[str, ...]
    self_label: str


class ChatModel:
    def __init__(self, node_id: NodeId, display_name: Optional[str] = None) -> None:
        self.node_id = node_id
        self.display_name = display_name or None
        self.messages: List[tuple[str, str]] = []
        self.input_text = ""
        self.scroll = 0
        self.presence = PresenceDirectory()

    @property
    def self_label(self) -> str:
        return self.display_name or ANONYMOUS_SELF_LABEL

    def _about_me(self, name: str) -> Broadcast:
        return Broadcast(AboutMe(from_=self.node_id, name=name))

    def append_message(self, label: str, text: str) -> None:
        self.messages.append((label, text))

    def scroll_transcript(self, delta: int) -> None:
        self.scroll = max(0, self.scroll + delta)

    def startup(self) -> List[Effect]:
        """Register ourselves locally and probe the room for participants."""

        effects: List[Effect] = [Broadcast(WhoIsThere(from_=self.node_id))]
        if self.display_name is not None:
            self.presence.register_self(self.node_id, self.display_name)
            effects.append(self._about_me(self.display_name))
        return effects

    def handle_key(self, key: str, char: Optional[str] = None) -> List[Effect]:
        """Handle a normalized key and return the effects it causes."""

        if key in QUIT_KEYS:
            return [Quit()]
        if key == "ENTER":
            text = self.input_text.strip()
            if not text:
                return []
            self.append_message(self.self_label, text)
            self.input_text = ""
            return [Broadcast(Message(from_=self.node_id, text=text))]
        if key == "BACKSPACE":
            self.input_text = self.input_text[:-1]
        elif key == "UP":
            self.scroll_transcript(1)
        elif key == "DOWN":
            self.scroll_transcript(-1)
        elif key == "PAGE_UP":
            self.scroll_transcript(PAGE_SIZE)
        elif key == "PAGE_DOWN":
            self.scroll_transcript(-PAGE_SIZE)
        elif key == "CHAR" and char:
            self.input_text += char
        return []

    def handle_inbound(self, content: bytes) -> List[Effect]:
        try:
            message = protocol.decode(content)
        except ProtocolError as exc:
            logger.debug("discarding corrupt message: %s", exc)
            return []

        body = message.body
        if isinstance(body, WhoIsThere):
            if body.from_ != self.node_id and self.display_name is not None:
                return [self._about_me(self.display_name)]
            return []
        if isinstance(body, AboutMe):
            notice = self.presence.observe_about_me(body.from_, body.name)
            if notice is not None:
                self.append_message(*notice)
            return []
        if isinstance(body, Message):
            self.append_message(self.presence.resolve_label(body.from_), body.text)
            return []
        raise TypeError(f"unsupported message body: {body!r}")

    def heartbeat(self) -> List[Effect]:
        if self.display_name is None:
            return []
        logger.debug("re-announcing as %s", self.display_name)
        return [self._about_me(self.display_name)]

    def render(self) -> RenderState:
        return RenderState(
            messages=tuple(self.messages),
            input_text=self.input_text,
            scroll=self.scroll,
            participants=tuple(sorted(self.presence.names().values())),
            self_label=self.self_label,
        )
