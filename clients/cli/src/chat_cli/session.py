"""Session event loop.

A single asyncio task owns the :class:`ChatModel`. Each iteration waits for
the first of: a key from the key reader thread, a gossip event, the heartbeat
deadline, or the idle timeout. It then applies exactly one transition,
performs the resulting effects and redraws.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from gossip_net import GossipEvent, GossipReceiver, GossipSender, Received

from chat_cli import protocol
from chat_cli.chat_model import Broadcast, ChatModel, Effect, Quit, RenderState

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    heartbeat_interval_s: float = 5.0
    idle_interval_s: float = 0.1
    key_poll_interval_s: float = 0.05


@dataclass(frozen=True)
class KeyEvent:
    key: str
    char: Optional[str] = None


def new_key_queue() -> "asyncio.Queue[KeyEvent]":
    """Single-slot handoff between the key reader and the event loop."""

    return asyncio.Queue(maxsize=1)


class KeyReader:
    """Runs a blocking key read on its own thread.

    ``read_key`` should block for at most a short poll interval and return
    ``None`` when nothing was pressed. Keys are handed to the loop one at a
    time; the thread waits while the slot is full, so ordering is preserved.
    """

    def __init__(
        self,
        read_key: Callable[[], Optional[KeyEvent]],
        queue: "asyncio.Queue[KeyEvent]",
        loop: asyncio.AbstractEventLoop,
        *,
        handoff_poll_s: float = 0.1,
    ) -> None:
        self._read_key = read_key
        self._queue = queue
        self._loop = loop
        self._handoff_poll_s = handoff_poll_s
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="key-reader", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float = 0.5) -> None:
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def __enter__(self) -> "KeyReader":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _hand_off(self, event: KeyEvent) -> None:
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(event), self._loop)
        except RuntimeError:
            self._stop_event.set()
            return
        while not self._stop_event.is_set():
            try:
                future.result(timeout=self._handoff_poll_s)
                return
            except concurrent.futures.TimeoutError:
                continue
        future.cancel()

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                event = self._read_key()
                if event is not None:
                    self._hand_off(event)
        except Exception:  # pragma: no cover - terminal tolerance
            logger.exception("key reader stopped")


class ChatSession:
    def __init__(
        self,
        model: ChatModel,
        sender: GossipSender,
        receiver: GossipReceiver,
        keys: "asyncio.Queue[KeyEvent]",
        *,
        redraw: Callable[[RenderState], None] | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self.model = model
        self.config = config or SessionConfig()
        self._sender = sender
        self._receiver = receiver
        self._keys = keys
        self._redraw = redraw or (lambda _render: None)

    async def _perform(self, effects: List[Effect]) -> bool:
        """Carry out ``effects`` in order; return ``True`` on quit."""

        for effect in effects:
            if isinstance(effect, Quit):
                return True
            if isinstance(effect, Broadcast):
                await self._sender.broadcast(protocol.encode(effect.body))
        return False

    def _on_gossip(self, event: GossipEvent) -> List[Effect]:
        if isinstance(event, Received):
            return self.model.handle_inbound(event.content)
        logger.debug("gossip event %s", event)
        return []

    async def run(self) -> None:
        """Drive the session until a quit key.

        Broadcast and receive failures (:class:`gossip_net.TransportError`)
        propagate to the caller.
        """

        loop = asyncio.get_running_loop()
        heartbeat_s = self.config.heartbeat_interval_s
        key_task: asyncio.Future | None = None
        net_task: asyncio.Future | None = None
        prefer_keys = True

        try:
            if await self._perform(self.model.startup()):
                return
            next_heartbeat = loop.time() + heartbeat_s

            while True:
                self._redraw(self.model.render())
                if key_task is None:
                    key_task = asyncio.ensure_future(self._keys.get())
                if net_task is None:
                    net_task = asyncio.ensure_future(self._receiver.recv())

                timeout = max(0.0, min(self.config.idle_interval_s, next_heartbeat - loop.time()))
                await asyncio.wait({key_task, net_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                now = loop.time()
                # An overdue heartbeat goes first; keys and network alternate when both are ready.
                if now >= next_heartbeat:
                    next_heartbeat = now + heartbeat_s
                    effects = self.model.heartbeat()
                elif key_task.done() and (prefer_keys or not net_task.done()):
                    event = key_task.result()
                    key_task = None
                    prefer_keys = False
                    effects = self.model.handle_key(event.key, event.char)
                elif net_task.done():
                    gossip_event = net_task.result()
                    net_task = None
                    prefer_keys = True
                    effects = self._on_gossip(gossip_event)
                else:
                    continue

                if await self._perform(effects):
                    return
        finally:
            pending = [task for task in (key_task, net_task) if task is not None and not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
