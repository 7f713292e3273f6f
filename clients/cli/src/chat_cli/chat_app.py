"""Curses front end and command line entry point for topic chat."""

from __future__ import annotations

import argparse
import asyncio
import curses
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from gossip_net import GossipNode, GossipReceiver, GossipSender, NodeAddr, NodeConfig, TopicId, TransportError

from chat_cli.chat_model import ChatModel, RenderState
from chat_cli.display import project
from chat_cli.session import ChatSession, KeyEvent, KeyReader, SessionConfig, new_key_queue
from chat_cli.ticket import Ticket, TicketDecodeError

logger = logging.getLogger(__name__)

MODE_OPEN = "open"
MODE_JOIN = "join"


def _normalize_key(key: int | str) -> tuple[str, str | None]:
    if isinstance(key, str):
        if key in ("\n", "\r"):
            return "ENTER", None
        if key in ("\x7f", "\b"):
            return "BACKSPACE", None
        if key == "\x1b":
            return "ESC", None
        if key == "\x03":
            return "CTRL_C", None
        if key == "\x11":
            return "CTRL_Q", None
        if key.isprintable():
            return "CHAR", key
        return "UNKNOWN", None
    if key in (curses.KEY_ENTER, 10, 13):
        return "ENTER", None
    if key in (curses.KEY_BACKSPACE, 127, 8):
        return "BACKSPACE", None
    if key == curses.KEY_UP:
        return "UP", None
    if key == curses.KEY_DOWN:
        return "DOWN", None
    if key == curses.KEY_PPAGE:
        return "PAGE_UP", None
    if key == curses.KEY_NPAGE:
        return "PAGE_DOWN", None
    return "UNKNOWN", None


def _curses_key_reader(
    stdscr: curses.window, lock: threading.Lock, poll_interval_s: float = 0.05
) -> Callable[[], Optional[KeyEvent]]:
    """Non-blocking key poll for the reader thread.

    ``get_wch`` refreshes the window, so it only runs while holding the same
    lock as :func:`_locked_redraw`. The idle sleep happens outside the lock.
    """

    def _read() -> Optional[KeyEvent]:
        with lock:
            try:
                raw = stdscr.get_wch()
            except curses.error:
                raw = None
        if raw is None:
            time.sleep(poll_interval_s)
            return None
        key, char = _normalize_key(raw)
        if key == "UNKNOWN":
            return None
        return KeyEvent(key, char)

    return _read


def _init_default_colors(stdscr: curses.window) -> None:
    """Let erases use the terminal's own background instead of black."""

    if not curses.has_colors():
        return
    try:
        curses.start_color()
        curses.use_default_colors()
        stdscr.bkgd(" ", curses.color_pair(0))
    except curses.error:
        pass


class TerminalScreen:
    """Raw-mode curses screen for the duration of a ``with`` block.

    The terminal is restored on every exit path, including exceptions raised
    inside the block.
    """

    def __init__(self) -> None:
        self.stdscr: curses.window | None = None

    def __enter__(self) -> curses.window:
        stdscr = curses.initscr()
        try:
            curses.noecho()
            curses.raw()
            stdscr.keypad(True)
            curses.set_escdelay(25)
            _init_default_colors(stdscr)
            stdscr.nodelay(True)
        except curses.error:
            self._restore(stdscr)
            raise
        self.stdscr = stdscr
        return stdscr

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.stdscr is not None:
            self._restore(self.stdscr)
            self.stdscr = None

    @staticmethod
    def _restore(stdscr: curses.window) -> None:
        try:
            stdscr.keypad(False)
            curses.noraw()
            curses.echo()
        finally:
            curses.endwin()


def _render_text(window: curses.window, y: int, x: int, text: str, attr: int = 0) -> None:
    max_y, max_x = window.getmaxyx()
    if 0 <= y < max_y and x < max_x - 1:
        window.addnstr(y, x, text, max_x - x - 1, attr)


def _draw_box(window: curses.window, top: int, left: int, height: int, width: int, title: str) -> None:
    if height < 2 or width < 2:
        return
    bottom = top + height - 1
    right = left + width - 1
    window.hline(top, left + 1, curses.ACS_HLINE, width - 2)
    window.hline(bottom, left + 1, curses.ACS_HLINE, width - 2)
    window.vline(top + 1, left, curses.ACS_VLINE, height - 2)
    window.vline(top + 1, right, curses.ACS_VLINE, height - 2)
    window.addch(top, left, curses.ACS_ULCORNER)
    window.addch(top, right, curses.ACS_URCORNER)
    window.addch(bottom, left, curses.ACS_LLCORNER)
    window.addch(bottom, right, curses.ACS_LRCORNER)
    _render_text(window, top, left + 2, f" {title} ")


def draw_screen(stdscr: curses.window, render: RenderState) -> None:
    stdscr.erase()
    max_y, max_x = stdscr.getmaxyx()
    input_height = 3
    chat_height = max(3, max_y - 2 - input_height)
    box_width = max(3, max_x - 2)
    layout = project(render, box_width - 2, chat_height - 2)

    here = len(layout.participants)
    title = f"Chat ({here} known)" if here else "Chat"
    if layout.scroll:
        title += f" [+{layout.scroll}]"
    _draw_box(stdscr, 1, 1, chat_height, box_width, title)
    for row, line in enumerate(layout.transcript):
        _render_text(stdscr, 2 + row, 2, line)

    input_top = 1 + chat_height
    _draw_box(stdscr, input_top, 1, input_height, box_width, f"Message as {render.self_label}")
    _render_text(stdscr, input_top + 1, 2, layout.input_text)
    stdscr.move(min(input_top + 1, max_y - 1), min(2 + layout.cursor_x, max_x - 1))
    stdscr.refresh()


def _locked_redraw(stdscr: curses.window, lock: threading.Lock) -> Callable[[RenderState], None]:
    def _redraw(render: RenderState) -> None:
        with lock:
            # Drawing can fail mid-resize; the next iteration redraws.
            try:
                draw_screen(stdscr, render)
            except curses.error:
                pass

    return _redraw


def _parse_port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {text!r}") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


@dataclass
class ChatOptions:
    mode: str
    name: Optional[str]
    bind_host: str
    bind_port: int
    heartbeat_s: float
    topic: TopicId
    nodes: tuple[NodeAddr, ...] = ()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with everyone on a gossip topic")
    parser.add_argument("-n", "--name", default=None, help="Display name announced to the room")
    parser.add_argument("--bind-host", default="0.0.0.0", help="Host to bind the gossip node on")
    parser.add_argument("-b", "--bind-port", type=_parse_port, default=None, help="Port to bind (0 picks a free one)")
    parser.add_argument(
        "--heartbeat",
        type=float,
        default=SessionConfig.heartbeat_interval_s,
        help="Seconds between presence re-announcements",
    )
    parser.add_argument("--log-file", default=None, help="Write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(MODE_OPEN, help="Open a new chat room")
    join_parser = subparsers.add_parser(MODE_JOIN, help="Join a chat room from a ticket")
    join_parser.add_argument("ticket", help="Ticket printed by a room member")
    return parser


def configure_logging(log_file: str | None, verbose: bool) -> None:
    # Curses owns the terminal, so logs only ever go to a file.
    if log_file is None:
        return
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _ask(prompt: str, input_func: Callable[[str], str], output: TextIO) -> str:
    output.write(prompt)
    output.flush()
    return input_func("").strip()


def resolve_options(
    args: argparse.Namespace,
    *,
    input_func: Callable[[str], str] = input,
    output: TextIO | None = None,
) -> ChatOptions | None:
    """Fill in anything missing from ``args`` by prompting.

    Returns ``None`` when the interactive room choice is invalid. Raises
    :class:`TicketDecodeError` for a bad ticket.
    """

    out = output or sys.stdout
    interactive = args.command is None

    name = args.name
    if name is None and interactive:
        name = _ask("Enter your name (optional): ", input_func, out)
    name = (name or "").strip() or None

    bind_port = args.bind_port
    if bind_port is None and interactive:
        port_text = _ask("Enter port to bind (default 0): ", input_func, out)
        try:
            bind_port = _parse_port(port_text)
        except argparse.ArgumentTypeError:
            bind_port = 0
    bind_port = bind_port or 0

    command = args.command
    ticket_text = getattr(args, "ticket", None)
    if interactive:
        print("Choose an option:", file=out)
        print("1) Open a new chat room", file=out)
        print("2) Join an existing chat room", file=out)
        choice = _ask("Enter choice (1 or 2): ", input_func, out)
        if choice == "1":
            command = MODE_OPEN
        elif choice == "2":
            command = MODE_JOIN
            ticket_text = _ask("Enter ticket to join: ", input_func, out)
        else:
            print("Invalid choice", file=out)
            return None

    if command == MODE_OPEN:
        topic = TopicId.random()
        nodes: tuple[NodeAddr, ...] = ()
        print(f"> opening chat room for topic {topic}", file=out)
    else:
        ticket = Ticket.from_str(ticket_text or "")
        topic, nodes = ticket.topic, ticket.nodes
        print(f"> joining chat room for topic {topic}", file=out)

    return ChatOptions(
        mode=command,
        name=name,
        bind_host=args.bind_host,
        bind_port=bind_port,
        heartbeat_s=args.heartbeat,
        topic=topic,
        nodes=nodes,
    )


async def run_terminal_session(
    model: ChatModel,
    sender: GossipSender,
    receiver: GossipReceiver,
    config: SessionConfig,
) -> None:
    loop = asyncio.get_running_loop()
    keys = new_key_queue()
    screen_lock = threading.Lock()
    with TerminalScreen() as stdscr:
        read_key = _curses_key_reader(stdscr, screen_lock, config.key_poll_interval_s)
        redraw = _locked_redraw(stdscr, screen_lock)
        with KeyReader(read_key, keys, loop):
            await ChatSession(model, sender, receiver, keys, redraw=redraw, config=config).run()


async def run_chat(options: ChatOptions, output: TextIO | None = None) -> int:
    out = output or sys.stdout
    node = GossipNode(NodeConfig(host=options.bind_host, port=options.bind_port))
    try:
        await node.start()
    except OSError as exc:
        print(f"error: cannot bind {options.bind_host}:{options.bind_port}: {exc}", file=sys.stderr)
        return 1

    try:
        print(f"> our node id: {node.node_id}", file=out)
        ticket = Ticket(topic=options.topic, nodes=(node.node_addr(),))
        print(f"> ticket to join us: {ticket}", file=out)
        if options.nodes:
            print(f"> trying to connect to {len(options.nodes)} nodes...", file=out)
        else:
            print("> waiting for nodes to join us...", file=out)
        try:
            sender, receiver = await node.subscribe_and_join(options.topic, options.nodes)
        except TransportError as exc:
            print(f"error: cannot join room: {exc}", file=sys.stderr)
            return 1
        print("> connected!", file=out)

        model = ChatModel(node.node_id, options.name)
        config = SessionConfig(heartbeat_interval_s=options.heartbeat_s)
        try:
            await run_terminal_session(model, sender, receiver, config)
        except TransportError as exc:
            logger.error("session ended: %s", exc)
            print(f"error: session ended: {exc}", file=sys.stderr)
            return 1
        except curses.error as exc:
            print(f"error: cannot use terminal: {exc}", file=sys.stderr)
            return 1
        return 0
    finally:
        await node.close()


def main(
    argv: list[str] | None = None,
    *,
    input_func: Callable[[str], str] = input,
    output: TextIO | None = None,
) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file, args.verbose)

    if not sys.stdin.isatty():
        print("error: an interactive terminal is required", file=sys.stderr)
        return 1
    try:
        options = resolve_options(args, input_func=input_func, output=output)
    except TicketDecodeError as exc:
        print(f"error: invalid ticket: {exc}", file=sys.stderr)
        return 1
    if options is None:
        return 0
    return asyncio.run(run_chat(options, output))


if __name__ == "__main__":
    raise SystemExit(main())
