import unittest

from gossip_net import NodeId

from chat_cli import protocol
from chat_cli.chat_model import PAGE_SIZE, Broadcast, ChatModel, Quit
from chat_cli.protocol import AboutMe, Message, WhoIsThere


def _type(model: ChatModel, text: str) -> None:
    for char in text:
        model.handle_key("CHAR", char)


def _deliver(model: ChatModel, effects) -> list:
    """Feed broadcast effects into ``model`` the way gossip would."""

    replies = []
    for effect in effects:
        if isinstance(effect, Broadcast):
            replies.extend(model.handle_inbound(protocol.encode(effect.body)))
    return replies


class ChatModelKeyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.node_id = NodeId.random()
        self.model = ChatModel(self.node_id, "alice")

    def test_typing_and_backspace_edit_input(self):
        _type(self.model, "hey")
        self.model.handle_key("BACKSPACE")
        self.assertEqual(self.model.input_text, "he")
        self.model.handle_key("BACKSPACE")
        self.model.handle_key("BACKSPACE")
        self.model.handle_key("BACKSPACE")
        self.assertEqual(self.model.input_text, "")

    def test_enter_appends_and_broadcasts_trimmed_text(self):
        _type(self.model, "  hello world  ")
        effects = self.model.handle_key("ENTER")

        self.assertEqual(effects, [Broadcast(Message(from_=self.node_id, text="hello world"))])
        self.assertEqual(self.model.messages, [("alice", "hello world")])
        self.assertEqual(self.model.input_text, "")

    def test_enter_on_blank_input_does_nothing(self):
        _type(self.model, "   ")
        self.assertEqual(self.model.handle_key("ENTER"), [])
        self.assertEqual(self.model.messages, [])
        self.assertEqual(self.model.input_text, "   ")

    def test_anonymous_user_is_labelled_you(self):
        model = ChatModel(NodeId.random())
        _type(model, "hi")
        model.handle_key("ENTER")
        self.assertEqual(model.messages, [("You", "hi")])
        self.assertEqual(model.render().self_label, "You")

    def test_scroll_is_clamped_at_zero(self):
        self.model.handle_key("DOWN")
        self.assertEqual(self.model.scroll, 0)
        self.model.handle_key("UP")
        self.model.handle_key("UP")
        self.assertEqual(self.model.scroll, 2)
        self.model.handle_key("PAGE_UP")
        self.assertEqual(self.model.scroll, 2 + PAGE_SIZE)
        self.model.handle_key("PAGE_DOWN")
        self.model.handle_key("PAGE_DOWN")
        self.assertEqual(self.model.scroll, 0)

    def test_quit_keys(self):
        for key in ("ESC", "CTRL_C", "CTRL_Q"):
            with self.subTest(key=key):
                self.assertEqual(self.model.handle_key(key), [Quit()])

    def test_plain_q_is_typed(self):
        self.assertEqual(self.model.handle_key("CHAR", "q"), [])
        self.assertEqual(self.model.input_text, "q")

    def test_unknown_key_is_ignored(self):
        self.assertEqual(self.model.handle_key("F5"), [])
        self.assertEqual(self.model.input_text, "")


class ChatModelInboundTests(unittest.TestCase):
    def setUp(self) -> None:
        self.node_id = NodeId.random()
        self.peer = NodeId.random()
        self.model = ChatModel(self.node_id, "alice")

    def test_startup_probes_and_announces(self):
        effects = self.model.startup()
        self.assertEqual(
            effects,
            [
                Broadcast(WhoIsThere(from_=self.node_id)),
                Broadcast(AboutMe(from_=self.node_id, name="alice")),
            ],
        )
        self.assertIn("alice", self.model.render().participants)

    def test_anonymous_startup_only_probes(self):
        model = ChatModel(self.node_id)
        self.assertEqual(model.startup(), [Broadcast(WhoIsThere(from_=self.node_id))])

    def test_who_is_there_from_peer_gets_about_me(self):
        effects = self.model.handle_inbound(protocol.encode(WhoIsThere(from_=self.peer)))
        self.assertEqual(effects, [Broadcast(AboutMe(from_=self.node_id, name="alice"))])

    def test_own_who_is_there_is_not_answered(self):
        self.assertEqual(self.model.handle_inbound(protocol.encode(WhoIsThere(from_=self.node_id))), [])

    def test_anonymous_participant_does_not_answer(self):
        model = ChatModel(self.node_id)
        self.assertEqual(model.handle_inbound(protocol.encode(WhoIsThere(from_=self.peer))), [])

    def test_about_me_logs_joined_once(self):
        self.model.handle_inbound(protocol.encode(AboutMe(from_=self.peer, name="bob")))
        self.model.handle_inbound(protocol.encode(AboutMe(from_=self.peer, name="bob")))
        self.assertEqual(self.model.messages, [("System", "bob joined")])
        self.assertEqual(self.model.render().participants, ("bob",))

    def test_message_is_labelled_by_name_or_short_id(self):
        self.model.handle_inbound(protocol.encode(Message(from_=self.peer, text="before")))
        self.model.handle_inbound(protocol.encode(AboutMe(from_=self.peer, name="bob")))
        self.model.handle_inbound(protocol.encode(Message(from_=self.peer, text="after")))

        self.assertEqual(
            self.model.messages,
            [(self.peer.fmt_short(), "before"), ("System", "bob joined"), ("bob", "after")],
        )

    def test_corrupt_input_is_discarded(self):
        self.assertEqual(self.model.handle_inbound(b"\x00garbage"), [])
        self.assertEqual(self.model.messages, [])
        self.model.handle_inbound(protocol.encode(Message(from_=self.peer, text="still here")))
        self.assertEqual(len(self.model.messages), 1)

    def test_heartbeat_reannounces_only_when_named(self):
        self.assertEqual(self.model.heartbeat(), [Broadcast(AboutMe(from_=self.node_id, name="alice"))])
        self.assertEqual(ChatModel(self.peer).heartbeat(), [])

    def test_cleared_name_stops_announcements(self):
        self.model.display_name = None
        self.assertEqual(self.model.heartbeat(), [])
        self.assertEqual(self.model.handle_inbound(protocol.encode(WhoIsThere(from_=self.peer))), [])

    def test_render_snapshot_is_immutable(self):
        _type(self.model, "x")
        render = self.model.render()
        _type(self.model, "y")
        self.assertEqual(render.input_text, "x")
        self.assertEqual(render.messages, ())


class ChatModelDiscoveryTests(unittest.TestCase):
    def test_late_joiner_learns_existing_participant(self):
        a = ChatModel(NodeId.random(), "alice")
        b = ChatModel(NodeId.random(), "bob")

        # a started alone; b's startup reaches a.
        a.startup()
        replies = _deliver(a, b.startup())
        self.assertEqual(a.messages, [("System", "bob joined")])

        # a answers b's WhoIsThere with its own AboutMe.
        _deliver(b, replies)
        self.assertEqual(b.messages, [("System", "alice joined")])

        _type(a, "hello")
        _deliver(b, a.handle_key("ENTER"))
        self.assertEqual(b.messages[-1], ("alice", "hello"))
        self.assertEqual(b.render().participants, ("alice", "bob"))


if __name__ == "__main__":
    unittest.main()
