import unittest

from chat_cli.chat_model import RenderState
from chat_cli.display import format_entry, project, transcript_text, visible_window, wrap_lines


def _render(messages=(), input_text="", scroll=0, participants=()) -> RenderState:
    return RenderState(
        messages=tuple(messages),
        input_text=input_text,
        scroll=scroll,
        participants=tuple(participants),
        self_label="alice",
    )


class DisplayTests(unittest.TestCase):
    def test_entries_are_label_colon_text(self):
        self.assertEqual(format_entry("bob", "hi"), "bob: hi")
        self.assertEqual(transcript_text([("bob", "hi"), ("System", "carol joined")]), "bob: hi\nSystem: carol joined")
        self.assertEqual(transcript_text([]), "")

    def test_wrap_lines_respects_width(self):
        lines = wrap_lines("bob: the quick brown fox jumps", 10)
        self.assertTrue(all(len(line) <= 10 for line in lines))
        self.assertEqual(" ".join(lines), "bob: the quick brown fox jumps")
        self.assertEqual(wrap_lines("", 10), [])
        self.assertEqual(wrap_lines("a\nb", 10), ["a", "b"])

    def test_visible_window_anchors_to_bottom(self):
        lines = [str(i) for i in range(10)]
        self.assertEqual(visible_window(lines, 3, 0), (["7", "8", "9"], 0))
        self.assertEqual(visible_window(lines, 3, 2), (["5", "6", "7"], 2))

    def test_visible_window_clamps_scroll(self):
        lines = [str(i) for i in range(5)]
        self.assertEqual(visible_window(lines, 3, 100), (["0", "1", "2"], 2))
        self.assertEqual(visible_window(lines, 10, 4), (lines, 0))
        self.assertEqual(visible_window(lines, 0, 0), ([], 0))

    def test_project_places_cursor_after_input(self):
        layout = project(_render(messages=[("bob", "hi")], input_text="typing"), 40, 5)
        self.assertEqual(layout.transcript, ("bob: hi",))
        self.assertEqual(layout.input_text, "typing")
        self.assertEqual(layout.cursor_x, 6)

    def test_project_keeps_tail_of_long_input(self):
        layout = project(_render(input_text="abcdefghij"), 5, 5)
        self.assertEqual(layout.input_text, "ghij")
        self.assertEqual(layout.cursor_x, 4)

    def test_project_reports_clamped_scroll_and_participants(self):
        messages = [("bob", f"line {i}") for i in range(4)]
        layout = project(_render(messages=messages, scroll=50, participants=("alice", "bob")), 40, 2)
        self.assertEqual(layout.transcript, ("bob: line 0", "bob: line 1"))
        self.assertEqual(layout.scroll, 2)
        self.assertEqual(layout.participants, ("alice", "bob"))


if __name__ == "__main__":
    unittest.main()
