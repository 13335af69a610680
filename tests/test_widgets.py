"""Unit tests for individual widget classes."""

from __future__ import annotations

import unittest

from quan_chatbot.conversation import Origin, TranscriptEntry

try:
    from textual.app import App, ComposeResult
    from textual.widgets import Button, Input

    from quan_chatbot.widgets.conversation import ConversationView
    from quan_chatbot.widgets.input_box import InputBox
    from quan_chatbot.widgets.message import WAITING_TEXT, MessageBubble
except ModuleNotFoundError:
    App = None  # type: ignore[assignment,misc]
    ComposeResult = None  # type: ignore[assignment,misc]
    Button = None  # type: ignore[assignment]
    Input = None  # type: ignore[assignment]
    ConversationView = None  # type: ignore[assignment,misc]
    InputBox = None  # type: ignore[assignment,misc]
    MessageBubble = None  # type: ignore[assignment,misc]
    WAITING_TEXT = "..."


@unittest.skipIf(MessageBubble is None, "textual is not installed")
class MessageBubbleTests(unittest.TestCase):
    """Validate MessageBubble content management and styling."""

    def test_role_prefix(self) -> None:
        self.assertEqual(MessageBubble("hi", Origin.USER).role_prefix, "You")
        self.assertEqual(MessageBubble("", Origin.ASSISTANT).role_prefix, "Assistant")

    def test_bubble_is_labelled_with_role(self) -> None:
        user = MessageBubble("hi", Origin.USER)
        assistant = MessageBubble("", Origin.ASSISTANT, streaming=True)
        self.assertEqual(user._renderable().plain, "You\nhi")
        self.assertEqual(assistant._renderable().plain, f"Assistant\n{WAITING_TEXT}")

    def test_empty_streaming_bubble_shows_waiting_text(self) -> None:
        bubble = MessageBubble("", Origin.ASSISTANT, streaming=True)
        self.assertEqual(bubble.display_text, WAITING_TEXT)
        bubble.set_content("", streaming=False)
        self.assertEqual(bubble.display_text, "")

    def test_set_content_replaces_text(self) -> None:
        bubble = MessageBubble("", Origin.ASSISTANT, streaming=True)
        bubble.set_content("Hi there")
        self.assertEqual(bubble.message_content, "Hi there")
        self.assertTrue(bubble.streaming)

    def test_markup_is_not_interpreted(self) -> None:
        bubble = MessageBubble("[bold]x[/bold]", Origin.ASSISTANT)
        self.assertEqual(bubble.display_text, "[bold]x[/bold]")
        self.assertTrue(bubble._renderable().plain.endswith("[bold]x[/bold]"))

    def test_apply_mode_swaps_classes(self) -> None:
        bubble = MessageBubble("hi", Origin.USER, dark_mode=True)
        self.assertTrue(bubble.has_class("message-user"))
        self.assertTrue(bubble.has_class("dark"))
        bubble.apply_mode(False)
        self.assertTrue(bubble.has_class("light"))
        self.assertFalse(bubble.has_class("dark"))


if App is not None:

    class _ConversationHarness(App[None]):
        def compose(self) -> ComposeResult:
            yield ConversationView(id="conversation")
            yield InputBox()


@unittest.skipIf(App is None, "textual is not installed")
class ConversationViewTests(unittest.IsolatedAsyncioTestCase):
    """Validate transcript synchronisation into bubbles."""

    async def test_sync_mounts_new_and_updates_existing_bubbles(self) -> None:
        app = _ConversationHarness()
        async with app.run_test() as pilot:
            view = app.query_one(ConversationView)
            await view.sync_transcript(
                [
                    TranscriptEntry(Origin.USER, "hello"),
                    TranscriptEntry(Origin.ASSISTANT, ""),
                ],
                1,
                True,
            )
            bubbles = list(view.query(MessageBubble))
            self.assertEqual(len(bubbles), 2)
            self.assertEqual(bubbles[1].display_text, WAITING_TEXT)

            await view.sync_transcript(
                [
                    TranscriptEntry(Origin.USER, "hello"),
                    TranscriptEntry(Origin.ASSISTANT, "Hi"),
                ],
                None,
                True,
            )
            await pilot.pause()
            updated = list(view.query(MessageBubble))
            self.assertIs(updated[1], bubbles[1])
            self.assertEqual(updated[1].message_content, "Hi")
            self.assertFalse(updated[1].streaming)

    async def test_input_box_contains_field_and_button(self) -> None:
        app = _ConversationHarness()
        async with app.run_test():
            self.assertIsInstance(app.query_one("#message_input"), Input)
            self.assertIsInstance(app.query_one("#send_button"), Button)

    async def test_apply_mode_restyles_bubbles(self) -> None:
        app = _ConversationHarness()
        async with app.run_test():
            view = app.query_one(ConversationView)
            await view.sync_transcript([TranscriptEntry(Origin.USER, "hello")], None, True)
            view.apply_mode(False)
            bubble = view.query_one(MessageBubble)
            self.assertTrue(bubble.has_class("light"))


if __name__ == "__main__":
    unittest.main()
