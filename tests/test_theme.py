"""Tests for light/dark presentation rules."""

from __future__ import annotations

import unittest

from quan_chatbot.conversation import Origin
from quan_chatbot.theme import (
    chat_area_colors,
    message_classes,
    message_colors,
    theme_name,
)


class ThemeTests(unittest.TestCase):
    def test_theme_name_follows_mode(self) -> None:
        self.assertEqual(theme_name(True), "textual-dark")
        self.assertEqual(theme_name(False), "textual-light")

    def test_message_classes(self) -> None:
        self.assertEqual(message_classes(Origin.USER, True), "message-user dark")
        self.assertEqual(
            message_classes(Origin.ASSISTANT, False), "message-assistant light"
        )

    def test_assistant_light_mode_uses_dark_text(self) -> None:
        self.assertEqual(message_colors(Origin.ASSISTANT, False), ("#e5e7eb", "#000000"))
        self.assertEqual(message_colors(Origin.USER, True)[1], "#ffffff")

    def test_chat_area_colors_differ_per_mode(self) -> None:
        self.assertNotEqual(chat_area_colors(True), chat_area_colors(False))


if __name__ == "__main__":
    unittest.main()
