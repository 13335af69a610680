"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.widgets import Static

from ..conversation import Origin
from ..theme import message_classes, message_colors

WAITING_TEXT = "..."


class MessageBubble(Static):
    """Render a single chat message; assistant bubbles grow while streaming."""

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
        max-width: 85%;
        margin: 0 0 1 0;
        padding: 1 2;
    }
    MessageBubble.message-user {
        align-horizontal: right;
    }
    """

    def __init__(
        self,
        content: str,
        origin: Origin,
        dark_mode: bool = True,
        streaming: bool = False,
        **kwargs: Any,
    ) -> None:
        self.message_content = content
        self.origin = origin
        self.streaming = streaming
        super().__init__(self._renderable(), **kwargs)
        self.apply_mode(dark_mode)

    @property
    def role_prefix(self) -> str:
        """Return a human-friendly role label."""
        return "You" if self.origin is Origin.USER else "Assistant"

    @property
    def display_text(self) -> str:
        if not self.message_content and self.streaming:
            return WAITING_TEXT
        return self.message_content

    def _renderable(self) -> Text:
        # Plain Text so model output is never parsed as console markup.
        return Text.assemble((f"{self.role_prefix}\n", "bold"), self.display_text)

    def set_content(self, text: str, streaming: bool | None = None) -> None:
        """Replace displayed text; no-op when nothing visible changed."""
        if streaming is None:
            streaming = self.streaming
        if text == self.message_content and streaming == self.streaming:
            return
        self.message_content = text
        self.streaming = streaming
        self.update(self._renderable())

    def apply_mode(self, dark_mode: bool) -> None:
        """Restyle the bubble for light or dark mode."""
        self.remove_class("dark", "light")
        self.add_class(*message_classes(self.origin, dark_mode).split())
        background, foreground = message_colors(self.origin, dark_mode)
        self.styles.background = background
        self.styles.color = foreground
