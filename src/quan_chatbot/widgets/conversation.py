"""Scrollable conversation view widget."""

from __future__ import annotations

from collections.abc import Sequence

from textual.containers import VerticalScroll

from ..conversation import TranscriptEntry
from ..theme import chat_area_colors
from .message import MessageBubble


class ConversationView(VerticalScroll):
    """A scrollable container that mirrors the transcript as message bubbles."""

    async def sync_transcript(
        self,
        entries: Sequence[TranscriptEntry],
        open_index: int | None,
        dark_mode: bool,
    ) -> None:
        """Bring bubbles in line with ``entries`` and scroll to the newest one.

        The transcript only grows, so existing bubbles keep their position and
        only their text is refreshed.
        """
        bubbles = list(self.query(MessageBubble))
        new_bubbles: list[MessageBubble] = []
        for index, entry in enumerate(entries):
            streaming = index == open_index
            if index < len(bubbles):
                bubbles[index].set_content(entry.text, streaming=streaming)
            else:
                new_bubbles.append(
                    MessageBubble(
                        content=entry.text,
                        origin=entry.origin,
                        dark_mode=dark_mode,
                        streaming=streaming,
                    )
                )
        if new_bubbles:
            await self.mount_all(new_bubbles)
        self.scroll_end(animate=False)

    def apply_mode(self, dark_mode: bool) -> None:
        """Restyle the area and every mounted bubble."""
        background, border = chat_area_colors(dark_mode)
        self.styles.background = background
        self.styles.border = ("round", border)
        for bubble in self.query(MessageBubble):
            bubble.apply_mode(dark_mode)
