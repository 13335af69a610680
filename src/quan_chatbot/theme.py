"""Light/dark presentation rules for the conversation view."""

from __future__ import annotations

from .conversation import Origin

DARK_THEME = "textual-dark"
LIGHT_THEME = "textual-light"

# (background, foreground) per origin and mode.
MESSAGE_COLORS: dict[tuple[Origin, bool], tuple[str, str]] = {
    (Origin.USER, True): ("#3b82f6", "#ffffff"),
    (Origin.USER, False): ("#1d4ed8", "#ffffff"),
    (Origin.ASSISTANT, True): ("#3f3f46", "#ffffff"),
    (Origin.ASSISTANT, False): ("#e5e7eb", "#000000"),
}

CHAT_AREA_COLORS: dict[bool, tuple[str, str]] = {
    True: ("#18181b", "#3f3f46"),
    False: ("#f3f4f6", "#d1d5db"),
}


def theme_name(dark_mode: bool) -> str:
    return DARK_THEME if dark_mode else LIGHT_THEME


def message_classes(origin: Origin, dark_mode: bool) -> str:
    """Return the CSS classes for a message bubble."""
    mode = "dark" if dark_mode else "light"
    return f"message-{origin.value} {mode}"


def message_colors(origin: Origin, dark_mode: bool) -> tuple[str, str]:
    """Return ``(background, foreground)`` for a message bubble."""
    return MESSAGE_COLORS[(origin, dark_mode)]


def chat_area_colors(dark_mode: bool) -> tuple[str, str]:
    """Return ``(background, border)`` for the conversation area."""
    return CHAT_AREA_COLORS[dark_mode]
