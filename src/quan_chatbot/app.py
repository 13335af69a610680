"""Textual client rendering the streamed conversation."""

from __future__ import annotations

import logging
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Button, Footer, Header, Input, Static

from .config import load_config
from .conversation import TranscriptChange
from .coordinator import SendCoordinator, build_coordinator
from .exceptions import ChannelConnectionError, InvalidStateError
from .logging_utils import configure_logging
from .state import ConnectionState
from .theme import theme_name
from .widgets.conversation import ConversationView
from .widgets.input_box import InputBox

LOGGER = logging.getLogger(__name__)


class QuanChatbotApp(App[None]):
    """Chat UI that streams replies from the generation server."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #app-root {
        layout: vertical;
        width: 100%;
        height: 1fr;
    }

    #conversation {
        height: 1fr;
        padding: 1 2;
    }

    InputBox {
        height: auto;
        padding: 0 1 1 1;
    }

    #message_input {
        width: 1fr;
    }

    #send_button {
        margin-left: 1;
        min-width: 10;
    }

    #status_bar {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    """

    DEFAULT_ACTION_DESCRIPTIONS: dict[str, str] = {
        "send_message": "Send",
        "toggle_dark_mode": "Light/Dark",
        "quit": "Quit",
    }

    def __init__(
        self,
        config: dict[str, dict[str, Any]] | None = None,
        coordinator: SendCoordinator | None = None,
    ) -> None:
        self.config = config or load_config()
        configure_logging(self.config["logging"])
        self.window_title = str(self.config["app"]["title"])
        self.dark_mode = bool(self.config["app"]["dark_mode"])
        self.coordinator = coordinator or build_coordinator(self.config)
        self._binding_specs = self._binding_specs_from_config(self.config)
        self._unsubscribe: Any = None
        self._w_input: Input | None = None
        self._w_conversation: ConversationView | None = None
        self._w_status: Static | None = None
        super().__init__()

    @classmethod
    def _binding_specs_from_config(
        cls, config: dict[str, dict[str, Any]]
    ) -> list[Binding]:
        keybinds = config.get("keybinds", {})
        bindings: list[Binding] = []
        for action_name, description in cls.DEFAULT_ACTION_DESCRIPTIONS.items():
            binding_key = keybinds.get(action_name)
            if isinstance(binding_key, str) and binding_key.strip():
                bindings.append(
                    Binding(
                        key=binding_key.strip(),
                        action=action_name,
                        description=description,
                        show=True,
                    )
                )
        return bindings

    def compose(self) -> ComposeResult:
        """Compose app widgets."""
        yield Header()
        with Container(id="app-root"):
            yield ConversationView(id="conversation")
            yield InputBox()
            yield Static("", id="status_bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Register bindings, subscribe to the transcript, and connect."""
        self.title = self.window_title
        for binding in self._binding_specs:
            self.bind(
                binding.key,
                binding.action,
                description=binding.description,
                show=binding.show,
            )
        self._w_input = self.query_one("#message_input", Input)
        self._w_conversation = self.query_one(ConversationView)
        self._w_status = self.query_one("#status_bar", Static)
        self._apply_theme()

        self._unsubscribe = self.coordinator.store.subscribe(self._on_transcript_changed)
        self.coordinator.channel.on_state_change(self._on_connection_state_changed)
        self._update_status_bar()
        self.run_worker(self._connect(), exclusive=True, group="connect")
        await self._render_transcript()

    async def _connect(self) -> None:
        try:
            await self.coordinator.connect()
            self.sub_title = "Ready"
        except ChannelConnectionError as exc:
            self.sub_title = f"Connection error: {exc}"

    def _on_connection_state_changed(
        self, old_state: ConnectionState, new_state: ConnectionState
    ) -> None:
        LOGGER.info(
            "app.connection.state",
            extra={
                "event": "app.connection.state",
                "old": old_state.value,
                "new": new_state.value,
            },
        )
        self._update_status_bar()

    def _on_transcript_changed(self, change: TranscriptChange) -> None:
        if change.kind == "freeze":
            if change.error is not None:
                self.sub_title = f"Response interrupted: {change.error}"
            else:
                self.sub_title = "Ready"
            self._update_status_bar()
        # Payloads are hints only; rendering always re-reads the snapshot.
        self.call_later(self._render_transcript)

    async def _render_transcript(self) -> None:
        conversation = self._w_conversation or self.query_one(ConversationView)
        store = self.coordinator.store
        open_ref = store.open_ref
        await conversation.sync_transcript(
            store.snapshot(),
            open_ref.index if open_ref is not None else None,
            self.dark_mode,
        )

    def _update_status_bar(self) -> None:
        if self._w_status is None:
            return
        self._w_status.update(
            f"Connection: {self.coordinator.connection_state.value.lower()}"
            f"  |  Session: {self.coordinator.state.value.lower()}"
        )

    def _apply_theme(self) -> None:
        self.theme = theme_name(self.dark_mode)
        conversation = self._w_conversation or self.query_one(ConversationView)
        conversation.apply_mode(self.dark_mode)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle input submit events."""
        if event.input.id == "message_input":
            self.send_user_message()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send_button":
            self.send_user_message()

    def action_send_message(self) -> None:
        """Action invoked by keybinding for sending a message."""
        self.send_user_message()

    def action_toggle_dark_mode(self) -> None:
        self.dark_mode = not self.dark_mode
        self._apply_theme()

    def send_user_message(self) -> None:
        """Submit the input text; rejections are shown without touching the transcript."""
        input_widget = self._w_input or self.query_one("#message_input", Input)
        raw_text = input_widget.value
        if not raw_text.strip():
            self.sub_title = "Cannot send an empty message."
            return
        try:
            self.coordinator.submit(raw_text)
        except InvalidStateError:
            self.sub_title = "A response is still in progress."
            return
        except ChannelConnectionError as exc:
            self.sub_title = f"Connection error: {exc}"
            self.run_worker(self._connect(), exclusive=True, group="connect")
            return
        input_widget.value = ""
        self.sub_title = "Waiting for response..."
        self._update_status_bar()

    async def on_unmount(self) -> None:
        """Release the connection and stop background tasks during shutdown."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        await self.coordinator.close()
