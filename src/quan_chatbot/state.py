"""Session state machine governing sends and fragment routing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging

from .conversation import ConversationStore, MessageRef
from .exceptions import (
    GenerationStreamError,
    InvalidStateError,
    StaleReferenceError,
)

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Finite state machine for the active send lifecycle."""

    IDLE = "IDLE"
    SENDING = "SENDING"
    STREAMING = "STREAMING"


class ConnectionState(str, Enum):
    """Lifecycle of the duplex connection to the generation server."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    READY = "READY"
    FAULTED = "FAULTED"


@dataclass(eq=False)
class PendingSend:
    """The one outstanding user message and the placeholder it will fill."""

    text: str
    user_ref: MessageRef
    assistant_ref: MessageRef


@dataclass(frozen=True)
class SendOutcome:
    """Terminal result of a pending send."""

    text: str
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionStateMachine:
    """Serialize writers to the conversation store.

    The machine is the only writer of the store. A submit outside ``IDLE`` is
    rejected before anything is mutated, so at most one assistant message is
    ever open.
    """

    def __init__(self, store: ConversationStore | None = None) -> None:
        self.store = store or ConversationStore()
        self._state = SessionState.IDLE
        self._pending: PendingSend | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending(self) -> PendingSend | None:
        return self._pending

    def can_submit(self) -> bool:
        """Return True when message submission is allowed."""
        return self._state == SessionState.IDLE

    def begin(self, text: str) -> PendingSend:
        """Commit the user message and an empty placeholder, entering ``SENDING``."""
        if self._state != SessionState.IDLE:
            raise InvalidStateError("A response is still in progress.")
        user_ref = self.store.append_user(text)
        assistant_ref = self.store.append_assistant_placeholder()
        self._pending = PendingSend(text, user_ref, assistant_ref)
        self._transition(SessionState.SENDING)
        return self._pending

    def acknowledge(self, pending: PendingSend) -> None:
        """Mark the prompt as accepted by the channel, entering ``STREAMING``."""
        self._require_current(pending)
        if self._state != SessionState.SENDING:
            raise InvalidStateError(
                f"Cannot acknowledge a prompt while {self._state.value}."
            )
        self._transition(SessionState.STREAMING)

    def fold(self, pending: PendingSend, fragment: str) -> None:
        """Append one fragment to the placeholder of ``pending``."""
        self._require_current(pending)
        if self._state != SessionState.STREAMING:
            raise StaleReferenceError(
                f"Fragments are not accepted while {self._state.value}."
            )
        self.store.extend(pending.assistant_ref, fragment)

    def finish(
        self, pending: PendingSend, error: BaseException | None = None
    ) -> SendOutcome | None:
        """Freeze the placeholder and return to ``IDLE``.

        Returns ``None`` when ``pending`` was already finished or reset.
        """
        if pending is not self._pending:
            return None
        text = self.store.snapshot()[pending.assistant_ref.index].text
        self._pending = None
        self._transition(SessionState.IDLE)
        # Listeners observe IDLE and may submit from the freeze notification.
        self.store.freeze(pending.assistant_ref, error)
        return SendOutcome(text=text, error=error)

    def reset(self) -> SendOutcome | None:
        """Abort the outstanding send, keeping its partial text frozen."""
        pending = self._pending
        if pending is None:
            return None
        LOGGER.info("session.reset", extra={"event": "session.reset"})
        return self.finish(pending, GenerationStreamError("Session was reset."))

    def _require_current(self, pending: PendingSend) -> None:
        if pending is not self._pending:
            raise StaleReferenceError("Pending send is no longer active.")

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        self._state = new_state
        LOGGER.debug(
            "session.state.transition",
            extra={
                "event": "session.state.transition",
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )
