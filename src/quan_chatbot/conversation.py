"""Append-only conversation transcript with change notifications."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import json
import logging
import threading
from typing import Literal, NamedTuple

from .exceptions import InvalidStateError, StaleReferenceError

LOGGER = logging.getLogger(__name__)


class Origin(str, Enum):
    """Participant that produced a message."""

    USER = "user"
    ASSISTANT = "assistant"


class TranscriptEntry(NamedTuple):
    """Read-only view of one message."""

    origin: Origin
    text: str


@dataclass(frozen=True)
class MessageRef:
    """Opaque handle identifying a message by transcript position."""

    index: int


@dataclass(frozen=True)
class TranscriptChange:
    """Notification payload describing which message changed and how."""

    kind: Literal["append", "extend", "freeze"]
    index: int
    error: BaseException | None = None
    sequence: int = 0


TranscriptListener = Callable[[TranscriptChange], None]


@dataclass
class _Message:
    origin: Origin
    text: str = ""


class ConversationStore:
    """Hold the ordered transcript shared by the UI and the stream task.

    Only one assistant message may be open at a time. Mutations run under a
    lock so the store stays consistent even if I/O and UI live on different
    threads. Listeners are called after the lock is released, so changes made
    from different threads may be delivered out of order; each change carries
    a ``sequence`` number assigned with the mutation, and listeners that care
    should re-read :meth:`snapshot`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: list[_Message] = []
        self._open_index: int | None = None
        self._listeners: list[TranscriptListener] = []
        self._sequence = 0

    @property
    def message_count(self) -> int:
        """Return the number of stored messages."""
        return len(self._messages)

    @property
    def open_ref(self) -> MessageRef | None:
        """Return the assistant message still receiving fragments, if any."""
        index = self._open_index
        return MessageRef(index) if index is not None else None

    def is_open(self, ref: MessageRef) -> bool:
        """Return True when ``ref`` is the currently open assistant message."""
        return self._open_index == ref.index

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        """Register a change listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: TranscriptListener) -> None:
        """Remove a previously registered listener."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def append_user(self, text: str) -> MessageRef:
        """Append an immutable user message.

        Raises:
            InvalidStateError: if the previous user message is still awaiting
                or receiving its response.
        """
        with self._lock:
            if self._awaiting_response():
                raise InvalidStateError("A response is still in progress.")
            self._messages.append(_Message(Origin.USER, text))
            index = len(self._messages) - 1
            change, listeners = self._record("append", index)
        self._notify(change, listeners)
        return MessageRef(index)

    def append_assistant_placeholder(self) -> MessageRef:
        """Append an empty, open assistant message after the latest user message."""
        with self._lock:
            if not self._messages or self._messages[-1].origin is not Origin.USER:
                raise InvalidStateError(
                    "An assistant placeholder must follow a user message."
                )
            self._messages.append(_Message(Origin.ASSISTANT))
            index = len(self._messages) - 1
            self._open_index = index
            change, listeners = self._record("append", index)
        self._notify(change, listeners)
        return MessageRef(index)

    def extend(self, ref: MessageRef, fragment: str) -> None:
        """Append ``fragment`` verbatim to the open assistant message."""
        with self._lock:
            if self._open_index != ref.index:
                raise StaleReferenceError(
                    f"Message {ref.index} is not open for streaming."
                )
            if not fragment:
                return
            self._messages[ref.index].text += fragment
            change, listeners = self._record("extend", ref.index)
        self._notify(change, listeners)

    def freeze(self, ref: MessageRef, error: BaseException | None = None) -> bool:
        """Close the open assistant message; return False if it was already closed."""
        with self._lock:
            if self._open_index != ref.index:
                return False
            self._open_index = None
            change, listeners = self._record("freeze", ref.index, error)
        self._notify(change, listeners)
        return True

    def snapshot(self) -> list[TranscriptEntry]:
        """Return a consistent copy of the transcript."""
        with self._lock:
            return [TranscriptEntry(m.origin, m.text) for m in self._messages]

    def export_json(self) -> str:
        """Export the transcript using stable list and field ordering."""
        stable_messages = [
            {"role": entry.origin.value, "content": entry.text}
            for entry in self.snapshot()
        ]
        return json.dumps(
            stable_messages, ensure_ascii=False, separators=(",", ":"), sort_keys=False
        )

    def _awaiting_response(self) -> bool:
        if self._open_index is not None:
            return True
        return bool(self._messages) and self._messages[-1].origin is Origin.USER

    def _record(
        self,
        kind: Literal["append", "extend", "freeze"],
        index: int,
        error: BaseException | None = None,
    ) -> tuple[TranscriptChange, list[TranscriptListener]]:
        # Caller holds the lock.
        self._sequence += 1
        change = TranscriptChange(kind, index, error, self._sequence)
        return change, list(self._listeners)

    def _notify(
        self, change: TranscriptChange, listeners: list[TranscriptListener]
    ) -> None:
        for listener in listeners:
            try:
                listener(change)
            except Exception as exc:
                LOGGER.error(
                    "conversation.listener.failed",
                    extra={
                        "event": "conversation.listener.failed",
                        "change": change.kind,
                        "error": str(exc),
                    },
                )
