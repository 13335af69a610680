"""User-facing send action tying the session, store, and channel together."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
import logging
from typing import Any

from .channel import ChannelHandle, GenerationChannel
from .conversation import ConversationStore
from .exceptions import (
    ChannelConnectionError,
    GenerationStreamError,
    InvalidStateError,
    SendError,
)
from .state import (
    ConnectionState,
    PendingSend,
    SendOutcome,
    SessionState,
    SessionStateMachine,
)

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class Submission:
    """An accepted send and the deferred notification of how it ended."""

    pending: PendingSend
    outcome: asyncio.Future[SendOutcome]

    async def wait(self) -> SendOutcome:
        """Wait for the stream to end without cancelling it on timeout."""
        return await asyncio.shield(self.outcome)


class SendCoordinator:
    """Validate sends synchronously and drive the stream in the background.

    Only :class:`InvalidStateError` and :class:`ChannelConnectionError` are
    raised from :meth:`submit`. Everything that goes wrong after acceptance
    freezes the placeholder and is reported through the store's freeze
    notification and the submission's ``outcome``.
    """

    def __init__(
        self,
        channel: GenerationChannel,
        endpoint: str,
        session: SessionStateMachine | None = None,
        *,
        auto_reconnect: bool = True,
        reconnect_attempts: int = 3,
        reconnect_backoff_seconds: float = 0.5,
    ) -> None:
        self.channel = channel
        self.endpoint = endpoint
        self.session = session or SessionStateMachine()
        self.auto_reconnect = auto_reconnect
        self.reconnect_attempts = max(1, reconnect_attempts)
        self.reconnect_backoff_seconds = max(0.0, reconnect_backoff_seconds)
        self._active: Submission | None = None
        self._drive_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[ChannelHandle] | None = None

    @property
    def store(self) -> ConversationStore:
        return self.session.store

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def connection_state(self) -> ConnectionState:
        return self.channel.state

    @property
    def reconnecting(self) -> bool:
        task = self._reconnect_task
        return task is not None and not task.done()

    async def connect(self) -> None:
        """Establish the connection before the first submit.

        Raises:
            ChannelConnectionError: if the server cannot be reached.
        """
        if self.reconnecting:
            assert self._reconnect_task is not None
            await asyncio.shield(self._reconnect_task)
            return
        if self.channel.handle is not None:
            return
        await self.channel.connect(self.endpoint)

    def submit(self, text: str) -> Submission:
        """Accept ``text`` for sending or reject it without side effects.

        Must be called from a running event loop.

        Raises:
            ValueError: if ``text`` is blank.
            InvalidStateError: if a response is still in progress.
            ChannelConnectionError: if there is no connection and none is
                being re-established.
        """
        if not text.strip():
            raise ValueError("Cannot send an empty message.")
        if not self.session.can_submit():
            LOGGER.info(
                "coordinator.submit.rejected",
                extra={
                    "event": "coordinator.submit.rejected",
                    "session_state": self.session.state.value,
                },
            )
            raise InvalidStateError("A response is still in progress.")
        if self.channel.handle is None and not self.reconnecting:
            raise ChannelConnectionError(
                f"Not connected to the generation server ({self.channel.state.value})."
            )

        loop = asyncio.get_running_loop()
        pending = self.session.begin(text)
        submission = Submission(pending, loop.create_future())
        self._active = submission
        self._drive_task = loop.create_task(self._drive(submission))
        self._drive_task.add_done_callback(self._log_task_exception)
        LOGGER.info(
            "coordinator.submit.accepted",
            extra={"event": "coordinator.submit.accepted", "chars": len(text)},
        )
        return submission

    async def reset(self) -> SendOutcome | None:
        """Abort the outstanding send and drop the connection carrying it."""
        task = self._drive_task
        submission = self._active
        # Cancelling the drain detaches the handle from the channel.
        handle = self.channel.handle
        outcome = self.session.reset()
        self._resolve(submission, outcome)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if outcome is not None:
            if handle is not None:
                await self.channel.close(handle)
            self._schedule_reconnect()
        return outcome

    async def close(self) -> None:
        """Reset the session and release every connection and task."""
        self.auto_reconnect = False
        await self.reset()
        task = self._reconnect_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, ChannelConnectionError):
                pass
        handle = self.channel.handle
        if handle is not None:
            await self.channel.close(handle)

    async def _drive(self, submission: Submission) -> None:
        error: BaseException | None = None
        try:
            error = await self._exchange(submission.pending)
        except (ChannelConnectionError, SendError) as exc:
            error = exc
        except BaseException as exc:
            # Never leave the session stuck outside IDLE.
            self._complete(
                submission,
                exc
                if isinstance(exc, Exception)
                else GenerationStreamError("Send was cancelled."),
            )
            raise
        # Freeze listeners may submit again, so schedule the reconnect first.
        if not isinstance(error, ChannelConnectionError):
            self._schedule_reconnect()
        self._complete(submission, error)

    async def _exchange(self, pending: PendingSend) -> BaseException | None:
        handle = await self._ready_handle()
        await self.channel.send_prompt(handle, pending.text)
        self.session.acknowledge(pending)
        error: BaseException | None = None
        async with aclosing(self.channel.fragments(handle)) as fragments:
            async for fragment in fragments:
                if not fragment.terminal:
                    self.session.fold(pending, fragment.text)
                elif fragment.error is not None:
                    error = fragment.error
        return error

    async def _ready_handle(self) -> ChannelHandle:
        if self.reconnecting:
            assert self._reconnect_task is not None
            return await asyncio.shield(self._reconnect_task)
        handle = self.channel.handle
        if handle is None:
            raise ChannelConnectionError("Not connected to the generation server.")
        return handle

    def _complete(self, submission: Submission, error: BaseException | None) -> None:
        outcome = self.session.finish(submission.pending, error)
        if outcome is None:
            return
        if outcome.ok:
            LOGGER.info(
                "coordinator.stream.completed",
                extra={
                    "event": "coordinator.stream.completed",
                    "chars": len(outcome.text),
                },
            )
        else:
            LOGGER.warning(
                "coordinator.stream.failed",
                extra={
                    "event": "coordinator.stream.failed",
                    "error_type": type(outcome.error).__name__,
                    "error": str(outcome.error),
                    "chars": len(outcome.text),
                },
            )
        self._resolve(submission, outcome)

    def _resolve(
        self, submission: Submission | None, outcome: SendOutcome | None
    ) -> None:
        if outcome is None or submission is None:
            return
        if self._active is submission:
            self._active = None
        if not submission.outcome.done():
            submission.outcome.set_result(outcome)

    def _schedule_reconnect(self) -> None:
        if not self.auto_reconnect or self.reconnecting:
            return
        if self.channel.handle is not None:
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect()
        )
        self._reconnect_task.add_done_callback(self._log_task_exception)

    async def _reconnect(self) -> ChannelHandle:
        for attempt in range(self.reconnect_attempts):
            try:
                return await self.channel.connect(self.endpoint)
            except ChannelConnectionError:
                LOGGER.warning(
                    "coordinator.reconnect.retry",
                    extra={
                        "event": "coordinator.reconnect.retry",
                        "attempt": attempt + 1,
                    },
                )
                if attempt + 1 >= self.reconnect_attempts:
                    raise
                await asyncio.sleep(self.reconnect_backoff_seconds * (attempt + 1))
        raise ChannelConnectionError("Reconnect attempts exhausted.")

    @staticmethod
    def _log_task_exception(task: asyncio.Task[Any]) -> None:
        """Log unhandled exceptions from background tasks so they are not silently lost."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "coordinator.task.exception",
                extra={
                    "event": "coordinator.task.exception",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )


def build_coordinator(config: dict[str, dict[str, Any]]) -> SendCoordinator:
    """Create a coordinator wired to the configured endpoint."""
    client_cfg = config["client"]
    channel = GenerationChannel(
        open_timeout_seconds=float(client_cfg["open_timeout_seconds"])
    )
    return SendCoordinator(
        channel,
        str(client_cfg["endpoint"]),
        auto_reconnect=bool(client_cfg["auto_reconnect"]),
        reconnect_attempts=int(client_cfg["reconnect_attempts"]),
        reconnect_backoff_seconds=float(client_cfg["reconnect_backoff_seconds"]),
    )
