"""Duplex channel to the generation server.

The channel hides the WebSocket transport behind three operations:
``connect`` returns a :class:`ChannelHandle`, ``send_prompt`` writes the raw
prompt as one text frame, and ``fragments`` yields the reply as
:class:`Fragment` objects ending with exactly one terminal marker.

The server signals the end of a reply by closing the connection, so a normal
close is reported as ``Fragment.end()`` and leaves the channel
``DISCONNECTED``. Any abnormal close or protocol violation is reported as
``Fragment.failed(...)`` and leaves it ``FAULTED``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import Any, Literal

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from .exceptions import (
    ChannelClosedError,
    ChannelConnectionError,
    GenerationStreamError,
    NotReadyError,
    SendError,
)
from .state import ConnectionState

LOGGER = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]
StateCallback = Callable[[ConnectionState, ConnectionState], None]


@dataclass(frozen=True)
class Fragment:
    """One item of a reply stream: text, normal end, or error."""

    kind: Literal["text", "end", "error"]
    text: str = ""
    error: BaseException | None = None

    @property
    def terminal(self) -> bool:
        return self.kind != "text"

    @classmethod
    def of(cls, text: str) -> Fragment:
        return cls(kind="text", text=text)

    @classmethod
    def end(cls) -> Fragment:
        return cls(kind="end")

    @classmethod
    def failed(cls, error: BaseException) -> Fragment:
        return cls(kind="error", error=error)


class ChannelHandle:
    """One established connection; valid until its stream terminates."""

    def __init__(self, endpoint: str, transport: Any) -> None:
        self.endpoint = endpoint
        self.transport = transport
        self.peer_closed = False
        self.terminated = False
        self.draining = False


async def _open_websocket(endpoint: str) -> Any:
    # The channel applies its own timeout around the connector.
    return await ws_connect(endpoint, open_timeout=None)


class GenerationChannel:
    """Own the connection lifecycle and expose it transport-independently."""

    def __init__(
        self,
        connector: Connector | None = None,
        *,
        open_timeout_seconds: float = 10.0,
    ) -> None:
        self._connector = connector or _open_websocket
        self.open_timeout_seconds = open_timeout_seconds
        self._state = ConnectionState.DISCONNECTED
        self._handle: ChannelHandle | None = None
        self._on_state_change: list[StateCallback] = []

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def handle(self) -> ChannelHandle | None:
        """Most recently established handle, if still usable."""
        return self._handle

    def on_state_change(self, callback: StateCallback) -> None:
        """Register callback for state changes.

        Args:
            callback: Function called with (old_state, new_state)
        """
        self._on_state_change.append(callback)

    async def connect(self, endpoint: str) -> ChannelHandle:
        """Open a connection to ``endpoint``.

        Raises:
            ChannelConnectionError: if the endpoint cannot be reached in time.
        """
        self._set_state(ConnectionState.CONNECTING)
        try:
            transport = await asyncio.wait_for(
                self._connector(endpoint), timeout=self.open_timeout_seconds
            )
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:  # noqa: BLE001 - connectors fail in many ways.
            self._set_state(ConnectionState.FAULTED)
            LOGGER.warning(
                "channel.connect.failed",
                extra={
                    "event": "channel.connect.failed",
                    "endpoint": endpoint,
                    "error_type": type(exc).__name__,
                },
            )
            raise ChannelConnectionError(
                f"Unable to connect to generation server {endpoint}: {exc}"
            ) from exc

        handle = ChannelHandle(endpoint, transport)
        self._handle = handle
        self._set_state(ConnectionState.READY)
        LOGGER.info(
            "channel.connect.ready",
            extra={"event": "channel.connect.ready", "endpoint": endpoint},
        )
        return handle

    async def send_prompt(self, handle: ChannelHandle, text: str) -> None:
        """Transmit ``text`` as a single text frame.

        Raises:
            ChannelClosedError: if the peer has already closed the connection.
            NotReadyError: if ``handle`` is not the ready connection.
            SendError: if the transport fails while writing.
        """
        if handle.peer_closed:
            raise ChannelClosedError("The generation server closed the connection.")
        if handle is not self._handle or self._state != ConnectionState.READY:
            raise NotReadyError("Connection is not ready.")
        try:
            await handle.transport.send(text)
        except ConnectionClosed as exc:
            handle.peer_closed = True
            self._terminate(handle, ConnectionState.FAULTED)
            raise ChannelClosedError(
                "The generation server closed the connection."
            ) from exc
        except Exception as exc:  # noqa: BLE001 - transport write failure.
            self._terminate(handle, ConnectionState.FAULTED)
            raise SendError(f"Failed to send prompt: {exc}") from exc

    async def fragments(self, handle: ChannelHandle) -> AsyncIterator[Fragment]:
        """Yield reply fragments in arrival order, then one terminal marker."""
        if handle.terminated or handle.draining:
            yield Fragment.failed(
                GenerationStreamError("Stream is no longer available on this handle.")
            )
            return

        handle.draining = True
        terminal: Fragment = Fragment.end()
        final_state = ConnectionState.DISCONNECTED
        try:
            async for frame in handle.transport:
                if not isinstance(frame, str):
                    terminal = Fragment.failed(
                        GenerationStreamError("Received a non-text frame.")
                    )
                    final_state = ConnectionState.FAULTED
                    await self._close_transport(handle)
                    break
                yield Fragment.of(frame)
        except GeneratorExit:
            # Consumer stopped early; the rest of the reply is unwanted.
            await self._close_transport(handle)
            raise
        except ConnectionClosed as exc:
            terminal = Fragment.failed(
                GenerationStreamError(f"Connection closed abnormally: {exc}")
            )
            final_state = ConnectionState.FAULTED
        except Exception as exc:  # noqa: BLE001 - transport read failure.
            terminal = Fragment.failed(GenerationStreamError(f"Stream failed: {exc}"))
            final_state = ConnectionState.FAULTED
        finally:
            handle.peer_closed = True
            self._terminate(handle, final_state)

        LOGGER.info(
            "channel.stream.terminated",
            extra={"event": "channel.stream.terminated", "terminal": terminal.kind},
        )
        yield terminal

    async def close(self, handle: ChannelHandle) -> None:
        """Close ``handle``; an outstanding stream observes its end promptly."""
        await self._close_transport(handle)
        self._terminate(handle, ConnectionState.DISCONNECTED)

    async def _close_transport(self, handle: ChannelHandle) -> None:
        try:
            await handle.transport.close()
        except Exception as exc:  # noqa: BLE001 - closing a broken transport.
            LOGGER.debug(
                "channel.close.failed",
                extra={"event": "channel.close.failed", "error": str(exc)},
            )

    def _terminate(self, handle: ChannelHandle, new_state: ConnectionState) -> None:
        handle.terminated = True
        if handle is self._handle:
            self._handle = None
            self._set_state(new_state)

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        LOGGER.debug(
            "channel.state.changed",
            extra={
                "event": "channel.state.changed",
                "old": old_state.value,
                "new": new_state.value,
            },
        )
        for callback in list(self._on_state_change):
            try:
                callback(old_state, new_state)
            except Exception as e:
                LOGGER.error(f"State change callback error: {e}")
