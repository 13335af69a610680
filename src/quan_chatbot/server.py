"""WebSocket server streaming generation output to chat clients.

Each connection carries one exchange: the client sends the raw prompt as a
single text frame, the server answers with zero or more text frames and then
closes. A normal close (1000) means the reply is complete; 1011 means the
model failed part-way; 1008 rejects malformed prompts.
"""

from __future__ import annotations

from contextlib import aclosing
from http import HTTPStatus
import logging
from typing import Any
from urllib.parse import urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode
from websockets.http11 import Request, Response

from .generation import GenerationService

LOGGER = logging.getLogger(__name__)


class GenerationServer:
    """Expose a :class:`GenerationService` on a WebSocket path."""

    def __init__(
        self,
        service: GenerationService,
        host: str = "127.0.0.1",
        port: int = 3000,
        path: str = "/ws",
        max_prompt_chars: int = 16_000,
    ) -> None:
        self.service = service
        self.host = host
        self.port = port
        self.path = path
        self.max_prompt_chars = max_prompt_chars
        self._server: Server | None = None

    @property
    def bound_port(self) -> int:
        """Return the port actually listened on (useful with ``port=0``)."""
        if self._server is None:
            return self.port
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return self.port

    @property
    def endpoint(self) -> str:
        return f"ws://{self.host}:{self.bound_port}{self.path}"

    async def start(self) -> None:
        """Begin accepting connections."""
        self._server = await serve(
            self._handle,
            self.host,
            self.port,
            process_request=self._check_path,
            # UTF-8 needs at most four bytes per character.
            max_size=self.max_prompt_chars * 4,
        )
        LOGGER.info(
            "server.started",
            extra={"event": "server.started", "endpoint": self.endpoint},
        )

    async def stop(self) -> None:
        """Stop accepting connections and close open ones."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        LOGGER.info("server.stopped", extra={"event": "server.stopped"})

    async def serve_forever(self) -> None:
        """Run until cancelled."""
        await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    def _check_path(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        if urlsplit(request.path).path != self.path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    async def _handle(self, connection: ServerConnection) -> None:
        try:
            message = await connection.recv()
        except ConnectionClosed:
            return

        reason = self._reject_reason(message)
        if reason is not None:
            LOGGER.info(
                "server.prompt.rejected",
                extra={"event": "server.prompt.rejected", "reason": reason},
            )
            await connection.close(CloseCode.POLICY_VIOLATION, reason)
            return

        await self._respond(connection, str(message))

    def _reject_reason(self, message: Any) -> str | None:
        if not isinstance(message, str):
            return "Prompt must be a text frame."
        if not message.strip():
            return "Prompt must not be empty."
        if len(message) > self.max_prompt_chars:
            return "Prompt is too long."
        return None

    async def _respond(self, connection: ServerConnection, prompt: str) -> None:
        fragments = 0
        try:
            async with aclosing(self.service.stream(prompt)) as stream:
                async for fragment in stream:
                    if fragment:
                        await connection.send(fragment)
                        fragments += 1
        except ConnectionClosed:
            LOGGER.info(
                "server.client.gone",
                extra={"event": "server.client.gone", "fragments": fragments},
            )
            return
        except Exception as exc:  # noqa: BLE001 - report any backend failure to the client.
            LOGGER.warning(
                "server.generation.failed",
                extra={
                    "event": "server.generation.failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "fragments": fragments,
                },
            )
            await connection.close(CloseCode.INTERNAL_ERROR, "Generation failed.")
            return

        LOGGER.info(
            "server.generation.completed",
            extra={"event": "server.generation.completed", "fragments": fragments},
        )
        await connection.close()
