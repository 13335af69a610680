"""Generation services that turn a prompt into a stream of text fragments."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
import logging
from typing import Any, Protocol

import httpx
from ollama import AsyncClient

from .exceptions import (
    GenerationServiceError,
    ModelNotFoundError,
    QuanChatbotError,
)

LOGGER = logging.getLogger(__name__)


class GenerationService(Protocol):
    """Anything that can stream a reply for a single prompt."""

    def stream(self, prompt: str) -> AsyncGenerator[str, None]: ...


class OllamaGenerationService:
    """Stream single-prompt replies from an Ollama server."""

    def __init__(
        self,
        host: str,
        model: str,
        system_prompt: str = "",
        timeout: int = 120,
        retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.model = model
        self.system_prompt = system_prompt
        self.retries = retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._client = client or AsyncClient(host=host, timeout=timeout)

    def _request_messages(self, prompt: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def stream(self, prompt: str) -> AsyncGenerator[str, None]:
        """Yield reply fragments for ``prompt``.

        Failures before the first fragment are retried; once text has been
        yielded a retry would duplicate output, so the error is raised.
        """
        for attempt in range(self.retries + 1):
            produced = False
            try:
                response = await self._client.chat(
                    model=self.model,
                    messages=self._request_messages(prompt),
                    stream=True,
                )
                async for chunk in response:
                    text = self._extract_chunk_text(chunk)
                    if text:
                        produced = True
                        yield text
                return
            except asyncio.CancelledError:
                LOGGER.info(
                    "generation.request.cancelled",
                    extra={"event": "generation.request.cancelled"},
                )
                raise
            except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
                mapped_exc = self._map_exception(exc)
                LOGGER.warning(
                    "generation.request.retry",
                    extra={
                        "event": "generation.request.retry",
                        "attempt": attempt + 1,
                        "error_type": mapped_exc.__class__.__name__,
                        "partial": produced,
                    },
                )
                if (
                    produced
                    or attempt >= self.retries
                    or isinstance(mapped_exc, ModelNotFoundError)
                ):
                    raise mapped_exc from exc
                await asyncio.sleep(self.retry_backoff_seconds * (attempt + 1))

    async def list_models(self) -> list[str]:
        """Return available model names from Ollama."""
        response = await self._client.list()
        models: Any = None
        if hasattr(response, "models"):
            models = response.models
        elif isinstance(response, dict):
            models = response.get("models")

        names: list[str] = []
        for model in models or []:
            for key in ("model", "name"):
                value = (
                    model.get(key) if isinstance(model, dict) else getattr(model, key, None)
                )
                if isinstance(value, str) and value.strip():
                    names.append(value.strip())
                    break
        return names

    @staticmethod
    def _model_name_matches(requested_model: str, available_model: str) -> bool:
        requested = requested_model.strip().lower()
        available = available_model.strip().lower()
        if requested == available:
            return True
        return ":" not in requested and available.startswith(f"{requested}:")

    async def ensure_model_ready(self, pull_if_missing: bool = True) -> bool:
        """Ensure configured model is available; optionally pull it when missing."""
        try:
            available_models = await self.list_models()
        except Exception as exc:
            raise self._map_exception(exc) from exc

        if any(
            self._model_name_matches(self.model, available)
            for available in available_models
        ):
            LOGGER.info(
                "generation.model.ready",
                extra={"event": "generation.model.ready", "model": self.model},
            )
            return True

        if not pull_if_missing:
            raise ModelNotFoundError(f"Configured model {self.model!r} is not available.")

        LOGGER.info(
            "generation.model.pull.start",
            extra={"event": "generation.model.pull.start", "model": self.model},
        )
        try:
            await self._client.pull(model=self.model, stream=False)
        except Exception as exc:
            raise self._map_exception(exc) from exc
        LOGGER.info(
            "generation.model.pull.complete",
            extra={"event": "generation.model.pull.complete", "model": self.model},
        )
        return True

    async def check_connection(self) -> bool:
        """Return whether the Ollama host is reachable."""
        try:
            await self._client.list()
            return True
        except Exception:
            return False

    @staticmethod
    def _extract_chunk_text(chunk: Any) -> str:
        """Extract streamed token text from an Ollama chunk payload."""
        message_obj = getattr(chunk, "message", None)
        if message_obj is not None:
            value = getattr(message_obj, "content", None)
            if isinstance(value, str):
                return value

        if hasattr(chunk, "model_dump"):
            chunk = chunk.model_dump()
        if isinstance(chunk, dict):
            message = chunk.get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
            # Generate-style payloads carry text under "response".
            value = chunk.get("response")
            if isinstance(value, str):
                return value
        return ""

    def _map_exception(self, exc: Exception) -> QuanChatbotError:
        if isinstance(exc, QuanChatbotError):
            return exc

        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.NetworkError,
            ),
        ):
            return GenerationServiceError(f"Unable to connect to Ollama host {self.host}.")

        lower_message = str(exc).lower()
        if "model" in lower_message and (
            "not found" in lower_message or "404" in lower_message
        ):
            return ModelNotFoundError(f"Model {self.model!r} was not found on {self.host}.")

        return GenerationServiceError(
            f"Failed to stream response from Ollama at {self.host}: {exc}"
        )
