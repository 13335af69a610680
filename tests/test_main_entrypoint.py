"""Tests for CLI entrypoint wiring."""

from __future__ import annotations

from collections.abc import AsyncIterator
import contextlib
import io
import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from quan_chatbot.__main__ import _ask, main
from quan_chatbot.config import DEFAULT_CONFIG
from quan_chatbot.exceptions import GenerationServiceError
from quan_chatbot.server import GenerationServer

try:
    import quan_chatbot.app as app_module
except ModuleNotFoundError:
    app_module = None  # type: ignore[assignment]


class ReplyService:
    def __init__(self, fragments: list[str], error: Exception | None = None) -> None:
        self.fragments = fragments
        self.error = error

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        for fragment in self.fragments:
            yield fragment
        if self.error is not None:
            raise self.error


def _config_for(endpoint: str) -> dict:
    return {
        **DEFAULT_CONFIG,
        "client": {**DEFAULT_CONFIG["client"], "endpoint": endpoint},
    }


class MainEntrypointTests(unittest.TestCase):
    """Validate top-level main() behavior."""

    def test_version_flag_prints_and_exits(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out), patch(
            "quan_chatbot.__main__.ensure_config_dir"
        ) as ensure_mock:
            self.assertEqual(main(["--version"]), 0)
        self.assertTrue(out.getvalue().startswith("quan-chatbot "))
        ensure_mock.assert_not_called()

    @unittest.skipIf(app_module is None, "textual is not installed")
    def test_main_ensures_config_and_runs_app(self) -> None:
        with patch("quan_chatbot.__main__.ensure_config_dir") as ensure_mock, patch(
            "quan_chatbot.__main__.load_config", return_value=DEFAULT_CONFIG
        ), patch("quan_chatbot.app.QuanChatbotApp") as app_cls_mock:
            app_instance = app_cls_mock.return_value
            self.assertEqual(main([]), 0)
            ensure_mock.assert_called_once()
            app_cls_mock.assert_called_once_with(config=DEFAULT_CONFIG)
            app_instance.run.assert_called_once()

    def test_serve_runs_generation_server(self) -> None:
        serve_mock = AsyncMock(return_value=None)
        with patch("quan_chatbot.__main__.ensure_config_dir"), patch(
            "quan_chatbot.__main__.load_config", return_value=DEFAULT_CONFIG
        ), patch("quan_chatbot.__main__.configure_logging"), patch(
            "quan_chatbot.__main__._serve", serve_mock
        ):
            self.assertEqual(main(["serve"]), 0)
        serve_mock.assert_awaited_once_with(DEFAULT_CONFIG)

    def test_serve_reports_backend_failure(self) -> None:
        serve_mock = AsyncMock(side_effect=GenerationServiceError("no ollama"))
        err = io.StringIO()
        with contextlib.redirect_stderr(err), patch(
            "quan_chatbot.__main__.ensure_config_dir"
        ), patch("quan_chatbot.__main__.load_config", return_value=DEFAULT_CONFIG), patch(
            "quan_chatbot.__main__.configure_logging"
        ), patch("quan_chatbot.__main__._serve", serve_mock):
            self.assertEqual(main(["serve"]), 1)
        self.assertIn("no ollama", err.getvalue())

    def test_serve_stops_when_ollama_is_unreachable(self) -> None:
        service = MagicMock()
        service.check_connection = AsyncMock(return_value=False)
        service.ensure_model_ready = AsyncMock()
        err = io.StringIO()
        with contextlib.redirect_stderr(err), patch(
            "quan_chatbot.__main__.ensure_config_dir"
        ), patch("quan_chatbot.__main__.load_config", return_value=DEFAULT_CONFIG), patch(
            "quan_chatbot.__main__.configure_logging"
        ), patch(
            "quan_chatbot.generation.OllamaGenerationService", return_value=service
        ), patch("quan_chatbot.server.GenerationServer") as server_cls:
            self.assertEqual(main(["serve"]), 1)
        self.assertIn("Cannot reach Ollama", err.getvalue())
        service.ensure_model_ready.assert_not_awaited()
        server_cls.assert_not_called()

    def test_ask_without_server_fails_cleanly(self) -> None:
        err = io.StringIO()
        config = _config_for("ws://127.0.0.1:9/ws")
        with contextlib.redirect_stderr(err), patch(
            "quan_chatbot.__main__.ensure_config_dir"
        ), patch("quan_chatbot.__main__.load_config", return_value=config), patch(
            "quan_chatbot.__main__.configure_logging"
        ):
            self.assertEqual(main(["ask", "hello"]), 1)
        self.assertIn("error:", err.getvalue())


class AskCommandTests(unittest.IsolatedAsyncioTestCase):
    """Run the one-shot client against a live server."""

    async def _server(self, service: ReplyService) -> GenerationServer:
        server = GenerationServer(service, host="127.0.0.1", port=0)
        await server.start()
        self.addAsyncCleanup(server.stop)
        return server

    async def test_ask_streams_reply_to_stdout(self) -> None:
        server = await self._server(ReplyService(["Hi", " there", "!"]))
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = await _ask(_config_for(server.endpoint), "hello", as_json=False)
        self.assertEqual(code, 0)
        self.assertEqual(out.getvalue(), "Hi there!\n")

    async def test_ask_json_prints_transcript(self) -> None:
        server = await self._server(ReplyService(["Hi"]))
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = await _ask(_config_for(server.endpoint), "hello", as_json=True)
        self.assertEqual(code, 0)
        self.assertEqual(
            json.loads(out.getvalue()),
            [
                {"role": "user", "content": "hello"},
                {"role": "assistant", "content": "Hi"},
            ],
        )

    async def test_ask_reports_interrupted_reply(self) -> None:
        server = await self._server(
            ReplyService(["f1"], error=GenerationServiceError("boom"))
        )
        out = io.StringIO()
        err = io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = await _ask(_config_for(server.endpoint), "hello", as_json=False)
        self.assertEqual(code, 1)
        self.assertEqual(out.getvalue(), "f1\n")
        self.assertIn("error:", err.getvalue())


if __name__ == "__main__":
    unittest.main()
