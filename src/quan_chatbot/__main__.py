"""CLI entrypoint for Quan-Chatbot."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
import logging
from pathlib import Path
import sys
from typing import Any

from .config import ensure_config_dir, load_config
from .conversation import TranscriptChange
from .coordinator import build_coordinator
from .exceptions import GenerationServiceError, QuanChatbotError
from .logging_utils import configure_logging

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quan-chatbot",
        description="Quan-Chatbot - stream language model replies over WebSockets",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (defaults to ~/.config/quan-chatbot/config.toml)",
    )
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("chat", help="Open the terminal chat client (default)")
    subcommands.add_parser("serve", help="Run the generation server")
    ask = subcommands.add_parser("ask", help="Send one prompt and print the reply")
    ask.add_argument("prompt", help="Prompt text")
    ask.add_argument(
        "--json",
        action="store_true",
        help="Print the transcript as JSON instead of streaming text",
    )
    return parser


async def _serve(config: dict[str, dict[str, Any]]) -> None:
    from .generation import OllamaGenerationService
    from .server import GenerationServer

    ollama_cfg = config["ollama"]
    service = OllamaGenerationService(
        host=str(ollama_cfg["host"]),
        model=str(ollama_cfg["model"]),
        system_prompt=str(ollama_cfg["system_prompt"]),
        timeout=int(ollama_cfg["timeout"]),
        retries=int(ollama_cfg["retries"]),
        retry_backoff_seconds=float(ollama_cfg["retry_backoff_seconds"]),
    )
    if not await service.check_connection():
        raise GenerationServiceError(
            f"Cannot reach Ollama at {ollama_cfg['host']}."
        )
    await service.ensure_model_ready(
        pull_if_missing=bool(ollama_cfg["pull_model_on_start"])
    )
    server_cfg = config["server"]
    server = GenerationServer(
        service,
        host=str(server_cfg["host"]),
        port=int(server_cfg["port"]),
        path=str(server_cfg["path"]),
        max_prompt_chars=int(server_cfg["max_prompt_chars"]),
    )
    await server.serve_forever()


async def _ask(config: dict[str, dict[str, Any]], prompt: str, as_json: bool) -> int:
    coordinator = build_coordinator(config)
    coordinator.auto_reconnect = False
    printed = 0

    def _echo(change: TranscriptChange) -> None:
        nonlocal printed
        if as_json or change.kind != "extend":
            return
        text = coordinator.store.snapshot()[change.index].text
        sys.stdout.write(text[printed:])
        sys.stdout.flush()
        printed = len(text)

    coordinator.store.subscribe(_echo)
    try:
        await coordinator.connect()
        outcome = await coordinator.submit(prompt).wait()
    finally:
        await coordinator.close()

    if as_json:
        print(coordinator.store.export_json())
    else:
        print()
    if not outcome.ok:
        print(f"error: {outcome.error}", file=sys.stderr)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Ensure configuration exists, handle CLI flags, and run the selected mode."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("quan-chatbot")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"quan-chatbot {version}")
        return 0

    ensure_config_dir()
    config = load_config(args.config)

    if args.command == "serve":
        configure_logging(config["logging"], console_level=logging.INFO)
        try:
            asyncio.run(_serve(config))
        except KeyboardInterrupt:
            pass
        except QuanChatbotError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        return 0

    if args.command == "ask":
        configure_logging(config["logging"])
        try:
            return asyncio.run(_ask(config, args.prompt, args.json))
        except (QuanChatbotError, ValueError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1

    from .app import QuanChatbotApp

    app = QuanChatbotApp(config=config)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
