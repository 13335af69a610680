"""Top-level package for quan-chatbot."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import QuanChatbotApp
    from .channel import GenerationChannel
    from .config import ensure_config_dir, load_config
    from .conversation import ConversationStore
    from .coordinator import SendCoordinator
    from .exceptions import (
        ChannelConnectionError,
        ConfigValidationError,
        InvalidStateError,
        QuanChatbotError,
        SendError,
        StaleReferenceError,
    )
    from .generation import OllamaGenerationService
    from .server import GenerationServer
    from .state import SessionStateMachine

__all__ = [
    "ChannelConnectionError",
    "ConfigValidationError",
    "ConversationStore",
    "GenerationChannel",
    "GenerationServer",
    "InvalidStateError",
    "OllamaGenerationService",
    "QuanChatbotApp",
    "QuanChatbotError",
    "SendCoordinator",
    "SendError",
    "SessionStateMachine",
    "StaleReferenceError",
    "ensure_config_dir",
    "load_config",
]

_EXCEPTION_NAMES = {
    "ChannelConnectionError",
    "ConfigValidationError",
    "InvalidStateError",
    "QuanChatbotError",
    "SendError",
    "StaleReferenceError",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols to keep optional UI dependencies optional at import time."""
    if name in {"ensure_config_dir", "load_config"}:
        from .config import ensure_config_dir, load_config

        return {"ensure_config_dir": ensure_config_dir, "load_config": load_config}[name]
    if name in _EXCEPTION_NAMES:
        from . import exceptions

        return getattr(exceptions, name)
    if name == "ConversationStore":
        from .conversation import ConversationStore

        return ConversationStore
    if name == "SessionStateMachine":
        from .state import SessionStateMachine

        return SessionStateMachine
    if name == "GenerationChannel":
        from .channel import GenerationChannel

        return GenerationChannel
    if name == "SendCoordinator":
        from .coordinator import SendCoordinator

        return SendCoordinator
    if name == "OllamaGenerationService":
        from .generation import OllamaGenerationService

        return OllamaGenerationService
    if name == "GenerationServer":
        from .server import GenerationServer

        return GenerationServer
    if name == "QuanChatbotApp":
        from .app import QuanChatbotApp

        return QuanChatbotApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
