"""Domain exception hierarchy for the streaming chatbot."""

from __future__ import annotations


class QuanChatbotError(RuntimeError):
    """Base class for all domain-level chatbot errors."""


class InvalidStateError(QuanChatbotError):
    """Raised when a send is attempted while another one is still in progress."""


class StaleReferenceError(QuanChatbotError):
    """Raised when a write targets a message that is no longer open.

    A correct session never triggers this; seeing it means fragments were
    routed after their stream was already terminated.
    """


class ChannelConnectionError(QuanChatbotError):
    """Raised when the generation endpoint cannot be reached."""


class SendError(QuanChatbotError):
    """Raised when a prompt cannot be transmitted."""


class NotReadyError(SendError):
    """Raised when sending on a handle that is not in the ready state."""


class ChannelClosedError(SendError):
    """Raised when sending on a handle whose peer already closed."""


class GenerationStreamError(QuanChatbotError):
    """Raised when a fragment stream ends abnormally."""


class GenerationServiceError(QuanChatbotError):
    """Raised when the model backend fails to produce a response."""


class ModelNotFoundError(GenerationServiceError):
    """Raised when the configured model is unavailable."""


class ConfigValidationError(QuanChatbotError):
    """Raised when configuration cannot be validated safely."""
