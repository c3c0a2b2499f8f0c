"""Completion clients and prompt construction."""

from .base import BatchPayload, CompletionClient
from .gemini import GeminiCompletionClient
from .mock import MockCompletionClient
from .prompts import build_payload

__all__ = [
    "BatchPayload",
    "CompletionClient",
    "GeminiCompletionClient",
    "MockCompletionClient",
    "build_payload",
]
