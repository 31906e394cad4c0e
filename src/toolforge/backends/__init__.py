"""Facade over collaborator implementations."""

from __future__ import annotations

from .base import Collaborators, PermissionGate, RecordWriter, Retriever, SemanticBackend
from .content_api import HttpContentBackend
from .memory import MemoryContentBackend
from .semantic import ChatCompletionsBackend

__all__ = [
    "Retriever",
    "PermissionGate",
    "RecordWriter",
    "SemanticBackend",
    "Collaborators",
    "HttpContentBackend",
    "ChatCompletionsBackend",
    "MemoryContentBackend",
]
