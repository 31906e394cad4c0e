"""Narrow interfaces for the collaborators the assembly engine consumes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..models import Candidate, ComponentRole, ContentRecord, RecordDraft, Requester


class Retriever(ABC):
    """Permission-filtered candidate search over stored components."""

    @abstractmethod
    async def search(
        self,
        query: str,
        role: ComponentRole,
        limit: int,
        requester: Requester,
    ) -> list[Candidate]:
        """Return at most ``limit`` candidates for ``role`` in retrieval order."""

    @abstractmethod
    async def get(self, record_id: int, requester: Requester) -> ContentRecord | None:
        """Fetch one stored record, or ``None`` when it does not exist."""

    async def close(self) -> None:
        """Optional cleanup hook."""
        return None


class PermissionGate(ABC):
    @abstractmethod
    async def can_read(self, record_id: int, requester: Requester) -> bool:
        """Whether ``requester`` may read record ``record_id``."""

    @abstractmethod
    async def can_write(self, space_id: int, requester: Requester) -> bool:
        """Whether ``requester`` may create records in ``space_id``."""

    async def close(self) -> None:
        return None


class RecordWriter(ABC):
    @abstractmethod
    async def create_record(self, draft: RecordDraft) -> int:
        """Persist ``draft`` and return the new record id. Raises on failure."""

    async def close(self) -> None:
        return None


class SemanticBackend(ABC):
    """Chat-style model used for semantic reranking and query expansion."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is configured well enough to be called."""

    @abstractmethod
    async def chat(self, prompt: str, *, system: str | None = None) -> str:
        """Return the model's text reply. Raises ``BackendError`` on failure."""

    async def close(self) -> None:
        return None


@dataclass
class Collaborators:
    """Explicit bundle of the external services handed to the orchestrator."""

    retriever: Retriever
    permissions: PermissionGate
    writer: RecordWriter
    semantic: SemanticBackend | None = None

    async def close(self) -> None:
        seen_ids: set[int] = set()
        for backend in (self.retriever, self.permissions, self.writer, self.semantic):
            if backend is None or id(backend) in seen_ids:
                continue
            seen_ids.add(id(backend))
            await backend.close()


__all__ = [
    "Retriever",
    "PermissionGate",
    "RecordWriter",
    "SemanticBackend",
    "Collaborators",
]
