"""In-process content backend used by tests and local runs."""

from __future__ import annotations

import re
from typing import Iterable

from ..errors import BackendError
from ..models import (
    ROLE_LABELS,
    Candidate,
    ComponentRole,
    ContentRecord,
    RecordDraft,
    Requester,
)
from ..utils import trim_words
from .base import PermissionGate, RecordWriter, Retriever

_TOKEN = re.compile(r"\w+")


def _terms(text: str) -> set[str]:
    return {token for token in _TOKEN.findall(text.lower()) if len(token) > 2}


class MemoryContentBackend(Retriever, PermissionGate, RecordWriter):
    """Keeps records in a dict and filters them the way the content service does.

    ``readers`` maps a record id to the user ids allowed to read it; records
    absent from the map are public. ``writers`` maps a user id to the spaces
    that user may create records in.
    """

    def __init__(
        self,
        records: Iterable[ContentRecord] = (),
        *,
        readers: dict[int, set[int]] | None = None,
        writers: dict[int, set[int]] | None = None,
        next_id: int = 1000,
    ) -> None:
        self.records: dict[int, ContentRecord] = {record.id: record for record in records}
        self.readers = readers or {}
        self.writers = writers or {}
        self.created: list[tuple[int, RecordDraft]] = []
        self.fail_writes = False
        self.fail_search = False
        self._next_id = next_id

    def add(self, record: ContentRecord) -> ContentRecord:
        self.records[record.id] = record
        return record

    def _readable(self, record_id: int, requester: Requester) -> bool:
        allowed = self.readers.get(record_id)
        return allowed is None or requester.user_id in allowed

    async def search(
        self,
        query: str,
        role: ComponentRole,
        limit: int,
        requester: Requester,
    ) -> list[Candidate]:
        if self.fail_search:
            raise BackendError("search index unavailable")
        query_terms = _terms(query)
        labels = set(ROLE_LABELS[role])
        hits: list[tuple[int, ContentRecord]] = []
        for record in self.records.values():
            if not labels.intersection(record.labels):
                continue
            if not self._readable(record.id, requester):
                continue
            haystack = _terms(" ".join([record.title, record.excerpt, record.body, *record.tags]))
            matched = len(query_terms & haystack)
            if matched:
                hits.append((matched, record))
        hits.sort(key=lambda hit: hit[0], reverse=True)
        return [
            Candidate(
                id=record.id,
                title=record.title,
                excerpt=record.excerpt or trim_words(record.body, 30),
                tags=record.tags,
                role=role,
                content=record.body[:500],
                label=role.value,
            )
            for _, record in hits[:limit]
        ]

    async def get(self, record_id: int, requester: Requester) -> ContentRecord | None:
        return self.records.get(record_id)

    async def can_read(self, record_id: int, requester: Requester) -> bool:
        return self._readable(record_id, requester)

    async def can_write(self, space_id: int, requester: Requester) -> bool:
        return space_id in self.writers.get(requester.user_id, set())

    async def create_record(self, draft: RecordDraft) -> int:
        if self.fail_writes:
            raise BackendError("record store rejected the write")
        record_id = self._next_id
        self._next_id += 1
        self.created.append((record_id, draft))
        self.records[record_id] = ContentRecord(
            id=record_id,
            title=draft.title,
            body=draft.body,
            labels=draft.labels,
            author_id=draft.author_id,
            prompt_text=draft.prompt_config.prompt_text if draft.prompt_config else None,
        )
        return record_id


__all__ = ["MemoryContentBackend"]
