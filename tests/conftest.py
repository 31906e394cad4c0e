from __future__ import annotations

import pytest

from toolforge.backends import Collaborators, MemoryContentBackend
from toolforge.config import Settings
from toolforge.models import ContentRecord, Requester
from toolforge.service import AssemblyService

WRITER_ID = 42
READER_ID = 43
TEAM_SPACE = 7


def library() -> list[ContentRecord]:
    return [
        ContentRecord(
            id=10,
            title="Follow-up email after a client meeting",
            body="Draft a follow-up email that recaps the client meeting and next steps.",
            labels=["prompt"],
            tags=["email", "client"],
            author_id=5,
            prompt_text="Write a professional follow-up email to the client summarising the meeting.",
        ),
        ContentRecord(
            id=11,
            title="Client meeting preparation checklist",
            body="List the questions to prepare before a client meeting.",
            labels=["prompt"],
            author_id=5,
        ),
        ContentRecord(
            id=12,
            title="Quarterly budget email",
            body="Announce the quarterly budget by email.",
            labels=["prompt"],
            author_id=6,
        ),
        ContentRecord(
            id=20,
            title="Client meeting notes",
            body="Notes from the meeting with the client: pricing agreed, demo next week.",
            labels=["data"],
            author_id=5,
        ),
        ContentRecord(
            id=21,
            title="Client email templates",
            body="Reusable email openings and closings for client follow-up messages.",
            labels=["content"],
            author_id=6,
        ),
        ContentRecord(
            id=22,
            title="Confidential client pricing",
            body="Internal client pricing grid for the meeting.",
            labels=["data"],
        ),
        ContentRecord(
            id=30,
            title="Formal business tone",
            body="Use a formal, courteous tone for every client email.",
            labels=["style"],
            tags=["formal"],
        ),
    ]


@pytest.fixture
def settings() -> Settings:
    return Settings(tool_url_template="https://tools.example/t/{id}", semantic_api_url=None)


@pytest.fixture
def content_backend() -> MemoryContentBackend:
    return MemoryContentBackend(
        library(),
        readers={22: {99}},
        writers={WRITER_ID: {TEAM_SPACE}},
    )


@pytest.fixture
def collaborators(content_backend: MemoryContentBackend) -> Collaborators:
    return Collaborators(
        retriever=content_backend,
        permissions=content_backend,
        writer=content_backend,
    )


@pytest.fixture
def service(settings: Settings, collaborators: Collaborators) -> AssemblyService:
    return AssemblyService(settings, collaborators)


@pytest.fixture
def writer() -> Requester:
    return Requester(user_id=WRITER_ID, home_space_id=TEAM_SPACE)


@pytest.fixture
def reader() -> Requester:
    return Requester(user_id=READER_ID, home_space_id=TEAM_SPACE)
