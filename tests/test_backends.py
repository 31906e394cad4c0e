from __future__ import annotations

import importlib
import json

import httpx
import pytest

from toolforge.backends import ChatCompletionsBackend, HttpContentBackend, MemoryContentBackend
from toolforge.config import Settings
from toolforge.errors import BackendError
from toolforge.models import ComponentRole, ContentRecord, RecordDraft, Requester

REQUESTER = Requester(user_id=42, home_space_id=7)


def _content_api(handler) -> HttpContentBackend:
    return HttpContentBackend(
        Settings(),
        base_url="http://content.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize("module", ["content_api", "memory", "semantic"])
def test_backend_modules_import_from_the_package(module: str) -> None:
    loaded = importlib.import_module(f"toolforge.backends.{module}")
    assert loaded.BackendError is BackendError


@pytest.mark.asyncio
async def test_search_posts_query_and_skips_malformed_items() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "items": [
                    {"id": 3, "title": "Meeting notes", "tags": ["crm", "crm"]},
                    {"title": "missing id"},
                    "not-an-object",
                    {"id": "4", "title": "Pricing"},
                ]
            },
        )

    backend = _content_api(handler)
    try:
        candidates = await backend.search("client meeting", ComponentRole.content, 5, REQUESTER)
    finally:
        await backend.close()

    assert seen["path"] == "/search"
    assert seen["body"] == {"query": "client meeting", "role": "content", "limit": 5, "user_id": 42}
    assert [c.id for c in candidates] == [3, 4]
    assert candidates[0].tags == ["crm"]
    assert all(c.role is ComponentRole.content for c in candidates)


@pytest.mark.asyncio
async def test_get_returns_none_on_404_and_raises_on_server_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/records/1":
            assert request.url.params["user_id"] == "42"
            return httpx.Response(200, json={"id": 1, "title": "Prompt", "labels": ["prompt"]})
        if request.url.path == "/records/2":
            return httpx.Response(404)
        return httpx.Response(500)

    backend = _content_api(handler)
    try:
        record = await backend.get(1, REQUESTER)
        assert record is not None and record.labels == ["prompt"]
        assert await backend.get(2, REQUESTER) is None
        with pytest.raises(BackendError):
            await backend.get(3, REQUESTER)
    finally:
        await backend.close()


@pytest.mark.asyncio
async def test_permission_checks_and_record_creation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if request.url.path == "/permissions/read":
            return httpx.Response(200, json={"allowed": body["record_id"] == 1})
        if request.url.path == "/permissions/write":
            return httpx.Response(200, json={"allowed": body["space_id"] == 7})
        if request.url.path == "/records" and request.method == "POST":
            assert body["kind"] == "tool"
            assert body["labels"] == ["tool"]
            return httpx.Response(201, json={"id": 501})
        return httpx.Response(404)

    backend = _content_api(handler)
    try:
        assert await backend.can_read(1, REQUESTER) is True
        assert await backend.can_read(2, REQUESTER) is False
        assert await backend.can_write(7, REQUESTER) is True
        assert await backend.can_write(8, REQUESTER) is False
        draft = RecordDraft(kind="tool", title="Tool", body="body", labels=["tool"])
        assert await backend.create_record(draft) == 501
    finally:
        await backend.close()


@pytest.mark.asyncio
async def test_create_record_without_id_is_an_error() -> None:
    backend = _content_api(lambda request: httpx.Response(200, json={}))
    try:
        with pytest.raises(BackendError):
            await backend.create_record(RecordDraft(kind="tool", title="t", body="b"))
    finally:
        await backend.close()


@pytest.mark.asyncio
async def test_chat_completions_sends_messages_and_reads_first_choice() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"choices": [{"message": {"content": "  [[0, 0.9]]  "}}]}
        )

    backend = ChatCompletionsBackend(
        Settings(),
        base_url="http://llm.test/v1/",
        api_key="secret",
        model="ranker-small",
        transport=httpx.MockTransport(handler),
    )
    try:
        assert backend.is_available()
        reply = await backend.chat("rank these", system="be terse")
    finally:
        await backend.close()

    assert reply == "[[0, 0.9]]"
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "ranker-small"
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"error": "overloaded"}),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json={"choices": [{"message": {"content": ""}}]}),
    ],
)
async def test_chat_completions_failures_raise_backend_error(response: httpx.Response) -> None:
    backend = ChatCompletionsBackend(
        Settings(),
        base_url="http://llm.test/v1",
        transport=httpx.MockTransport(lambda request: response),
    )
    try:
        with pytest.raises(BackendError):
            await backend.chat("rank these")
    finally:
        await backend.close()


def test_unconfigured_chat_backend_is_unavailable() -> None:
    backend = ChatCompletionsBackend(Settings(semantic_api_url=None), base_url="")
    assert backend.is_available() is False


@pytest.mark.asyncio
async def test_memory_backend_filters_by_label_and_reader() -> None:
    backend = MemoryContentBackend(
        [
            ContentRecord(id=1, title="Client email prompt", labels=["prompt"]),
            ContentRecord(id=2, title="Client email data", labels=["data"]),
            ContentRecord(id=3, title="Private client email prompt", labels=["prompt"]),
        ],
        readers={3: {99}},
        writers={42: {7}},
    )
    found = await backend.search("client email", ComponentRole.prompt, 10, REQUESTER)
    assert [c.id for c in found] == [1]
    assert await backend.can_read(3, REQUESTER) is False
    assert await backend.can_write(7, REQUESTER) is True

    new_id = await backend.create_record(RecordDraft(kind="prompt", title="New", body="b"))
    assert backend.created[0][0] == new_id
    assert (await backend.get(new_id, REQUESTER)) is not None
