from __future__ import annotations

import fakeredis.aioredis as fakeredis
import pytest

from toolforge.backends.base import SemanticBackend
from toolforge.config import Settings
from toolforge.errors import BackendError
from toolforge.expansion import (
    QueryExpander,
    basic_expansion,
    detect_entities,
    parse_ai_expansion,
)
from toolforge.models import Entity
from toolforge.storage import RedisCache

AI_REPLY = """```json
{
  "keywords": ["invoice", "reminder", "payment", "overdue", "customer", "tone"],
  "entities": [{"name": "Acme", "type": "client"}],
  "negative_keywords": ["refund"]
}
```"""


class FixedSemantic(SemanticBackend):
    def __init__(self, reply: str = AI_REPLY, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls = 0

    def is_available(self) -> bool:
        return True

    async def chat(self, prompt: str, *, system: str | None = None) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.reply


def test_basic_expansion_drops_stopwords_and_adds_synonyms() -> None:
    result = basic_expansion("Create a client report for Acme Corp", "en")
    assert result.source == "basic"
    assert result.keywords[:5] == ["create", "client", "report", "acme", "corp"]
    assert "customer" in result.keywords
    assert "for" not in result.keywords
    assert Entity(name="Acme Corp", type="unknown") in result.entities
    assert result.expanded_query.startswith("create client report")


def test_basic_expansion_uses_language_specific_lists() -> None:
    result = basic_expansion("résumer le projet pour le client", "fr")
    assert "pour" not in result.keywords
    assert "synthétiser" in result.keywords
    assert "initiative" in result.keywords


def test_detect_entities_recognises_typed_tokens() -> None:
    entities = detect_entities(
        "Ping @alice about #launch, mail bob@example.com and see https://example.com/x."
    )
    by_type = {(entity.type, entity.name) for entity in entities}
    assert ("email", "bob@example.com") in by_type
    assert ("url", "https://example.com/x") in by_type
    assert ("tag", "launch") in by_type
    assert ("mention", "alice") in by_type
    assert ("mention", "example.com") not in by_type


def test_parse_ai_expansion_accepts_fenced_json() -> None:
    result = parse_ai_expansion("overdue invoice reminder", AI_REPLY)
    assert result.source == "ai"
    assert result.negative_keywords == ["refund"]
    assert result.entities == [Entity(name="Acme", type="client")]
    assert result.expanded_query == (
        "overdue invoice reminder invoice reminder payment overdue customer Acme"
    )


def test_parse_ai_expansion_rejects_non_objects() -> None:
    with pytest.raises(ValueError):
        parse_ai_expansion("x", "[1, 2, 3]")


@pytest.mark.asyncio
async def test_expander_prefers_ai_and_falls_back_to_basic() -> None:
    ai = await QueryExpander(Settings(), semantic=FixedSemantic()).expand("overdue invoice reminder")
    assert ai.source == "ai"

    broken = FixedSemantic(error=BackendError("timeout"))
    basic = await QueryExpander(Settings(), semantic=broken).expand("overdue invoice reminder")
    assert basic.source == "basic"
    assert broken.calls == 1

    garbled = await QueryExpander(Settings(), semantic=FixedSemantic("no json")).expand("invoice")
    assert garbled.source == "basic"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    ['{"keywords": 5}', '{"negative_keywords": true}', '{"entities": 3}'],
)
async def test_expander_falls_back_when_ai_reply_has_wrong_shapes(reply: str) -> None:
    semantic = FixedSemantic(reply)
    result = await QueryExpander(Settings(), semantic=semantic).expand("overdue invoice reminder")
    assert result.source == "basic"
    assert semantic.calls == 1
    assert "invoice" in result.keywords


@pytest.mark.asyncio
async def test_expander_returns_identity_on_unexpected_failure(monkeypatch) -> None:
    def explode(text: str, language: str):
        raise RuntimeError("boom")

    monkeypatch.setattr("toolforge.expansion.basic_expansion", explode)
    result = await QueryExpander(Settings()).expand("quarterly budget")
    assert result.source == "identity"
    assert result.expanded_query == "quarterly budget"


@pytest.mark.asyncio
async def test_expansions_are_cached_per_language() -> None:
    redis = fakeredis.FakeRedis()
    settings = Settings()
    cache = RedisCache(redis, settings)
    semantic = FixedSemantic()
    expander = QueryExpander(settings, semantic=semantic, cache=cache)
    try:
        first = await expander.expand("overdue invoice reminder", "en")
        second = await expander.expand("overdue invoice reminder", "en")
        await expander.expand("overdue invoice reminder", "fr")
    finally:
        await redis.aclose()
    assert first == second
    assert semantic.calls == 2
