"""Query expansion: keywords, synonyms and entities extracted from a raw need."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from .backends.base import SemanticBackend
from .config import Settings
from .errors import BackendError
from .models import Entity, QueryExpansion
from .storage import RedisCache
from .utils import hash_text

logger = logging.getLogger(__name__)

MAX_AI_KEYWORDS = 5
MAX_SYNONYMS = 10

STOPWORDS: dict[str, frozenset[str]] = {
    "en": frozenset(
        """the a an and or but is are was were be been being have has had do does did
        will would could should may might must can to of in for on with at by from as
        into through during before after above below between under again further then
        once here there when where why how all each few more most other some such no
        nor not only own same so than too very just i you he she it we they""".split()
    ),
    "fr": frozenset(
        """le la les un une des de du et ou mais donc car ni que qui quoi dont pour par
        sur sous avec sans dans en à au aux ce cette ces mon ma mes ton ta tes son sa
        ses notre votre leur leurs je tu il elle nous vous ils elles être avoir faire
        est sont a ont fait très plus moins bien mal""".split()
    ),
}

SYNONYMS: dict[str, dict[str, tuple[str, ...]]] = {
    "en": {
        "create": ("make", "produce", "generate", "build"),
        "compare": ("contrast", "analyze", "evaluate"),
        "summarize": ("synthesize", "condense", "recap"),
        "translate": ("convert", "transpose"),
        "improve": ("optimize", "enhance", "enrich"),
        "analyze": ("examine", "study", "evaluate"),
        "client": ("customer", "account", "prospect"),
        "project": ("initiative", "program", "mission"),
        "document": ("file", "report", "note"),
        "tool": ("instrument", "utility", "function"),
    },
    "fr": {
        "créer": ("faire", "produire", "générer", "construire"),
        "comparer": ("confronter", "analyser", "évaluer"),
        "résumer": ("synthétiser", "condenser", "récapituler"),
        "traduire": ("convertir", "transposer"),
        "améliorer": ("optimiser", "perfectionner", "enrichir"),
        "analyser": ("examiner", "étudier", "évaluer"),
        "client": ("compte", "prospect", "partenaire"),
        "projet": ("initiative", "programme", "mission"),
        "document": ("fichier", "rapport", "note"),
        "outil": ("instrument", "utilitaire", "fonction"),
        "prompt": ("instruction", "consigne", "directive"),
        "style": ("ton", "format", "manière"),
    },
}

EXPANSION_SYSTEM_PROMPT = """You are an information retrieval expert. Analyze a user query and extract information that improves search.

Return ONLY a valid JSON object with this structure:
{
  "keywords": ["word1", "word2", ...],
  "entities": [{"name": "Name", "type": "client|project|product|organization|person"}],
  "negative_keywords": ["excluded_word1", ...]
}

Keywords should include important terms from the query, relevant synonyms and associated domain terms.
Entities are detected proper nouns (clients, projects, products, people)."""

_PROPER_NOUN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
_EMAIL = re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")
_URL = re.compile(r"https?://[^\s<>\"']+")
_HASHTAG = re.compile(r"(?<![\w#])#([\w-]{2,})")
_MENTION = re.compile(r"(?<![\w@])@([\w.-]{2,})")
_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def identity_expansion(text: str) -> QueryExpansion:
    return QueryExpansion(original_query=text, expanded_query=text, source="identity")


def detect_entities(text: str) -> list[Entity]:
    """Typed entities recognisable without a lookup: e-mails, URLs, tags, mentions, names."""
    entities: list[Entity] = []
    seen: set[tuple[str, str]] = set()

    def add(name: str, kind: str) -> None:
        key = (name, kind)
        if name and key not in seen:
            seen.add(key)
            entities.append(Entity(name=name, type=kind))

    emails = _EMAIL.findall(text)
    for email in emails:
        add(email, "email")
    for url in _URL.findall(text):
        add(url.rstrip(".,;:)"), "url")
    scrubbed = _URL.sub(" ", _EMAIL.sub(" ", text))
    for tag in _HASHTAG.findall(scrubbed):
        add(tag, "tag")
    for mention in _MENTION.findall(scrubbed):
        add(mention, "mention")
    for name in _PROPER_NOUN.findall(scrubbed):
        add(name, "unknown")
    return entities


def basic_expansion(text: str, language: str) -> QueryExpansion:
    stopwords = STOPWORDS.get(language, STOPWORDS["en"])
    words = [word for word in text.lower().split() if len(word) > 2 and word not in stopwords]
    keywords = _unique(words)

    dictionary = SYNONYMS.get(language, SYNONYMS["en"])
    synonyms: list[str] = []
    for keyword in keywords:
        synonyms.extend(dictionary.get(keyword, ()))
    keywords = _unique(keywords + _unique(synonyms)[:MAX_SYNONYMS])

    return QueryExpansion(
        original_query=text,
        expanded_query=" ".join(keywords) if keywords else text,
        keywords=keywords,
        entities=detect_entities(text),
        source="basic",
    )


def parse_ai_expansion(text: str, reply: str) -> QueryExpansion:
    fenced = _JSON_FENCE.search(reply)
    raw = fenced.group(1) if fenced else reply
    data: Any = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("expansion reply is not a JSON object")

    keywords = [str(item) for item in data.get("keywords") or [] if item]
    negative = [str(item) for item in data.get("negative_keywords") or [] if item]
    entities = [
        Entity(name=str(item["name"]), type=str(item.get("type") or "unknown"))
        for item in data.get("entities") or []
        if isinstance(item, dict) and item.get("name")
    ]
    parts = [text, *keywords[:MAX_AI_KEYWORDS], *(entity.name for entity in entities)]
    return QueryExpansion(
        original_query=text,
        expanded_query=" ".join(_unique(parts)),
        keywords=keywords,
        entities=entities,
        negative_keywords=negative,
        source="ai",
    )


class QueryExpander:
    """Expand a natural-language need for retrieval.

    The AI path is tried first when a semantic backend is available, then the
    local keyword/synonym path. Any unexpected failure yields the identity
    expansion so the pipeline always has a query.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        semantic: SemanticBackend | None = None,
        cache: RedisCache | None = None,
    ) -> None:
        self.settings = settings
        self.semantic = semantic
        self.cache = cache

    async def expand(self, text: str, language: str | None = None) -> QueryExpansion:
        language = (language or self.settings.default_language).lower()
        key = RedisCache.expansion_key(hash_text(text, language))
        if self.cache is not None:
            cached = await self.cache.get_json(key)
            if isinstance(cached, dict):
                try:
                    return QueryExpansion.model_validate(cached)
                except ValueError:
                    logger.warning("ignoring malformed expansion cache entry %s", key)

        try:
            result = await self._ai_expand(text)
            if result is None:
                result = basic_expansion(text, language)
        except Exception as exc:
            logger.warning("query expansion failed, using raw context: %s", exc)
            return identity_expansion(text)

        if self.cache is not None:
            await self.cache.set_json(
                key,
                result.model_dump(mode="json"),
                self.settings.expansion_cache_ttl_seconds,
            )
        return result

    async def _ai_expand(self, text: str) -> QueryExpansion | None:
        if self.semantic is None or not self.semantic.is_available():
            return None
        try:
            reply = await asyncio.wait_for(
                self.semantic.chat(
                    f"Analyze this search query and extract information:\n\nQuery: {text}",
                    system=EXPANSION_SYSTEM_PROMPT,
                ),
                timeout=self.settings.semantic_timeout_seconds,
            )
            return parse_ai_expansion(text, reply)
        except (
            BackendError,
            asyncio.TimeoutError,
            ValueError,
            KeyError,
            TypeError,
            AttributeError,
        ) as exc:
            logger.info("AI query expansion unavailable: %s", exc)
            return None


__all__ = [
    "QueryExpander",
    "basic_expansion",
    "detect_entities",
    "identity_expansion",
    "parse_ai_expansion",
]
