"""Candidate reranking: BM25-style lexical scoring with a semantic upgrade."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from collections import Counter
from typing import Any, Sequence

from pydantic import ValidationError

from .backends.base import SemanticBackend
from .config import Settings
from .errors import SemanticRerankError
from .models import Candidate
from .storage import RedisCache
from .utils import hash_candidates, truncate_field

logger = logging.getLogger(__name__)

BM25_K1 = 1.2
BM25_B = 0.75
BM25_AVG_DOC_LEN = 100
# Corpus statistics are not available at this layer, so every term is
# treated as moderately rare.
BM25_IDF = math.log(2.0)
CONTENT_SCORING_CHARS = 500
SEMANTIC_ITEM_CHARS = 300

_NON_ALNUM = re.compile(r"[\W_]+")
_RANKING_ARRAY = re.compile(r"\[\s*\[.*\]\s*\]", re.DOTALL)


def tokenize(text: str) -> list[str]:
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return [term for term in cleaned.split() if len(term) > 1]


def candidate_text(candidate: Candidate) -> str:
    parts: list[str] = []
    if candidate.title:
        # repeated for weight
        parts.extend([candidate.title, candidate.title])
    if candidate.excerpt:
        parts.append(candidate.excerpt)
    if candidate.content:
        parts.append(candidate.content[:CONTENT_SCORING_CHARS])
    if candidate.tags:
        parts.append(" ".join(candidate.tags))
    if candidate.label:
        parts.append(candidate.label)
    return " ".join(parts)


def bm25_score(query_terms: Sequence[str], doc_terms: Sequence[str]) -> float:
    if not query_terms or not doc_terms:
        return 0.0
    doc_len = len(doc_terms)
    term_freq = Counter(doc_terms)
    length_norm = 1 - BM25_B + BM25_B * (doc_len / BM25_AVG_DOC_LEN)
    score = 0.0
    for term in query_terms:
        tf = term_freq.get(term, 0)
        if tf <= 0:
            continue
        score += BM25_IDF * (tf * (BM25_K1 + 1)) / (tf + BM25_K1 * length_norm)
    return score


def _contains_phrase(phrase: str, terms: Sequence[str]) -> bool:
    return f" {phrase} " in f" {' '.join(terms)} "


def lexical_score(
    query_terms: Sequence[str],
    candidate: Candidate,
    *,
    phrase_bonus: float = 0.2,
    title_bonus: float = 0.1,
) -> float:
    """Score one candidate in ``[0, 1]`` against pre-tokenized query terms."""
    doc_terms = tokenize(candidate_text(candidate))
    if not query_terms or not doc_terms:
        return 0.0

    normalized = min(1.0, bm25_score(query_terms, doc_terms) / (len(query_terms) * 2.0))

    phrase = " ".join(query_terms)
    if _contains_phrase(phrase, doc_terms):
        normalized = min(1.0, normalized + phrase_bonus)
        if _contains_phrase(phrase, tokenize(candidate.title)):
            normalized = min(1.0, normalized + title_bonus)
    return round(normalized, 3)


def lexical_rerank(
    candidates: Sequence[Candidate],
    query: str,
    *,
    phrase_bonus: float = 0.2,
    title_bonus: float = 0.1,
) -> list[Candidate]:
    query_terms = tokenize(query)
    scored = [
        candidate.model_copy(
            update={
                "score": lexical_score(
                    query_terms,
                    candidate,
                    phrase_bonus=phrase_bonus,
                    title_bonus=title_bonus,
                ),
                "source": "lexical",
            }
        )
        for candidate in candidates
    ]
    # sorted() is stable, ties keep retrieval order
    return sorted(scored, key=lambda item: item.score, reverse=True)


def build_semantic_prompt(candidates: Sequence[Candidate], query: str) -> str:
    lines = []
    for index, candidate in enumerate(candidates):
        text = " ".join(
            part
            for part in (candidate.title, candidate.excerpt, " ".join(candidate.tags))
            if part
        )
        lines.append(f"[{index}] {truncate_field(text, SEMANTIC_ITEM_CHARS)}")
    items = "\n".join(lines)
    return (
        "You are an information retrieval expert. Rank these items by relevance "
        "to the query.\n\n"
        f"Query: {query}\n\n"
        f"Items to rank:\n{items}\n\n"
        "Return ONLY a JSON array of item indices sorted by decreasing relevance, "
        "each with a score between 0 and 1.\n"
        "Format: [[index, score], [index, score], ...]\n"
        "Example: [[2, 0.95], [0, 0.8], [1, 0.6]]"
    )


def parse_semantic_ranking(reply: str, count: int) -> list[tuple[int, float]]:
    """Extract ``(index, score)`` pairs from a model reply.

    Out-of-range indices, repeated indices and malformed pairs are skipped.
    Raises ``SemanticRerankError`` when nothing usable remains.
    """
    match = _RANKING_ARRAY.search(reply)
    raw_json = match.group(0) if match else reply
    try:
        data: Any = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise SemanticRerankError(f"reranker reply is not JSON: {exc}") from exc
    if not isinstance(data, list):
        raise SemanticRerankError("reranker reply is not a list")

    ranking: list[tuple[int, float]] = []
    seen: set[int] = set()
    for entry in data:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            continue
        try:
            index = int(entry[0])
            score = float(entry[1])
        except (TypeError, ValueError):
            continue
        if index < 0 or index >= count or index in seen or math.isnan(score):
            continue
        seen.add(index)
        ranking.append((index, min(1.0, max(0.0, score))))
    if not ranking:
        raise SemanticRerankError("reranker reply ranked no known items")
    return ranking


def apply_semantic_ranking(
    candidates: Sequence[Candidate],
    ranking: Sequence[tuple[int, float]],
    *,
    fallback_score: float = 0.1,
) -> list[Candidate]:
    ranked: list[Candidate] = []
    ranked_indices: set[int] = set()
    for index, score in ranking:
        ranked_indices.add(index)
        ranked.append(candidates[index].model_copy(update={"score": score, "source": "semantic"}))
    for index, candidate in enumerate(candidates):
        if index in ranked_indices:
            continue
        ranked.append(
            candidate.model_copy(
                update={"score": fallback_score, "source": "semantic_fallback"}
            )
        )
    return ranked


class Ranker:
    """Reduce a candidate list to an ordered shortlist.

    Semantic reranking is attempted once when enabled and the backend is
    available; every failure falls back to the lexical scorer. Full ranked
    lists are cached by candidate-id set and query.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache: RedisCache | None = None,
        semantic: SemanticBackend | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.semantic = semantic

    def cache_key(self, candidates: Sequence[Candidate], query: str) -> str:
        digest = hash_candidates((candidate.id for candidate in candidates), query)
        return RedisCache.rank_key(digest)

    async def rerank(
        self,
        candidates: Sequence[Candidate],
        query: str,
        top_k: int,
        *,
        use_semantic: bool = True,
    ) -> list[Candidate]:
        if len(candidates) <= 1:
            return list(candidates)

        key = self.cache_key(candidates, query)
        cached = await self._cached(key)
        if cached is not None:
            return cached[:top_k]

        ranked: list[Candidate] | None = None
        semantic = self.semantic
        if use_semantic and semantic is not None and semantic.is_available():
            try:
                ranked = await self._semantic_rerank(semantic, candidates, query)
            except Exception as exc:
                logger.warning("semantic rerank failed, using lexical scoring: %s", exc)
                ranked = None
        if ranked is None:
            ranked = lexical_rerank(
                candidates,
                query,
                phrase_bonus=self.settings.phrase_bonus,
                title_bonus=self.settings.title_phrase_bonus,
            )

        if self.cache is not None:
            await self.cache.set_json(
                key,
                [candidate.model_dump(mode="json") for candidate in ranked],
                self.settings.rank_cache_ttl_seconds,
            )
        return ranked[:top_k]

    async def _semantic_rerank(
        self, semantic: SemanticBackend, candidates: Sequence[Candidate], query: str
    ) -> list[Candidate]:
        prompt = build_semantic_prompt(candidates, query)
        reply = await asyncio.wait_for(
            semantic.chat(prompt),
            timeout=self.settings.semantic_timeout_seconds,
        )
        ranking = parse_semantic_ranking(reply, len(candidates))
        return apply_semantic_ranking(
            candidates,
            ranking,
            fallback_score=self.settings.semantic_fallback_score,
        )

    async def _cached(self, key: str) -> list[Candidate] | None:
        if self.cache is None:
            return None
        payload = await self.cache.get_json(key)
        if not isinstance(payload, list):
            return None
        try:
            return [Candidate.model_validate(item) for item in payload]
        except ValidationError:
            logger.warning("ignoring malformed ranking cache entry %s", key)
            return None


__all__ = [
    "tokenize",
    "candidate_text",
    "bm25_score",
    "lexical_score",
    "lexical_rerank",
    "build_semantic_prompt",
    "parse_semantic_ranking",
    "apply_semantic_ranking",
    "Ranker",
]
