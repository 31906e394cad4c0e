"""Shared helpers for cache keys, truncation and timestamps."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")


def hash_candidates(ids: Iterable[int], query: str) -> str:
    payload = {"ids": sorted(ids), "q": query}
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:16]


def hash_text(text: str, *parts: str) -> str:
    raw = "|".join((text, *parts)).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:16]


def truncate_field(value: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(value) <= max_chars:
        return value
    ellipsis = "..." if max_chars > 3 else ""
    slice_len = max_chars - len(ellipsis)
    return value[:slice_len] + ellipsis


def trim_words(text: str, num_words: int = 20, more: str = "...") -> str:
    """Keep the first ``num_words`` whitespace-separated words of ``text``."""
    words = [word for word in _WHITESPACE.split(text.strip()) if word]
    if len(words) <= num_words:
        return " ".join(words)
    return " ".join(words[:num_words]) + more


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


__all__ = ["hash_candidates", "hash_text", "truncate_field", "trim_words", "utc_timestamp"]
