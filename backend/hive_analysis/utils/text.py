"""Text normalisation helpers for response bodies and prompt payloads."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    """Collapse consecutive whitespace characters into single spaces."""

    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalise_response_text(text: str) -> str:
    """Return the NFKC-normalised, whitespace-collapsed text sent for embedding."""

    stripped = (text or "").strip()
    if not stripped:
        return ""
    return unicodedata.normalize("NFKC", collapse_whitespace(stripped))


def evenly_spaced_sample(items: Iterable[str], limit: int) -> list[str]:
    """Pick up to ``limit`` items spread evenly across the sequence, keeping order."""

    pool = list(items)
    if limit <= 0:
        return []
    if len(pool) <= limit:
        return pool
    step = len(pool) / limit
    return [pool[int(i * step)] for i in range(limit)]


def format_provenance(pairs: Iterable[tuple[int, str]]) -> str:
    """Render ``(response_id, text)`` pairs as ``"id: text | id: text"``."""

    return " | ".join(f"{response_id}: {text}" for response_id, text in pairs)
