"""Keyword match scoring and keyword-aware snippet extraction."""

from __future__ import annotations

import logging
import math
from typing import Sequence

logger = logging.getLogger(__name__)

_SNIPPET_MAX = 200
_SNIPPET_BEFORE = 80
_SNIPPET_AFTER = 120


def match_keywords(content: str, keywords: Sequence[str]) -> list[str]:
    """Return the keywords that occur in *content* (case-insensitive substring)."""
    lowered = content.lower()
    return [kw for kw in keywords if kw and kw.lower() in lowered]


def calculate_keyword_match_score(content: str, matched_keywords: Sequence[str]) -> float:
    """BM25-flavoured score for *content* given the keywords it matched.

    Per keyword:
        length_weight   = sqrt(len(keyword)) / 2
        position_weight = 1.5 if first hit < 100, 1.2 if < 300, else 1.0
        frequency_score = sqrt(occurrences) * 0.5
        contribution    = (1 + frequency_score) * length_weight * position_weight
    Total = sum(contributions) * (1 + sqrt(len(matched_keywords)) * 0.2)

    Falls back to ``len(matched_keywords) * 0.5`` if scoring fails.
    """
    try:
        lowered = content.lower()
        total = 0.0
        for keyword in matched_keywords:
            kw = keyword.lower()
            count = lowered.count(kw)
            if count == 0:
                continue
            first = lowered.find(kw)
            length_weight = math.sqrt(len(kw)) / 2
            if first < 100:
                position_weight = 1.5
            elif first < 300:
                position_weight = 1.2
            else:
                position_weight = 1.0
            frequency_score = math.sqrt(count) * 0.5
            total += (1 + frequency_score) * length_weight * position_weight

        diversity_bonus = 1 + math.sqrt(len(matched_keywords)) * 0.2
        return total * diversity_bonus
    except Exception as exc:
        logger.warning("Keyword scoring failed, using fallback: %s", exc)
        return len(matched_keywords) * 0.5


def extract_snippet(content: str, keywords: Sequence[str] | None = None) -> str:
    """Return a short excerpt of *content* centred on the first matching keyword.

    Content of 200 characters or less is returned unchanged. Otherwise the
    window ``[idx - 80, idx + len(keyword) + 120]`` around the first keyword
    found is returned, with ellipses marking truncated ends. Without a
    matching keyword, the first 200 characters plus "..." are returned.
    """
    if len(content) <= _SNIPPET_MAX:
        return content

    lowered = content.lower()
    for keyword in keywords or []:
        if not keyword:
            continue
        idx = lowered.find(keyword.lower())
        if idx == -1:
            continue
        start = max(0, idx - _SNIPPET_BEFORE)
        end = min(len(content), idx + len(keyword) + _SNIPPET_AFTER)
        snippet = content[start:end]
        if start > 0:
            snippet = "..." + snippet
        if end < len(content):
            snippet = snippet + "..."
        return snippet

    return content[:_SNIPPET_MAX] + "..."
