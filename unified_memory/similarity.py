"""
Duplicate detection for the Unified Memory Store
Copyright 2025 Jurden Bruce

Similarity is the Jaccard index of the lower-cased alphanumeric token sets
of two texts: identical token sets score 1.0, disjoint ones 0.0.
"""

import asyncio
import re
from typing import FrozenSet, Iterable, List, Optional

from .cache import LRUCache
from .models import DuplicateMatch, Memory

_TOKEN_PATTERN = re.compile(r"[^\W_]+")

PREVIEW_LENGTH = 100


def _split_tokens(text: str) -> FrozenSet[str]:
    return frozenset(_TOKEN_PATTERN.findall(text.lower()))


def tokenize(text: str, cache: Optional[LRUCache] = None) -> FrozenSet[str]:
    if cache is None:
        return _split_tokens(text)
    return cache.get_or_compute(text, _split_tokens)


def jaccard_similarity(text_a: str, text_b: str, cache: Optional[LRUCache] = None) -> float:
    tokens_a = tokenize(text_a, cache)
    tokens_b = tokenize(text_b, cache)
    if not tokens_a and not tokens_b:
        # Nothing alphanumeric on either side, fall back to plain equality
        return 1.0 if text_a.strip().lower() == text_b.strip().lower() else 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def _match_sort_key(match: DuplicateMatch):
    return (-match.similarity, -match.memory.created_at.timestamp())


def score_candidates(
    content: str,
    candidates: Iterable[Memory],
    threshold: float,
    cache: Optional[LRUCache] = None,
) -> List[DuplicateMatch]:
    """Every candidate at or above threshold, most similar first"""
    matches = []
    for memory in candidates:
        similarity = jaccard_similarity(content, memory.content, cache)
        if similarity >= threshold:
            matches.append(DuplicateMatch(memory=memory, similarity=similarity))
    matches.sort(key=_match_sort_key)
    return matches


async def find_duplicates(
    content: str,
    candidates: List[Memory],
    threshold: float,
    cache: Optional[LRUCache] = None,
    yield_every: int = 50,
) -> List[DuplicateMatch]:
    """Async variant of score_candidates that yields to the event loop while scanning"""
    matches = []
    for index in range(0, len(candidates), yield_every):
        matches.extend(score_candidates(content, candidates[index:index + yield_every], threshold, cache))
        await asyncio.sleep(0)
    matches.sort(key=_match_sort_key)
    return matches


def build_recommendation(duplicates: List[DuplicateMatch]) -> str:
    if not duplicates:
        return "No duplicates found. Safe to store new memory."
    best = duplicates[0]
    preview = best.memory.content[:PREVIEW_LENGTH]
    if len(best.memory.content) > PREVIEW_LENGTH:
        preview += "..."
    return (
        f'Similar memory found: "{preview}" ({best.similarity:.3f} similarity). '
        "Consider updating existing memory instead."
    )
