"""
Lexical search and relevance scoring for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

from typing import List, Optional, Tuple

from .cache import LRUCache
from .models import TIER_PRIORITY, MatchType, Memory, SearchResult
from .similarity import tokenize

EXACT_WEIGHT = 0.5
COVERAGE_WEIGHT = 0.3
TAG_WEIGHT = 0.2


def query_coverage(query_tokens, content_tokens) -> float:
    """Fraction of query tokens present in the content"""
    if not query_tokens:
        return 0.0
    return len(query_tokens & content_tokens) / len(query_tokens)


def tag_overlap(query_tokens, tags: List[str], cache: Optional[LRUCache] = None) -> float:
    """Fraction of query tokens that appear in any tag"""
    if not query_tokens or not tags:
        return 0.0
    tag_tokens = set()
    for tag in tags:
        tag_tokens |= tokenize(tag, cache)
    return len(query_tokens & tag_tokens) / len(query_tokens)


def classify_match(
    query: str,
    memory: Memory,
    fuzzy_threshold: float = 0.3,
    cache: Optional[LRUCache] = None,
) -> Optional[Tuple[MatchType, float]]:
    """Match type and relevance score of memory for query, None when it does not match"""
    query_tokens = tokenize(query, cache)
    exact = query.strip().lower() in memory.content.lower()
    coverage = query_coverage(query_tokens, tokenize(memory.content, cache))
    tags = tag_overlap(query_tokens, memory.tags, cache)

    if exact:
        match_type = MatchType.EXACT
    elif max(coverage, tags) > 0 and max(coverage, tags) >= fuzzy_threshold:
        match_type = MatchType.FUZZY
    else:
        return None

    score = (EXACT_WEIGHT if exact else 0.0) + COVERAGE_WEIGHT * coverage + TAG_WEIGHT * tags
    return match_type, min(score, 1.0)


def rank_results(results: List[SearchResult]) -> List[SearchResult]:
    """Core tier first, then score descending, then newest first"""
    return sorted(
        results,
        key=lambda r: (TIER_PRIORITY[r.memory.tier], -r.score, -r.memory.created_at.timestamp()),
    )
