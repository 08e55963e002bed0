"""Relevance and similarity scoring.

All weights live here. Adding a ContextType member means adding its entry to
DEFAULT_SCORES; the import-time check below fails loudly if the two drift.
"""

from __future__ import annotations

from kontextstore.models import Context, ContextType
from kontextstore.storage.filters import searchable_text

DEFAULT_RELEVANCE_SCORE = 0.8

DEFAULT_SCORES: dict[ContextType, float] = {
    ContextType.CODE_EXAMPLE: DEFAULT_RELEVANCE_SCORE,
    ContextType.BEST_PRACTICE: DEFAULT_RELEVANCE_SCORE,
    ContextType.SECURITY_TIP: DEFAULT_RELEVANCE_SCORE,
    ContextType.OPTIMIZATION: DEFAULT_RELEVANCE_SCORE,
    ContextType.DOCUMENTATION: DEFAULT_RELEVANCE_SCORE,
    ContextType.ERROR_PATTERN: DEFAULT_RELEVANCE_SCORE,
    ContextType.DEPLOYMENT_TOOL: DEFAULT_RELEVANCE_SCORE,
    ContextType.RUNTIME_BEHAVIOR: DEFAULT_RELEVANCE_SCORE,
}

_missing = set(ContextType) - set(DEFAULT_SCORES)
if _missing:
    raise RuntimeError(f"DEFAULT_SCORES has no entry for: {sorted(t.value for t in _missing)}")

# find_similar weights
TAG_OVERLAP_WEIGHT = 2.0
TYPE_MATCH_WEIGHT = 1.0

# rank_by_relevance weights
PHRASE_MATCH_BOOST = 0.5
TOKEN_MATCH_WEIGHT = 0.5
CONTRACT_TYPE_BOOST = 0.2


STOP_WORDS = {
    "why", "did", "we", "the", "a", "an", "is", "are", "was", "were",
    "do", "does", "how", "what", "when", "where", "which", "who",
    "our", "their", "this", "that", "for", "with", "from", "about",
    "use", "using", "used", "should", "would", "could", "can", "need",
    "have", "has", "had", "not", "and", "or", "but", "in", "on",
    "to", "of", "it", "its", "be", "been", "being", "my", "me", "i",
}


def extract_keywords(text: str) -> list[str]:
    """Meaningful words from a natural-language request, in order, deduplicated.

    Drops stop words, punctuation and words of two characters or fewer.
    """
    words: list[str] = []
    for word in text.lower().split():
        cleaned = "".join(c for c in word if c.isalnum() or c in "_-")
        if cleaned and cleaned not in STOP_WORDS and len(cleaned) > 2 and cleaned not in words:
            words.append(cleaned)
    return words


def calculate_relevance_score(context: Context) -> float:
    """Default intrinsic score for a context ingested without one."""
    return DEFAULT_SCORES[context.type]


def similarity(anchor: Context, candidate: Context) -> float:
    """Pairwise similarity: 2 per shared distinct tag, +1 for the same type,
    plus the candidate's intrinsic score as a tie-breaker.

    Returns 0.0 when the two share neither a tag nor a type.
    """
    shared_tags = len(set(anchor.metadata.tags) & set(candidate.metadata.tags))
    same_type = anchor.type == candidate.type
    if not shared_tags and not same_type:
        return 0.0
    return (
        TAG_OVERLAP_WEIGHT * shared_tags
        + (TYPE_MATCH_WEIGHT if same_type else 0.0)
        + (candidate.metadata.relevance_score or 0.0)
    )


def text_match_score(context: Context, query_text: str) -> float:
    """Graded match of ``query_text`` against the same fields the query filter uses."""
    phrase = query_text.lower().strip()
    tokens = phrase.split()
    if not tokens:
        return 0.0

    text = searchable_text(context)
    score = 0.0
    if phrase in text:
        score += PHRASE_MATCH_BOOST
    matched = sum(1 for token in tokens if token in text)
    score += TOKEN_MATCH_WEIGHT * matched / len(tokens)

    contract_type = context.metadata.contract_type
    if contract_type and contract_type.lower() in phrase:
        score += CONTRACT_TYPE_BOOST
    return score


def query_relevance(context: Context, query_text: str) -> float:
    """Text match added to the record's intrinsic relevance score."""
    return (context.metadata.relevance_score or 0.0) + text_match_score(context, query_text)
