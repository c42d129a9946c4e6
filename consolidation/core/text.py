import re
from typing import FrozenSet, Iterable, Set

# Pronoun-like and persona words that carry no functional meaning in a narrative
STOP_WORDS: FrozenSet[str] = frozenset({
    "want", "that", "this", "with", "from", "have", "been", "being",
    "would", "could", "should", "like",
    "member", "admin", "staff", "user",
})

MIN_TOKEN_LENGTH = 4

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_PERSONA_CLAUSE = re.compile(r"^\s*as an?\s+[^,]+?,\s*", re.IGNORECASE)


def normalize(text: str) -> str:
    """Lowercase and drop everything that is not a letter, digit or whitespace."""
    return _NON_ALNUM.sub("", (text or "").lower())


def long_tokens(text: str) -> Set[str]:
    """Distinct lowercase words longer than three characters."""
    return {w for w in normalize(text).split() if len(w) >= MIN_TOKEN_LENGTH}


def significant_tokens(text: str, stop_words: Iterable[str] = STOP_WORDS) -> Set[str]:
    stop = set(stop_words)
    return {w for w in long_tokens(text) if w not in stop}


def strip_persona_clause(narrative: str) -> str:
    """'As a member, I want X' -> 'I want X'. Leaves other text untouched."""
    return _PERSONA_CLAUSE.sub("", (narrative or "").strip(), count=1)


def same_persona(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()
