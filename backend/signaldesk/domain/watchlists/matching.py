from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from difflib import SequenceMatcher
from enum import Enum
from typing import Iterable, Sequence

FUZZY_MATCH_THRESHOLD = 0.8
MIN_SUBSTRING_LENGTH = 3


class MatchType(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"
    FUZZY = "fuzzy"


TIER_ORDER = (MatchType.EXACT, MatchType.SUBSTRING, MatchType.FUZZY)


@dataclass(frozen=True)
class Candidate:
    entity_key: str
    entity_name: str
    entity_type: str
    velocity: float
    momentum: float
    mentions_6h: int
    mentions_24h: int
    sentiment_change: float | None
    last_seen_at: datetime | None
    is_trending: bool
    anomalies: tuple[tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Match:
    candidate: Candidate
    match_type: MatchType
    score: float
    term: str


def normalize(value: str | None) -> str:
    return " ".join((value or "").split()).casefold()


def similarity(left: str | None, right: str | None) -> float:
    """Ratio in [0, 1] of two names after case and whitespace folding, to 4 decimals."""
    a = normalize(left)
    b = normalize(right)
    if not a or not b:
        return 0.0
    return round(SequenceMatcher(None, a, b).ratio(), 4)


def _exact(term: str, name: str) -> float | None:
    return 1.0 if term == name else None


def _substring(term: str, name: str) -> float | None:
    if term == name:
        return None
    shorter, longer = sorted((term, name), key=len)
    if len(shorter) < MIN_SUBSTRING_LENGTH or shorter not in longer:
        return None
    return round(len(shorter) / len(longer), 4)


def _fuzzy(term: str, name: str) -> float | None:
    score = similarity(term, name)
    return score if score >= FUZZY_MATCH_THRESHOLD else None


_TIER_FUNCS = {
    MatchType.EXACT: _exact,
    MatchType.SUBSTRING: _substring,
    MatchType.FUZZY: _fuzzy,
}


def match_terms(entity_name: str, aliases: Iterable[str] | None) -> list[str]:
    terms: list[str] = []
    for value in [entity_name, *(aliases or [])]:
        term = normalize(value)
        if term and term not in terms:
            terms.append(term)
    return terms


def _best_in_tier(tier: MatchType, terms: Sequence[str], candidates: Sequence[Candidate]) -> Match | None:
    scorer = _TIER_FUNCS[tier]
    found: list[Match] = []
    for candidate in candidates:
        name = normalize(candidate.entity_name)
        best: tuple[float, str] | None = None
        for term in terms:
            score = scorer(term, name)
            if score is not None and (best is None or score > best[0]):
                best = (score, term)
        if best is not None:
            found.append(Match(candidate=candidate, match_type=tier, score=best[0], term=best[1]))
    if not found:
        return None
    found.sort(key=lambda match: (-match.score, -match.candidate.mentions_24h, match.candidate.entity_name))
    return found[0]


def match_entry(terms: Sequence[str], candidates: Sequence[Candidate]) -> Match | None:
    """Best candidate for a watchlist entry's name and aliases.

    Tiers are tried in order (exact, substring, fuzzy) and the first tier with any
    hit decides; a fuzzy near-duplicate can never beat an exact match.
    """

    if not terms:
        return None
    for tier in TIER_ORDER:
        match = _best_in_tier(tier, terms, candidates)
        if match is not None:
            return match
    return None
