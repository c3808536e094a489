from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

from signaldesk.domain.anomalies.engine import SEVERITY_RANK, AnomalyType, Severity
from signaldesk.domain.watchlists.matching import Candidate, Match, normalize, similarity

WEIGHTS = {
    "velocity": 0.25,
    "relevance": 0.25,
    "time_sensitivity": 0.20,
    "sentiment": 0.15,
    "response_rate": 0.15,
}

NEUTRAL_SCORE = 50.0
FRESHNESS_HOURS = 24.0


class AlertType(str, Enum):
    SPIKE = "spike"
    BREAKING = "breaking"
    SENTIMENT_SHIFT = "sentiment_shift"
    TRENDING_SPIKE = "trending_spike"
    VOLUME_SPIKE = "volume_spike"


ANOMALY_ALERT_TYPES = {
    AnomalyType.MENTION_SPIKE.value: AlertType.VOLUME_SPIKE,
    AnomalyType.VELOCITY_SPIKE.value: AlertType.TRENDING_SPIKE,
    AnomalyType.SENTIMENT_SHIFT.value: AlertType.SENTIMENT_SHIFT,
}

SUGGESTED_ACTIONS = {
    AlertType.BREAKING: "Breaking story: prepare a rapid-response statement and brief spokespeople.",
    AlertType.TRENDING_SPIKE: "Coverage is accelerating: draft supporter messaging while attention is high.",
    AlertType.VOLUME_SPIKE: "Mention volume is far above normal: review the top sources and decide on outreach.",
    AlertType.SENTIMENT_SHIFT: "Tone has shifted sharply: review coverage and consider a clarifying response.",
    AlertType.SPIKE: "Rising activity: monitor coverage and share relevant updates with your audience.",
}


@dataclass(frozen=True)
class ActionableScore:
    velocity: float
    relevance: float
    time_sensitivity: float
    sentiment: float
    response_rate: float

    @property
    def total(self) -> float:
        return round(sum(getattr(self, name) * weight for name, weight in WEIGHTS.items()), 2)

    def breakdown(self) -> dict[str, float]:
        return {name: round(getattr(self, name), 2) for name in WEIGHTS}


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def velocity_score(velocity: float) -> float:
    return clamp(velocity / 3)


def topic_score(names: Sequence[str], focus_topics: Iterable[str] | None) -> float:
    topics = [normalize(topic) for topic in focus_topics or [] if normalize(topic)]
    if not topics:
        return NEUTRAL_SCORE
    folded = [normalize(name) for name in names if normalize(name)]
    best = 0.0
    for topic in topics:
        for name in folded:
            if topic in name:
                return 100.0
            best = max(best, similarity(topic, name))
    return clamp(best * 100)


def relevance_score(match_score: float, names: Sequence[str], focus_topics: Iterable[str] | None) -> float:
    return clamp(0.5 * match_score * 100 + 0.5 * topic_score(names, focus_topics))


def time_sensitivity_score(candidate: Candidate, now: datetime) -> float:
    freshness = 0.0
    if candidate.last_seen_at is not None:
        hours = max((now - candidate.last_seen_at).total_seconds() / 3600, 0.0)
        freshness = clamp(100 * (1 - hours / FRESHNESS_HOURS))
    burst = 0.0
    if candidate.mentions_24h > 0:
        burst = clamp(candidate.mentions_6h / candidate.mentions_24h * 100)
    return (freshness + burst) / 2


def sentiment_score(sentiment_change: float | None) -> float:
    if sentiment_change is None:
        return 0.0
    return min(100.0, abs(sentiment_change) * 200)


def response_rate_score(read: int, dismissed: int) -> float:
    total = read + dismissed
    if total == 0:
        return NEUTRAL_SCORE
    return clamp(read / total * 100)


def score_candidate(
    *,
    match: Match,
    entry_name: str,
    focus_topics: Iterable[str] | None,
    now: datetime,
    read: int = 0,
    dismissed: int = 0,
) -> ActionableScore:
    candidate = match.candidate
    return ActionableScore(
        velocity=velocity_score(candidate.velocity),
        relevance=relevance_score(match.score, [candidate.entity_name, entry_name], focus_topics),
        time_sensitivity=time_sensitivity_score(candidate, now),
        sentiment=sentiment_score(candidate.sentiment_change),
        response_rate=response_rate_score(read, dismissed),
    )


def severity_for_score(score: float) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def choose_alert_type(candidate: Candidate, *, sentiment_alert: bool = True) -> AlertType:
    """Surfaced anomalies decide the type; trend heuristics cover the rest."""

    anomalies = [
        (anomaly_type, severity)
        for anomaly_type, severity in candidate.anomalies
        if anomaly_type in ANOMALY_ALERT_TYPES
        and (sentiment_alert or anomaly_type != AnomalyType.SENTIMENT_SHIFT.value)
    ]
    if anomalies:
        anomalies.sort(key=lambda pair: (-SEVERITY_RANK.get(Severity(pair[1]), 0), pair[0]))
        return ANOMALY_ALERT_TYPES[anomalies[0][0]]

    if candidate.velocity > 200:
        return AlertType.TRENDING_SPIKE
    if (
        sentiment_alert
        and candidate.sentiment_change is not None
        and abs(candidate.sentiment_change) > 0.3
    ):
        return AlertType.SENTIMENT_SHIFT
    if candidate.is_trending and candidate.velocity > 100:
        return AlertType.BREAKING
    return AlertType.SPIKE


def suggested_action(alert_type: AlertType) -> str:
    return SUGGESTED_ACTIONS[alert_type]
