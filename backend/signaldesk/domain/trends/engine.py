from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from signaldesk.domain.errors import DataQualityError

VELOCITY_TRENDING_THRESHOLD = 50.0
MIN_MENTIONS_24H = 3
BURST_MENTIONS_6H = 5
# Brand-new topic: mentions in the last 6h but no 24h baseline to divide by.
NEW_TOPIC_VELOCITY = 500.0

WINDOW_1H = timedelta(hours=1)
WINDOW_6H = timedelta(hours=6)
WINDOW_24H = timedelta(hours=24)
WINDOW_7D = timedelta(days=7)
SENTIMENT_RECENT = timedelta(hours=12)
SENTIMENT_PRIOR = timedelta(hours=48)


@dataclass(frozen=True)
class MentionPoint:
    entity_name: str
    mentioned_at: datetime
    sentiment: float | None


@dataclass(frozen=True)
class TrendStats:
    entity_name: str
    mentions_1h: int
    mentions_6h: int
    mentions_24h: int
    mentions_7d: int
    velocity: float
    is_trending: bool
    sentiment_avg: float | None
    sentiment_change: float | None
    first_seen_at: datetime | None
    last_seen_at: datetime | None

    def same_values(self, other: "TrendStats") -> bool:
        return (
            self.mentions_1h == other.mentions_1h
            and self.mentions_6h == other.mentions_6h
            and self.mentions_24h == other.mentions_24h
            and self.mentions_7d == other.mentions_7d
            and self.velocity == other.velocity
            and self.is_trending == other.is_trending
            and self.sentiment_avg == other.sentiment_avg
            and self.sentiment_change == other.sentiment_change
        )


def compute_velocity(mentions_6h: int, mentions_24h: int) -> float:
    """Percent change of the 6h hourly rate over the 24h hourly rate."""
    daily_avg = mentions_24h / 24
    if daily_avg > 0:
        six_hour_avg = mentions_6h / 6
        return round(((six_hour_avg - daily_avg) / daily_avg) * 100, 2)
    return NEW_TOPIC_VELOCITY if mentions_6h > 0 else 0.0


def is_trending(velocity: float, mentions_6h: int, mentions_24h: int) -> bool:
    return (
        velocity > VELOCITY_TRENDING_THRESHOLD and mentions_24h >= MIN_MENTIONS_24H
    ) or mentions_6h >= BURST_MENTIONS_6H


def _average(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 4)


def display_name(points: Sequence[MentionPoint]) -> str:
    counts = Counter(point.entity_name for point in points)
    best = max(counts.values())
    return min(name for name, count in counts.items() if count == best)


def compute_window_stats(points: Sequence[MentionPoint], now: datetime) -> TrendStats:
    if not points:
        raise DataQualityError("no mentions for entity")

    counts = {WINDOW_1H: 0, WINDOW_6H: 0, WINDOW_24H: 0, WINDOW_7D: 0}
    window_sentiments: list[float] = []
    recent_sentiments: list[float] = []
    prior_sentiments: list[float] = []
    seen: list[datetime] = []

    for point in points:
        if point.mentioned_at is None:
            raise DataQualityError("mention without timestamp")
        sentiment = point.sentiment
        if sentiment is not None and (math.isnan(sentiment) or not -1.0 <= sentiment <= 1.0):
            raise DataQualityError("mention sentiment out of range")
        age = now - point.mentioned_at
        if age < timedelta(0) or age >= WINDOW_7D:
            continue
        seen.append(point.mentioned_at)
        for window in counts:
            if age < window:
                counts[window] += 1
        if sentiment is None:
            continue
        if age < WINDOW_24H:
            window_sentiments.append(sentiment)
        if age < SENTIMENT_RECENT:
            recent_sentiments.append(sentiment)
        elif age < SENTIMENT_PRIOR:
            prior_sentiments.append(sentiment)

    velocity = compute_velocity(counts[WINDOW_6H], counts[WINDOW_24H])
    recent_avg = _average(recent_sentiments)
    prior_avg = _average(prior_sentiments)
    sentiment_change = None
    if recent_avg is not None and prior_avg is not None:
        sentiment_change = round(recent_avg - prior_avg, 4)

    return TrendStats(
        entity_name=display_name(points),
        mentions_1h=counts[WINDOW_1H],
        mentions_6h=counts[WINDOW_6H],
        mentions_24h=counts[WINDOW_24H],
        mentions_7d=counts[WINDOW_7D],
        velocity=velocity,
        is_trending=is_trending(velocity, counts[WINDOW_6H], counts[WINDOW_24H]),
        sentiment_avg=_average(window_sentiments),
        sentiment_change=sentiment_change,
        first_seen_at=min(seen) if seen else None,
        last_seen_at=max(seen) if seen else None,
    )


def hour_bucket(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)
