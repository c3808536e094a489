from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Sequence

MODEL_NAME = "40_20_40"
ORGANIC_CHANNEL = "direct"

WEIGHT_QUANTUM = Decimal("0.000001")
ONE = Decimal("1")
ZERO = Decimal("0")
HALF = Decimal("0.5")
ENDPOINT_WEIGHT = Decimal("0.4")
MIDDLE_WEIGHT = Decimal("0.2")


@dataclass(frozen=True)
class Touch:
    touchpoint_id: uuid.UUID
    channel: str
    campaign_id: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class MiddleShare:
    channel: str
    campaign_id: str | None
    occurred_at: datetime
    weight: Decimal

    def as_dict(self) -> dict[str, str | None]:
        return {
            "channel": self.channel,
            "campaign_id": self.campaign_id,
            "occurred_at": self.occurred_at.isoformat(),
            "weight": str(self.weight),
        }


@dataclass(frozen=True)
class Attribution:
    is_organic: bool
    first_channel: str
    first_campaign: str | None
    first_weight: Decimal
    last_channel: str | None
    last_campaign: str | None
    last_weight: Decimal
    middle: list[MiddleShare] = field(default_factory=list)
    total_touchpoints: int = 0
    model: str = MODEL_NAME

    @property
    def middle_weight(self) -> Decimal:
        return sum((share.weight for share in self.middle), ZERO)

    @property
    def total_weight(self) -> Decimal:
        return self.first_weight + self.last_weight + self.middle_weight


def quantize(value: Decimal) -> Decimal:
    return value.quantize(WEIGHT_QUANTUM)


def order_touches(touches: Sequence[Touch]) -> list[Touch]:
    return sorted(touches, key=lambda touch: (touch.occurred_at, str(touch.touchpoint_id)))


def split_middle(count: int) -> list[Decimal]:
    """Split the middle 20% over ``count`` touches; the last one absorbs the rounding remainder."""

    if count <= 0:
        return []
    share = (MIDDLE_WEIGHT / count).quantize(WEIGHT_QUANTUM, rounding=ROUND_DOWN)
    weights = [share] * (count - 1)
    weights.append(quantize(MIDDLE_WEIGHT - share * (count - 1)))
    return weights


def attribute(touches: Sequence[Touch]) -> Attribution:
    """Credit a transaction across its touches with the 40/20/40 position model.

    Weights always sum to exactly 1. A single touch takes full first-touch credit
    and the last-touch slot points at the same touch with zero weight, and two
    touches split evenly since there is no middle to carry the 20%.
    """

    ordered = order_touches(touches)
    if not ordered:
        return Attribution(
            is_organic=True,
            first_channel=ORGANIC_CHANNEL,
            first_campaign=None,
            first_weight=quantize(ONE),
            last_channel=None,
            last_campaign=None,
            last_weight=quantize(ZERO),
            total_touchpoints=0,
        )

    first, last = ordered[0], ordered[-1]
    if len(ordered) == 1:
        first_weight, last_weight = ONE, ZERO
    elif len(ordered) == 2:
        first_weight, last_weight = HALF, HALF
    else:
        first_weight, last_weight = ENDPOINT_WEIGHT, ENDPOINT_WEIGHT

    middles = ordered[1:-1]
    middle = [
        MiddleShare(
            channel=touch.channel,
            campaign_id=touch.campaign_id,
            occurred_at=touch.occurred_at,
            weight=weight,
        )
        for touch, weight in zip(middles, split_middle(len(middles)))
    ]
    return Attribution(
        is_organic=False,
        first_channel=first.channel,
        first_campaign=first.campaign_id,
        first_weight=quantize(first_weight),
        last_channel=last.channel,
        last_campaign=last.campaign_id,
        last_weight=quantize(last_weight),
        middle=middle,
        total_touchpoints=len(ordered),
    )
