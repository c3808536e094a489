from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class AnomalyType(str, Enum):
    MENTION_SPIKE = "mention_spike"
    VELOCITY_SPIKE = "velocity_spike"
    SENTIMENT_SHIFT = "sentiment_shift"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


SEVERITY_RANK = {Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}
SURFACED_SEVERITIES = frozenset({Severity.CRITICAL, Severity.HIGH})


@dataclass(frozen=True)
class Thresholds:
    z_threshold: float = 2.5
    critical_z: float = 4.0
    record_z: float = 2.0
    volume_floor: float | None = None


@dataclass(frozen=True)
class Baseline:
    mean: float
    stddev: float
    points: int


@dataclass(frozen=True)
class AnomalyResult:
    anomaly_type: AnomalyType
    z_score: float | None
    current_value: float
    baseline: Baseline
    severity: Severity | None

    @property
    def is_anomalous(self) -> bool:
        return self.severity is not None

    @property
    def is_surfaced(self) -> bool:
        return self.severity in SURFACED_SEVERITIES


def baseline_stats(values: Sequence[float]) -> Baseline:
    if not values:
        raise ValueError("baseline requires at least one value")
    return Baseline(
        mean=statistics.fmean(values),
        stddev=statistics.pstdev(values),
        points=len(values),
    )


def zscore(current: float, baseline: Baseline) -> float | None:
    if baseline.stddev == 0:
        return None
    return (current - baseline.mean) / baseline.stddev


def classify(
    z_score: float | None,
    *,
    current: float,
    baseline: Baseline,
    thresholds: Thresholds,
    two_sided: bool = False,
) -> Severity | None:
    deviation = current - baseline.mean
    if two_sided:
        deviation = abs(deviation)

    if z_score is None:
        # Constant baseline: any departure to a nonzero value is a first-ever occurrence.
        if current != 0 and deviation > 0:
            return Severity.CRITICAL
        return None

    score = abs(z_score) if two_sided else z_score
    if score > thresholds.critical_z:
        return Severity.CRITICAL
    if score > thresholds.z_threshold:
        if thresholds.volume_floor is not None and deviation >= thresholds.volume_floor:
            return Severity.CRITICAL
        return Severity.HIGH
    if score > thresholds.record_z:
        return Severity.MEDIUM
    return None


def evaluate(
    anomaly_type: AnomalyType,
    current: float,
    baseline_values: Sequence[float],
    thresholds: Thresholds,
) -> AnomalyResult:
    if math.isnan(current):
        raise ValueError("current value is not a number")
    baseline = baseline_stats(baseline_values)
    z_value = zscore(current, baseline)
    two_sided = anomaly_type == AnomalyType.SENTIMENT_SHIFT
    severity = classify(z_value, current=current, baseline=baseline, thresholds=thresholds, two_sided=two_sided)
    return AnomalyResult(
        anomaly_type=anomaly_type,
        z_score=round(z_value, 4) if z_value is not None else None,
        current_value=current,
        baseline=baseline,
        severity=severity,
    )
