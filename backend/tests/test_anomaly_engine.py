import pytest

from signaldesk.domain.anomalies import engine
from signaldesk.domain.anomalies.engine import AnomalyType, Baseline, Severity, Thresholds


def test_constant_baseline_with_departure_is_critical():
    result = engine.evaluate(AnomalyType.MENTION_SPIKE, 15.0, [10.0] * 7, Thresholds())

    assert result.z_score is None
    assert result.severity == Severity.CRITICAL
    assert result.is_surfaced is True
    assert result.baseline.mean == 10.0
    assert result.baseline.stddev == 0.0


def test_constant_baseline_without_departure_is_quiet():
    assert engine.evaluate(AnomalyType.MENTION_SPIKE, 10.0, [10.0] * 7, Thresholds()).severity is None
    assert engine.evaluate(AnomalyType.MENTION_SPIKE, 0.0, [0.0] * 7, Thresholds()).severity is None


def test_first_ever_mentions_after_silent_week_are_critical():
    result = engine.evaluate(AnomalyType.MENTION_SPIKE, 6.0, [0.0] * 7, Thresholds())
    assert result.severity == Severity.CRITICAL


@pytest.mark.parametrize(
    ("z_score", "expected"),
    [
        (4.5, Severity.CRITICAL),
        (3.0, Severity.HIGH),
        (2.2, Severity.MEDIUM),
        (2.0, None),
        (-3.0, None),
    ],
)
def test_classification_bands(z_score, expected):
    baseline = Baseline(mean=10.0, stddev=2.0, points=7)
    current = baseline.mean + z_score * baseline.stddev
    assert engine.classify(z_score, current=current, baseline=baseline, thresholds=Thresholds()) == expected


def test_volume_floor_promotes_large_absolute_jumps():
    baseline = Baseline(mean=10.0, stddev=10.0, points=7)
    thresholds = Thresholds(volume_floor=20.0)

    assert engine.classify(3.0, current=40.0, baseline=baseline, thresholds=thresholds) == Severity.CRITICAL
    assert engine.classify(2.6, current=36.0, baseline=baseline, thresholds=thresholds) == Severity.CRITICAL
    small = Baseline(mean=10.0, stddev=1.0, points=7)
    assert engine.classify(3.0, current=13.0, baseline=small, thresholds=thresholds) == Severity.HIGH


def test_sentiment_shift_is_two_sided():
    result = engine.evaluate(
        AnomalyType.SENTIMENT_SHIFT,
        -0.8,
        [0.1, 0.2, 0.0, 0.1, 0.2, 0.0, 0.1],
        Thresholds(),
    )
    assert result.z_score is not None and result.z_score < 0
    assert result.severity == Severity.CRITICAL

    mention = engine.evaluate(AnomalyType.MENTION_SPIKE, 0.0, [10.0, 12.0, 8.0, 10.0], Thresholds())
    assert mention.severity is None


def test_medium_results_are_recorded_but_not_surfaced():
    baseline = [10.0, 12.0, 8.0, 10.0, 12.0, 8.0, 10.0]
    stats = engine.baseline_stats(baseline)
    current = stats.mean + 2.3 * stats.stddev

    result = engine.evaluate(AnomalyType.MENTION_SPIKE, current, baseline, Thresholds())

    assert result.severity == Severity.MEDIUM
    assert result.is_anomalous is True
    assert result.is_surfaced is False


def test_evaluate_rejects_bad_input():
    with pytest.raises(ValueError):
        engine.evaluate(AnomalyType.MENTION_SPIKE, 1.0, [], Thresholds())
    with pytest.raises(ValueError):
        engine.evaluate(AnomalyType.MENTION_SPIKE, float("nan"), [1.0, 2.0], Thresholds())
