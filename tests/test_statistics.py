"""
Unit Tests for decision statistics and drift comparison
"""
import pytest
from datetime import datetime, timedelta

from ThreatCore.ResponseLearner import compare_windows, ResponseLearnerConfig
from ThreatCore.ResponseLearner.drift import INSUFFICIENT_DATA
from ThreatCore.ResponseLearner.statistics import (
    mean, wilson_interval, consistency_score, find_outliers, rate_trend, analyze_score_distribution,
    threshold_category
)

from conftest import make_decision


# ============================================================================
# BASIC STATISTICS
# ============================================================================

def test_mean_ignores_missing_values():
    assert mean([1, None, 3]) == 2.0
    assert mean([]) == 0.0


def test_wilson_interval_empty():
    assert wilson_interval(0, 0) == (0.0, 0.0)


def test_wilson_interval_half():
    low, high = wilson_interval(5, 10)
    assert low == pytest.approx(0.2366, abs=1e-3)
    assert high == pytest.approx(0.7634, abs=1e-3)


def test_wilson_interval_bounds():
    low, high = wilson_interval(10, 10)
    assert 0.0 <= low <= high <= 1.0


def test_consistency_score():
    assert consistency_score(['release'] * 10) == 1.0
    assert consistency_score(['release', 'block'] * 5) == pytest.approx(0.0)
    assert consistency_score(['release', 'block']) == 1.0


def test_find_outliers():
    entries = [{'id': f"d{i}", 'action': 'release', 'reason': None} for i in range(25)]
    entries.append({'id': 'rare', 'action': 'whitelist', 'reason': None})

    outliers = find_outliers(entries)
    assert len(outliers) == 1
    assert outliers[0]['action_id'] == 'rare'
    assert outliers[0]['reason'] == 'No reason provided'
    assert outliers[0]['deviation'] == pytest.approx(1 - 1 / 26)


def test_rate_trend():
    assert rate_trend([0.5, 0.5, 0.1, 0.1]) == 'increasing'
    assert rate_trend([0.1, 0.1, 0.5, 0.5]) == 'decreasing'
    assert rate_trend([0.2, 0.2, 0.2, 0.2]) == 'stable'
    assert rate_trend([0.9]) == 'stable'


# ============================================================================
# SCORE DISTRIBUTION
# ============================================================================

def test_released_high_scores_raise_threshold():
    analysis = analyze_score_distribution([60] * 6, [80] * 6)
    assert analysis.suggested_adjustment == 5
    assert 'Consider raising threshold' in analysis.reason


def test_blocked_low_scores_lower_threshold():
    analysis = analyze_score_distribution([10] * 6, [30] * 6)
    assert analysis.suggested_adjustment == -5
    assert analysis.false_negative_risk == 1.0


def test_well_calibrated_distribution():
    analysis = analyze_score_distribution([10] * 6, [80] * 6)
    assert analysis.suggested_adjustment == 0
    assert analysis.reason == 'Current thresholds appear well-calibrated'


def test_missing_group():
    assert analyze_score_distribution([], [80]).reason == 'Insufficient data for analysis'


def test_threshold_category():
    assert threshold_category('deterministic_quarantine_threshold') == 'deterministic'
    assert threshold_category('ml_quarantine_threshold') == 'ml'
    assert threshold_category('urgency_score_threshold') == 'content'
    assert threshold_category('other') == 'general'


# ============================================================================
# DRIFT
# ============================================================================

def _window(action, urgency, count=10):
    decisions = []
    for _ in range(count):
        d = make_decision(action=action, urgency_score=urgency)
        d.timestamp = datetime.utcnow()
        decisions.append(d)
    return decisions


def _periods():
    now = datetime.utcnow()
    return (now - timedelta(days=60), now - timedelta(days=30)), (now - timedelta(days=30), now)


def test_drift_needs_enough_decisions():
    baseline_period, comparison_period = _periods()
    report = compare_windows(_window('confirm', 10, 3), _window('release', 80), baseline_period, comparison_period)
    assert report.has_drift is False
    assert report.recommendation == INSUFFICIENT_DATA


def test_concept_drift():
    baseline_period, comparison_period = _periods()
    report = compare_windows(_window('confirm', 10), _window('release', 80), baseline_period, comparison_period)

    assert report.has_drift is True
    assert report.drift_type == 'concept'
    assert report.affected_features == ['urgency_score']
    assert report.override_rate_change == pytest.approx(1.0)
    assert report.drift_score == pytest.approx((70 / 80 + 1.0) / 2)


def test_feature_drift_only():
    baseline_period, comparison_period = _periods()
    report = compare_windows(_window('confirm', 10), _window('confirm', 80), baseline_period, comparison_period)

    assert report.drift_type == 'feature'
    assert report.recommendation.startswith('Feature drift detected in: urgency_score.')


def test_feature_shift_is_relative_to_larger_mean():
    baseline_period, comparison_period = _periods()
    report = compare_windows(_window('confirm', 20), _window('confirm', 60), baseline_period, comparison_period)

    urgency = next(s for s in report.feature_shifts if s.feature == 'urgency_score')
    assert urgency.baseline_mean == pytest.approx(20)
    assert urgency.current_mean == pytest.approx(60)
    assert urgency.shift == pytest.approx(40 / 60)
    assert report.drift_score == pytest.approx((40 / 60) / 2)
    assert report.drift_score > ResponseLearnerConfig.DRIFT_THRESHOLD
    assert report.has_drift is True
    assert report.drift_type == 'feature'
    assert report.affected_features == ['urgency_score']


def test_no_drift():
    baseline_period, comparison_period = _periods()
    report = compare_windows(_window('confirm', 10), _window('confirm', 12), baseline_period, comparison_period,
                             ResponseLearnerConfig())
    assert report.has_drift is False
    assert report.drift_type == 'none'
