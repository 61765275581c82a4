import logging
from datetime import datetime
from typing import List, Tuple

from .config import ResponseLearnerConfig
from .enums import DecisionAction, DriftType
from .models import AdminDecision, DriftReport, FeatureShift
from .statistics import mean

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = 'Insufficient data for drift detection. Continue collecting decisions.'

RECOMMENDATIONS = {
    DriftType.NONE.value: 'No significant drift detected. Continue monitoring.',
    DriftType.LABEL.value: ('Label distribution drift detected. Review recent policy changes '
                            'and admin decisions for consistency.'),
    DriftType.CONCEPT.value: ('Concept drift detected - both features and outcomes are shifting. '
                              'Recommend comprehensive model review and retraining.')
}


def feature_shifts(baseline: List[AdminDecision], comparison: List[AdminDecision],
                   features: List[str]) -> List[FeatureShift]:
    shifts = []
    for feature in features:
        baseline_mean = mean([getattr(d.email_features, feature, None) for d in baseline])
        current_mean = mean([getattr(d.email_features, feature, None) for d in comparison])
        scale = max(baseline_mean, current_mean, 1)
        shifts.append(FeatureShift(
            feature=feature,
            baseline_mean=baseline_mean,
            current_mean=current_mean,
            shift=abs(current_mean - baseline_mean) / scale
        ))
    return shifts


def override_rate(decisions: List[AdminDecision]) -> float:
    if not decisions:
        return 0.0
    overrides = [d for d in decisions if d.admin_action != DecisionAction.CONFIRM.value]
    return len(overrides) / len(decisions)


def recommendation_for(drift_type: str, affected: List[str]) -> str:
    if drift_type == DriftType.FEATURE.value:
        return (f"Feature drift detected in: {', '.join(affected)}. "
                f"Consider retraining the model with recent data.")
    return RECOMMENDATIONS[drift_type]


def compare_windows(baseline: List[AdminDecision], comparison: List[AdminDecision],
                    baseline_period: Tuple[datetime, datetime], comparison_period: Tuple[datetime, datetime],
                    config: ResponseLearnerConfig = None) -> DriftReport:
    """Drift between a baseline and a comparison window of admin decisions"""
    config = config or ResponseLearnerConfig()

    if len(baseline) < config.MIN_SAMPLE_SIZE or len(comparison) < config.MIN_SAMPLE_SIZE:
        return DriftReport(
            has_drift=False,
            drift_score=0.0,
            drift_type=DriftType.NONE.value,
            affected_features=[],
            recommendation=INSUFFICIENT_DATA,
            baseline_period=baseline_period,
            comparison_period=comparison_period
        )

    shifts = feature_shifts(baseline, comparison, config.DRIFT_FEATURES)
    rate_change = override_rate(comparison) - override_rate(baseline)

    max_shift = max([abs(s.shift) for s in shifts] + [0.0])
    drift_score = min(1.0, (max_shift + abs(rate_change)) / 2)

    drift_type = DriftType.NONE.value
    affected = []
    if drift_score >= config.DRIFT_THRESHOLD:
        affected = [s.feature for s in shifts if abs(s.shift) > config.FEATURE_SHIFT_THRESHOLD]
        if affected:
            drift_type = DriftType.FEATURE.value
        if abs(rate_change) > config.LABEL_SHIFT_THRESHOLD:
            drift_type = DriftType.CONCEPT.value if affected else DriftType.LABEL.value

    if drift_type != DriftType.NONE.value:
        logger.info(f"Drift detected: type={drift_type} score={drift_score:.3f} features={affected}")

    return DriftReport(
        has_drift=drift_score >= config.DRIFT_THRESHOLD,
        drift_score=drift_score,
        drift_type=drift_type,
        affected_features=affected,
        recommendation=recommendation_for(drift_type, affected),
        baseline_period=baseline_period,
        comparison_period=comparison_period,
        feature_shifts=shifts,
        override_rate_change=rate_change
    )
