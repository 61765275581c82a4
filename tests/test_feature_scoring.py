"""
Unit Tests for Feature Scoring
Tests per-category points, weighted combination, attribution, threat type and confidence
"""
import math
import pytest

from ThreatCore.errors import ValidationError
from ThreatCore.ScoringEngine import (
    FeatureScorer, FeatureVector, HeaderFeatures, AttachmentFeatures, BehavioralFeatures,
    CalibrationParams, ThresholdConfig, ScoringConfig
)
from ThreatCore.ScoringEngine.feature_scoring import score_header, score_behavioral

from conftest import phishing_features, clean_features


@pytest.fixture
def scorer():
    return FeatureScorer()


# ============================================================================
# CATEGORY SCORES
# ============================================================================

def test_failed_authentication_points():
    """Failed SPF, DKIM and DMARC add their full weight"""
    fired = dict(score_header(HeaderFeatures(spf_score=0.0, dkim_score=0.0, dmarc_score=0.0)))
    assert fired['spf_failed'] == pytest.approx(0.15)
    assert fired['dkim_failed'] == pytest.approx(0.15)
    assert fired['dmarc_failed'] == pytest.approx(0.20)


def test_unknown_authentication_scores_nothing():
    """-1 marks an unknown result and contributes no points"""
    fired = score_header(HeaderFeatures(spf_score=-1, dkim_score=-1, dmarc_score=-1))
    assert fired == []


def test_legitimate_signals_are_negative():
    fired = dict(score_behavioral(BehavioralFeatures(is_reply_chain=True, has_unsubscribe_link=True)))
    assert fired['reply_chain'] == pytest.approx(-0.10)
    assert fired['unsubscribe_link'] == pytest.approx(-0.10)
    assert fired['business_hours'] == pytest.approx(-0.05)


def test_raw_scores_are_clamped(scorer):
    raw, _ = scorer.raw_scores(phishing_features())
    assert raw['header'] == pytest.approx(1.0)
    assert raw['behavioral'] == 0.0
    assert all(0.0 <= score <= 1.0 for score in raw.values())


def test_clean_email_raw_scores(scorer):
    raw, _ = scorer.raw_scores(clean_features())
    assert raw['header'] == 0.0
    assert raw['sender'] == pytest.approx(0.0125)
    assert raw['behavioral'] == 0.0


# ============================================================================
# COMBINATION AND ATTRIBUTION
# ============================================================================

def test_weighted_combination(scorer):
    raw, _ = scorer.raw_scores(phishing_features())
    combined = scorer.combine(raw, ScoringConfig.DEFAULT_WEIGHTS)
    assert combined == pytest.approx(0.714, abs=1e-6)


def test_contributions_sum_to_score(scorer):
    """Clamped categories are rescaled so attribution still adds up"""
    for features in (phishing_features(), clean_features()):
        raw, indicators = scorer.raw_scores(features)
        combined = scorer.combine(raw, ScoringConfig.DEFAULT_WEIGHTS)
        importance = scorer.feature_importance(raw, indicators, ScoringConfig.DEFAULT_WEIGHTS)
        assert sum(fi.contribution for fi in importance) == pytest.approx(combined)


def test_contributions_reproduce_raw_scores_per_category(scorer):
    weights = ScoringConfig.DEFAULT_WEIGHTS
    for features in (phishing_features(), clean_features()):
        raw, indicators = scorer.raw_scores(features)
        importance = scorer.feature_importance(raw, indicators, weights)

        for category, weight in weights.items():
            total = sum(fi.contribution for fi in importance if fi.category == category)
            assert total / weight == pytest.approx(raw[category]), category


def test_clamped_negative_category_keeps_indicator_magnitude(scorer):
    features = FeatureVector.from_dict({'behavioral': {'is_reply_chain': True}})
    raw, indicators = scorer.raw_scores(features)
    assert raw['behavioral'] == 0.0

    importance = scorer.feature_importance(raw, indicators, ScoringConfig.DEFAULT_WEIGHTS)
    reply_chain = next(fi for fi in importance if fi.feature == 'reply_chain')

    assert reply_chain.contribution == 0.0
    assert reply_chain.direction == 'decreases_risk'
    assert reply_chain.unclamped_contribution == pytest.approx(-0.10 * ScoringConfig.DEFAULT_WEIGHTS['behavioral'])


def test_importance_sorted_by_magnitude(scorer):
    raw, indicators = scorer.raw_scores(phishing_features())
    importance = scorer.feature_importance(raw, indicators, ScoringConfig.DEFAULT_WEIGHTS)
    magnitudes = [abs(fi.contribution) for fi in importance]
    assert magnitudes == sorted(magnitudes, reverse=True)
    assert importance[0].feature == 'malicious_urls'
    assert importance[0].direction == 'increases_risk'


def test_calibration_disabled_is_identity(scorer):
    assert scorer.calibrate(0.42, CalibrationParams()) == 0.42


def test_calibration_sigmoid(scorer):
    calibrated = scorer.calibrate(0.5, CalibrationParams(a=2.0, b=-0.5, enabled=True))
    assert calibrated == pytest.approx(1 / (1 + math.exp(-0.5)))


# ============================================================================
# THREAT TYPE, RISK LEVEL, CONFIDENCE
# ============================================================================

def test_malware_takes_precedence(scorer):
    features = FeatureVector(
        attachment=AttachmentFeatures(has_executable=True),
        behavioral=BehavioralFeatures(has_wire_transfer_request=True)
    )
    assert scorer.threat_type(features, 0.9) == 'malware'


def test_phishing_before_bec(scorer):
    features = FeatureVector.from_dict({
        'content': {'requests_credentials': True},
        'behavioral': {'has_wire_transfer_request': True}
    })
    assert scorer.threat_type(features, 0.5) == 'phishing'


def test_bec_detected(scorer):
    features = FeatureVector.from_dict({'behavioral': {'has_gift_card_request': True}})
    assert scorer.threat_type(features, 0.5) == 'bec'


def test_fallback_threat_types(scorer):
    features = FeatureVector()
    assert scorer.threat_type(features, 0.4) == 'phishing'
    assert scorer.threat_type(features, 0.2) == 'spam'
    assert scorer.threat_type(features, 0.1) == 'clean'


def test_risk_levels(scorer):
    thresholds = ThresholdConfig()
    assert scorer.risk_level(0.9, 'phishing', thresholds) == 'critical'
    assert scorer.risk_level(0.7, 'phishing', thresholds) == 'high'
    assert scorer.risk_level(0.5, 'phishing', thresholds) == 'medium'
    assert scorer.risk_level(0.3, 'phishing', thresholds) == 'low'
    assert scorer.risk_level(0.29, 'phishing', thresholds) == 'safe'


def test_threat_type_threshold_escalates(scorer):
    thresholds = ThresholdConfig(threat_type_thresholds={'bec': 0.4})
    assert scorer.risk_level(0.45, 'bec', thresholds) == 'critical'
    assert scorer.risk_level(0.45, 'phishing', thresholds) == 'low'


def test_confidence_for_clean_email(scorer):
    confidence = scorer.confidence(clean_features(), 0.0025)
    assert confidence == pytest.approx(0.4 * 0.995 + 0.35 * 5 / 6 + 0.2)


def test_confidence_is_bounded(scorer):
    features = FeatureVector.from_dict({
        'header': {'spf_score': -1, 'dkim_score': -1, 'dmarc_score': -1},
        'sender': {'reputation_score': -1, 'domain_age_days': -1}
    })
    assert scorer.confidence(features, 0.5) == ScoringConfig.CONFIDENCE_FLOOR


# ============================================================================
# FEATURE VECTOR
# ============================================================================

def test_unknown_section_rejected():
    with pytest.raises(ValidationError):
        FeatureVector.from_dict({'network': {}})


def test_unknown_feature_rejected():
    with pytest.raises(ValidationError):
        FeatureVector.from_dict({'header': {'arc_score': 1.0}})


@pytest.mark.parametrize("section,values", [
    ('header', {'spf_score': 'x'}),
    ('header', {'reply_to_mismatch': 'yes'}),
    ('header', {'spf_score': True}),
    ('url', {'url_count': 2.5}),
    ('content', {'urgency_score': None}),
])
def test_invalid_feature_values_rejected(section, values):
    with pytest.raises(ValidationError):
        FeatureVector.from_dict({section: values})


def test_numeric_feature_values_are_coerced():
    features = FeatureVector.from_dict({'header': {'spf_score': 0, 'header_anomaly_count': 2.0}})
    assert isinstance(features.header.spf_score, float)
    assert features.header.header_anomaly_count == 2
    assert isinstance(features.header.header_anomaly_count, int)


def test_fingerprint_is_stable():
    assert phishing_features().fingerprint() == phishing_features().fingerprint()
    assert phishing_features().fingerprint() != clean_features().fingerprint()
