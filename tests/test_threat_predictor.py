"""
Tests for the Threat Predictor
Covers prediction, model lifecycle, thresholds, A/B routing, verdict persistence and feedback rules
"""
import math
import pytest

from ThreatCore.errors import NotFoundError, ValidationError
from ThreatCore.FeedbackLearning import FeedbackEvent
from ThreatCore.ScoringEngine import FeatureVector, hash_tenant_to_bucket
from ThreatCore.ScoringEngine.database_models import VerdictRecord

from conftest import phishing_features, clean_features


# ============================================================================
# PREDICTION
# ============================================================================

@pytest.mark.asyncio
async def test_predict_phishing(predictor):
    result = await predictor.predict(phishing_features(), 'tenant-1')

    assert result.threat_score == pytest.approx(0.714, abs=1e-6)
    assert result.threat_type == 'phishing'
    assert result.risk_level == 'high'
    assert result.model_version == '1.0.0'
    assert result.ab_test_variant is None
    assert set(result.raw_scores) == {'header', 'content', 'sender', 'url', 'attachment', 'behavioral'}


@pytest.mark.asyncio
async def test_predict_clean(predictor):
    result = await predictor.predict(clean_features())

    assert result.threat_score == pytest.approx(0.0025)
    assert result.threat_type == 'clean'
    assert result.risk_level == 'safe'


@pytest.mark.asyncio
async def test_predictions_are_cached_per_model(predictor):
    await predictor.predict(clean_features(), 'tenant-1')
    stats = await predictor.get_stats()
    assert stats['cache_size'] == 1

    predictor.clear_cache()
    stats = await predictor.get_stats()
    assert stats['cache_size'] == 0


@pytest.mark.asyncio
async def test_stale_cache_entries_are_not_served_after_threshold_write(predictor):
    assert (await predictor.predict(phishing_features(), 'tenant-1')).risk_level == 'high'
    in_flight = dict(predictor.prediction_cache)

    await predictor.update_thresholds({'critical_threshold': 0.71})
    # an in-flight prediction finishing after the write re-inserts its old entry
    predictor.prediction_cache.update(in_flight)

    result = await predictor.predict(phishing_features(), 'tenant-1')
    assert result.risk_level == 'critical'


@pytest.mark.asyncio
async def test_stale_cache_entries_are_not_served_after_weight_write(predictor):
    before = await predictor.predict(phishing_features(), 'tenant-1')
    in_flight = dict(predictor.prediction_cache)

    await predictor.update_model_weights('1.0.0', {'url': 0.0})
    predictor.prediction_cache.update(in_flight)

    after = await predictor.predict(phishing_features(), 'tenant-1')
    assert after.raw_scores['url'] > 0
    assert after.threat_score < before.threat_score


@pytest.mark.asyncio
async def test_batch_predict(predictor):
    results = await predictor.batch_predict([phishing_features(), clean_features()], 'tenant-1')
    assert [r.risk_level for r in results] == ['high', 'safe']


@pytest.mark.asyncio
async def test_batch_size_limit(predictor):
    with pytest.raises(ValidationError):
        await predictor.batch_predict([FeatureVector()] * 101)


# ============================================================================
# MODEL LIFECYCLE
# ============================================================================

@pytest.mark.asyncio
async def test_default_model_seeded(predictor):
    assert await predictor.get_model_version() == '1.0.0'
    models = await predictor.get_all_model_versions()
    assert [m.version for m in models] == ['1.0.0']
    assert sum(models[0].weights.values()) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_deploy_normalizes_weights(predictor):
    event = await predictor.deploy_model('2.0.0', {'header': 1, 'content': 1})
    assert event.event_type == 'model_deployed'

    model = await predictor.get_model('2.0.0')
    assert model.weights['header'] == pytest.approx(0.5)
    assert model.weights['url'] == 0.0
    assert model.is_active is False


@pytest.mark.asyncio
async def test_deploy_rejects_duplicates_and_unknown_categories(predictor):
    with pytest.raises(ValidationError):
        await predictor.deploy_model('1.0.0', {'header': 1})
    with pytest.raises(ValidationError):
        await predictor.deploy_model('3.0.0', {'network': 1})
    with pytest.raises(ValidationError):
        await predictor.deploy_model('3.0.0', {'header': -1, 'content': 2})


@pytest.mark.asyncio
async def test_activate_and_rollback(predictor):
    await predictor.deploy_model('2.0.0', {'header': 1, 'content': 1})

    event = await predictor.activate_model('2.0.0')
    assert event.payload == {'from_version': '1.0.0', 'to_version': '2.0.0'}
    assert await predictor.get_model_version() == '2.0.0'

    result = await predictor.predict(phishing_features())
    assert result.model_version == '2.0.0'
    assert result.threat_score == pytest.approx(0.955, abs=1e-6)

    event = await predictor.rollback('1.0.0')
    assert event.event_type == 'model_rollback'
    assert await predictor.get_model_version() == '1.0.0'


@pytest.mark.asyncio
async def test_activate_unknown_model(predictor):
    with pytest.raises(NotFoundError):
        await predictor.activate_model('9.9.9')


@pytest.mark.asyncio
async def test_update_calibration_applies_sigmoid(predictor):
    await predictor.update_calibration('1.0.0', {'enabled': True})
    result = await predictor.predict(clean_features())
    assert result.threat_score == pytest.approx(1 / (1 + math.exp(-(2.0 * 0.0025 - 0.5))))


@pytest.mark.asyncio
async def test_update_calibration_rejects_unknown_fields(predictor):
    with pytest.raises(ValidationError):
        await predictor.update_calibration('1.0.0', {'slope': 3})


@pytest.mark.asyncio
async def test_update_weights(predictor):
    event = await predictor.update_model_weights('1.0.0', {'attachment': 0.0})
    assert sum(event.payload['weights'].values()) == pytest.approx(1.0)
    assert event.payload['weights']['attachment'] == 0.0


# ============================================================================
# THRESHOLDS
# ============================================================================

@pytest.mark.asyncio
async def test_thresholds_must_ascend(predictor):
    with pytest.raises(ValidationError):
        await predictor.update_thresholds({'low_threshold': 0.9})


@pytest.mark.asyncio
async def test_tenant_threshold_override(predictor):
    await predictor.update_thresholds({
        'critical_threshold': 0.6, 'high_threshold': 0.55, 'medium_threshold': 0.5, 'low_threshold': 0.3
    }, 'tenant-strict')

    strict = await predictor.predict(phishing_features(), 'tenant-strict')
    default = await predictor.predict(phishing_features(), 'tenant-other')
    assert strict.risk_level == 'critical'
    assert default.risk_level == 'high'

    global_thresholds = await predictor.get_thresholds()
    assert global_thresholds.critical_threshold == 0.85


@pytest.mark.asyncio
async def test_threat_type_threshold(predictor):
    await predictor.update_thresholds({'threat_type_thresholds': {'phishing': 0.7}})
    result = await predictor.predict(phishing_features())
    assert result.risk_level == 'critical'


# ============================================================================
# A/B ROUTING
# ============================================================================

def test_tenant_bucket_hash():
    assert hash_tenant_to_bucket('a') == 97
    assert hash_tenant_to_bucket('ab') == 5
    assert all(0 <= hash_tenant_to_bucket(f"tenant-{i}") < 100 for i in range(50))


@pytest.mark.asyncio
async def test_ab_test_routes_to_variant_b(predictor):
    await predictor.deploy_model('2.0.0', {'header': 1, 'content': 1})
    await predictor.enable_ab_test('exp-1', '1.0.0', '2.0.0', 100)

    result = await predictor.predict(phishing_features(), 'tenant-1')
    assert result.model_version == '2.0.0'
    assert result.ab_test_variant == 'exp-1:B'

    status = await predictor.get_ab_test_status('exp-1')
    assert status.active is True

    await predictor.disable_ab_test('exp-1')
    result = await predictor.predict(phishing_features(), 'tenant-1')
    assert result.model_version == '1.0.0'
    assert result.ab_test_variant is None


@pytest.mark.asyncio
async def test_ab_test_validation(predictor):
    with pytest.raises(ValidationError):
        await predictor.enable_ab_test('exp-2', '1.0.0', '1.0.0', 150)
    with pytest.raises(NotFoundError):
        await predictor.enable_ab_test('exp-2', '1.0.0', 'missing', 50)
    with pytest.raises(NotFoundError):
        await predictor.disable_ab_test('missing')


# ============================================================================
# VERDICTS AND FEEDBACK RULES
# ============================================================================

@pytest.mark.asyncio
async def test_record_verdict(predictor, session_factory):
    result = await predictor.predict(phishing_features(), 'tenant-1')
    verdict_id = await predictor.record_verdict(result, 'tenant-1', phishing_features(),
                                                subject='Verify your account', sender='it@examp1e.com')

    db = session_factory()
    try:
        record = db.query(VerdictRecord).filter_by(id=verdict_id).one()
        assert record.verdict == 'quarantine'
        assert record.action_taken == 'quarantine'
        assert record.sender_domain == 'examp1e.com'
        assert 'malicious_urls' in record.signals
        assert len(record.layer_results) == 6
    finally:
        db.close()


@pytest.mark.asyncio
async def test_predict_with_feedback_without_rules(predictor):
    result = await predictor.predict_with_feedback(phishing_features(), 'tenant-1', 'examp1e.com')
    assert result.base_score == result.threat_score
    assert result.rule_adjustment == 0


@pytest.mark.asyncio
async def test_predict_with_learned_trust_rule(predictor, feedback_engine):
    for i in range(13):
        await feedback_engine.process_feedback(FeedbackEvent(
            feedback_id=f"fb-{i}", tenant_id='tenant-1', sender_domain='news.example.com',
            feedback_type='false_positive'
        ))

    result = await predictor.predict_with_feedback(phishing_features(), 'tenant-1', 'news.example.com')

    assert result.base_score == pytest.approx(0.714, abs=1e-6)
    assert result.rule_adjustment == -10
    assert result.threat_score == pytest.approx(0.614, abs=1e-6)
    assert result.risk_level == 'medium'
    assert result.rule_explanation == (
        'Feedback learning: domain="news.example.com" reduced score by 10 (13 feedback samples)'
    )
