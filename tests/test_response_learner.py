"""
Tests for the Response Learner
Decision recording, pattern analysis, suggestions, threshold tuning, rates, signals and aggregation
"""
import pytest

from ThreatCore.errors import NotFoundError, ValidationError
from ThreatCore.FeedbackLearning import FeedbackEvent
from ThreatCore.ResponseLearner import AdminAction, DecisionFilters
from ThreatCore.ScoringEngine.database_models import VerdictRecord

from conftest import make_decision, insert_decision, days_ago, phishing_features


def action(i, kind='release', original='quarantine', reason=None):
    return AdminAction(
        action_id=f"act-{kind}-{i}",
        tenant_id='tenant-1',
        admin_id='admin-1',
        verdict_id=f"verdict-{i}",
        original_verdict=original,
        new_verdict='pass' if kind == 'release' else 'block',
        action=kind,
        reason=reason
    )


# ============================================================================
# RECORDING
# ============================================================================

@pytest.mark.asyncio
async def test_record_decision_validates(learner):
    with pytest.raises(ValidationError):
        await learner.record_decision(make_decision(action='ignore'))
    with pytest.raises(ValidationError):
        await learner.record_decision(make_decision(original='maybe'))


@pytest.mark.asyncio
async def test_record_decision_sets_timestamp(learner):
    decision = await learner.record_decision(make_decision(reason='Known newsletter'))
    assert decision.timestamp is not None

    history = await learner.get_decision_history('tenant-1')
    assert [d.id for d in history] == [decision.id]
    assert history[0].email_features.sender_domain == 'news.example.com'


@pytest.mark.asyncio
async def test_repeated_releases_raise_emerging_pattern_alert(learner, notifier):
    for _ in range(4):
        await learner.record_decision(make_decision())
    assert len(notifier.sent) == 0

    await learner.record_decision(make_decision())
    assert len(notifier.sent) == 1
    alert = notifier.sent[0]
    assert alert['kind'] == 'emerging_pattern'
    assert alert['message'].startswith('Emerging pattern detected: Domain news.example.com has been released 5 times')


@pytest.mark.asyncio
async def test_decision_updates_verdict_outcome(learner, predictor, session_factory):
    result = await predictor.predict(phishing_features(), 'tenant-1')
    verdict_id = await predictor.record_verdict(result, 'tenant-1', phishing_features())

    decision = make_decision()
    decision.verdict_id = verdict_id
    await learner.record_decision(decision)

    db = session_factory()
    try:
        assert db.query(VerdictRecord).filter_by(id=verdict_id).one().action_taken == 'released'
    finally:
        db.close()


@pytest.mark.asyncio
async def test_record_action_is_idempotent(learner):
    await learner.record_action(action(1))
    await learner.record_action(action(1, reason='Checked with sender'))

    signals = await learner.get_learning_signals('tenant-1')
    assert len(signals) == 1
    assert signals[0].signal_type == 'false_positive'
    assert signals[0].weight == pytest.approx(1.2, abs=0.01)
    assert signals[0].email_features is None


@pytest.mark.asyncio
async def test_record_action_rejects_unknown_type(learner):
    with pytest.raises(ValidationError):
        await learner.record_action(action(1, kind='archive'))


@pytest.mark.asyncio
async def test_high_action_volume_alert(learner, notifier):
    for i in range(20):
        await learner.record_action(action(i, kind='block'))
    assert [a['kind'] for a in notifier.sent] == ['high_action_volume']


@pytest.mark.asyncio
async def test_missed_threat_signal_weighs_double(learner):
    await learner.record_action(action(1, kind='mark_threat', original='pass'))
    signals = await learner.get_learning_signals('tenant-1')
    assert signals[0].signal_type == 'false_negative'
    assert signals[0].weight == pytest.approx(2.0, abs=0.01)


# ============================================================================
# HISTORY
# ============================================================================

@pytest.mark.asyncio
async def test_history_filters(learner, session_factory):
    insert_decision(session_factory, make_decision(action='release'), days_ago(1))
    insert_decision(session_factory, make_decision(action='block', original='pass'), days_ago(2))
    insert_decision(session_factory, make_decision(action='confirm'), days_ago(40))

    assert len(await learner.get_decision_history('tenant-1')) == 3

    recent = await learner.get_decision_history('tenant-1', DecisionFilters(start_date=days_ago(10)))
    assert [d.admin_action for d in recent] == ['release', 'block']

    blocks = await learner.get_decision_history('tenant-1', DecisionFilters(admin_actions=['block']))
    assert [d.original_verdict for d in blocks] == ['pass']

    page = await learner.get_decision_history('tenant-1', DecisionFilters(limit=1, offset=1))
    assert [d.admin_action for d in page] == ['block']


@pytest.mark.asyncio
async def test_audit_trail_is_tenant_scoped(learner):
    await learner.record_decision(make_decision())
    await learner.record_decision(make_decision(action='block', original='pass', domain='bad.example.net'))
    await learner.record_decision(make_decision(tenant_id='tenant-2'))

    trail = await learner.get_audit_trail('tenant-1')
    assert len(trail) == 2
    assert {e['tenant_id'] for e in trail} == {'tenant-1'}
    assert {e['actor_id'] for e in trail} == {'admin-1'}
    assert {e['resource_id'] for e in trail} == {'verdict-release-news.example.com', 'verdict-block-bad.example.net'}
    assert {e['after_state']['admin_action'] for e in trail} == {'release', 'block'}

    assert len(await learner.get_audit_trail('tenant-1', action='admin_action')) == 2
    assert await learner.get_audit_trail('tenant-1', action='threshold_adjustment_applied') == []
    assert len(await learner.get_audit_trail('tenant-1', limit=1)) == 1


# ============================================================================
# PATTERNS AND SUGGESTIONS
# ============================================================================

@pytest.mark.asyncio
async def test_too_few_decisions_for_analysis(learner):
    await learner.record_decision(make_decision())
    analysis = await learner.analyze_patterns('tenant-1')
    assert analysis.insufficient_data is True
    assert analysis.total_decisions == 1


@pytest.mark.asyncio
async def test_false_positive_patterns(learner):
    for _ in range(10):
        await learner.record_decision(make_decision(reason='Newsletter'))

    analysis = await learner.analyze_patterns('tenant-1')

    assert analysis.override_rate == 1.0
    kinds = [p.type for p in analysis.false_positive_patterns]
    assert kinds == ['domain', 'sender', 'feature']
    assert analysis.false_positive_patterns[0].occurrences == 10
    assert analysis.common_override_reasons == [{'reason': 'newsletter', 'count': 10}]
    assert analysis.time_based_trends[-1].release_count == 10


@pytest.mark.asyncio
async def test_false_negative_patterns(learner, session_factory):
    for _ in range(8):
        insert_decision(session_factory, make_decision(action='confirm'), days_ago(1))
    for _ in range(2):
        insert_decision(session_factory, make_decision(action='block', original='pass', urgency_score=80,
                                                       requests_financial_action=True), days_ago(1))

    analysis = await learner.analyze_patterns('tenant-1')
    descriptions = [p.description for p in analysis.false_negative_patterns]
    assert descriptions == [
        'Financial request emails passing detection but being blocked manually',
        'High urgency emails passing detection but being blocked manually'
    ]


@pytest.mark.asyncio
async def test_policy_suggestions_are_stored(learner):
    for _ in range(10):
        await learner.record_decision(make_decision())

    suggestions = await learner.suggest_policy_adjustments('tenant-1')
    types = [s.type for s in suggestions]
    assert types[:2] == ['whitelist_domain', 'whitelist_sender'] or types[:2] == ['whitelist_sender', 'whitelist_domain']
    assert types[2] == 'adjust_threshold'
    assert suggestions[0].suggested_value in ('news.example.com', 'digest@news.example.com')

    stored = await learner.get_suggestions('tenant-1', status='pending')
    assert {s.id for s in stored} == {s.id for s in suggestions}


@pytest.mark.asyncio
async def test_suggestion_status_updates(learner):
    for _ in range(10):
        await learner.record_decision(make_decision())
    suggestion = (await learner.suggest_policy_adjustments('tenant-1'))[0]

    await learner.update_suggestion_status(suggestion.id, 'rejected', actor_id='admin-1')
    assert [s.id for s in await learner.get_suggestions('tenant-1', status='rejected')] == [suggestion.id]

    with pytest.raises(ValidationError):
        await learner.update_suggestion_status(suggestion.id, 'archived')
    with pytest.raises(NotFoundError):
        await learner.update_suggestion_status('missing', 'applied')


# ============================================================================
# THRESHOLD TUNING
# ============================================================================

async def _tuning_history(learner):
    for _ in range(10):
        await learner.record_decision(make_decision(deterministic_score=60))
    for _ in range(10):
        await learner.record_decision(make_decision(action='block', domain='bad.example.net', sender='x@bad.example.net',
                                                    deterministic_score=70, ml_score=80, urgency_score=80))


@pytest.mark.asyncio
async def test_auto_tune_needs_history(learner):
    assert await learner.auto_tune_thresholds('tenant-1') == []


@pytest.mark.asyncio
async def test_auto_tune_apply_and_rollback(learner):
    await _tuning_history(learner)

    adjustments = await learner.auto_tune_thresholds('tenant-1')
    assert [(a.threshold_name, a.current_value, a.suggested_value, a.direction) for a in adjustments] == [
        ('deterministic_quarantine_threshold', 40, 45, 'increase')
    ]

    applied = await learner.apply_threshold_adjustment(adjustments[0].id, 'tenant-1')
    assert applied['deterministic_quarantine_threshold'] == 45
    assert (await learner.get_detection_settings('tenant-1'))['deterministic_quarantine_threshold'] == 45

    with pytest.raises(ValidationError):
        await learner.apply_threshold_adjustment(adjustments[0].id, 'tenant-1')

    restored = await learner.rollback_threshold_adjustment(adjustments[0].id, 'tenant-1')
    assert restored['deterministic_quarantine_threshold'] == 40
    assert (await learner.get_detection_settings('tenant-1'))['deterministic_quarantine_threshold'] == 40

    with pytest.raises(ValidationError):
        await learner.rollback_threshold_adjustment(adjustments[0].id, 'tenant-1')


@pytest.mark.asyncio
async def test_threshold_suggestions(learner):
    await _tuning_history(learner)
    suggestions = await learner.suggest_thresholds('tenant-1')
    assert len(suggestions) == 1
    assert suggestions[0].category == 'deterministic'
    assert suggestions[0].confidence == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_adjustment_is_tenant_scoped(learner):
    await _tuning_history(learner)
    adjustment = (await learner.auto_tune_thresholds('tenant-1'))[0]
    with pytest.raises(NotFoundError):
        await learner.apply_threshold_adjustment(adjustment.id, 'tenant-2')


# ============================================================================
# DRIFT AND RATES
# ============================================================================

@pytest.mark.asyncio
async def test_detect_drift_between_windows(learner, session_factory):
    for _ in range(10):
        insert_decision(session_factory, make_decision(action='confirm', urgency_score=10), days_ago(45))
        insert_decision(session_factory, make_decision(action='release', urgency_score=80), days_ago(5))

    report = await learner.detect_drift('tenant-1')
    assert report.drift_type == 'concept'

    metrics = await learner.calculate_drift('tenant-1')
    assert metrics.recommends_retrain is True
    assert metrics.drift_by_category['content'] == pytest.approx(70 / 80)


@pytest.mark.asyncio
async def test_false_positive_rate(learner, session_factory):
    for _ in range(4):
        insert_decision(session_factory, make_decision(action='release'), days_ago(1))
    for _ in range(6):
        insert_decision(session_factory, make_decision(action='confirm'), days_ago(1))

    rate = await learner.get_false_positive_rate('tenant-1')
    assert rate.overall_rate == pytest.approx(0.4)
    assert rate.sample_size == 10
    assert rate.breakdown == {'unknown': 1.0}
    low, high = rate.confidence_interval
    assert low < 0.4 < high


@pytest.mark.asyncio
async def test_false_negative_rate_without_passed_mail(learner):
    rate = await learner.get_false_negative_rate('tenant-1')
    assert rate.overall_rate == 0.0
    assert rate.sample_size == 0


# ============================================================================
# TRAINING DATA, BEHAVIOR AND FEEDBACK
# ============================================================================

@pytest.mark.asyncio
async def test_training_data_labels_and_balance(learner, session_factory):
    for _ in range(3):
        insert_decision(session_factory, make_decision(action='release'), days_ago(1))
    insert_decision(session_factory, make_decision(action='block', original='pass'), days_ago(1))
    insert_decision(session_factory, make_decision(action='whitelist'), days_ago(1))

    dataset = await learner.generate_training_data('tenant-1')
    assert dataset.metadata['safe_count'] == 3
    assert dataset.metadata['threat_count'] == 1
    assert {s.source for s in dataset.samples} == {'admin_correction'}

    balanced = await learner.generate_training_data('tenant-1', balance_classes=True)
    assert balanced.metadata['sample_count'] == 2


@pytest.mark.asyncio
async def test_action_patterns(learner):
    for _ in range(5):
        await learner.record_decision(make_decision())
    patterns = await learner.get_action_patterns('tenant-1', admin_id='admin-1')
    assert patterns.total_actions == 5
    assert patterns.action_breakdown == {'release': 5}
    assert patterns.consistency_score == 1.0


@pytest.mark.asyncio
async def test_incorporate_feedback_marks_reported_decisions(learner, feedback_engine):
    decision = await learner.record_decision(make_decision(action='confirm', original='pass'))
    await feedback_engine.process_feedback(FeedbackEvent(
        feedback_id='fb-1', tenant_id='tenant-1', sender_domain='news.example.com',
        feedback_type='phishing', verdict_id=decision.verdict_id
    ))

    await learner.incorporate_feedback('fb-1')

    history = await learner.get_decision_history('tenant-1')
    assert history[0].subsequent_reported_as_phish is True

    quality = await learner.get_feedback_quality('tenant-1')
    assert quality.total_feedback == 1
    assert quality.verified_feedback == 1
    assert quality.feedback_by_type == {'phishing': 1}

    with pytest.raises(NotFoundError):
        await learner.incorporate_feedback('missing')


@pytest.mark.asyncio
async def test_cross_tenant_aggregation(learner):
    for tenant in ('tenant-1', 'tenant-2', 'tenant-3'):
        await learner.record_decision(make_decision(tenant_id=tenant, domain='shared.example.com'))
    await learner.record_decision(make_decision(tenant_id='tenant-1', domain='solo.example.com'))

    aggregated = await learner.aggregate_learning()
    assert aggregated.tenant_count == 3
    assert aggregated.total_samples == 4
    assert [p.features['domain'] for p in aggregated.common_patterns] == ['shared.example.com']
    assert aggregated.common_patterns[0].occurrences == 3


# ============================================================================
# POLICY A/B TESTS
# ============================================================================

@pytest.mark.asyncio
async def test_policy_ab_test_lifecycle(learner):
    for _ in range(10):
        await learner.record_decision(make_decision())
    suggestion = (await learner.suggest_policy_adjustments('tenant-1'))[0]

    test = await learner.start_ab_test('tenant-1', suggestion.id, 'Whitelist newsletter', 20)
    assert test.control_group == ['80%']
    assert test.test_group == ['20%']
    assert [s.id for s in await learner.get_suggestions('tenant-1', status='testing')] == [suggestion.id]

    results = await learner.evaluate_ab_test(test.id)
    assert results.recommendation == 'continue'

    stopped = await learner.stop_ab_test(test.id)
    assert stopped.status == 'completed'
    assert stopped.ended_at is not None


@pytest.mark.asyncio
async def test_policy_ab_test_validation(learner):
    with pytest.raises(ValidationError):
        await learner.start_ab_test('tenant-1', 'any', 'bad split', 120)
    with pytest.raises(NotFoundError):
        await learner.start_ab_test('tenant-1', 'missing', 'no suggestion', 20)
    with pytest.raises(NotFoundError):
        await learner.evaluate_ab_test('missing')
