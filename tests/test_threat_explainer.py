"""
Tests for the Threat Explainer
"""
import pytest

from ThreatCore.errors import NotFoundError, ValidationError
from ThreatCore.Explainer import ExplanationRequest, ExplainerConfig, parse_period
from ThreatCore.ScoringEngine import FeatureVector

from conftest import phishing_features, clean_features, make_decision, UnavailableSession


async def record(predictor, features, tenant_id='tenant-1', subject='Verify your account',
                 sender='it@examp1e.com'):
    result = await predictor.predict(features, tenant_id)
    return await predictor.record_verdict(result, tenant_id, features, subject=subject, sender=sender)


# ============================================================================
# EXPLANATIONS
# ============================================================================

@pytest.mark.asyncio
async def test_end_user_brief_explanation(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    explanation = await explainer.explain(ExplanationRequest(verdict_id=verdict_id))

    assert explanation.summary == ExplainerConfig.END_USER_BRIEF['phishing']
    assert len(explanation.top_factors) <= 3
    assert all(f.evidence is None or 'Contribution' not in f.evidence for f in explanation.top_factors)
    assert len(explanation.recommendations) == 3
    assert explanation.recommendations[0] == 'Do not click any links or download attachments from this email'
    assert explanation.technical_details is None


@pytest.mark.asyncio
async def test_analyst_explanation_has_technical_details(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    explanation = await explainer.explain(ExplanationRequest(
        verdict_id=verdict_id, audience='analyst', verbosity='detailed'
    ))

    assert explanation.summary.startswith('Detection triggered by the following factors:')
    details = explanation.technical_details
    assert len(details.thresholds) == 4
    exceeded = {t.name: t.exceeded for t in details.thresholds}
    assert exceeded['High Threshold'] is True
    assert exceeded['Critical Threshold'] is False
    assert details.model_info['version'] == '1.0.0'
    assert len(details.layer_scores) == 6


@pytest.mark.asyncio
async def test_admin_summary(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    explanation = await explainer.explain(ExplanationRequest(verdict_id=verdict_id, audience='admin'))

    assert 'Risk Level: HIGH' in explanation.summary
    assert 'Model Version: 1.0.0' in explanation.summary


@pytest.mark.asyncio
async def test_explain_with_inline_prediction(explainer, predictor):
    prediction = await predictor.predict(clean_features())
    explanation = await explainer.explain(ExplanationRequest(
        verdict_id='inline', features=clean_features(), prediction=prediction
    ))
    assert explanation.summary == ExplainerConfig.END_USER_BRIEF['clean']
    assert explanation.metadata['verdict_id'] == 'inline'


@pytest.mark.asyncio
async def test_explain_validation(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())
    with pytest.raises(ValidationError):
        await explainer.explain(ExplanationRequest(verdict_id=verdict_id, audience='board'))
    with pytest.raises(NotFoundError):
        await explainer.explain(ExplanationRequest(verdict_id='missing'))


@pytest.mark.asyncio
async def test_risk_breakdown(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    breakdown = await explainer.get_risk_breakdown(verdict_id)

    assert breakdown.overall == 71
    assert breakdown.categories['authentication'] == 100
    assert breakdown.categories['sender'] == 90
    assert breakdown.categories['attachments'] == 0
    triggered = {point.category for point in breakdown.chart_data if point.triggered}
    assert 'Authentication' in triggered
    assert 'Attachments' not in triggered


def test_describe_confidence(explainer):
    assert explainer.describe_confidence(0.95).startswith('Very high confidence')
    assert explainer.describe_confidence(0.1).startswith('Very low confidence')


# ============================================================================
# COUNTERFACTUALS AND COMPARISON
# ============================================================================

@pytest.mark.asyncio
async def test_counterfactual_with_immutable_factors(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    counterfactual = await explainer.get_counterfactual(verdict_id)

    assert counterfactual.current_verdict == 'high'
    assert counterfactual.hypothetical_verdict == 'high'
    assert counterfactual.summary.startswith(
        'This email cannot be made safe because 4 factor(s) cannot be changed: '
        'SPF Authentication, DKIM Signature, Domain Authenticity, Malicious URLs.'
    )
    assert '(Credential Requests, Urgency Language, URL Shorteners)' in counterfactual.summary
    assert counterfactual.changes_required[0].feasibility == 'impossible'
    assert counterfactual.changes_required[-1].feasibility == 'possible'


@pytest.mark.asyncio
async def test_counterfactual_for_safe_email(explainer, predictor):
    verdict_id = await record(predictor, clean_features())
    counterfactual = await explainer.get_counterfactual(verdict_id)
    assert counterfactual.summary == 'This email is already classified as safe.'
    assert counterfactual.changes_required == []


@pytest.mark.asyncio
async def test_counterfactual_rescores_possible_changes(explainer, predictor):
    await predictor.update_thresholds({'low_threshold': 0.1})
    features = FeatureVector.from_dict({'content': {'urgency_score': 1.0, 'requests_credentials': True}})
    verdict_id = await record(predictor, features)

    counterfactual = await explainer.get_counterfactual(verdict_id)

    assert counterfactual.current_verdict == 'low'
    assert counterfactual.hypothetical_verdict == 'safe'
    assert counterfactual.summary == (
        'Changing Credential Requests, Urgency Language would lower the verdict from low to safe.'
    )


@pytest.mark.asyncio
async def test_compare_with_safe(explainer, predictor):
    safe_id = await record(predictor, clean_features(), subject='Re: lunch', sender='bob@partner.com')
    threat_id = await record(predictor, phishing_features())

    comparison = await explainer.compare_with_safe(threat_id)

    assert comparison.safe_verdict_id == safe_id
    assert len(comparison.differences) == 6
    assert comparison.summary == (
        'This email differs from safe emails in 6 key aspects. 2 critical difference(s) were detected. '
        '3 high-impact difference(s) were found.'
    )


@pytest.mark.asyncio
async def test_compare_without_safe_email(explainer, predictor):
    threat_id = await record(predictor, phishing_features())
    comparison = await explainer.compare_with_safe(threat_id)
    assert comparison.differences == []
    assert comparison.summary == 'No recent safe email available for comparison.'


# ============================================================================
# HISTORY BASED VIEWS
# ============================================================================

@pytest.mark.asyncio
async def test_similar_threats_and_outcomes(explainer, predictor, learner):
    first = await record(predictor, phishing_features())
    second = await record(predictor, phishing_features(), subject='Password expiry')
    await record(predictor, phishing_features(), tenant_id='tenant-2')

    similar = await explainer.get_similar_threats(first)
    assert [s.verdict_id for s in similar] == [second]
    assert similar[0].similarity == 1.0
    assert similar[0].outcome == 'unknown'
    assert similar[0].subject == 'Password expiry'

    decision = make_decision(domain='examp1e.com')
    decision.verdict_id = second
    await learner.record_decision(decision)

    similar = await explainer.get_similar_threats(first)
    assert similar[0].outcome == 'false_positive'


@pytest.mark.asyncio
async def test_similar_threats_unknown_verdict(explainer):
    with pytest.raises(NotFoundError):
        await explainer.get_similar_threats('missing')


@pytest.mark.asyncio
async def test_similar_threats_degrade_when_store_unavailable(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())
    explainer.SessionLocal = UnavailableSession

    assert await explainer.get_similar_threats(verdict_id) == []


@pytest.mark.asyncio
async def test_detection_timeline(explainer, predictor):
    verdict_id = await record(predictor, phishing_features())

    timeline = await explainer.get_detection_timeline(verdict_id)

    assert len(timeline.entries) == 14
    assert timeline.entries[0].layer == 'intake'
    assert 'Final verdict: high' in [e.event for e in timeline.entries]
    assert timeline.summary.startswith('Detection triggered across 4 analysis layer(s)')


# ============================================================================
# EXECUTIVE SUMMARY
# ============================================================================

def test_parse_period():
    assert parse_period('1 week') == 7
    assert parse_period('2 months') == 60
    assert parse_period('14 days') == 14
    assert parse_period('forever') == 7
    assert parse_period(None) == 7


@pytest.mark.asyncio
async def test_executive_summary(explainer, predictor):
    await record(predictor, phishing_features())
    await record(predictor, phishing_features(), subject='Invoice overdue')
    await record(predictor, clean_features(), subject='Team lunch', sender='bob@partner.com')

    summary = await explainer.generate_executive_summary('tenant-1', '7 days')

    assert summary.statistics['total_emails'] == 3
    assert summary.statistics['threats_quarantined'] == 2
    assert summary.statistics['threats_blocked'] == 0
    assert summary.statistics['accuracy'] == 100.0
    assert summary.highlights == [
        '2 threat(s) blocked during this period',
        'Top threat type: phishing (100%)',
        'Detection accuracy remains excellent'
    ]
    assert 'processed 3 emails and blocked 2 threats' in summary.narrative
    assert summary.top_threat_categories[0]['category'] == 'phishing'


@pytest.mark.asyncio
async def test_executive_summary_for_quiet_tenant(explainer):
    summary = await explainer.generate_executive_summary('nobody', '1 week')
    assert summary.statistics['total_emails'] == 0
    assert summary.statistics['accuracy'] == 100.0
    assert summary.highlights == ['0 threat(s) blocked during this period', 'Detection accuracy remains excellent']
