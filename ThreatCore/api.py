import logging
from dataclasses import asdict
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException

from .api_models import (
    PredictRequestAPI, BatchPredictRequestAPI, DeployModelAPI, WeightsAPI, CalibrationAPI, ThresholdsAPI,
    ModelABTestAPI, FeedbackAPI, AdminDecisionAPI, AdminActionAPI, DecisionQueryAPI, PolicyABTestAPI
)
from .config import CoreConfig
from .errors import NotFoundError, TransientStoreError, ValidationError
from .storage import create_session_factory
from .Explainer import ThreatExplainer, ExplanationRequest
from .FeedbackLearning import FeedbackLearningEngine, FeedbackEvent
from .ResponseLearner import ResponseLearner, AdminDecision, AdminAction, DecisionFilters, EmailFeatures
from .ScoringEngine import ThreatPredictor, FeatureVector

logger = logging.getLogger(__name__)

app = FastAPI(title="ThreatCore Decision API", version="1.0.0")


class CoreServices:
    """The four engines sharing one database"""

    def __init__(self, session_factory=None):
        self.SessionLocal = session_factory or create_session_factory(CoreConfig.DATABASE_URL)
        self.feedback = FeedbackLearningEngine(session_factory=self.SessionLocal)
        self.predictor = ThreatPredictor(session_factory=self.SessionLocal, feedback_engine=self.feedback)
        self.learner = ResponseLearner(session_factory=self.SessionLocal)
        self.explainer = ThreatExplainer(session_factory=self.SessionLocal, predictor=self.predictor)


core: Optional[CoreServices] = None


def init_core(session_factory=None) -> CoreServices:
    global core
    core = CoreServices(session_factory)
    return core


async def _call(coro):
    try:
        return await coro
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransientStoreError as e:
        logger.error(f"Storage unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Request failed: {e}")
        raise HTTPException(status_code=500, detail="Internal error")


def _features(data) -> FeatureVector:
    try:
        return FeatureVector.from_dict(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.on_event("startup")
async def startup_event():
    """Initialize engines on API startup"""
    if core is None:
        init_core()
    core.feedback.start_scheduler()
    logger.info("ThreatCore API started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop maintenance jobs on API shutdown"""
    if core:
        core.feedback.shutdown_scheduler()


@app.get("/health")
async def health_check():
    """API health check endpoint"""
    return {"status": "healthy", "component": "threat_core"}


# ============= Scoring =============

@app.post("/predict")
async def predict(request: PredictRequestAPI):
    """Score one email, applying learned feedback rules when the sender is known"""
    features = _features(request.features)

    if request.sender and request.tenant_id:
        sender_domain = request.sender.split('@')[-1].lower()
        result = await _call(core.predictor.predict_with_feedback(
            features, request.tenant_id, sender_domain, request.urls, request.subject
        ))
    else:
        result = await _call(core.predictor.predict(features, request.tenant_id))

    response = asdict(result)
    if request.record:
        response['verdict_id'] = await _call(core.predictor.record_verdict(
            result, request.tenant_id, features, subject=request.subject or "",
            sender=request.sender or "", message_id=request.message_id
        ))
    return response


@app.post("/predict/batch")
async def predict_batch(request: BatchPredictRequestAPI):
    """Score up to the configured batch maximum"""
    batch = [_features(f) for f in request.features]
    results = await _call(core.predictor.batch_predict(batch, request.tenant_id))
    return {"results": [asdict(r) for r in results]}


@app.get("/models")
async def list_models():
    models = await _call(core.predictor.get_all_model_versions())
    return {
        "active": await _call(core.predictor.get_model_version()),
        "models": [asdict(m) for m in models]
    }


@app.post("/models")
async def deploy_model(request: DeployModelAPI):
    event = await _call(core.predictor.deploy_model(
        request.version, request.weights, request.calibration, request.metrics
    ))
    return asdict(event)


@app.post("/models/{version}/activate")
async def activate_model(version: str):
    return asdict(await _call(core.predictor.activate_model(version)))


@app.post("/models/{version}/rollback")
async def rollback_model(version: str):
    return asdict(await _call(core.predictor.rollback(version)))


@app.put("/models/{version}/weights")
async def update_weights(version: str, request: WeightsAPI):
    return asdict(await _call(core.predictor.update_model_weights(version, request.weights)))


@app.put("/models/{version}/calibration")
async def update_calibration(version: str, request: CalibrationAPI):
    calibration = {k: v for k, v in (('a', request.a), ('b', request.b), ('enabled', request.enabled))
                   if v is not None}
    return asdict(await _call(core.predictor.update_calibration(version, calibration)))


@app.get("/thresholds")
async def get_thresholds(tenant_id: Optional[str] = None):
    return asdict(await _call(core.predictor.get_thresholds(tenant_id)))


@app.put("/thresholds")
async def update_thresholds(request: ThresholdsAPI):
    values = {
        'critical_threshold': request.critical_threshold,
        'high_threshold': request.high_threshold,
        'medium_threshold': request.medium_threshold,
        'low_threshold': request.low_threshold,
        'threat_type_thresholds': request.threat_type_thresholds
    }
    values = {k: v for k, v in values.items() if v is not None}
    return asdict(await _call(core.predictor.update_thresholds(values, request.tenant_id)))


@app.post("/ab-tests")
async def enable_model_ab_test(request: ModelABTestAPI):
    event = await _call(core.predictor.enable_ab_test(
        request.test_id, request.variant_a_model, request.variant_b_model,
        request.variant_b_percentage, request.end_time
    ))
    return asdict(event)


@app.get("/ab-tests/{test_id}")
async def get_model_ab_test(test_id: str):
    return asdict(await _call(core.predictor.get_ab_test_status(test_id)))


@app.delete("/ab-tests/{test_id}")
async def disable_model_ab_test(test_id: str):
    return asdict(await _call(core.predictor.disable_ab_test(test_id)))


@app.get("/stats")
async def get_stats():
    """Get scoring engine operational metrics"""
    return await _call(core.predictor.get_stats())


# ============= Feedback learning =============

@app.post("/feedback")
async def submit_feedback(request: FeedbackAPI):
    """Record user feedback on a verdict"""
    event = FeedbackEvent(
        feedback_id=request.feedback_id,
        tenant_id=request.tenant_id,
        sender_domain=request.sender_domain,
        feedback_type=request.feedback_type,
        message_id=request.message_id,
        sender_email=request.sender_email,
        original_verdict=request.original_verdict,
        original_score=request.original_score,
        subject=request.subject,
        urls=list(request.urls),
        verdict_id=request.verdict_id
    )
    return asdict(await _call(core.feedback.process_feedback(event)))


@app.get("/feedback/{tenant_id}/analytics")
async def feedback_analytics(tenant_id: str):
    return asdict(await _call(core.feedback.get_feedback_analytics(tenant_id)))


@app.get("/feedback/{tenant_id}/rules")
async def learned_rules(tenant_id: str, include_inactive: bool = False):
    rules = await _call(core.feedback.get_learned_rules(tenant_id, include_inactive))
    return {"count": len(rules), "rules": [asdict(r) for r in rules]}


@app.get("/feedback/{tenant_id}/reputation/{domain}")
async def sender_reputation(tenant_id: str, domain: str):
    reputation = await _call(core.feedback.get_sender_reputation(tenant_id, domain))
    if reputation is None:
        raise HTTPException(status_code=404, detail="Sender not found")
    return reputation


@app.post("/feedback/maintenance")
async def run_maintenance():
    """Run the pattern decay and rule expiry sweeps now"""
    return await _call(core.feedback.run_maintenance())


@app.post("/feedback/{feedback_id}/incorporate")
async def incorporate_feedback(feedback_id: str):
    await _call(core.learner.incorporate_feedback(feedback_id))
    return {"feedback_id": feedback_id, "status": "incorporated"}


# ============= Admin decisions =============

@app.post("/decisions")
async def record_decision(request: AdminDecisionAPI):
    """Record an administrator override of a verdict"""
    try:
        features = EmailFeatures.from_dict(request.email_features)
    except (ValidationError, TypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    decision = await _call(core.learner.record_decision(AdminDecision(
        tenant_id=request.tenant_id,
        verdict_id=request.verdict_id,
        original_verdict=request.original_verdict,
        admin_action=request.admin_action,
        admin_id=request.admin_id,
        email_features=features,
        reason=request.reason
    )))
    return {"decision_id": decision.id, "timestamp": decision.timestamp}


@app.post("/actions")
async def record_action(request: AdminActionAPI):
    action = await _call(core.learner.record_action(AdminAction(
        action_id=request.action_id,
        tenant_id=request.tenant_id,
        admin_id=request.admin_id,
        verdict_id=request.verdict_id,
        original_verdict=request.original_verdict,
        new_verdict=request.new_verdict,
        action=request.action,
        reason=request.reason
    )))
    return asdict(action)


@app.post("/decisions/{tenant_id}/query")
async def query_decisions(tenant_id: str, query: DecisionQueryAPI):
    """Query decisions with optional filters"""
    decisions = await _call(core.learner.get_decision_history(tenant_id, DecisionFilters(
        start_date=query.start_date,
        end_date=query.end_date,
        limit=query.limit,
        offset=query.offset,
        admin_actions=query.admin_actions,
        original_verdicts=query.original_verdicts
    )))
    return {"count": len(decisions), "decisions": [asdict(d) for d in decisions]}


@app.get("/learning/{tenant_id}/patterns")
async def analyze_patterns(tenant_id: str):
    return asdict(await _call(core.learner.analyze_patterns(tenant_id)))


@app.post("/learning/{tenant_id}/suggestions")
async def suggest_policy_adjustments(tenant_id: str):
    suggestions = await _call(core.learner.suggest_policy_adjustments(tenant_id))
    return {"suggestions": [asdict(s) for s in suggestions]}


@app.get("/learning/{tenant_id}/suggestions")
async def list_suggestions(tenant_id: str, status: Optional[str] = None):
    suggestions = await _call(core.learner.get_suggestions(tenant_id, status))
    return {"suggestions": [asdict(s) for s in suggestions]}


@app.post("/learning/{tenant_id}/thresholds/auto-tune")
async def auto_tune_thresholds(tenant_id: str):
    adjustments = await _call(core.learner.auto_tune_thresholds(tenant_id))
    return {"adjustments": [asdict(a) for a in adjustments]}


@app.get("/learning/{tenant_id}/settings")
async def detection_settings(tenant_id: str):
    return await _call(core.learner.get_detection_settings(tenant_id))


@app.post("/learning/{tenant_id}/threshold-adjustments/{adjustment_id}/apply")
async def apply_threshold_adjustment(tenant_id: str, adjustment_id: str):
    return await _call(core.learner.apply_threshold_adjustment(adjustment_id, tenant_id))


@app.post("/learning/{tenant_id}/threshold-adjustments/{adjustment_id}/rollback")
async def rollback_threshold_adjustment(tenant_id: str, adjustment_id: str):
    return await _call(core.learner.rollback_threshold_adjustment(adjustment_id, tenant_id))


@app.get("/learning/{tenant_id}/drift")
async def detect_drift(tenant_id: str):
    return asdict(await _call(core.learner.detect_drift(tenant_id)))


@app.get("/learning/{tenant_id}/rates")
async def error_rates(tenant_id: str):
    return {
        "false_positive": asdict(await _call(core.learner.get_false_positive_rate(tenant_id))),
        "false_negative": asdict(await _call(core.learner.get_false_negative_rate(tenant_id)))
    }


@app.post("/policy-tests")
async def start_policy_test(request: PolicyABTestAPI):
    test = await _call(core.learner.start_ab_test(
        request.tenant_id, request.suggestion_id, request.name, request.test_group_percentage
    ))
    return asdict(test)


@app.post("/policy-tests/{test_id}/evaluate")
async def evaluate_policy_test(test_id: str):
    return asdict(await _call(core.learner.evaluate_ab_test(test_id)))


# ============= Explanations =============

@app.get("/explain/{verdict_id}")
async def explain(verdict_id: str, audience: str = "end_user", verbosity: str = "brief"):
    explanation = await _call(core.explainer.explain(ExplanationRequest(
        verdict_id=verdict_id, audience=audience, verbosity=verbosity
    )))
    return asdict(explanation)


@app.get("/explain/{verdict_id}/counterfactual")
async def counterfactual(verdict_id: str):
    return asdict(await _call(core.explainer.get_counterfactual(verdict_id)))


@app.get("/explain/{verdict_id}/similar")
async def similar_threats(verdict_id: str, limit: int = 5):
    threats = await _call(core.explainer.get_similar_threats(verdict_id, limit))
    return {"similar": [asdict(t) for t in threats]}


@app.get("/explain/{verdict_id}/timeline")
async def detection_timeline(verdict_id: str):
    return asdict(await _call(core.explainer.get_detection_timeline(verdict_id)))


@app.get("/explain/{verdict_id}/compare")
async def compare_with_safe(verdict_id: str):
    return asdict(await _call(core.explainer.compare_with_safe(verdict_id)))


@app.get("/reports/{tenant_id}/executive-summary")
async def executive_summary(tenant_id: str, period: str = "7 days"):
    return asdict(await _call(core.explainer.generate_executive_summary(tenant_id, period)))


@app.get("/audit/{tenant_id}")
async def audit_trail(tenant_id: str, action: Optional[str] = None, limit: int = 100):
    entries = await _call(core.learner.get_audit_trail(tenant_id, action, limit))
    return {"entries": entries, "count": len(entries)}


if __name__ == "__main__":
    uvicorn.run(app, host=CoreConfig.API_HOST, port=CoreConfig.API_PORT)
