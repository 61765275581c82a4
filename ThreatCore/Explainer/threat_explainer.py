import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from ..enums import RiskLevel
from ..errors import NotFoundError, TransientStoreError, ValidationError
from ..storage import create_session_factory
from ..ResponseLearner.database_models import AdminDecisionRecord
from ..ScoringEngine.config import ScoringConfig
from ..ScoringEngine.database_models import VerdictRecord
from ..ScoringEngine.models import FeatureVector, FeatureImportance, PredictionResult, ModelVersion
from ..ScoringEngine.threat_predictor import ThreatPredictor
from .config import ExplainerConfig
from .enums import Audience, Verbosity, Impact, Feasibility, Outcome
from .models import (
    ExplanationRequest, ExplanationFactor, ChartDataPoint, RiskBreakdown, FeatureImportanceDetail,
    ThresholdInfo, LayerScoreDetail, TriggeredSignal, TechnicalDetails, Explanation, ComparisonDifference,
    ComparativeExplanation, TimelineEntry, DetectionTimeline, SimilarThreat, CounterfactualChange,
    CounterfactualExplanation, ExecutiveSummary, VerdictSnapshot
)

logger = logging.getLogger(__name__)

IMPACT_ORDER = {impact.value: i for i, impact in enumerate(Impact)}
FEASIBILITY_ORDER = {feasibility.value: i for i, feasibility in enumerate(Feasibility)}

PERIOD_PATTERN = re.compile(r'(\d+)\s*(day|week|month)', re.IGNORECASE)
PERIOD_DAYS = {'day': 1, 'week': 7, 'month': 30}

RELEASED_ACTIONS = ('released',)
CONFIRMED_ACTIONS = ('blocked', 'deleted')


def parse_period(period: Optional[str], default: int = 7) -> int:
    """'7 days', '1 week', '2 months' -> number of days"""
    match = PERIOD_PATTERN.search(period or '')
    if not match:
        return default
    return int(match.group(1)) * PERIOD_DAYS[match.group(2).lower()]


def format_feature_name(feature: str) -> str:
    name = re.sub(r'\s+', ' ', feature.replace('_', ' ')).strip()
    return name[:1].upper() + name[1:]


def importance_to_impact(contribution: float) -> str:
    if contribution >= 0.20:
        return Impact.CRITICAL.value
    if contribution >= 0.10:
        return Impact.HIGH.value
    if contribution >= 0.05:
        return Impact.MEDIUM.value
    return Impact.LOW.value


def importance_to_severity(contribution: float) -> str:
    if contribution >= 0.15:
        return 'critical'
    if contribution >= 0.05:
        return 'warning'
    return 'info'


def jaccard(left, right) -> float:
    left, right = set(left), set(right)
    union = left | right
    return len(left & right) / len(union) if union else 0.0


def _auth_passed(score: float) -> bool:
    return score < 0 or score >= 0.5


class ThreatExplainer:
    """
    Turns verdicts into audience specific explanations, risk breakdowns,
    counterfactuals, similar-case lookups, detection timelines and tenant
    executive summaries. Never changes scoring state.
    """

    def __init__(self, config: ExplainerConfig = None, session_factory=None, predictor: ThreatPredictor = None):
        self.config = config or ExplainerConfig()

        if session_factory is None:
            self._initialize_storage()
        else:
            self.SessionLocal = session_factory

        self.predictor = predictor or ThreatPredictor(session_factory=self.SessionLocal)

        logger.info("Threat Explainer initialized")

    def _initialize_storage(self):
        self.SessionLocal = create_session_factory(self.config.DATABASE_URL)

    # ------------------------------------------------------------------
    # verdict loading
    # ------------------------------------------------------------------

    def _snapshot(self, record: VerdictRecord) -> VerdictSnapshot:
        prediction = PredictionResult(
            threat_score=record.threat_score or 0.0,
            confidence=record.confidence or 0.0,
            threat_type=record.threat_type or 'clean',
            risk_level=record.risk_level or RiskLevel.SAFE.value,
            model_version=record.model_version or ScoringConfig.DEFAULT_MODEL_VERSION,
            prediction_time_ms=record.processing_time_ms or 0.0,
            feature_importance=[FeatureImportance(**fi) for fi in (record.feature_importance or [])],
            raw_scores=dict(record.raw_scores or {})
        )
        return VerdictSnapshot(
            verdict_id=record.id,
            tenant_id=record.tenant_id,
            prediction=prediction,
            features=FeatureVector.from_dict(record.features) if record.features else None,
            verdict=record.verdict,
            signals=list(record.signals or []),
            layer_results=list(record.layer_results or []),
            subject=record.subject or '',
            sender=record.sender or '',
            action_taken=record.action_taken,
            created_at=record.created_at
        )

    def _load_verdict(self, verdict_id: str) -> VerdictSnapshot:
        db = self.SessionLocal()
        try:
            record = db.query(VerdictRecord).filter_by(id=verdict_id).first()
            if record is None:
                raise NotFoundError(f"Verdict not found: {verdict_id}")
            return self._snapshot(record)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching verdict {verdict_id}: {e}")
            raise TransientStoreError(f"Failed to fetch verdict {verdict_id}") from e
        finally:
            db.close()

    async def _model(self, version: str) -> ModelVersion:
        try:
            return await self.predictor.get_model(version)
        except NotFoundError:
            logger.warning(f"Model {version} no longer exists, falling back to default weights")
            return ModelVersion(version=version, weights=dict(ScoringConfig.DEFAULT_WEIGHTS))

    # ------------------------------------------------------------------
    # explanations
    # ------------------------------------------------------------------

    async def explain(self, request: ExplanationRequest) -> Explanation:
        if request.audience not in {a.value for a in Audience}:
            raise ValidationError(f"Unknown audience: {request.audience}")
        if request.verbosity not in {v.value for v in Verbosity}:
            raise ValidationError(f"Unknown verbosity: {request.verbosity}")

        prediction = request.prediction
        features = request.features
        tenant_id = request.tenant_id
        layer_results = []

        if prediction is None:
            snapshot = self._load_verdict(request.verdict_id)
            prediction = snapshot.prediction
            features = features or snapshot.features
            tenant_id = tenant_id or snapshot.tenant_id
            layer_results = snapshot.layer_results

        top_factors = self._top_factors(prediction, features, request.audience)

        explanation = Explanation(
            summary=self._summary(prediction, top_factors, request.audience, request.verbosity),
            confidence=self.describe_confidence(prediction.confidence),
            top_factors=top_factors,
            risk_breakdown=self._risk_breakdown(prediction, features),
            recommendations=self._recommendations(prediction, top_factors, request.audience),
            metadata={
                'verdict_id': request.verdict_id,
                'generated_at': datetime.utcnow(),
                'audience': request.audience,
                'verbosity': request.verbosity,
                'model_version': prediction.model_version
            }
        )

        if request.audience in (Audience.ADMIN.value, Audience.ANALYST.value):
            explanation.technical_details = await self._technical_details(prediction, tenant_id, layer_results)

        return explanation

    async def summarize(self, verdict_id: str) -> str:
        explanation = await self.explain(ExplanationRequest(verdict_id=verdict_id))
        return explanation.summary

    async def get_factors(self, verdict_id: str) -> List[ExplanationFactor]:
        explanation = await self.explain(ExplanationRequest(
            verdict_id=verdict_id, audience=Audience.ANALYST.value, verbosity=Verbosity.DETAILED.value
        ))
        return explanation.top_factors

    async def get_risk_breakdown(self, verdict_id: str) -> RiskBreakdown:
        explanation = await self.explain(ExplanationRequest(
            verdict_id=verdict_id, audience=Audience.ANALYST.value, verbosity=Verbosity.DETAILED.value
        ))
        return explanation.risk_breakdown

    def describe_confidence(self, confidence: float) -> str:
        descriptions = self.config.CONFIDENCE_DESCRIPTIONS
        if confidence >= 0.9:
            return descriptions['very_high']
        if confidence >= 0.75:
            return descriptions['high']
        if confidence >= 0.5:
            return descriptions['moderate']
        if confidence >= 0.3:
            return descriptions['low']
        return descriptions['very_low']

    def _factor_description(self, feature: str, category: str) -> str:
        for key, description in self.config.FACTOR_DESCRIPTIONS.get(category, {}).items():
            if key in feature.lower():
                return description
        return f"Analysis of {feature.replace('_', ' ')}"

    def _feature_factors(self, features: FeatureVector) -> List[ExplanationFactor]:
        descriptions = self.config.FACTOR_DESCRIPTIONS
        factors = []

        if features.sender.is_cousin_domain:
            factors.append(ExplanationFactor(
                'Lookalike Domain', descriptions['sender']['lookalike_domain'], Impact.CRITICAL.value, 'sender'
            ))
        if features.sender.executive_impersonation_score > 0.5:
            factors.append(ExplanationFactor(
                'VIP Impersonation', descriptions['sender']['vip_impersonation'], Impact.CRITICAL.value, 'sender',
                evidence=f"Impersonation score: {features.sender.executive_impersonation_score:.2f}"
            ))
        if features.content.requests_credentials:
            factors.append(ExplanationFactor(
                'Credential Request', descriptions['content']['credential_request'], Impact.CRITICAL.value, 'content'
            ))
        if features.url.malicious_url_count > 0:
            factors.append(ExplanationFactor(
                'Malicious URLs', descriptions['url']['malicious_url'], Impact.CRITICAL.value, 'url',
                evidence=f"{features.url.malicious_url_count} malicious URL(s) detected"
            ))
        if features.attachment.has_executable:
            factors.append(ExplanationFactor(
                'Executable Attachment', descriptions['attachment']['executable'], Impact.CRITICAL.value, 'attachment'
            ))
        if not _auth_passed(features.header.spf_score):
            factors.append(ExplanationFactor(
                'SPF Failed', descriptions['authentication']['spf'], Impact.HIGH.value, 'authentication'
            ))
        if not _auth_passed(features.header.dmarc_score):
            factors.append(ExplanationFactor(
                'DMARC Failed', descriptions['authentication']['dmarc'], Impact.HIGH.value, 'authentication'
            ))
        return factors

    def _top_factors(self, prediction: PredictionResult, features: Optional[FeatureVector],
                     audience: str) -> List[ExplanationFactor]:
        factors = []
        for fi in prediction.feature_importance[:self.config.IMPORTANCE_SCAN]:
            category = self.config.FACTOR_CATEGORIES.get(fi.category, 'content')
            factors.append(ExplanationFactor(
                factor=format_feature_name(fi.feature),
                description=self._factor_description(fi.feature, category),
                impact=importance_to_impact(fi.contribution),
                category=category,
                evidence=(f"Contribution: {fi.contribution * 100:.1f}%"
                          if audience != Audience.END_USER.value else None),
                contribution=fi.contribution
            ))

        if features is not None:
            factors.extend(self._feature_factors(features))

        seen = set()
        unique = []
        for factor in factors:
            key = factor.factor.lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(factor)

        unique.sort(key=lambda f: IMPACT_ORDER[f.impact])
        limit = self.config.END_USER_FACTOR_LIMIT if audience == Audience.END_USER.value else self.config.FACTOR_LIMIT
        return unique[:limit]

    def _risk_breakdown(self, prediction: PredictionResult, features: Optional[FeatureVector]) -> RiskBreakdown:
        categories = {
            name: round(prediction.raw_scores.get(raw, 0.0) * 100)
            for raw, name in self.config.BREAKDOWN_CATEGORIES.items()
        }

        if features is not None:
            known = [s for s in (features.header.spf_score, features.header.dkim_score,
                                 features.header.dmarc_score) if s >= 0]
            if known:
                auth_score = sum(known) / len(known) * 100
                if auth_score < 50:
                    categories['authentication'] = max(categories['authentication'], round(100 - auth_score))
            reputation = features.sender.reputation_score
            if 0 <= reputation < 0.5:
                categories['sender'] = max(categories['sender'], round(100 - reputation * 100))

        chart_data = [
            ChartDataPoint(
                category=self.config.CATEGORY_NAMES.get(name, name),
                score=score,
                color=self.config.CATEGORY_COLORS.get(name, self.config.DEFAULT_COLOR),
                triggered=score > self.config.TRIGGERED_CATEGORY_SCORE
            )
            for name, score in categories.items()
        ]

        return RiskBreakdown(overall=round(prediction.threat_score * 100), categories=categories,
                             chart_data=chart_data)

    def _threat_name(self, threat_type: str) -> str:
        return self.config.THREAT_TYPE_NAMES.get(threat_type, threat_type)

    def _summary(self, prediction: PredictionResult, top_factors: List[ExplanationFactor],
                 audience: str, verbosity: str) -> str:
        templates = self.config.AUDIENCE_TEMPLATES
        confidence = round(prediction.confidence * 100)
        threat_name = self._threat_name(prediction.threat_type)

        if audience == Audience.END_USER.value:
            if verbosity == Verbosity.BRIEF.value:
                brief = self.config.END_USER_BRIEF
                return brief.get(prediction.threat_type, brief['phishing'])

            names = [f.factor.lower() for f in top_factors[:2]]
            if len(names) > 1:
                factor_list = f"{', '.join(names[:-1])} and {names[-1]}"
            else:
                factor_list = names[0] if names else 'suspicious patterns'
            return f"{templates['end_user']['prefix']} it shows signs of {factor_list}. {templates['end_user']['suffix']}"

        if audience == Audience.ANALYST.value:
            critical = [f.factor for f in top_factors if f.impact == Impact.CRITICAL.value]
            high = [f.factor for f in top_factors if f.impact == Impact.HIGH.value]

            lines = [
                templates['analyst']['prefix'],
                f"- Threat Type: {threat_name} ({confidence}% confidence)"
            ]
            if critical:
                lines.append(f"- Critical factors: {', '.join(critical)}")
            if high:
                lines.append(f"- High-impact factors: {', '.join(high)}")
            lines.append(templates['analyst']['suffix'])
            return '\n'.join(lines)

        if audience == Audience.ADMIN.value:
            return '\n'.join([
                templates['admin']['prefix'],
                f"Classification: {threat_name}",
                f"Confidence: {confidence}%",
                f"Risk Level: {prediction.risk_level.upper()}",
                f"Model Version: {prediction.model_version}",
                f"Processing Time: {prediction.prediction_time_ms:.0f}ms",
                templates['admin']['suffix']
            ])

        severity = 'high-risk' if prediction.risk_level in (RiskLevel.CRITICAL.value, RiskLevel.HIGH.value) \
            else 'potential'
        return (f"{templates['executive']['prefix']} A {severity} {threat_name} attempt was detected and blocked. "
                f"{confidence}% confidence. {templates['executive']['suffix']}")

    def _recommendations(self, prediction: PredictionResult, top_factors: List[ExplanationFactor],
                         audience: str) -> List[str]:
        risk = prediction.risk_level
        recommendations = []

        if audience == Audience.END_USER.value:
            if risk in (RiskLevel.CRITICAL.value, RiskLevel.HIGH.value):
                recommendations.append('Do not click any links or download attachments from this email')
                recommendations.append('Do not reply or provide any personal information')
                recommendations.append('Report this email to your IT security team')
            elif risk == RiskLevel.MEDIUM.value:
                recommendations.append('Exercise caution with this email')
                recommendations.append('Verify the sender through a different channel before taking action')
            else:
                recommendations.append('This email appears safe, but always be cautious with unexpected requests')
            return recommendations

        names = [f.factor.lower() for f in top_factors]
        has_impersonation = any('impersonation' in n or 'spoof' in n for n in names)
        has_bec = any('bec' in n or 'financial' in n or 'wire' in n for n in names)
        has_malware = any('executable' in n or 'macro' in n or 'malware' in n for n in names)

        if risk == RiskLevel.CRITICAL.value:
            recommendations.append('IMMEDIATE: Block sender domain organization-wide')
            if has_impersonation:
                recommendations.append('Alert potential targets of the impersonation attempt')

        if has_bec:
            recommendations.append('Verify any financial requests through voice call')
            recommendations.append('Alert finance team about this BEC attempt')
            recommendations.append('Consider security awareness training for targeted users')

        if has_malware:
            recommendations.append('Submit attachments to sandbox for deep analysis')
            recommendations.append('Check if similar attachments were received by other users')

        if prediction.confidence < self.config.REVIEW_CONFIDENCE:
            recommendations.append('Consider manual review due to moderate confidence score')

        return recommendations

    async def _technical_details(self, prediction: PredictionResult, tenant_id: Optional[str],
                                 layer_results: List[Dict[str, Any]]) -> TechnicalDetails:
        thresholds = await self.predictor.get_thresholds(tenant_id)
        model = await self._model(prediction.model_version)
        score = prediction.threat_score

        skipped = {l.get('layer'): l for l in layer_results if l.get('skipped')}
        layer_scores = [
            LayerScoreDetail(
                layer=self.config.LAYER_NAMES.get(category, category),
                score=raw * 100,
                weight=model.weights.get(category, 0.0),
                skipped=category in skipped,
                skip_reason=skipped[category].get('skip_reason') if category in skipped else None
            )
            for category, raw in prediction.raw_scores.items()
        ]

        return TechnicalDetails(
            feature_importance=[
                FeatureImportanceDetail(
                    feature=fi.feature,
                    importance=abs(fi.contribution),
                    value=fi.contribution,
                    direction=fi.direction,
                    category=self.config.FACTOR_CATEGORIES.get(fi.category, fi.category)
                )
                for fi in prediction.feature_importance
            ],
            thresholds=[
                ThresholdInfo(name, value, score, score >= value)
                for name, value in (
                    ('Critical Threshold', thresholds.critical_threshold),
                    ('High Threshold', thresholds.high_threshold),
                    ('Medium Threshold', thresholds.medium_threshold),
                    ('Low Threshold', thresholds.low_threshold)
                )
            ],
            model_info={
                'version': prediction.model_version,
                'layers_used': [l.layer for l in layer_scores if not l.skipped],
                'processing_time_ms': prediction.prediction_time_ms,
                'calibration_applied': model.calibration.enabled
            },
            layer_scores=layer_scores,
            triggered_signals=[
                TriggeredSignal(
                    type=fi.feature,
                    severity=importance_to_severity(fi.contribution),
                    score=fi.contribution * 100,
                    detail=f"{fi.feature}: {fi.direction}"
                )
                for fi in prediction.feature_importance if fi.contribution > self.config.SIGNAL_CONTRIBUTION
            ]
        )

    # ------------------------------------------------------------------
    # comparison and counterfactuals
    # ------------------------------------------------------------------

    async def compare_with_safe(self, verdict_id: str) -> ComparativeExplanation:
        threat = self._load_verdict(verdict_id)
        since = datetime.utcnow() - timedelta(days=self.config.SAFE_COMPARISON_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            record = db.query(VerdictRecord).filter(
                VerdictRecord.tenant_id == threat.tenant_id,
                VerdictRecord.verdict == 'pass',
                VerdictRecord.id != verdict_id,
                VerdictRecord.created_at > since
            ).order_by(VerdictRecord.created_at.desc()).first()
            safe = self._snapshot(record) if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error finding safe comparison email: {e}")
            safe = None
        finally:
            db.close()

        if safe is None or threat.features is None or safe.features is None:
            return ComparativeExplanation(verdict_id, safe.verdict_id if safe else None, [],
                                          'No recent safe email available for comparison.')

        t, s = threat.features, safe.features
        checks = [
            ('SPF Authentication', _auth_passed(t.header.spf_score), _auth_passed(s.header.spf_score),
             ('Pass', 'Fail'), Impact.HIGH.value),
            ('DKIM Authentication', _auth_passed(t.header.dkim_score), _auth_passed(s.header.dkim_score),
             ('Pass', 'Fail'), Impact.HIGH.value),
            ('Sender History', t.sender.is_first_contact, s.sender.is_first_contact,
             ('First contact', 'Known sender'), Impact.MEDIUM.value),
            ('Domain Authenticity', t.sender.is_cousin_domain, s.sender.is_cousin_domain,
             ('Lookalike domain', 'Authentic domain'), Impact.CRITICAL.value),
            ('Credential Requests', t.content.requests_credentials, s.content.requests_credentials,
             ('Requests credentials', 'No credential requests'), Impact.CRITICAL.value),
            ('Urgency Language', t.content.urgency_score > 0.5, s.content.urgency_score > 0.5,
             ('Uses urgency tactics', 'Normal tone'), Impact.HIGH.value)
        ]

        differences = [
            ComparisonDifference(aspect, labels[0] if threat_flag else labels[1],
                                 labels[0] if safe_flag else labels[1], impact)
            for aspect, threat_flag, safe_flag, labels, impact in checks
            if threat_flag != safe_flag
        ]

        critical = sum(1 for d in differences if d.impact == Impact.CRITICAL.value)
        high = sum(1 for d in differences if d.impact == Impact.HIGH.value)
        summary = f"This email differs from safe emails in {len(differences)} key aspects. "
        if critical:
            summary += f"{critical} critical difference(s) were detected. "
        if high:
            summary += f"{high} high-impact difference(s) were found. "

        return ComparativeExplanation(verdict_id, safe.verdict_id, differences, summary.strip())

    def _counterfactual_changes(self, features: FeatureVector) -> List[Tuple[CounterfactualChange, str, Dict]]:
        impossible, unlikely, possible = (Feasibility.IMPOSSIBLE.value, Feasibility.UNLIKELY.value,
                                          Feasibility.POSSIBLE.value)
        changes = []

        def add(factor, current, required, feasibility, explanation, section, updates):
            changes.append((CounterfactualChange(factor, current, required, feasibility, explanation),
                            section, updates))

        if not _auth_passed(features.header.spf_score):
            add('SPF Authentication', 'Failed', 'Passed', impossible,
                'SPF is verified at the domain level and cannot be changed by attackers.',
                'header', {'spf_score': 1.0})
        if not _auth_passed(features.header.dkim_score):
            add('DKIM Signature', 'Failed', 'Passed', impossible,
                'DKIM requires the private key which only the legitimate domain owner has.',
                'header', {'dkim_score': 1.0})
        if features.sender.is_cousin_domain:
            add('Domain Authenticity', 'Lookalike domain (similar to known brand)', 'Legitimate domain', impossible,
                'The sender domain cannot be changed to match the legitimate brand.',
                'sender', {'is_cousin_domain': False, 'domain_similarity_score': 0.0})
        if features.sender.is_first_contact:
            add('Sender History', 'First contact', 'Established relationship', unlikely,
                'Building communication history would require prior legitimate contact.',
                'sender', {'is_first_contact': False})
        if 0 <= features.sender.domain_age_days < 90:
            add('Domain Age', f"{features.sender.domain_age_days} days old", '> 365 days old', unlikely,
                'Domain age cannot be artificially increased.',
                'sender', {'domain_age_days': 366})
        if features.content.requests_credentials:
            add('Credential Requests', 'Requests login credentials', 'No credential requests', possible,
                'Removing credential requests would lower the risk score.',
                'content', {'requests_credentials': False})
        if features.content.urgency_score > 0.5:
            add('Urgency Language', 'Uses urgent/pressuring language', 'Normal business tone', possible,
                'Removing urgency language would lower the risk score.',
                'content', {'urgency_score': 0.0})
        if features.content.has_financial_request:
            add('Financial Requests', 'Contains financial request', 'No financial requests', possible,
                'Removing financial requests would lower the risk score.',
                'content', {'has_financial_request': False})
        if features.url.malicious_url_count > 0:
            add('Malicious URLs', f"{features.url.malicious_url_count} malicious URL(s)", 'No malicious URLs',
                impossible, 'URLs are verified against threat intelligence and cannot be bypassed.',
                'url', {'malicious_url_count': 0})
        if features.url.shortener_count > 0:
            add('URL Shorteners', f"{features.url.shortener_count} shortened URL(s)", 'Direct URLs only', possible,
                'Using direct URLs instead of shorteners would reduce suspicion.',
                'url', {'shortener_count': 0})
        if features.attachment.has_executable:
            add('Executable Attachments', 'Contains executable files', 'No executable files', possible,
                'Removing executable attachments would lower the risk score.',
                'attachment', {'has_executable': False})
        if features.attachment.has_macros:
            add('Macro Documents', 'Contains macro-enabled documents', 'No macros', possible,
                'Removing macros from documents would lower the risk score.',
                'attachment', {'has_macros': False})

        changes.sort(key=lambda c: FEASIBILITY_ORDER[c[0].feasibility])
        return changes

    async def get_counterfactual(self, verdict_id: str) -> CounterfactualExplanation:
        snapshot = self._load_verdict(verdict_id)
        current = snapshot.prediction.risk_level

        if current == RiskLevel.SAFE.value:
            return CounterfactualExplanation(current, current, [], 'This email is already classified as safe.')

        changes = self._counterfactual_changes(snapshot.features) if snapshot.features else []
        if not changes:
            return CounterfactualExplanation(
                current, current, [], 'No specific factors identified that could be changed to make this email safer.'
            )

        impossible = [c for c, _, _ in changes if c.feasibility == Feasibility.IMPOSSIBLE.value]
        possible = [c for c, _, _ in changes if c.feasibility == Feasibility.POSSIBLE.value]

        if impossible:
            hypothetical = current
            summary = (f"This email cannot be made safe because {len(impossible)} factor(s) cannot be changed: "
                       f"{', '.join(c.factor for c in impossible)}. ")
            if possible:
                summary += (f"Even with possible changes ({', '.join(c.factor for c in possible)}), "
                            f"the email would still be flagged due to immutable factors.")
        else:
            features = snapshot.features
            for _, section, updates in changes:
                features = replace(features, **{section: replace(getattr(features, section), **updates)})

            model = await self._model(snapshot.prediction.model_version)
            thresholds = await self.predictor.get_thresholds(snapshot.tenant_id)
            hypothetical = self.predictor.score(features, model, thresholds).risk_level

            names = ', '.join(c.factor for c, _, _ in changes)
            if hypothetical == current:
                summary = f"Changing {names} would not change the {current} verdict."
            else:
                summary = f"Changing {names} would lower the verdict from {current} to {hypothetical}."

        return CounterfactualExplanation(current, hypothetical, [c for c, _, _ in changes], summary.strip())

    # ------------------------------------------------------------------
    # history based views
    # ------------------------------------------------------------------

    def _outcome(self, db, record: VerdictRecord) -> str:
        if record.action_taken in RELEASED_ACTIONS:
            return Outcome.FALSE_POSITIVE.value
        if record.action_taken in CONFIRMED_ACTIONS:
            return Outcome.CONFIRMED_THREAT.value

        decision = db.query(AdminDecisionRecord.admin_action).filter(
            AdminDecisionRecord.verdict_id == record.id
        ).order_by(AdminDecisionRecord.timestamp.desc()).first()
        if decision is None:
            return Outcome.UNKNOWN.value
        if decision.admin_action in ('release', 'whitelist'):
            return Outcome.FALSE_POSITIVE.value
        if decision.admin_action in ('block', 'delete', 'confirm'):
            return Outcome.CONFIRMED_THREAT.value
        return Outcome.UNKNOWN.value

    async def get_similar_threats(self, verdict_id: str, limit: Optional[int] = None) -> List[SimilarThreat]:
        try:
            snapshot = self._load_verdict(verdict_id)
        except TransientStoreError:
            return []
        limit = limit or self.config.SIMILAR_DEFAULT_LIMIT
        since = datetime.utcnow() - timedelta(days=self.config.SIMILAR_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            candidates = db.query(VerdictRecord).filter(
                VerdictRecord.id != verdict_id,
                VerdictRecord.tenant_id == snapshot.tenant_id,
                VerdictRecord.verdict.in_(['quarantine', 'block']),
                VerdictRecord.created_at > since
            ).order_by(VerdictRecord.created_at.desc()).limit(self.config.SIMILAR_SCAN_LIMIT).all()

            similar = []
            for record in candidates:
                similarity = jaccard(snapshot.signals, record.signals or [])
                if similarity < self.config.SIMILARITY_THRESHOLD:
                    continue
                similar.append(SimilarThreat(
                    verdict_id=record.id,
                    subject=record.subject or '(No subject)',
                    sender=record.sender or '(Unknown)',
                    threat_type=record.threat_type or 'unknown',
                    similarity=similarity,
                    detected_at=record.created_at,
                    outcome=self._outcome(db, record)
                ))
        except SQLAlchemyError as e:
            logger.error(f"Error finding similar threats: {e}")
            return []
        finally:
            db.close()

        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar[:limit]

    async def get_detection_timeline(self, verdict_id: str) -> DetectionTimeline:
        snapshot = self._load_verdict(verdict_id)
        layers = snapshot.layer_results
        total_ms = sum(l.get('processing_time_ms') or 0 for l in layers if not l.get('skipped'))

        finished = snapshot.created_at or datetime.utcnow()
        cursor = finished - timedelta(milliseconds=total_ms)
        entries = [TimelineEntry(cursor, 'intake', 'Email received for analysis')]

        for layer in layers:
            name = layer.get('layer')
            if layer.get('skipped'):
                entries.append(TimelineEntry(
                    cursor + timedelta(milliseconds=self.config.SKIPPED_LAYER_OFFSET_MS), name,
                    f"{name} layer skipped: {layer.get('skip_reason') or 'Score threshold'}"
                ))
                continue

            entries.append(TimelineEntry(cursor, name, f"{name} analysis started"))
            cursor = cursor + timedelta(milliseconds=layer.get('processing_time_ms') or 0)
            entries.append(TimelineEntry(
                cursor, name, f"{name} analysis completed",
                score=(layer.get('score') or 0.0) * 100,
                signals=list(layer.get('signals') or [])
            ))

        entries.append(TimelineEntry(
            finished, 'verdict', f"Final verdict: {snapshot.prediction.risk_level}",
            score=snapshot.prediction.threat_score * 100
        ))
        entries.sort(key=lambda e: e.timestamp)

        triggered = [l for l in layers if not l.get('skipped') and l.get('signals')]
        if triggered:
            summary = f"Detection triggered across {len(triggered)} analysis layer(s) in {total_ms:.0f}ms"
        else:
            summary = f"No threats detected across all layers in {total_ms:.0f}ms"

        return DetectionTimeline(verdict_id, entries, total_ms, summary)

    async def generate_executive_summary(self, tenant_id: str, period: str = "7 days") -> ExecutiveSummary:
        period_days = parse_period(period, self.config.DEFAULT_PERIOD_DAYS)
        end = datetime.utcnow()
        start = end - timedelta(days=period_days)
        previous_start = start - timedelta(days=period_days)

        def count_when(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        threat_verdicts = VerdictRecord.verdict.in_(['block', 'quarantine'])

        db = self.SessionLocal()
        try:
            stats = db.query(
                func.count(VerdictRecord.id),
                count_when(VerdictRecord.verdict == 'block'),
                count_when(VerdictRecord.verdict == 'quarantine'),
                count_when(VerdictRecord.action_taken.in_(RELEASED_ACTIONS))
            ).filter(
                VerdictRecord.tenant_id == tenant_id,
                VerdictRecord.created_at >= start,
                VerdictRecord.created_at <= end
            ).one()

            categories = db.query(
                VerdictRecord.threat_type, func.count(VerdictRecord.id)
            ).filter(
                VerdictRecord.tenant_id == tenant_id,
                VerdictRecord.created_at >= start,
                threat_verdicts,
                VerdictRecord.threat_type.isnot(None)
            ).group_by(VerdictRecord.threat_type).order_by(func.count(VerdictRecord.id).desc()).limit(5).all()

            previous_threats = db.query(func.count(VerdictRecord.id)).filter(
                VerdictRecord.tenant_id == tenant_id,
                VerdictRecord.created_at >= previous_start,
                VerdictRecord.created_at < start,
                threat_verdicts
            ).scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"Error generating executive summary: {e}")
            raise TransientStoreError("Failed to generate executive summary") from e
        finally:
            db.close()

        total_emails, blocked, quarantined, false_positives = (int(v or 0) for v in stats)
        total_threats = blocked + quarantined
        accuracy = ((total_threats - false_positives) / max(1, total_threats)) * 100 if total_emails else 100.0

        top_categories = [
            {
                'category': category,
                'count': count,
                'percentage': count / total_threats * 100 if total_threats else 0.0
            }
            for category, count in categories
        ]

        volume_change = ((total_threats - previous_threats) / previous_threats * 100) if previous_threats else 0.0

        highlights = [f"{total_threats} threat(s) blocked during this period"]
        if volume_change > 20:
            highlights.append(f"Threat volume increased by {round(volume_change)}% compared to previous period")
        elif volume_change < -20:
            highlights.append(f"Threat volume decreased by {round(abs(volume_change))}% compared to previous period")
        if top_categories:
            top = top_categories[0]
            highlights.append(f"Top threat type: {top['category']} ({round(top['percentage'])}%)")
        if accuracy >= 95:
            highlights.append('Detection accuracy remains excellent')
        elif accuracy < 85:
            highlights.append('Detection accuracy requires review')

        return ExecutiveSummary(
            tenant_id=tenant_id,
            period_start=start,
            period_end=end,
            statistics={
                'total_emails': total_emails,
                'threats_blocked': blocked,
                'threats_quarantined': quarantined,
                'false_positives': false_positives,
                'accuracy': accuracy
            },
            top_threat_categories=top_categories,
            trends={
                'threat_volume_change': volume_change,
                'top_targeted_departments': [],
                'emerging_threat_patterns': []
            },
            highlights=highlights,
            narrative=self._narrative(total_emails, total_threats, top_categories, volume_change,
                                      accuracy, period_days)
        )

    def _narrative(self, total_emails: int, total_threats: int, top_categories: List[Dict[str, Any]],
                   volume_change: float, accuracy: float, period_days: int) -> str:
        narrative = (f"Over the past {period_days} days, your email security system processed "
                     f"{total_emails:,} emails and blocked {total_threats:,} threats. ")

        if top_categories:
            top = top_categories[0]
            narrative += (f"The most common threat type was {top['category'].lower()}, accounting for "
                          f"{round(top['percentage'])}% of all detected threats. ")

        if volume_change > 10:
            narrative += (f"Threat volume increased by {round(volume_change)}% compared to the previous period, "
                          f"indicating heightened attack activity. ")
        elif volume_change < -10:
            narrative += (f"Threat volume decreased by {round(abs(volume_change))}%, suggesting improved "
                          f"security posture or reduced attacker interest. ")
        else:
            narrative += "Threat volume remained stable compared to the previous period. "

        return narrative + f"Detection accuracy stands at {round(accuracy)}%."
