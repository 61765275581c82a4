import logging
from collections import Counter, defaultdict
from dataclasses import replace, asdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..audit import AuditLog, NotificationSink
from ..errors import NotFoundError, TransientStoreError, ValidationError
from ..storage import create_session_factory, upsert
from ..FeedbackLearning.database_models import FeedbackRecord
from ..ScoringEngine.database_models import VerdictRecord
from .config import ResponseLearnerConfig
from .database_models import (
    AdminDecisionRecord, AdminActionRecord, TenantSettingsRecord, ThresholdAdjustmentRecord,
    PolicySuggestionRecord, PolicyABTestRecord
)
from .drift import compare_windows
from .enums import (
    OriginalVerdict, DecisionAction, ActionType, PatternKind, SuggestionType, SuggestionStatus,
    ABTestStatus, Recommendation, SignalType
)
from .models import (
    EmailFeatures, AdminDecision, AdminAction, DecisionFilters, Pattern, TrendData, PatternAnalysis,
    PolicySuggestion, ThresholdAdjustment, ThresholdSuggestion, DriftReport, DriftMetrics, RateMetrics,
    LearningSignal, TrainingSample, TrainingDataset, ActionPatterns, FeedbackQuality, AggregatedLearning,
    ABTestResults, PolicyABTest
)
from .statistics import (
    wilson_interval, consistency_score, find_outliers, rate_trend, analyze_score_distribution,
    threshold_category
)

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)
WEEK = timedelta(days=7)

MISSED_THREAT_FEEDBACK = ('false_negative', 'missed_threat', 'phishing', 'malware')

# admin action -> action_taken recorded on the verdict
VERDICT_OUTCOMES = {
    'release': 'released',
    'whitelist': 'released',
    'block': 'blocked',
    'delete': 'deleted'
}


def _decision_from_record(record: AdminDecisionRecord) -> AdminDecision:
    return AdminDecision(
        id=record.id,
        tenant_id=record.tenant_id,
        verdict_id=record.verdict_id,
        original_verdict=record.original_verdict,
        admin_action=record.admin_action,
        admin_id=record.admin_id,
        reason=record.reason,
        timestamp=record.timestamp,
        email_features=EmailFeatures.from_dict(record.email_features or {}),
        subsequent_reported_as_phish=bool(record.subsequent_reported_as_phish),
        reported_at=record.reported_at
    )


def _span(decisions: List[AdminDecision]):
    stamps = [d.timestamp for d in decisions]
    return min(stamps), max(stamps)


class ResponseLearner:
    """
    Learns from administrator overrides: mines false positive and false negative
    patterns, proposes policy and threshold changes, watches for drift and
    evaluates policy A/B tests
    """

    def __init__(self, config: ResponseLearnerConfig = None, session_factory=None,
                 notifier: NotificationSink = None):
        self.config = config or ResponseLearnerConfig()

        if session_factory is None:
            self._initialize_storage()
        else:
            self.SessionLocal = session_factory

        self.audit = AuditLog()
        self.notifier = notifier or NotificationSink()

        logger.info("Response Learner initialized")

    def _initialize_storage(self):
        self.SessionLocal = create_session_factory(self.config.DATABASE_URL)

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------

    async def record_decision(self, decision: AdminDecision) -> AdminDecision:
        if not decision.tenant_id or not decision.verdict_id or not decision.admin_id:
            raise ValidationError("Decision requires tenant_id, verdict_id and admin_id")
        if decision.original_verdict not in {v.value for v in OriginalVerdict}:
            raise ValidationError(f"Unknown original verdict: {decision.original_verdict}")
        if decision.admin_action not in {a.value for a in DecisionAction}:
            raise ValidationError(f"Unknown admin action: {decision.admin_action}")

        decision = replace(decision, timestamp=decision.timestamp or datetime.utcnow())
        features = decision.email_features
        alert = None

        db = self.SessionLocal()
        try:
            db.add(AdminDecisionRecord(
                id=decision.id,
                tenant_id=decision.tenant_id,
                verdict_id=decision.verdict_id,
                original_verdict=decision.original_verdict,
                admin_action=decision.admin_action,
                admin_id=decision.admin_id,
                reason=decision.reason,
                timestamp=decision.timestamp,
                sender_domain=features.sender_domain,
                ml_category=features.ml_category,
                email_features=features.to_dict(),
                subsequent_reported_as_phish=decision.subsequent_reported_as_phish,
                reported_at=decision.reported_at,
                created_at=datetime.utcnow()
            ))

            self.audit.record(
                db, decision.tenant_id, 'admin_action', 'email_verdict', decision.verdict_id,
                {
                    'original_verdict': decision.original_verdict,
                    'admin_action': decision.admin_action,
                    'reason': decision.reason
                },
                actor_id=decision.admin_id
            )

            outcome = VERDICT_OUTCOMES.get(decision.admin_action)
            if outcome:
                db.query(VerdictRecord).filter(
                    VerdictRecord.id == decision.verdict_id,
                    VerdictRecord.tenant_id == decision.tenant_id
                ).update({'action_taken': outcome}, synchronize_session=False)
            db.flush()

            if decision.admin_action == DecisionAction.RELEASE.value:
                window_start = datetime.utcnow() - timedelta(days=self.config.EMERGING_DOMAIN_WINDOW_DAYS)
                count = db.query(AdminDecisionRecord).filter(
                    AdminDecisionRecord.tenant_id == decision.tenant_id,
                    AdminDecisionRecord.sender_domain == features.sender_domain,
                    AdminDecisionRecord.admin_action == decision.admin_action,
                    AdminDecisionRecord.timestamp > window_start
                ).count()
                if count >= self.config.EMERGING_DOMAIN_RELEASES:
                    alert = (
                        f"Emerging pattern detected: Domain {features.sender_domain} has been released "
                        f"{count} times in the last {self.config.EMERGING_DOMAIN_WINDOW_DAYS} days. "
                        f"Consider whitelisting."
                    )

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error recording admin decision: {e}")
            db.rollback()
            raise TransientStoreError("Failed to record admin decision") from e
        finally:
            db.close()

        logger.info(
            f"Decision recorded: {decision.admin_action} on {decision.original_verdict} "
            f"verdict {decision.verdict_id} by {decision.admin_id}"
        )
        if alert:
            self.notifier.notify(decision.tenant_id, 'emerging_pattern', alert,
                                 {'domain': features.sender_domain})
        return decision

    async def record_action(self, action: AdminAction) -> AdminAction:
        if action.action not in {a.value for a in ActionType}:
            raise ValidationError(f"Unknown action type: {action.action}")
        if not action.action_id or not action.tenant_id:
            raise ValidationError("Action requires action_id and tenant_id")

        action = replace(action, timestamp=action.timestamp or datetime.utcnow())
        alert = None

        db = self.SessionLocal()
        try:
            stmt = upsert(db, AdminActionRecord).values(
                action_id=action.action_id,
                tenant_id=action.tenant_id,
                admin_id=action.admin_id,
                verdict_id=action.verdict_id,
                original_verdict=action.original_verdict,
                new_verdict=action.new_verdict,
                action_type=action.action,
                reason=action.reason,
                timestamp=action.timestamp,
                created_at=datetime.utcnow()
            )
            db.execute(stmt.on_conflict_do_update(
                index_elements=['action_id'],
                set_={
                    'new_verdict': stmt.excluded.new_verdict,
                    'action_type': stmt.excluded.action_type,
                    'reason': stmt.excluded.reason
                }
            ))

            self.audit.record(
                db, action.tenant_id, f"admin_{action.action}", 'email_verdict', action.verdict_id,
                {
                    'action_id': action.action_id,
                    'original_verdict': action.original_verdict,
                    'new_verdict': action.new_verdict,
                    'reason': action.reason
                },
                actor_id=action.admin_id
            )

            count = db.query(AdminActionRecord).filter(
                AdminActionRecord.tenant_id == action.tenant_id,
                AdminActionRecord.action_type == action.action,
                AdminActionRecord.timestamp > datetime.utcnow() - DAY
            ).count()
            if count >= self.config.HIGH_VOLUME_ACTIONS:
                alert = f'High action volume: {count} "{action.action}" actions in the last 24 hours'

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error recording admin action: {e}")
            db.rollback()
            raise TransientStoreError("Failed to record admin action") from e
        finally:
            db.close()

        if alert:
            self.notifier.notify(action.tenant_id, 'high_action_volume', alert, {'action': action.action})
        return action

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def _query_decisions(self, db, tenant_id: str, filters: DecisionFilters) -> List[AdminDecision]:
        query = db.query(AdminDecisionRecord).filter(AdminDecisionRecord.tenant_id == tenant_id)
        if filters.start_date:
            query = query.filter(AdminDecisionRecord.timestamp >= filters.start_date)
        if filters.end_date:
            query = query.filter(AdminDecisionRecord.timestamp <= filters.end_date)
        if filters.admin_actions:
            query = query.filter(AdminDecisionRecord.admin_action.in_(filters.admin_actions))
        if filters.original_verdicts:
            query = query.filter(AdminDecisionRecord.original_verdict.in_(filters.original_verdicts))

        limit = min(filters.limit or self.config.HISTORY_DEFAULT_LIMIT, self.config.HISTORY_MAX_LIMIT)
        records = query.order_by(AdminDecisionRecord.timestamp.desc()).offset(
            filters.offset or 0
        ).limit(limit).all()
        return [_decision_from_record(r) for r in records]

    async def get_decision_history(self, tenant_id: str, filters: DecisionFilters = None) -> List[AdminDecision]:
        db = self.SessionLocal()
        try:
            return self._query_decisions(db, tenant_id, filters or DecisionFilters())
        except SQLAlchemyError as e:
            logger.error(f"Error getting decision history: {e}")
            return []
        finally:
            db.close()

    async def get_audit_trail(self, tenant_id: str, action: Optional[str] = None,
                              limit: int = 100) -> List[Dict[str, Any]]:
        """Newest-first audit entries written for one tenant, optionally narrowed to one action"""
        db = self.SessionLocal()
        try:
            return self.audit.entries(db, tenant_id=tenant_id, action=action, limit=limit)
        except SQLAlchemyError as e:
            logger.error(f"Error reading audit trail for {tenant_id}: {e}")
            raise TransientStoreError("Failed to read audit trail") from e
        finally:
            db.close()

    async def _recent_decisions(self, tenant_id: str, days: int, **filters) -> List[AdminDecision]:
        start = datetime.utcnow() - timedelta(days=days)
        return await self.get_decision_history(tenant_id, DecisionFilters(start_date=start, **filters))

    # ------------------------------------------------------------------
    # pattern analysis
    # ------------------------------------------------------------------

    async def analyze_patterns(self, tenant_id: str) -> PatternAnalysis:
        decisions = await self._recent_decisions(tenant_id, self.config.ANALYSIS_WINDOW_DAYS)

        if len(decisions) < self.config.MIN_SAMPLE_SIZE:
            return PatternAnalysis(total_decisions=len(decisions), insufficient_data=True)

        overrides = [
            d for d in decisions
            if d.admin_action != DecisionAction.CONFIRM.value and d.original_verdict != OriginalVerdict.PASS.value
        ]

        released = [d for d in decisions if d.admin_action == DecisionAction.RELEASE.value]
        missed = [
            d for d in decisions
            if d.admin_action == DecisionAction.BLOCK.value and d.original_verdict == OriginalVerdict.PASS.value
        ]

        reasons = Counter(d.reason.lower().strip() for d in decisions if d.reason)

        return PatternAnalysis(
            override_rate=len(overrides) / len(decisions),
            false_positive_patterns=self._false_positive_patterns(released),
            false_negative_patterns=self._false_negative_patterns(missed),
            common_override_reasons=[{'reason': r, 'count': n} for r, n in reasons.most_common(10)],
            time_based_trends=self._time_based_trends(decisions),
            total_decisions=len(decisions)
        )

    def _pattern(self, kind: PatternKind, description: str, group: List[AdminDecision],
                 confidence: float, features: Dict[str, Any]) -> Pattern:
        first_seen, last_seen = _span(group)
        return Pattern(
            type=kind.value,
            description=description,
            occurrences=len(group),
            confidence=confidence,
            examples=[d.id for d in group[:5]],
            features=features,
            first_seen=first_seen,
            last_seen=last_seen
        )

    def _false_positive_patterns(self, released: List[AdminDecision]) -> List[Pattern]:
        patterns = []

        by_domain = defaultdict(list)
        by_sender = defaultdict(list)
        for d in released:
            by_domain[d.email_features.sender_domain].append(d)
            by_sender[d.email_features.sender_email].append(d)

        for domain, group in by_domain.items():
            if domain and len(group) >= 3:
                patterns.append(self._pattern(
                    PatternKind.DOMAIN, f"Emails from {domain} are frequently released", group,
                    min(0.95, 0.5 + len(group) * 0.1), {'domain': domain}
                ))

        for sender, group in by_sender.items():
            if sender and len(group) >= 2:
                patterns.append(self._pattern(
                    PatternKind.SENDER, f"Emails from {sender} are frequently released", group,
                    min(0.95, 0.6 + len(group) * 0.15), {'sender': sender}
                ))

        low_scoring = [
            d for d in released
            if d.email_features.deterministic_score < 30 and d.email_features.ml_score < 40
        ]
        if len(low_scoring) >= 3:
            patterns.append(self._pattern(
                PatternKind.FEATURE, 'Low-scoring emails being quarantined unnecessarily', low_scoring,
                0.75, {'max_deterministic_score': 30, 'max_ml_score': 40}
            ))

        return sorted(patterns, key=lambda p: p.confidence, reverse=True)

    def _false_negative_patterns(self, missed: List[AdminDecision]) -> List[Pattern]:
        patterns = []

        urgent = [d for d in missed if d.email_features.urgency_score > 50]
        if len(urgent) >= 2:
            patterns.append(self._pattern(
                PatternKind.FEATURE, 'High urgency emails passing detection but being blocked manually',
                urgent, 0.7, {'min_urgency_score': 50}
            ))

        financial = [d for d in missed if d.email_features.requests_financial_action]
        if len(financial) >= 2:
            patterns.append(self._pattern(
                PatternKind.FEATURE, 'Financial request emails passing detection but being blocked manually',
                financial, 0.8, {'requests_financial_action': True}
            ))

        return sorted(patterns, key=lambda p: p.confidence, reverse=True)

    def _time_based_trends(self, decisions: List[AdminDecision]) -> List[TrendData]:
        now = datetime.utcnow()
        trends = []

        for week in range(self.config.TREND_WEEKS):
            week_start = now - WEEK * (week + 1)
            week_end = now - WEEK * week
            bucket = [d for d in decisions if week_start <= d.timestamp < week_end]
            if not bucket:
                continue

            releases = sum(1 for d in bucket if d.admin_action == DecisionAction.RELEASE.value)
            trends.append(TrendData(
                period=f"Week -{week + 1}",
                timestamp=week_start,
                override_count=sum(1 for d in bucket if d.admin_action != DecisionAction.CONFIRM.value),
                release_count=releases,
                block_count=sum(1 for d in bucket if d.admin_action == DecisionAction.BLOCK.value),
                false_positive_rate=releases / len(bucket)
            ))

        return list(reversed(trends))

    # ------------------------------------------------------------------
    # policy suggestions
    # ------------------------------------------------------------------

    async def suggest_policy_adjustments(self, tenant_id: str) -> List[PolicySuggestion]:
        analysis = await self.analyze_patterns(tenant_id)
        threshold = self.config.PATTERN_CONFIDENCE_THRESHOLD
        suggestions = []

        for pattern in analysis.false_positive_patterns:
            if pattern.type == PatternKind.DOMAIN.value and pattern.confidence >= threshold:
                domain = pattern.features['domain']
                suggestions.append(PolicySuggestion(
                    type=SuggestionType.WHITELIST_DOMAIN.value,
                    description=f'Whitelist domain "{domain}" - frequently released from quarantine',
                    confidence=pattern.confidence,
                    evidence=pattern.examples,
                    impact={
                        'expected_fp_reduction': pattern.occurrences,
                        'expected_fn_risk': 0.05,
                        'affected_email_count': pattern.occurrences
                    },
                    suggested_value=domain
                ))

            if pattern.type == PatternKind.SENDER.value and pattern.confidence >= threshold:
                sender = pattern.features['sender']
                suggestions.append(PolicySuggestion(
                    type=SuggestionType.WHITELIST_SENDER.value,
                    description=f'Whitelist sender "{sender}" - consistently marked as false positive',
                    confidence=pattern.confidence,
                    evidence=pattern.examples,
                    impact={
                        'expected_fp_reduction': pattern.occurrences,
                        'expected_fn_risk': 0.02,
                        'affected_email_count': pattern.occurrences
                    },
                    suggested_value=sender
                ))

        if analysis.override_rate > 0.3:
            suggestions.append(PolicySuggestion(
                type=SuggestionType.ADJUST_THRESHOLD.value,
                description='Consider increasing quarantine threshold - high false positive rate detected',
                confidence=min(0.9, analysis.override_rate),
                evidence=[f"Override rate: {analysis.override_rate * 100:.1f}%"],
                impact={
                    'expected_fp_reduction': round(analysis.total_decisions * analysis.override_rate * 0.3),
                    'expected_fn_risk': 0.1
                },
                suggested_value={'threshold': 'increase', 'amount': self.config.TUNING_STEP}
            ))

        for pattern in analysis.false_positive_patterns:
            if pattern.type == PatternKind.FEATURE.value and pattern.confidence >= 0.8:
                suggestions.append(PolicySuggestion(
                    type=SuggestionType.ADD_RULE.value,
                    description=f"Add exception rule for: {pattern.description}",
                    confidence=pattern.confidence,
                    evidence=pattern.examples,
                    impact={'expected_fp_reduction': pattern.occurrences, 'expected_fn_risk': 0.05},
                    suggested_value=pattern.features
                ))

        suggestions.sort(key=lambda s: s.confidence * (s.impact.get('expected_fp_reduction') or 0), reverse=True)

        if suggestions:
            self._store_suggestions(tenant_id, suggestions)
        return suggestions

    def _store_suggestions(self, tenant_id: str, suggestions: List[PolicySuggestion]):
        db = self.SessionLocal()
        try:
            for s in suggestions:
                db.add(PolicySuggestionRecord(
                    id=s.id,
                    tenant_id=tenant_id,
                    type=s.type,
                    description=s.description,
                    confidence=s.confidence,
                    evidence=s.evidence,
                    impact=s.impact,
                    suggested_value=s.suggested_value,
                    status=s.status,
                    created_at=s.created_at
                ))
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error storing policy suggestions: {e}")
            db.rollback()
            raise TransientStoreError("Failed to store policy suggestions") from e
        finally:
            db.close()

    async def get_suggestions(self, tenant_id: str, status: Optional[str] = None) -> List[PolicySuggestion]:
        db = self.SessionLocal()
        try:
            query = db.query(PolicySuggestionRecord).filter(PolicySuggestionRecord.tenant_id == tenant_id)
            if status:
                query = query.filter(PolicySuggestionRecord.status == status)
            return [
                PolicySuggestion(
                    id=r.id,
                    type=r.type,
                    description=r.description,
                    confidence=r.confidence,
                    evidence=list(r.evidence or []),
                    impact=dict(r.impact or {}),
                    suggested_value=r.suggested_value,
                    status=r.status,
                    created_at=r.created_at
                )
                for r in query.order_by(PolicySuggestionRecord.created_at.desc()).all()
            ]
        finally:
            db.close()

    async def update_suggestion_status(self, suggestion_id: str, status: str, actor_id: str = 'system'):
        if status not in {s.value for s in SuggestionStatus}:
            raise ValidationError(f"Unknown suggestion status: {status}")

        db = self.SessionLocal()
        try:
            record = db.query(PolicySuggestionRecord).filter_by(id=suggestion_id).first()
            if record is None:
                raise NotFoundError(f"Policy suggestion {suggestion_id} not found")

            now = datetime.utcnow()
            record.status = status
            if status == SuggestionStatus.APPLIED.value:
                record.applied_at = now
            elif status == SuggestionStatus.REJECTED.value:
                record.rejected_at = now

            self.audit.record(db, record.tenant_id, 'policy_suggestion_status', 'policy_suggestion',
                              suggestion_id, {'status': status}, actor_id=actor_id)
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating suggestion {suggestion_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to update suggestion {suggestion_id}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # threshold tuning
    # ------------------------------------------------------------------

    def _settings(self, db, tenant_id: str) -> Dict[str, Any]:
        record = db.query(TenantSettingsRecord).filter_by(tenant_id=tenant_id).first()
        settings = dict(self.config.DEFAULT_DETECTION_THRESHOLDS)
        if record is not None:
            settings.update(record.settings or {})
        return settings

    def _write_settings(self, db, tenant_id: str, settings: Dict[str, Any]):
        now = datetime.utcnow()
        stmt = upsert(db, TenantSettingsRecord).values(tenant_id=tenant_id, settings=settings, updated_at=now)
        db.execute(stmt.on_conflict_do_update(
            index_elements=['tenant_id'],
            set_={'settings': stmt.excluded.settings, 'updated_at': now}
        ))

    async def get_detection_settings(self, tenant_id: str) -> Dict[str, Any]:
        db = self.SessionLocal()
        try:
            return self._settings(db, tenant_id)
        finally:
            db.close()

    async def auto_tune_thresholds(self, tenant_id: str) -> List[ThresholdAdjustment]:
        decisions = await self._recent_decisions(tenant_id, self.config.TUNING_WINDOW_DAYS)
        if len(decisions) < self.config.MIN_SAMPLE_SIZE * 2:
            return []

        released = [d for d in decisions if d.admin_action == DecisionAction.RELEASE.value]
        blocked = [
            d for d in decisions
            if d.admin_action in (DecisionAction.BLOCK.value, DecisionAction.DELETE.value)
        ]

        db = self.SessionLocal()
        try:
            settings = self._settings(db, tenant_id)
            adjustments = []

            for name, feature in self.config.THRESHOLD_FEATURES.items():
                analysis = analyze_score_distribution(
                    [getattr(d.email_features, feature) for d in released],
                    [getattr(d.email_features, feature) for d in blocked],
                    step=self.config.TUNING_STEP,
                    released_ceiling=self.config.RELEASED_MEAN_CEILING,
                    blocked_floor=self.config.BLOCKED_MEAN_FLOOR,
                    min_group=self.config.TUNING_MIN_GROUP
                )
                if analysis.suggested_adjustment == 0:
                    continue

                current = settings.get(name, self.config.DEFAULT_DETECTION_THRESHOLDS[name])
                adjustment = ThresholdAdjustment(
                    threshold_name=name,
                    current_value=current,
                    suggested_value=current + analysis.suggested_adjustment,
                    direction='increase' if analysis.suggested_adjustment > 0 else 'decrease',
                    reason=analysis.reason,
                    evidence={
                        'false_positive_impact': analysis.false_positive_impact,
                        'false_negative_risk': analysis.false_negative_risk,
                        'sample_size': len(decisions)
                    }
                )
                adjustments.append(adjustment)

                db.add(ThresholdAdjustmentRecord(
                    id=adjustment.id,
                    tenant_id=tenant_id,
                    threshold_name=name,
                    current_value=adjustment.current_value,
                    suggested_value=adjustment.suggested_value,
                    direction=adjustment.direction,
                    reason=adjustment.reason,
                    evidence=adjustment.evidence,
                    created_at=datetime.utcnow()
                ))

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error storing threshold adjustments: {e}")
            db.rollback()
            raise TransientStoreError("Failed to store threshold adjustments") from e
        finally:
            db.close()

        return adjustments

    async def suggest_thresholds(self, tenant_id: str) -> List[ThresholdSuggestion]:
        adjustments = await self.auto_tune_thresholds(tenant_id)
        return [
            ThresholdSuggestion(
                category=threshold_category(adj.threshold_name),
                current_threshold=adj.current_value,
                suggested_threshold=adj.suggested_value,
                expected_fp_reduction=adj.evidence['false_positive_impact'],
                expected_fn_increase=adj.evidence['false_negative_risk'],
                confidence=min(0.95, adj.evidence['sample_size'] / 100)
            )
            for adj in adjustments
        ]

    async def apply_threshold_adjustment(self, adjustment_id: str, tenant_id: str,
                                         actor_id: str = 'system') -> Dict[str, Any]:
        db = self.SessionLocal()
        try:
            record = db.query(ThresholdAdjustmentRecord).filter_by(id=adjustment_id, tenant_id=tenant_id).first()
            if record is None:
                raise NotFoundError(f"Threshold adjustment {adjustment_id} not found")
            if record.applied_at is not None and record.rolled_back_at is None:
                raise ValidationError(f"Threshold adjustment {adjustment_id} is already applied")

            previous = self._settings(db, tenant_id)
            updated = dict(previous)
            updated[record.threshold_name] = record.suggested_value
            self._write_settings(db, tenant_id, updated)

            record.previous_settings = previous
            record.applied_at = datetime.utcnow()
            record.rolled_back_at = None

            self.audit.record(db, tenant_id, 'threshold_adjustment_applied', 'threshold_adjustment', adjustment_id,
                              {'threshold': record.threshold_name, 'from': previous.get(record.threshold_name),
                               'to': record.suggested_value}, actor_id=actor_id)
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error applying threshold adjustment: {e}")
            db.rollback()
            raise TransientStoreError("Failed to apply threshold adjustment") from e
        finally:
            db.close()

        logger.info(f"Applied threshold adjustment {adjustment_id} for tenant {tenant_id}")
        return updated

    async def rollback_threshold_adjustment(self, adjustment_id: str, tenant_id: str,
                                            actor_id: str = 'system') -> Dict[str, Any]:
        db = self.SessionLocal()
        try:
            record = db.query(ThresholdAdjustmentRecord).filter_by(id=adjustment_id, tenant_id=tenant_id).first()
            if record is None:
                raise NotFoundError(f"Threshold adjustment {adjustment_id} not found")
            if record.applied_at is None or record.rolled_back_at is not None:
                raise ValidationError(f"Threshold adjustment {adjustment_id} is not applied")

            previous = dict(record.previous_settings or {})
            self._write_settings(db, tenant_id, previous)
            record.rolled_back_at = datetime.utcnow()

            self.audit.record(db, tenant_id, 'threshold_adjustment_rolled_back', 'threshold_adjustment',
                              adjustment_id, {'restored': previous}, actor_id=actor_id)
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error rolling back threshold adjustment: {e}")
            db.rollback()
            raise TransientStoreError("Failed to rollback threshold adjustment") from e
        finally:
            db.close()

        logger.info(f"Rolled back threshold adjustment {adjustment_id} for tenant {tenant_id}")
        return previous

    # ------------------------------------------------------------------
    # drift
    # ------------------------------------------------------------------

    async def detect_drift(self, tenant_id: str) -> DriftReport:
        now = datetime.utcnow()
        window = timedelta(days=self.config.DRIFT_WINDOW_DAYS)
        baseline_period = (now - window * 2, now - window)
        comparison_period = (now - window, now)

        limit = self.config.HISTORY_MAX_LIMIT
        baseline = await self.get_decision_history(
            tenant_id, DecisionFilters(start_date=baseline_period[0], end_date=baseline_period[1], limit=limit)
        )
        comparison = await self.get_decision_history(
            tenant_id, DecisionFilters(start_date=comparison_period[0], end_date=comparison_period[1], limit=limit)
        )

        return compare_windows(baseline, comparison, baseline_period, comparison_period, self.config)

    async def calculate_drift(self, tenant_id: str) -> DriftMetrics:
        report = await self.detect_drift(tenant_id)

        by_category = {}
        for shift in report.feature_shifts:
            category = self.config.DRIFT_FEATURE_CATEGORIES.get(shift.feature, 'other')
            by_category[category] = max(by_category.get(category, 0.0), shift.shift)

        return DriftMetrics(
            overall_drift=report.drift_score,
            fp_rate_trend=await self._rate_trend(tenant_id, SignalType.FALSE_POSITIVE.value),
            fn_rate_trend=await self._rate_trend(tenant_id, SignalType.FALSE_NEGATIVE.value),
            recommends_retrain=report.drift_score > self.config.RETRAIN_DRIFT_SCORE or report.has_drift,
            drift_by_category=by_category
        )

    # ------------------------------------------------------------------
    # rates
    # ------------------------------------------------------------------

    async def _rate_trend(self, tenant_id: str, rate_type: str) -> str:
        weeks = self.config.TREND_WEEKS
        decisions = await self._recent_decisions(tenant_id, 7 * weeks, limit=self.config.HISTORY_MAX_LIMIT)
        now = datetime.utcnow()

        rates = []
        for week in range(weeks):
            week_start = now - WEEK * (week + 1)
            week_end = now - WEEK * week
            bucket = [d for d in decisions if week_start <= d.timestamp < week_end]
            if not bucket:
                rates.append(0.0)
                continue

            if rate_type == SignalType.FALSE_POSITIVE.value:
                hits = sum(1 for d in bucket if d.admin_action == DecisionAction.RELEASE.value)
            else:
                hits = sum(1 for d in bucket if d.admin_action == DecisionAction.BLOCK.value
                           and d.original_verdict == OriginalVerdict.PASS.value)
            rates.append(hits / len(bucket))

        return rate_trend(rates, self.config.TREND_CHANGE)

    async def get_false_positive_rate(self, tenant_id: str) -> RateMetrics:
        decisions = await self._recent_decisions(tenant_id, self.config.ANALYSIS_WINDOW_DAYS,
                                                 limit=self.config.HISTORY_MAX_LIMIT)
        released = [d for d in decisions if d.admin_action == DecisionAction.RELEASE.value]

        by_category = Counter(d.email_features.ml_category or 'unknown' for d in released)
        total = len(decisions)

        return RateMetrics(
            overall_rate=len(released) / total if total else 0.0,
            breakdown={k: v / len(released) for k, v in by_category.items()},
            recent_trend=await self._rate_trend(tenant_id, SignalType.FALSE_POSITIVE.value),
            sample_size=total,
            confidence_interval=wilson_interval(len(released), total, self.config.WILSON_Z)
        )

    async def get_false_negative_rate(self, tenant_id: str) -> RateMetrics:
        since = datetime.utcnow() - timedelta(days=self.config.ANALYSIS_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            missed = self._query_decisions(db, tenant_id, DecisionFilters(
                start_date=since,
                original_verdicts=[OriginalVerdict.PASS.value],
                admin_actions=[DecisionAction.BLOCK.value, DecisionAction.DELETE.value],
                limit=self.config.HISTORY_MAX_LIMIT
            ))
            reported = db.query(AdminDecisionRecord).filter(
                AdminDecisionRecord.tenant_id == tenant_id,
                AdminDecisionRecord.subsequent_reported_as_phish.is_(True),
                AdminDecisionRecord.timestamp > since
            ).count()
            passed = db.query(VerdictRecord).filter(
                VerdictRecord.tenant_id == tenant_id,
                VerdictRecord.verdict == 'pass',
                VerdictRecord.created_at > since
            ).count()
        except SQLAlchemyError as e:
            logger.error(f"Error getting false negative rate: {e}")
            return RateMetrics()
        finally:
            db.close()

        total = len(missed) + reported
        by_type = Counter(d.email_features.ml_category or 'unknown' for d in missed)

        return RateMetrics(
            overall_rate=total / passed if passed else 0.0,
            breakdown={k: v / max(1, total) for k, v in by_type.items()},
            recent_trend=await self._rate_trend(tenant_id, SignalType.FALSE_NEGATIVE.value),
            sample_size=passed,
            confidence_interval=wilson_interval(total, passed, self.config.WILSON_Z)
        )

    # ------------------------------------------------------------------
    # learning signals and training data
    # ------------------------------------------------------------------

    def _signal_type(self, action: AdminAction) -> str:
        if action.action in (ActionType.RELEASE.value, ActionType.MARK_SAFE.value):
            return SignalType.FALSE_POSITIVE.value
        if (action.action in (ActionType.BLOCK.value, ActionType.DELETE.value, ActionType.MARK_THREAT.value)
                and action.original_verdict == OriginalVerdict.PASS.value):
            return SignalType.FALSE_NEGATIVE.value
        return SignalType.CORRECT.value

    def _signal_weight(self, action: AdminAction, signal_type: str, now: datetime) -> float:
        weight = 2.0 if signal_type == SignalType.FALSE_NEGATIVE.value else 1.0
        age_days = (now - action.timestamp).total_seconds() / 86400
        weight *= max(0.5, 1 - age_days / 30)
        if action.reason:
            weight *= 1.2
        return min(3.0, weight)

    async def get_learning_signals(self, tenant_id: str, since: Optional[datetime] = None) -> List[LearningSignal]:
        now = datetime.utcnow()
        since = since or now - timedelta(days=self.config.ANALYSIS_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            rows = db.query(AdminActionRecord, VerdictRecord).outerjoin(
                VerdictRecord, AdminActionRecord.verdict_id == VerdictRecord.id
            ).filter(
                AdminActionRecord.tenant_id == tenant_id,
                AdminActionRecord.timestamp >= since
            ).order_by(AdminActionRecord.timestamp.desc()).limit(self.config.SIGNAL_LIMIT).all()
        except SQLAlchemyError as e:
            logger.error(f"Error getting learning signals: {e}")
            return []
        finally:
            db.close()

        signals = []
        for record, verdict in rows:
            action = AdminAction(
                action_id=record.action_id,
                tenant_id=record.tenant_id,
                admin_id=record.admin_id,
                verdict_id=record.verdict_id,
                original_verdict=record.original_verdict,
                new_verdict=record.new_verdict,
                action=record.action_type,
                reason=record.reason,
                timestamp=record.timestamp
            )
            signal_type = self._signal_type(action)

            features = prediction = None
            if verdict is not None:
                features = dict(verdict.features or {})
                prediction = {
                    'threat_score': verdict.threat_score,
                    'confidence': verdict.confidence,
                    'threat_type': verdict.threat_type,
                    'risk_level': verdict.risk_level,
                    'model_version': verdict.model_version
                }

            signals.append(LearningSignal(
                admin_action=action,
                signal_type=signal_type,
                weight=self._signal_weight(action, signal_type, now),
                email_features=features,
                original_prediction=prediction
            ))
        return signals

    async def generate_training_data(self, tenant_id: str, start_date: Optional[datetime] = None,
                                     end_date: Optional[datetime] = None, max_samples: Optional[int] = None,
                                     balance_classes: bool = False,
                                     exclude_categories: Optional[List[str]] = None) -> TrainingDataset:
        now = datetime.utcnow()
        horizon = timedelta(days=self.config.TRAINING_WINDOW_DAYS)
        start_date = start_date or now - horizon
        end_date = end_date or now
        excluded = set(exclude_categories or [])

        db = self.SessionLocal()
        try:
            query = db.query(AdminDecisionRecord).filter(
                AdminDecisionRecord.tenant_id == tenant_id,
                AdminDecisionRecord.timestamp >= start_date,
                AdminDecisionRecord.timestamp <= end_date
            ).order_by(AdminDecisionRecord.timestamp.desc()).limit(max_samples or self.config.TRAINING_MAX_SAMPLES)
            corrections = [_decision_from_record(r) for r in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Error generating training data: {e}")
            corrections = []
        finally:
            db.close()

        samples = []
        for d in corrections:
            if d.admin_action == DecisionAction.RELEASE.value:
                label, source = 'safe', 'admin_correction'
            elif d.admin_action in (DecisionAction.BLOCK.value, DecisionAction.DELETE.value):
                label, source = 'threat', 'admin_correction'
            elif d.admin_action == DecisionAction.CONFIRM.value:
                label = 'safe' if d.original_verdict == OriginalVerdict.PASS.value else 'threat'
                source = 'confirmed'
            else:
                continue

            if (d.email_features.ml_category or '') in excluded:
                continue

            age = (now - d.timestamp).total_seconds() / horizon.total_seconds()
            samples.append(TrainingSample(
                features=d.email_features.to_dict(),
                label=label,
                weight=max(0.1, 1 - age),
                source=source
            ))

        if balance_classes:
            threats = [s for s in samples if s.label == 'threat']
            safe = [s for s in samples if s.label == 'safe']
            keep = min(len(threats), len(safe))
            samples = threats[:keep] + safe[:keep]

        return TrainingDataset(
            samples=samples,
            metadata={
                'generated_at': now,
                'sample_count': len(samples),
                'threat_count': sum(1 for s in samples if s.label == 'threat'),
                'safe_count': sum(1 for s in samples if s.label == 'safe'),
                'date_range': {'start': start_date, 'end': end_date},
                'tenant_id': tenant_id
            }
        )

    # ------------------------------------------------------------------
    # admin behavior and feedback quality
    # ------------------------------------------------------------------

    async def get_action_patterns(self, tenant_id: str, admin_id: Optional[str] = None) -> ActionPatterns:
        since = datetime.utcnow() - timedelta(days=self.config.ANALYSIS_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            query = db.query(
                AdminDecisionRecord.id, AdminDecisionRecord.admin_action,
                AdminDecisionRecord.timestamp, AdminDecisionRecord.reason
            ).filter(
                AdminDecisionRecord.tenant_id == tenant_id,
                AdminDecisionRecord.timestamp > since
            )
            if admin_id:
                query = query.filter(AdminDecisionRecord.admin_id == admin_id)
            rows = query.order_by(AdminDecisionRecord.timestamp.desc()).limit(
                self.config.ACTION_PATTERN_LIMIT
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error getting action patterns: {e}")
            return ActionPatterns(admin_id=admin_id)
        finally:
            db.close()

        entries = [{'id': r.id, 'action': r.admin_action, 'reason': r.reason} for r in rows]
        hours = Counter(r.timestamp.hour for r in rows)

        return ActionPatterns(
            admin_id=admin_id,
            total_actions=len(rows),
            action_breakdown=dict(Counter(r.admin_action for r in rows)),
            avg_time_to_action=0.0,
            peak_hours=[hour for hour, _ in hours.most_common(3)],
            consistency_score=consistency_score([r.admin_action for r in rows], self.config.CONSISTENCY_MIN_ACTIONS),
            outlier_actions=find_outliers(entries, self.config.OUTLIER_FREQUENCY, self.config.MAX_OUTLIERS)
        )

    async def get_feedback_quality(self, tenant_id: str) -> FeedbackQuality:
        since = datetime.utcnow() - timedelta(days=self.config.ANALYSIS_WINDOW_DAYS)

        db = self.SessionLocal()
        try:
            feedback = db.query(
                FeedbackRecord.feedback_type, FeedbackRecord.created_at,
                FeedbackRecord.processed, FeedbackRecord.processed_at
            ).filter(
                FeedbackRecord.tenant_id == tenant_id,
                FeedbackRecord.created_at > since
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error getting feedback quality: {e}")
            return FeedbackQuality(recommendations=['Unable to calculate feedback quality'])
        finally:
            db.close()

        total = len(feedback)
        verified = sum(1 for f in feedback if f.processed)
        response_times = [
            (f.processed_at - f.created_at).total_seconds() * 1000
            for f in feedback if f.processed_at and f.created_at
        ]
        avg_response = sum(response_times) / len(response_times) if response_times else 0.0

        day_ms = 24 * 60 * 60 * 1000
        verification_rate = verified / total if total else 0.0
        response_score = max(0.0, 1 - avg_response / day_ms) if avg_response > 0 else 0.5

        recommendations = []
        if verification_rate < 0.5:
            recommendations.append('Increase feedback verification rate')
        if avg_response > day_ms / 2:
            recommendations.append('Reduce feedback response time')
        if total < 50:
            recommendations.append('Encourage more user feedback')

        return FeedbackQuality(
            total_feedback=total,
            verified_feedback=verified,
            feedback_accuracy=verification_rate,
            avg_response_time_ms=avg_response,
            feedback_by_type=dict(Counter(f.feedback_type for f in feedback)),
            quality_score=round((verification_rate * 0.6 + response_score * 0.4) * 100),
            recommendations=recommendations
        )

    async def incorporate_feedback(self, feedback_id: str):
        db = self.SessionLocal()
        try:
            feedback = db.query(FeedbackRecord).filter_by(feedback_id=feedback_id).first()
            if feedback is None:
                raise NotFoundError(f"Feedback {feedback_id} not found")

            now = datetime.utcnow()
            if feedback.verdict_id:
                db.query(AdminDecisionRecord).filter(
                    AdminDecisionRecord.verdict_id == feedback.verdict_id
                ).update({
                    'subsequent_reported_as_phish': feedback.feedback_type in MISSED_THREAT_FEEDBACK,
                    'reported_at': now
                }, synchronize_session=False)

            feedback_type = feedback.feedback_type
            feedback.processed = True
            feedback.processed_at = now
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error incorporating feedback {feedback_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to incorporate feedback {feedback_id}") from e
        finally:
            db.close()

        logger.info(f"Feedback {feedback_id} incorporated ({feedback_type})")

    # ------------------------------------------------------------------
    # cross-tenant aggregation
    # ------------------------------------------------------------------

    async def aggregate_learning(self, min_tenants: Optional[int] = None,
                                 window_days: Optional[int] = None) -> AggregatedLearning:
        min_tenants = min_tenants or self.config.AGGREGATION_MIN_TENANTS
        window_days = window_days or self.config.AGGREGATION_WINDOW_DAYS
        now = datetime.utcnow()
        since = now - timedelta(days=window_days)

        db = self.SessionLocal()
        try:
            tenants = func.count(func.distinct(AdminDecisionRecord.tenant_id))
            count = func.count(AdminDecisionRecord.id)

            groups = db.query(
                AdminDecisionRecord.sender_domain, AdminDecisionRecord.admin_action,
                count.label('occurrences'), tenants.label('tenant_count')
            ).filter(
                AdminDecisionRecord.timestamp > since
            ).group_by(
                AdminDecisionRecord.sender_domain, AdminDecisionRecord.admin_action
            ).having(tenants >= min_tenants).order_by(count.desc()).limit(100).all()

            tenant_count = db.query(tenants).filter(AdminDecisionRecord.timestamp > since).scalar() or 0
            total_samples = db.query(count).filter(AdminDecisionRecord.timestamp > since).scalar() or 0

            threats = db.query(
                AdminDecisionRecord.ml_category, count.label('frequency'),
                func.min(AdminDecisionRecord.timestamp).label('first_seen'), tenants.label('affected')
            ).filter(
                AdminDecisionRecord.admin_action.in_([DecisionAction.BLOCK.value, DecisionAction.DELETE.value]),
                AdminDecisionRecord.original_verdict == OriginalVerdict.PASS.value,
                AdminDecisionRecord.timestamp > since
            ).group_by(AdminDecisionRecord.ml_category).having(
                count >= self.config.EMERGING_THREAT_MIN
            ).order_by(count.desc()).limit(10).all()

            self.audit.record(db, None, 'cross_tenant_aggregation', 'aggregated_learning', str(uuid4()),
                              {'min_tenants': min_tenants, 'window_days': window_days,
                               'tenant_count': tenant_count})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error aggregating learning: {e}")
            db.rollback()
            return AggregatedLearning()
        finally:
            db.close()

        common = [
            Pattern(
                type=PatternKind.DOMAIN.value,
                description=f"Domain {g.sender_domain} frequently released across tenants",
                occurrences=g.occurrences,
                confidence=min(0.95, g.tenant_count / 10),
                examples=[],
                features={'domain': g.sender_domain},
                first_seen=since,
                last_seen=now
            )
            for g in groups if g.admin_action == DecisionAction.RELEASE.value
        ]

        return AggregatedLearning(
            tenant_count=tenant_count,
            total_samples=total_samples,
            common_patterns=common,
            emerging_threats=[
                {
                    'pattern': t.ml_category or 'unknown',
                    'frequency': t.frequency,
                    'first_seen': t.first_seen,
                    'affected_tenants': t.affected
                }
                for t in threats
            ],
            aggregated_at=now
        )

    # ------------------------------------------------------------------
    # policy A/B tests
    # ------------------------------------------------------------------

    async def start_ab_test(self, tenant_id: str, suggestion_id: str, name: str,
                            test_group_percentage: float) -> PolicyABTest:
        if not 0 <= test_group_percentage <= 100:
            raise ValidationError("Test group percentage must be between 0 and 100")

        test = PolicyABTest(
            tenant_id=tenant_id,
            suggestion_id=suggestion_id,
            name=name,
            control_group=[f"{100 - test_group_percentage:g}%"],
            test_group=[f"{test_group_percentage:g}%"]
        )

        db = self.SessionLocal()
        try:
            suggestion = db.query(PolicySuggestionRecord).filter_by(id=suggestion_id, tenant_id=tenant_id).first()
            if suggestion is None:
                raise NotFoundError(f"Policy suggestion {suggestion_id} not found")

            db.add(PolicyABTestRecord(
                id=test.id,
                tenant_id=tenant_id,
                suggestion_id=suggestion_id,
                name=name,
                status=test.status,
                control_group=test.control_group,
                test_group=test.test_group,
                started_at=test.started_at,
                created_at=datetime.utcnow()
            ))
            suggestion.status = SuggestionStatus.TESTING.value

            self.audit.record(db, tenant_id, 'policy_ab_test_started', 'ab_test', test.id,
                              {'suggestion_id': suggestion_id, 'test_group_percentage': test_group_percentage})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error starting A/B test: {e}")
            db.rollback()
            raise TransientStoreError("Failed to start A/B test") from e
        finally:
            db.close()

        logger.info(f"Started policy A/B test {test.id} ({name}) for tenant {tenant_id}")
        return test

    async def evaluate_ab_test(self, test_id: str) -> ABTestResults:
        db = self.SessionLocal()
        try:
            test = db.query(PolicyABTestRecord).filter_by(id=test_id).first()
            if test is None:
                raise NotFoundError(f"A/B test {test_id} not found")

            decisions = self._query_decisions(db, test.tenant_id, DecisionFilters(start_date=test.started_at))
            if len(decisions) < self.config.MIN_SAMPLE_SIZE * 2:
                return ABTestResults()

            control = decisions[0::2]
            treated = decisions[1::2]

            def fp_rate(group):
                return sum(1 for d in group if d.admin_action == DecisionAction.RELEASE.value) / len(group)

            def fn_rate(group):
                return sum(1 for d in group if d.subsequent_reported_as_phish) / len(group)

            control_fp, test_fp = fp_rate(control), fp_rate(treated)
            control_fn, test_fn = fn_rate(control), fn_rate(treated)
            significance = min(1.0, abs(control_fp - test_fp) * len(decisions) ** 0.5 / 2)

            recommendation = Recommendation.CONTINUE.value
            if significance > self.config.AB_SIGNIFICANCE:
                if test_fp < control_fp and test_fn <= control_fn * 1.1:
                    recommendation = Recommendation.APPLY.value
                elif test_fp >= control_fp or test_fn > control_fn * 1.2:
                    recommendation = Recommendation.REJECT.value

            results = ABTestResults(
                control_fp_rate=control_fp,
                test_fp_rate=test_fp,
                control_fn_rate=control_fn,
                test_fn_rate=test_fn,
                statistical_significance=significance,
                recommendation=recommendation
            )
            test.results = asdict(results)
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error evaluating A/B test {test_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to evaluate A/B test {test_id}") from e
        finally:
            db.close()

        logger.info(f"A/B test {test_id}: significance={significance:.3f} recommendation={recommendation}")
        return results

    async def get_ab_test(self, test_id: str) -> PolicyABTest:
        db = self.SessionLocal()
        try:
            record = db.query(PolicyABTestRecord).filter_by(id=test_id).first()
            if record is None:
                raise NotFoundError(f"A/B test {test_id} not found")
            return PolicyABTest(
                id=record.id,
                tenant_id=record.tenant_id,
                suggestion_id=record.suggestion_id,
                name=record.name,
                status=record.status,
                control_group=list(record.control_group),
                test_group=list(record.test_group),
                started_at=record.started_at,
                ended_at=record.ended_at,
                results=ABTestResults(**record.results) if record.results else None
            )
        finally:
            db.close()

    async def stop_ab_test(self, test_id: str, status: str = ABTestStatus.COMPLETED.value) -> PolicyABTest:
        if status not in (ABTestStatus.COMPLETED.value, ABTestStatus.CANCELLED.value):
            raise ValidationError(f"Cannot stop a test with status {status}")

        db = self.SessionLocal()
        try:
            record = db.query(PolicyABTestRecord).filter_by(id=test_id).first()
            if record is None:
                raise NotFoundError(f"A/B test {test_id} not found")
            record.status = status
            record.ended_at = datetime.utcnow()
            self.audit.record(db, record.tenant_id, 'policy_ab_test_stopped', 'ab_test', test_id, {'status': status})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error stopping A/B test {test_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to stop A/B test {test_id}") from e
        finally:
            db.close()

        return await self.get_ab_test(test_id)
