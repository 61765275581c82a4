import logging
import math
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any
from urllib.parse import urlparse
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import and_, case, exists, func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..audit import AuditLog
from ..errors import TransientStoreError, ValidationError
from ..storage import create_session_factory, upsert
from .config import FeedbackLearningConfig
from .database_models import (
    FeedbackRecord, SenderReputationRecord, FeedbackPatternRecord, LearnedRuleRecord, FeedbackLearningLogRecord
)
from .enums import FeedbackType, PatternType, SenderCategory, LearningEvent
from .models import FeedbackEvent, FeedbackResult, LearnedRule, RuleAdjustment, FeedbackAnalytics
from .rule_conditions import ConditionOperator, RuleCondition, evaluate_condition

logger = logging.getLogger(__name__)


def normalize_feedback_type(feedback_type: str) -> str:
    if feedback_type == 'false_positive':
        return FeedbackType.FALSE_POSITIVE.value
    if feedback_type in ('false_negative', 'phishing', 'malware'):
        return FeedbackType.FALSE_NEGATIVE.value
    return FeedbackType.CONFIRMED_THREAT.value


def reputation_field(feedback_type: str) -> Optional[str]:
    if feedback_type == 'false_positive':
        return 'safe'
    if feedback_type in ('false_negative', 'phishing', 'malware', 'confirmed_threat'):
        return 'threat'
    if feedback_type == 'spam':
        return 'spam'
    return None


def extract_url_domain(url: str) -> Optional[str]:
    try:
        hostname = urlparse(url.strip()).hostname
    except (ValueError, AttributeError):
        return None
    return hostname.lower() if hostname else None


def round_half_up(value: float) -> int:
    """Ties round toward positive infinity: 10.5 -> 11, -10.5 -> -10"""
    return int(math.floor(value + 0.5))


class FeedbackLearningEngine:
    """Turns feedback events into reputation updates, mined patterns and learned scoring rules"""

    def __init__(self, config: FeedbackLearningConfig = None, session_factory=None):
        self.config = config or FeedbackLearningConfig()

        if session_factory is None:
            self._initialize_storage()
        else:
            self.SessionLocal = session_factory

        self.subject_patterns = [
            (source, re.compile(source, re.IGNORECASE)) for source in self.config.MARKETING_SUBJECT_PATTERNS
        ]
        self.audit = AuditLog()
        self.scheduler = None

        logger.info("Feedback Learning Engine initialized")

    def _initialize_storage(self):
        self.SessionLocal = create_session_factory(self.config.DATABASE_URL)

    def start_scheduler(self):
        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self.decay_patterns,
            trigger=CronTrigger(day_of_week='sun', hour='3'),
            id='pattern_decay'
        )

        self.scheduler.add_job(
            self.expire_rules,
            trigger=CronTrigger(minute='0'),
            id='rule_expiry'
        )

        self.scheduler.start()

    def shutdown_scheduler(self):
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown()

    def _log_event(self, db, tenant_id: str, event: LearningEvent, pattern_id: str = None,
                   rule_id: str = None, sender_domain: str = None, details: Dict[str, Any] = None):
        db.add(FeedbackLearningLogRecord(
            id=str(uuid4()),
            tenant_id=tenant_id,
            event_type=event.value,
            pattern_id=pattern_id,
            rule_id=rule_id,
            sender_domain=sender_domain,
            details=details or {},
            created_at=datetime.utcnow()
        ))

    # ------------------------------------------------------------------
    # feedback processing
    # ------------------------------------------------------------------

    async def process_feedback(self, event: FeedbackEvent) -> FeedbackResult:
        if not event.feedback_id or not event.tenant_id:
            raise ValidationError("Feedback requires feedback_id and tenant_id")
        if not event.sender_domain or not event.feedback_type:
            raise ValidationError("Feedback requires sender_domain and feedback_type")

        normalized = normalize_feedback_type(event.feedback_type)
        domain = event.sender_domain.strip().lower()
        result = FeedbackResult()

        db = self.SessionLocal()
        try:
            now = datetime.utcnow()
            inserted = db.execute(upsert(db, FeedbackRecord).values(
                feedback_id=event.feedback_id,
                tenant_id=event.tenant_id,
                message_id=event.message_id,
                verdict_id=event.verdict_id,
                sender_domain=domain,
                sender_email=event.sender_email,
                feedback_type=event.feedback_type,
                normalized_type=normalized,
                original_verdict=event.original_verdict,
                original_score=event.original_score,
                subject=event.subject,
                urls=list(event.urls or []),
                processed=False,
                created_at=now
            ).on_conflict_do_nothing(index_elements=['feedback_id']))

            if inserted.rowcount == 0:
                db.rollback()
                logger.info(f"Feedback {event.feedback_id} already recorded, skipping replay")
                return FeedbackResult(duplicate=True)

            result.reputation_updated = self._update_reputation(db, event.tenant_id, domain, event.feedback_type, now)
            result.patterns_extracted = self._extract_patterns(db, event, domain, normalized, now)

            created = self._create_rules_from_patterns(db, event.tenant_id, now)
            result.rules_created = len(created)
            result.created_rule_ids = created

            self._evaluate_sender_promotion(db, event.tenant_id, domain)

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error processing feedback {event.feedback_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to process feedback {event.feedback_id}") from e
        finally:
            db.close()

        logger.info(
            f"Feedback processed: reputation={result.reputation_updated}, "
            f"patterns={result.patterns_extracted}, rules={result.rules_created}"
        )
        return result

    def _update_reputation(self, db, tenant_id: str, domain: str, feedback_type: str, now: datetime) -> bool:
        field = reputation_field(feedback_type)
        if field is None:
            return False

        stmt = upsert(db, SenderReputationRecord).values(
            id=str(uuid4()),
            tenant_id=tenant_id,
            domain=domain,
            category=SenderCategory.UNKNOWN.value,
            trust_score=self.config.DEFAULT_TRUST_SCORE,
            safe_count=int(field == 'safe'),
            threat_count=int(field == 'threat'),
            spam_count=int(field == 'spam'),
            last_seen=now,
            updated_at=now
        )
        db.execute(stmt.on_conflict_do_update(
            index_elements=['tenant_id', 'domain'],
            set_={
                'safe_count': SenderReputationRecord.safe_count + stmt.excluded.safe_count,
                'threat_count': SenderReputationRecord.threat_count + stmt.excluded.threat_count,
                'spam_count': SenderReputationRecord.spam_count + stmt.excluded.spam_count,
                'last_seen': now,
                'updated_at': now
            }
        ))
        return True

    def _extract_patterns(self, db, event: FeedbackEvent, domain: str, normalized: str, now: datetime) -> int:
        candidates = [(PatternType.DOMAIN.value, domain)]

        if event.subject and normalized == FeedbackType.FALSE_POSITIVE.value:
            for source, pattern in self.subject_patterns:
                if pattern.search(event.subject):
                    candidates.append((PatternType.SUBJECT_PATTERN.value, source))

        for url in event.urls or []:
            hostname = extract_url_domain(url)
            if hostname:
                candidates.append((PatternType.URL_PATTERN.value, hostname))

        for pattern_type, pattern_value in candidates:
            self._upsert_pattern(db, event.tenant_id, pattern_type, pattern_value, normalized, now)
        return len(candidates)

    def _upsert_pattern(self, db, tenant_id: str, pattern_type: str, pattern_value: str,
                        feedback_type: str, now: datetime):
        existing = db.query(FeedbackPatternRecord.id).filter_by(
            tenant_id=tenant_id,
            pattern_type=pattern_type,
            pattern_value=pattern_value,
            feedback_type=feedback_type
        ).first()

        raised = FeedbackPatternRecord.confidence + self.config.PATTERN_CONFIDENCE_STEP
        ceiling = self.config.PATTERN_CONFIDENCE_CEILING
        pattern_id = str(uuid4())

        stmt = upsert(db, FeedbackPatternRecord).values(
            id=pattern_id,
            tenant_id=tenant_id,
            pattern_type=pattern_type,
            pattern_value=pattern_value,
            feedback_type=feedback_type,
            confidence=self.config.PATTERN_INITIAL_CONFIDENCE,
            occurrence_count=1,
            first_seen=now,
            last_seen=now,
            is_active=True,
            details={}
        )
        db.execute(stmt.on_conflict_do_update(
            index_elements=['tenant_id', 'pattern_type', 'pattern_value', 'feedback_type'],
            set_={
                'occurrence_count': FeedbackPatternRecord.occurrence_count + 1,
                'last_seen': now,
                'confidence': case((raised > ceiling, ceiling), else_=raised)
            }
        ))

        if existing is None:
            self._log_event(db, tenant_id, LearningEvent.PATTERN_CREATED, pattern_id=pattern_id,
                            details={'pattern_type': pattern_type, 'pattern_value': pattern_value,
                                     'feedback_type': feedback_type})

    def _create_rules_from_patterns(self, db, tenant_id: str, now: datetime) -> List[str]:
        rule_exists = exists().where(and_(
            LearnedRuleRecord.tenant_id == FeedbackPatternRecord.tenant_id,
            LearnedRuleRecord.condition_field == FeedbackPatternRecord.pattern_type,
            LearnedRuleRecord.condition_value == FeedbackPatternRecord.pattern_value
        ))

        candidates = db.query(FeedbackPatternRecord).filter(
            FeedbackPatternRecord.tenant_id == tenant_id,
            FeedbackPatternRecord.is_active.is_(True),
            FeedbackPatternRecord.occurrence_count >= self.config.RULE_MIN_OCCURRENCES,
            FeedbackPatternRecord.confidence >= self.config.RULE_MIN_CONFIDENCE,
            ~rule_exists
        ).order_by(FeedbackPatternRecord.confidence.desc(), FeedbackPatternRecord.occurrence_count.desc()).all()

        created = []
        for pattern in candidates:
            rule_type, adjustment = self.config.RULE_ADJUSTMENTS.get(
                pattern.feedback_type, self.config.RULE_ADJUSTMENTS['confirmed_threat']
            )
            operator = (ConditionOperator.MATCHES if pattern.pattern_type == PatternType.SUBJECT_PATTERN.value
                        else ConditionOperator.EQUALS)
            rule_id = str(uuid4())

            inserted = db.execute(upsert(db, LearnedRuleRecord).values(
                id=rule_id,
                tenant_id=tenant_id,
                rule_type=rule_type,
                condition_field=pattern.pattern_type,
                condition_operator=operator.value,
                condition_value=pattern.pattern_value,
                score_adjustment=adjustment,
                confidence=pattern.confidence,
                source_feedback_count=pattern.occurrence_count,
                source_pattern_id=pattern.id,
                is_active=True,
                created_at=now,
                expires_at=now + timedelta(days=self.config.RULE_EXPIRY_DAYS)
            ).on_conflict_do_nothing(index_elements=['tenant_id', 'condition_field', 'condition_value']))

            if inserted.rowcount != 1:
                continue

            details = {
                'rule_type': rule_type,
                'field': pattern.pattern_type,
                'operator': operator.value,
                'value': pattern.pattern_value,
                'score_adjustment': adjustment,
                'confidence': pattern.confidence
            }
            self._log_event(db, tenant_id, LearningEvent.RULE_CREATED, pattern_id=pattern.id,
                            rule_id=rule_id, details=details)
            self.audit.record(db, tenant_id, 'rule_created', 'learned_rule', rule_id, details)
            created.append(rule_id)

            logger.info(f"Created rule: {rule_type} for {pattern.pattern_type}={pattern.pattern_value} (adj: {adjustment})")

        return created

    def _evaluate_sender_promotion(self, db, tenant_id: str, domain: str):
        sender = db.query(SenderReputationRecord).filter_by(tenant_id=tenant_id, domain=domain).first()
        if sender is None:
            return

        total = sender.safe_count + sender.threat_count + sender.spam_count
        if total < self.config.PROMOTION_MIN_FEEDBACK:
            return

        safe_ratio = sender.safe_count / total
        threat_ratio = (sender.threat_count + sender.spam_count) / total

        if (safe_ratio >= self.config.PROMOTION_SAFE_RATIO
                and sender.safe_count >= self.config.PROMOTION_MIN_SAFE
                and sender.category == SenderCategory.UNKNOWN.value):
            trust = min(self.config.PROMOTION_MAX_TRUST,
                        self.config.DEFAULT_TRUST_SCORE + round_half_up(safe_ratio * 40))
            sender.category = SenderCategory.MARKETING.value
            sender.trust_score = trust
            self._log_event(db, tenant_id, LearningEvent.SENDER_PROMOTED, sender_domain=domain,
                            details={'trust_score': trust, 'safe_ratio': safe_ratio})
            logger.info(f"Promoted {domain} to marketing (trust: {trust})")

        elif (threat_ratio >= self.config.DEMOTION_THREAT_RATIO
                and sender.threat_count + sender.spam_count >= self.config.DEMOTION_MIN_THREATS):
            trust = max(self.config.DEMOTION_MIN_TRUST,
                        self.config.DEFAULT_TRUST_SCORE - round_half_up(threat_ratio * 40))
            sender.category = SenderCategory.SUSPICIOUS.value
            sender.trust_score = trust
            self._log_event(db, tenant_id, LearningEvent.SENDER_DEMOTED, sender_domain=domain,
                            details={'trust_score': trust, 'threat_ratio': threat_ratio})
            logger.info(f"Demoted {domain} to suspicious (trust: {trust})")

    # ------------------------------------------------------------------
    # rule application
    # ------------------------------------------------------------------

    async def get_applicable_rules(self, tenant_id: str, sender_domain: str, urls: Optional[List[str]] = None,
                                   subject: Optional[str] = None) -> List[LearnedRule]:
        domain = (sender_domain or '').strip().lower()
        hostnames = sorted({h for h in (extract_url_domain(u) for u in urls or []) if h})
        now = datetime.utcnow()

        scopes = [and_(LearnedRuleRecord.condition_field == PatternType.DOMAIN.value,
                       LearnedRuleRecord.condition_value == domain)]
        if hostnames:
            scopes.append(and_(LearnedRuleRecord.condition_field == PatternType.URL_PATTERN.value,
                               LearnedRuleRecord.condition_value.in_(hostnames)))
        if subject:
            scopes.append(LearnedRuleRecord.condition_field == PatternType.SUBJECT_PATTERN.value)

        candidates = {
            PatternType.DOMAIN.value: [domain],
            PatternType.URL_PATTERN.value: hostnames,
            PatternType.SUBJECT_PATTERN.value: [subject] if subject else []
        }

        db = self.SessionLocal()
        try:
            records = db.query(LearnedRuleRecord).filter(
                LearnedRuleRecord.tenant_id == tenant_id,
                LearnedRuleRecord.is_active.is_(True),
                or_(LearnedRuleRecord.expires_at.is_(None), LearnedRuleRecord.expires_at > now),
                or_(*scopes)
            ).order_by(LearnedRuleRecord.confidence.desc(), LearnedRuleRecord.created_at).all()

            rules = []
            for record in records:
                rule = self._rule_from_record(record)
                values = candidates.get(rule.condition.field, [])
                if any(evaluate_condition(rule.condition, value) for value in values):
                    rules.append(rule)
                if len(rules) >= self.config.MAX_APPLICABLE_RULES:
                    break
            return rules
        except SQLAlchemyError as e:
            logger.error(f"Error loading applicable rules for {tenant_id}: {e}")
            return []
        finally:
            db.close()

    def calculate_rule_adjustment(self, rules: List[LearnedRule]) -> RuleAdjustment:
        if not rules:
            return RuleAdjustment()

        total = 0
        applied = []
        explanations = []

        for rule in rules:
            weighted = round_half_up(rule.score_adjustment * (rule.confidence / 100))
            total += weighted
            applied.append(rule.rule_id)

            direction = 'reduced' if weighted < 0 else 'increased'
            explanations.append(
                f'{rule.condition.field}="{rule.condition.value}" {direction} score by {abs(weighted)} '
                f'({rule.source_feedback_count} feedback samples)'
            )

        cap = self.config.MAX_TOTAL_ADJUSTMENT
        return RuleAdjustment(
            adjustment=max(-cap, min(cap, total)),
            applied_rules=applied,
            explanation=f"Feedback learning: {'; '.join(explanations)}"
        )

    def _rule_from_record(self, record: LearnedRuleRecord) -> LearnedRule:
        return LearnedRule(
            rule_id=record.id,
            rule_type=record.rule_type,
            condition=RuleCondition(
                field=record.condition_field,
                operator=ConditionOperator(record.condition_operator),
                value=record.condition_value
            ),
            score_adjustment=record.score_adjustment,
            confidence=record.confidence,
            source_feedback_count=record.source_feedback_count,
            created_at=record.created_at,
            expires_at=record.expires_at
        )

    async def get_learned_rules(self, tenant_id: str, include_inactive: bool = False) -> List[LearnedRule]:
        db = self.SessionLocal()
        try:
            query = db.query(LearnedRuleRecord).filter(LearnedRuleRecord.tenant_id == tenant_id)
            if not include_inactive:
                query = query.filter(LearnedRuleRecord.is_active.is_(True))
            return [self._rule_from_record(r) for r in query.order_by(LearnedRuleRecord.created_at).all()]
        finally:
            db.close()

    async def get_sender_reputation(self, tenant_id: str, domain: str) -> Optional[Dict[str, Any]]:
        db = self.SessionLocal()
        try:
            sender = db.query(SenderReputationRecord).filter_by(
                tenant_id=tenant_id, domain=domain.strip().lower()
            ).first()
            if sender is None:
                return None
            return {
                'domain': sender.domain,
                'category': sender.category,
                'trust_score': sender.trust_score,
                'user_feedback': {
                    'safe': sender.safe_count,
                    'threat': sender.threat_count,
                    'spam': sender.spam_count
                },
                'last_seen': sender.last_seen
            }
        finally:
            db.close()

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    async def decay_patterns(self) -> Dict[str, int]:
        now = datetime.utcnow()
        decay_before = now - timedelta(days=self.config.DECAY_AFTER_DAYS)
        deactivate_before = now - timedelta(days=self.config.DEACTIVATE_AFTER_DAYS)
        lowered = FeedbackPatternRecord.confidence - self.config.PATTERN_CONFIDENCE_STEP
        floor = self.config.PATTERN_CONFIDENCE_FLOOR

        db = self.SessionLocal()
        try:
            decayed = db.query(FeedbackPatternRecord).filter(
                FeedbackPatternRecord.is_active.is_(True),
                FeedbackPatternRecord.last_seen < decay_before
            ).update({'confidence': case((lowered < floor, floor), else_=lowered)}, synchronize_session=False)

            stale = db.query(FeedbackPatternRecord).filter(
                FeedbackPatternRecord.is_active.is_(True),
                FeedbackPatternRecord.confidence < self.config.DEACTIVATE_BELOW_CONFIDENCE,
                FeedbackPatternRecord.last_seen < deactivate_before
            ).all()
            for pattern in stale:
                pattern.is_active = False
                self._log_event(db, pattern.tenant_id, LearningEvent.PATTERN_DEACTIVATED, pattern_id=pattern.id,
                                details={'confidence': pattern.confidence, 'last_seen': pattern.last_seen.isoformat()})

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error decaying feedback patterns: {e}")
            db.rollback()
            raise TransientStoreError("Failed to decay feedback patterns") from e
        finally:
            db.close()

        logger.info(f"Pattern decay: {decayed} decayed, {len(stale)} deactivated")
        return {'decayed': decayed, 'deactivated': len(stale)}

    async def expire_rules(self) -> Dict[str, int]:
        now = datetime.utcnow()

        db = self.SessionLocal()
        try:
            expired = db.query(LearnedRuleRecord).filter(
                LearnedRuleRecord.is_active.is_(True),
                LearnedRuleRecord.expires_at.isnot(None),
                LearnedRuleRecord.expires_at < now
            ).all()
            for rule in expired:
                rule.is_active = False
                self._log_event(db, rule.tenant_id, LearningEvent.RULE_EXPIRED, rule_id=rule.id,
                                details={'field': rule.condition_field, 'value': rule.condition_value})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error expiring learned rules: {e}")
            db.rollback()
            raise TransientStoreError("Failed to expire learned rules") from e
        finally:
            db.close()

        if expired:
            logger.info(f"Expired {len(expired)} learned rules")
        return {'expired': len(expired)}

    async def run_maintenance(self) -> Dict[str, int]:
        counts = await self.decay_patterns()
        counts.update(await self.expire_rules())
        return counts

    # ------------------------------------------------------------------
    # analytics
    # ------------------------------------------------------------------

    async def get_feedback_analytics(self, tenant_id: str) -> FeedbackAnalytics:
        db = self.SessionLocal()
        try:
            counts = dict(db.query(FeedbackRecord.normalized_type, func.count(FeedbackRecord.feedback_id)).filter(
                FeedbackRecord.tenant_id == tenant_id
            ).group_by(FeedbackRecord.normalized_type).all())

            total = sum(counts.values())
            fp = counts.get(FeedbackType.FALSE_POSITIVE.value, 0)
            fn = counts.get(FeedbackType.FALSE_NEGATIVE.value, 0)
            accuracy = ((total - fp - fn) / total) * 100 if total > 0 else 100.0

            top_n = self.config.ANALYTICS_TOP_N
            fp_domains = db.query(FeedbackRecord.sender_domain, func.count(FeedbackRecord.feedback_id).label('n')).filter(
                FeedbackRecord.tenant_id == tenant_id,
                FeedbackRecord.normalized_type == FeedbackType.FALSE_POSITIVE.value
            ).group_by(FeedbackRecord.sender_domain).order_by(func.count(FeedbackRecord.feedback_id).desc()).limit(top_n).all()

            fn_senders = db.query(FeedbackRecord.sender_email, func.count(FeedbackRecord.feedback_id)).filter(
                FeedbackRecord.tenant_id == tenant_id,
                FeedbackRecord.normalized_type == FeedbackType.FALSE_NEGATIVE.value
            ).group_by(FeedbackRecord.sender_email).order_by(func.count(FeedbackRecord.feedback_id).desc()).limit(top_n).all()

            patterns_learned = db.query(FeedbackPatternRecord).filter(
                FeedbackPatternRecord.tenant_id == tenant_id,
                FeedbackPatternRecord.is_active.is_(True)
            ).count()

            with_feedback = db.query(SenderReputationRecord).filter(
                SenderReputationRecord.tenant_id == tenant_id,
                (SenderReputationRecord.safe_count + SenderReputationRecord.threat_count
                 + SenderReputationRecord.spam_count) > 0
            )
            promoted = with_feedback.filter(
                SenderReputationRecord.category.in_(self.config.PROMOTED_CATEGORIES)
            ).count()
            demoted = with_feedback.filter(
                SenderReputationRecord.category == SenderCategory.SUSPICIOUS.value
            ).count()

            since = datetime.utcnow() - timedelta(days=self.config.ANALYTICS_TREND_DAYS)
            recent = dict(db.query(FeedbackRecord.normalized_type, func.count(FeedbackRecord.feedback_id)).filter(
                FeedbackRecord.tenant_id == tenant_id,
                FeedbackRecord.created_at >= since
            ).group_by(FeedbackRecord.normalized_type).all())
        except SQLAlchemyError as e:
            logger.error(f"Error computing feedback analytics for {tenant_id}: {e}")
            return FeedbackAnalytics()
        finally:
            db.close()

        recent_total = sum(recent.values())
        recent_fp = recent.get(FeedbackType.FALSE_POSITIVE.value, 0)
        recent_fn = recent.get(FeedbackType.FALSE_NEGATIVE.value, 0)
        if recent_total > 0:
            trend = {
                'fp_rate': round(recent_fp / recent_total * 100, 1),
                'fn_rate': round(recent_fn / recent_total * 100, 1),
                'accuracy': round((recent_total - recent_fp - recent_fn) / recent_total * 100, 1)
            }
        else:
            trend = {'fp_rate': 0.0, 'fn_rate': 0.0, 'accuracy': 100.0}

        return FeedbackAnalytics(
            total_feedback=total,
            false_positives=fp,
            false_negatives=fn,
            confirmed_threats=counts.get(FeedbackType.CONFIRMED_THREAT.value, 0),
            accuracy_rate=round(accuracy, 1),
            top_fp_domains=[{'domain': d, 'count': n} for d, n in fp_domains],
            top_fn_senders=[{'sender': s, 'count': n} for s, n in fn_senders],
            patterns_learned=patterns_learned,
            senders_promoted=promoted,
            senders_demoted=demoted,
            trend_7d=trend
        )
