from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, JSON, Boolean, Integer, UniqueConstraint

from ..storage import Base


class FeedbackRecord(Base):
    """Feedback events keyed by the caller's event id"""
    __tablename__ = 'user_feedback'

    feedback_id = Column(String, primary_key=True)
    tenant_id = Column(String, index=True)
    message_id = Column(String)
    verdict_id = Column(String, index=True)
    sender_domain = Column(String)
    sender_email = Column(String)
    feedback_type = Column(String)
    normalized_type = Column(String, index=True)
    original_verdict = Column(String)
    original_score = Column(Float)
    subject = Column(String)
    urls = Column(JSON)
    processed = Column(Boolean, default=False)
    processed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SenderReputationRecord(Base):
    """Per-tenant sender reputation counters"""
    __tablename__ = 'sender_reputation'
    __table_args__ = (UniqueConstraint('tenant_id', 'domain', name='uq_sender_reputation'),)

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False)
    domain = Column(String, nullable=False)
    category = Column(String, default='unknown')
    trust_score = Column(Integer, default=50)
    safe_count = Column(Integer, default=0)
    threat_count = Column(Integer, default=0)
    spam_count = Column(Integer, default=0)
    last_seen = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


class FeedbackPatternRecord(Base):
    """Recurring feedback signature, mutated in place on repeat sightings"""
    __tablename__ = 'feedback_patterns'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'pattern_type', 'pattern_value', 'feedback_type', name='uq_feedback_pattern'),
    )

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    pattern_type = Column(String, nullable=False)
    pattern_value = Column(String, nullable=False)
    feedback_type = Column(String, nullable=False)
    confidence = Column(Integer, default=10)
    occurrence_count = Column(Integer, default=1)
    first_seen = Column(DateTime, default=datetime.utcnow)
    last_seen = Column(DateTime, default=datetime.utcnow)
    is_active = Column(Boolean, default=True)
    details = Column(JSON)


class LearnedRuleRecord(Base):
    """Confidence-weighted score correction synthesized from a pattern"""
    __tablename__ = 'learned_rules'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'condition_field', 'condition_value', name='uq_learned_rule'),
    )

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    rule_type = Column(String, nullable=False)
    condition_field = Column(String, nullable=False)
    condition_operator = Column(String, default='equals')
    condition_value = Column(String, nullable=False)
    score_adjustment = Column(Integer, nullable=False)
    confidence = Column(Integer, default=70)
    source_feedback_count = Column(Integer, default=0)
    source_pattern_id = Column(String)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime)


class FeedbackLearningLogRecord(Base):
    __tablename__ = 'feedback_learning_log'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, index=True)
    event_type = Column(String, index=True)
    pattern_id = Column(String)
    rule_id = Column(String)
    sender_domain = Column(String)
    details = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
