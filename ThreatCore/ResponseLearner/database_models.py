from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, JSON, Boolean

from ..storage import Base


class AdminDecisionRecord(Base):
    """Human override of a verdict; only the later outcome fields are ever updated"""
    __tablename__ = 'admin_decisions'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    verdict_id = Column(String, nullable=False, index=True)
    original_verdict = Column(String, nullable=False)
    admin_action = Column(String, nullable=False, index=True)
    admin_id = Column(String, nullable=False)
    reason = Column(String)
    timestamp = Column(DateTime, nullable=False, index=True)
    sender_domain = Column(String, index=True)
    ml_category = Column(String)
    email_features = Column(JSON, nullable=False)
    subsequent_reported_as_phish = Column(Boolean, default=False)
    reported_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class AdminActionRecord(Base):
    __tablename__ = 'admin_actions'

    action_id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    admin_id = Column(String, nullable=False)
    verdict_id = Column(String, nullable=False, index=True)
    original_verdict = Column(String, nullable=False)
    new_verdict = Column(String, nullable=False)
    action_type = Column(String, nullable=False)
    reason = Column(String)
    timestamp = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class TenantSettingsRecord(Base):
    """Per-tenant detection thresholds tuned by the learner"""
    __tablename__ = 'tenant_detection_settings'

    tenant_id = Column(String, primary_key=True)
    settings = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow)


class ThresholdAdjustmentRecord(Base):
    __tablename__ = 'threshold_adjustments'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    threshold_name = Column(String, nullable=False)
    current_value = Column(Float, nullable=False)
    suggested_value = Column(Float, nullable=False)
    direction = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    evidence = Column(JSON, nullable=False)
    previous_settings = Column(JSON)
    applied_at = Column(DateTime)
    rolled_back_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class PolicySuggestionRecord(Base):
    __tablename__ = 'policy_suggestions'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    description = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    evidence = Column(JSON, nullable=False)
    impact = Column(JSON, nullable=False)
    suggested_value = Column(JSON)
    status = Column(String, default='pending', index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    applied_at = Column(DateTime)
    rejected_at = Column(DateTime)


class PolicyABTestRecord(Base):
    __tablename__ = 'ab_tests'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    suggestion_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    status = Column(String, default='running')
    control_group = Column(JSON, nullable=False)
    test_group = Column(JSON, nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime)
    results = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
