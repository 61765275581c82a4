from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, JSON, Boolean, Integer

from ..storage import Base


class ModelVersionRecord(Base):
    """Append-only scoring model versions"""
    __tablename__ = 'model_versions'

    version = Column(String, primary_key=True)
    weights = Column(JSON)
    calibration = Column(JSON)
    metrics = Column(JSON)
    trained_at = Column(DateTime, default=datetime.utcnow)
    deployed_at = Column(DateTime)
    is_active = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class ActiveModelPointer(Base):
    """Single versioned pointer to the active model, updated by compare-and-set"""
    __tablename__ = 'active_model_pointer'

    scope = Column(String, primary_key=True)
    version = Column(String, nullable=False)
    generation = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow)


class ThresholdRecord(Base):
    """Global default and per-tenant risk thresholds"""
    __tablename__ = 'risk_thresholds'

    scope = Column(String, primary_key=True)
    critical_threshold = Column(Float)
    high_threshold = Column(Float)
    medium_threshold = Column(Float)
    low_threshold = Column(Float)
    threat_type_thresholds = Column(JSON)
    updated_at = Column(DateTime, default=datetime.utcnow)


class ModelABTestRecord(Base):
    """Traffic split between two model versions"""
    __tablename__ = 'model_ab_tests'

    test_id = Column(String, primary_key=True)
    variant_a_model = Column(String)
    variant_b_model = Column(String)
    variant_b_percentage = Column(Float)
    active = Column(Boolean, default=True)
    start_time = Column(DateTime, default=datetime.utcnow)
    end_time = Column(DateTime)


class VerdictRecord(Base):
    """Persisted prediction used by explanations and learning"""
    __tablename__ = 'email_verdicts'

    id = Column(String, primary_key=True)
    tenant_id = Column(String, index=True)
    message_id = Column(String)
    subject = Column(String)
    sender = Column(String)
    sender_domain = Column(String, index=True)
    verdict = Column(String, index=True)
    threat_type = Column(String)
    risk_level = Column(String)
    threat_score = Column(Float)
    confidence = Column(Float)
    model_version = Column(String)
    raw_scores = Column(JSON)
    feature_importance = Column(JSON)
    features = Column(JSON)
    signals = Column(JSON)
    layer_results = Column(JSON)
    processing_time_ms = Column(Float)
    action_taken = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
