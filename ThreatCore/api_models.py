from datetime import datetime
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field


class PredictRequestAPI(BaseModel):
    """Pydantic model for a single scoring request"""
    features: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Feature sections keyed by category")
    tenant_id: Optional[str] = Field(default=None, description="Tenant used for thresholds and A/B routing")
    sender: Optional[str] = Field(default=None, description="Sender address, enables feedback rules")
    urls: List[str] = Field(default_factory=list, description="URLs found in the message")
    subject: Optional[str] = Field(default=None, description="Message subject")
    message_id: Optional[str] = Field(default=None, description="Upstream message identifier")
    record: bool = Field(default=False, description="Persist the verdict for explanations")


class BatchPredictRequestAPI(BaseModel):
    tenant_id: Optional[str] = None
    features: List[Dict[str, Dict[str, Any]]] = Field(..., description="Feature vectors to score")


class DeployModelAPI(BaseModel):
    version: str = Field(..., description="New model version identifier")
    weights: Dict[str, float] = Field(..., description="Category weights, normalized on write")
    calibration: Optional[Dict[str, Any]] = Field(default=None, description="Sigmoid parameters a, b, enabled")
    metrics: Optional[Dict[str, float]] = None


class WeightsAPI(BaseModel):
    weights: Dict[str, float] = Field(..., description="Category weights")


class CalibrationAPI(BaseModel):
    a: Optional[float] = None
    b: Optional[float] = None
    enabled: Optional[bool] = None


class ThresholdsAPI(BaseModel):
    """Partial threshold update; omitted values keep their current setting"""
    tenant_id: Optional[str] = Field(default=None, description="Tenant override, global when omitted")
    critical_threshold: Optional[float] = None
    high_threshold: Optional[float] = None
    medium_threshold: Optional[float] = None
    low_threshold: Optional[float] = None
    threat_type_thresholds: Optional[Dict[str, float]] = None


class ModelABTestAPI(BaseModel):
    test_id: str
    variant_a_model: str
    variant_b_model: str
    variant_b_percentage: float = Field(..., description="Share of tenants routed to variant B (0-100)")
    end_time: Optional[datetime] = None


class FeedbackAPI(BaseModel):
    feedback_id: str = Field(..., description="Caller supplied id; replays are acknowledged as duplicates")
    tenant_id: str
    sender_domain: str
    feedback_type: str = Field(..., description="false_positive, false_negative, phishing, malware, spam, ...")
    message_id: str = ""
    sender_email: str = ""
    original_verdict: str = ""
    original_score: float = 0.0
    subject: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    verdict_id: Optional[str] = None


class AdminDecisionAPI(BaseModel):
    tenant_id: str
    verdict_id: str
    admin_id: str
    original_verdict: str = Field(..., description="pass, quarantine, block or review")
    admin_action: str = Field(..., description="release, delete, block, whitelist or confirm")
    reason: Optional[str] = None
    email_features: Dict[str, Any] = Field(..., description="Signals the administrator saw")


class AdminActionAPI(BaseModel):
    action_id: str
    tenant_id: str
    admin_id: str
    verdict_id: str
    original_verdict: str
    new_verdict: str
    action: str = Field(..., description="release, quarantine, block, delete, mark_safe or mark_threat")
    reason: Optional[str] = None


class DecisionQueryAPI(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, description="Capped at 5000")
    offset: int = 0
    admin_actions: Optional[List[str]] = None
    original_verdicts: Optional[List[str]] = None


class PolicyABTestAPI(BaseModel):
    tenant_id: str
    suggestion_id: str
    name: str
    test_group_percentage: float = Field(..., description="Share of decisions in the test cohort (0-100)")
