from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple
from uuid import uuid4

from ..errors import ValidationError


@dataclass
class EmailFeatures:
    """Snapshot of the signals an administrator saw when deciding"""
    sender_domain: str
    sender_email: str = ""
    display_name: Optional[str] = None
    is_freemail_provider: bool = False
    domain_age: Optional[int] = None
    urgency_score: float = 0.0
    threat_language_score: float = 0.0
    link_count: int = 0
    shortener_link_count: int = 0
    attachment_count: int = 0
    attachment_types: List[str] = field(default_factory=list)
    spf_result: Optional[str] = None
    dkim_result: Optional[str] = None
    dmarc_result: Optional[str] = None
    deterministic_score: float = 0.0
    ml_score: float = 0.0
    ml_category: Optional[str] = None
    has_external_links: bool = False
    requests_personal_info: bool = False
    requests_financial_action: bool = False
    is_reply_chain: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailFeatures':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown email feature fields: {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdminDecision:
    tenant_id: str
    verdict_id: str
    original_verdict: str
    admin_action: str
    admin_id: str
    email_features: EmailFeatures
    reason: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Optional[datetime] = None
    subsequent_reported_as_phish: bool = False
    reported_at: Optional[datetime] = None


@dataclass
class AdminAction:
    action_id: str
    tenant_id: str
    admin_id: str
    verdict_id: str
    original_verdict: str
    new_verdict: str
    action: str
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class DecisionFilters:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = None
    offset: int = 0
    admin_actions: Optional[List[str]] = None
    original_verdicts: Optional[List[str]] = None


@dataclass
class Pattern:
    """Recurring override signature mined from a window of decisions"""
    type: str
    description: str
    occurrences: int
    confidence: float
    examples: List[str]
    features: Dict[str, Any]
    first_seen: datetime
    last_seen: datetime
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class TrendData:
    period: str
    timestamp: datetime
    override_count: int
    release_count: int
    block_count: int
    false_positive_rate: float


@dataclass
class PatternAnalysis:
    override_rate: float = 0.0
    false_positive_patterns: List[Pattern] = field(default_factory=list)
    false_negative_patterns: List[Pattern] = field(default_factory=list)
    common_override_reasons: List[Dict[str, Any]] = field(default_factory=list)
    time_based_trends: List[TrendData] = field(default_factory=list)
    total_decisions: int = 0
    insufficient_data: bool = False
    analysis_timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class PolicySuggestion:
    type: str
    description: str
    confidence: float
    evidence: List[str]
    impact: Dict[str, Any]
    suggested_value: Any = None
    status: str = "pending"
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ThresholdAdjustment:
    threshold_name: str
    current_value: float
    suggested_value: float
    direction: str
    reason: str
    evidence: Dict[str, Any]
    rollback_available: bool = True
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class ThresholdSuggestion:
    category: str
    current_threshold: float
    suggested_threshold: float
    expected_fp_reduction: float
    expected_fn_increase: float
    confidence: float


@dataclass
class ScoreDistribution:
    suggested_adjustment: int
    reason: str
    false_positive_impact: float
    false_negative_risk: float


@dataclass
class FeatureShift:
    feature: str
    baseline_mean: float
    current_mean: float
    shift: float


@dataclass
class DriftReport:
    has_drift: bool
    drift_score: float
    drift_type: str
    affected_features: List[str]
    recommendation: str
    baseline_period: Tuple[datetime, datetime]
    comparison_period: Tuple[datetime, datetime]
    feature_shifts: List[FeatureShift] = field(default_factory=list)
    override_rate_change: float = 0.0
    detected_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class DriftMetrics:
    overall_drift: float
    fp_rate_trend: str
    fn_rate_trend: str
    recommends_retrain: bool
    drift_by_category: Dict[str, float]


@dataclass
class RateMetrics:
    """False positive or false negative rate with a Wilson interval"""
    overall_rate: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=dict)
    recent_trend: str = "stable"
    sample_size: int = 0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)


@dataclass
class LearningSignal:
    admin_action: AdminAction
    signal_type: str
    weight: float
    email_features: Optional[Dict[str, Any]] = None
    original_prediction: Optional[Dict[str, Any]] = None


@dataclass
class TrainingSample:
    features: Dict[str, Any]
    label: str
    weight: float
    source: str


@dataclass
class TrainingDataset:
    samples: List[TrainingSample]
    metadata: Dict[str, Any]


@dataclass
class ActionPatterns:
    admin_id: Optional[str] = None
    total_actions: int = 0
    action_breakdown: Dict[str, int] = field(default_factory=dict)
    avg_time_to_action: float = 0.0
    peak_hours: List[int] = field(default_factory=list)
    consistency_score: float = 0.0
    outlier_actions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class FeedbackQuality:
    total_feedback: int = 0
    verified_feedback: int = 0
    feedback_accuracy: float = 0.0
    avg_response_time_ms: float = 0.0
    feedback_by_type: Dict[str, int] = field(default_factory=dict)
    quality_score: int = 0
    recommendations: List[str] = field(default_factory=list)


@dataclass
class AggregatedLearning:
    tenant_count: int = 0
    total_samples: int = 0
    common_patterns: List[Pattern] = field(default_factory=list)
    global_threshold_suggestions: List[ThresholdSuggestion] = field(default_factory=list)
    emerging_threats: List[Dict[str, Any]] = field(default_factory=list)
    aggregated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ABTestResults:
    control_fp_rate: float = 0.0
    test_fp_rate: float = 0.0
    control_fn_rate: float = 0.0
    test_fn_rate: float = 0.0
    statistical_significance: float = 0.0
    recommendation: str = "continue"


@dataclass
class PolicyABTest:
    """Traffic split used to validate a policy suggestion"""
    tenant_id: str
    suggestion_id: str
    name: str
    control_group: List[str]
    test_group: List[str]
    status: str = "running"
    id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None
    results: Optional[ABTestResults] = None
