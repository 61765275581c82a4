from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any

from ..ScoringEngine.models import FeatureVector, PredictionResult


@dataclass
class ExplanationRequest:
    verdict_id: str
    audience: str = "end_user"
    verbosity: str = "brief"
    features: Optional[FeatureVector] = None
    prediction: Optional[PredictionResult] = None
    tenant_id: Optional[str] = None


@dataclass
class ExplanationFactor:
    factor: str
    description: str
    impact: str
    category: str
    evidence: Optional[str] = None
    contribution: Optional[float] = None


@dataclass
class ChartDataPoint:
    category: str
    score: int
    color: str
    triggered: bool


@dataclass
class RiskBreakdown:
    overall: int
    categories: Dict[str, int]
    chart_data: List[ChartDataPoint]


@dataclass
class FeatureImportanceDetail:
    feature: str
    importance: float
    value: float
    direction: str
    category: str


@dataclass
class ThresholdInfo:
    name: str
    value: float
    actual_score: float
    exceeded: bool


@dataclass
class LayerScoreDetail:
    layer: str
    score: float
    weight: float
    skipped: bool = False
    skip_reason: Optional[str] = None


@dataclass
class TriggeredSignal:
    type: str
    severity: str
    score: float
    detail: str


@dataclass
class TechnicalDetails:
    """Analyst and admin only"""
    feature_importance: List[FeatureImportanceDetail]
    thresholds: List[ThresholdInfo]
    model_info: Dict[str, Any]
    layer_scores: List[LayerScoreDetail]
    triggered_signals: List[TriggeredSignal]


@dataclass
class Explanation:
    summary: str
    confidence: str
    top_factors: List[ExplanationFactor]
    risk_breakdown: RiskBreakdown
    recommendations: List[str]
    metadata: Dict[str, Any]
    technical_details: Optional[TechnicalDetails] = None


@dataclass
class ComparisonDifference:
    aspect: str
    threat_value: str
    safe_value: str
    impact: str


@dataclass
class ComparativeExplanation:
    threat_verdict_id: str
    safe_verdict_id: Optional[str]
    differences: List[ComparisonDifference]
    summary: str


@dataclass
class TimelineEntry:
    timestamp: datetime
    layer: str
    event: str
    score: Optional[float] = None
    signals: Optional[List[str]] = None


@dataclass
class DetectionTimeline:
    verdict_id: str
    entries: List[TimelineEntry]
    total_time_ms: float
    summary: str


@dataclass
class SimilarThreat:
    verdict_id: str
    subject: str
    sender: str
    threat_type: str
    similarity: float
    detected_at: datetime
    outcome: str = "unknown"


@dataclass
class CounterfactualChange:
    factor: str
    current_value: str
    required_value: str
    feasibility: str
    explanation: str


@dataclass
class CounterfactualExplanation:
    current_verdict: str
    hypothetical_verdict: str
    changes_required: List[CounterfactualChange]
    summary: str


@dataclass
class ExecutiveSummary:
    tenant_id: str
    period_start: datetime
    period_end: datetime
    statistics: Dict[str, Any]
    top_threat_categories: List[Dict[str, Any]]
    trends: Dict[str, Any]
    highlights: List[str] = field(default_factory=list)
    narrative: str = ""


@dataclass
class VerdictSnapshot:
    """A persisted verdict rebuilt into scoring types"""
    verdict_id: str
    tenant_id: str
    prediction: PredictionResult
    features: Optional[FeatureVector]
    verdict: str
    signals: List[str]
    layer_results: List[Dict[str, Any]]
    subject: str = ""
    sender: str = ""
    action_taken: Optional[str] = None
    created_at: Optional[datetime] = None
