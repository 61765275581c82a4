from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any

from .rule_conditions import RuleCondition


@dataclass
class FeedbackEvent:
    """User or analyst feedback on a delivered verdict"""
    feedback_id: str
    tenant_id: str
    sender_domain: str
    feedback_type: str
    message_id: str = ""
    sender_email: str = ""
    original_verdict: str = ""
    original_score: float = 0.0
    subject: Optional[str] = None
    urls: List[str] = field(default_factory=list)
    verdict_id: Optional[str] = None


@dataclass
class FeedbackResult:
    reputation_updated: bool = False
    patterns_extracted: int = 0
    rules_created: int = 0
    duplicate: bool = False
    created_rule_ids: List[str] = field(default_factory=list)


@dataclass
class LearnedRule:
    rule_id: str
    rule_type: str
    condition: RuleCondition
    score_adjustment: int
    confidence: int
    source_feedback_count: int
    created_at: datetime
    expires_at: Optional[datetime] = None


@dataclass
class RuleAdjustment:
    adjustment: int = 0
    applied_rules: List[str] = field(default_factory=list)
    explanation: str = ""


@dataclass
class FeedbackAnalytics:
    total_feedback: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    confirmed_threats: int = 0
    accuracy_rate: float = 0.0
    top_fp_domains: List[Dict[str, Any]] = field(default_factory=list)
    top_fn_senders: List[Dict[str, Any]] = field(default_factory=list)
    patterns_learned: int = 0
    senders_promoted: int = 0
    senders_demoted: int = 0
    trend_7d: Dict[str, float] = field(default_factory=lambda: {'fp_rate': 0.0, 'fn_rate': 0.0, 'accuracy': 0.0})
