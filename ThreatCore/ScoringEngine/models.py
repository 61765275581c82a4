import hashlib
import json
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from typing import Dict, List, Optional, Any

from ..errors import ValidationError


@dataclass(frozen=True)
class HeaderFeatures:
    spf_score: float = 1.0
    dkim_score: float = 1.0
    dmarc_score: float = 1.0
    reply_to_mismatch: bool = False
    display_name_spoof: bool = False
    header_anomaly_count: int = 0
    envelope_mismatch: bool = False
    suspicious_mailer: bool = False


@dataclass(frozen=True)
class ContentFeatures:
    urgency_score: float = 0.0
    threat_score: float = 0.0
    grammar_score: float = 1.0
    sentiment_score: float = 0.0
    requests_personal_info: bool = False
    requests_credentials: bool = False
    has_financial_request: bool = False
    image_to_text_ratio: float = 0.0
    suspicious_keyword_count: int = 0


@dataclass(frozen=True)
class SenderFeatures:
    reputation_score: float = 0.8
    domain_age_days: int = 365
    is_freemail_provider: bool = False
    is_disposable_email: bool = False
    domain_similarity_score: float = 0.0
    is_first_contact: bool = False
    is_cousin_domain: bool = False
    executive_impersonation_score: float = 0.0


@dataclass(frozen=True)
class UrlFeatures:
    url_count: int = 0
    external_url_count: int = 0
    shortener_count: int = 0
    ip_url_count: int = 0
    malicious_url_count: int = 0
    max_url_suspicion_score: float = 0.0
    has_redirects: bool = False
    new_domain_url_count: int = 0


@dataclass(frozen=True)
class AttachmentFeatures:
    attachment_count: int = 0
    attachment_risk_score: float = 0.0
    has_executable: bool = False
    has_macros: bool = False
    has_password_protected: bool = False
    has_double_extension: bool = False
    total_size_bytes: int = 0


@dataclass(frozen=True)
class BehavioralFeatures:
    is_reply_chain: bool = False
    has_unsubscribe_link: bool = False
    send_hour: int = 10
    sent_during_business_hours: bool = True
    bec_pattern_score: float = 0.0
    has_wire_transfer_request: bool = False
    has_gift_card_request: bool = False
    has_invoice_update: bool = False


_SECTIONS = {
    'header': HeaderFeatures,
    'content': ContentFeatures,
    'sender': SenderFeatures,
    'url': UrlFeatures,
    'attachment': AttachmentFeatures,
    'behavioral': BehavioralFeatures
}


def _coerce(section: str, name: str, expected: type, value: Any) -> Any:
    # bool is an int subclass, so it only satisfies bool fields
    if isinstance(value, bool):
        if expected is bool:
            return value
    elif expected is int and isinstance(value, (int, float)) and float(value).is_integer():
        return int(value)
    elif expected is float and isinstance(value, (int, float)):
        return float(value)
    raise ValidationError(f"Invalid {section}.{name}: expected {expected.__name__}, got {value!r}")


@dataclass(frozen=True)
class FeatureVector:
    """Immutable per-email signal snapshot grouped by feature category"""
    header: HeaderFeatures = field(default_factory=HeaderFeatures)
    content: ContentFeatures = field(default_factory=ContentFeatures)
    sender: SenderFeatures = field(default_factory=SenderFeatures)
    url: UrlFeatures = field(default_factory=UrlFeatures)
    attachment: AttachmentFeatures = field(default_factory=AttachmentFeatures)
    behavioral: BehavioralFeatures = field(default_factory=BehavioralFeatures)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'FeatureVector':
        data = data or {}
        unknown_sections = set(data) - set(_SECTIONS)
        if unknown_sections:
            raise ValidationError(f"Unknown feature sections: {sorted(unknown_sections)}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name) or {}
            allowed = {f.name for f in fields(section_cls)}
            unknown = set(values) - allowed
            if unknown:
                raise ValidationError(f"Unknown {name} features: {sorted(unknown)}")
            types = {f.name: f.type for f in fields(section_cls)}
            sections[name] = section_cls(**{k: _coerce(name, k, types[k], v) for k, v in values.items()})
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


@dataclass
class CalibrationParams:
    a: float = 2.0
    b: float = -0.5
    enabled: bool = False


@dataclass
class ThresholdConfig:
    """Risk thresholds; strict ascending order is enforced on every write"""
    critical_threshold: float = 0.85
    high_threshold: float = 0.70
    medium_threshold: float = 0.50
    low_threshold: float = 0.30
    threat_type_thresholds: Dict[str, float] = field(default_factory=dict)

    def validate(self):
        values = [self.low_threshold, self.medium_threshold, self.high_threshold, self.critical_threshold]
        if any(v is None or not 0.0 <= v <= 1.0 for v in values):
            raise ValidationError("Thresholds must be within [0, 1]")
        if not (values[0] < values[1] < values[2] < values[3]):
            raise ValidationError("Thresholds must be in ascending order: low < medium < high < critical")
        for threat_type, value in self.threat_type_thresholds.items():
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"Threshold for {threat_type} must be within [0, 1]")

    def merged(self, partial: Dict[str, Any]) -> 'ThresholdConfig':
        allowed = {f.name for f in fields(self)}
        unknown = set(partial) - allowed
        if unknown:
            raise ValidationError(f"Unknown threshold fields: {sorted(unknown)}")
        values = asdict(self)
        values.update({k: v for k, v in partial.items() if v is not None})
        return ThresholdConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ModelVersion:
    """Scoring model definition; versions are append-only"""
    version: str
    weights: Dict[str, float]
    calibration: CalibrationParams = field(default_factory=CalibrationParams)
    metrics: Dict[str, float] = field(default_factory=dict)
    trained_at: datetime = field(default_factory=datetime.utcnow)
    deployed_at: Optional[datetime] = None
    is_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FeatureImportance:
    """
    Attribution of one fired indicator. contribution is rescaled when its category
    was clamped; unclamped_contribution keeps weight * points, so an indicator in a
    category clamped to zero still reports its own magnitude.
    """
    feature: str
    contribution: float
    direction: str
    category: str
    unclamped_contribution: float = 0.0


@dataclass(frozen=True)
class PredictionResult:
    """Verdict for one email"""
    threat_score: float
    confidence: float
    threat_type: str
    risk_level: str
    model_version: str
    prediction_time_ms: float = 0.0
    feature_importance: List[FeatureImportance] = field(default_factory=list)
    raw_scores: Dict[str, float] = field(default_factory=dict)
    ab_test_variant: Optional[str] = None
    base_score: Optional[float] = None
    rule_adjustment: float = 0.0
    rule_explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ABTestConfig:
    test_id: str
    variant_a_model: str
    variant_b_model: str
    variant_b_percentage: float
    active: bool = True
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EngineEvent:
    """Structured record of a state change, returned to the caller for forwarding"""
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)
