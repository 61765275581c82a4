import math
from typing import Dict, List, Tuple

from ..enums import Direction, FeatureCategory, RiskLevel, ThreatType
from .models import (
    FeatureVector, HeaderFeatures, ContentFeatures, SenderFeatures, UrlFeatures,
    AttachmentFeatures, BehavioralFeatures, FeatureImportance, CalibrationParams, ThresholdConfig
)

Indicator = Tuple[str, float]


def _fire(fired: List[Indicator], feature: str, points: float):
    if points:
        fired.append((feature, points))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def score_header(f: HeaderFeatures) -> List[Indicator]:
    fired = []
    if f.spf_score >= 0:
        _fire(fired, 'spf_failed', (1 - f.spf_score) * 0.15)
    if f.dkim_score >= 0:
        _fire(fired, 'dkim_failed', (1 - f.dkim_score) * 0.15)
    if f.dmarc_score >= 0:
        _fire(fired, 'dmarc_failed', (1 - f.dmarc_score) * 0.20)
    if f.reply_to_mismatch:
        _fire(fired, 'reply_to_mismatch', 0.15)
    if f.display_name_spoof:
        _fire(fired, 'display_name_spoof', 0.20)
    if f.envelope_mismatch:
        _fire(fired, 'envelope_mismatch', 0.10)
    if f.suspicious_mailer:
        _fire(fired, 'suspicious_mailer', 0.05)
    _fire(fired, 'header_anomalies', min(0.15, f.header_anomaly_count * 0.05))
    return fired


def score_content(f: ContentFeatures) -> List[Indicator]:
    fired = []
    _fire(fired, 'urgency', f.urgency_score * 0.20)
    _fire(fired, 'threat_language', f.threat_score * 0.25)
    _fire(fired, 'grammar_errors', (1 - f.grammar_score) * 0.10)
    _fire(fired, 'negative_sentiment', f.sentiment_score * 0.10)
    if f.requests_personal_info:
        _fire(fired, 'personal_info_request', 0.15)
    if f.requests_credentials:
        _fire(fired, 'credential_request', 0.20)
    if f.has_financial_request:
        _fire(fired, 'financial_request', 0.15)
    _fire(fired, 'image_heavy', min(0.10, f.image_to_text_ratio * 0.05))
    _fire(fired, 'suspicious_keywords', min(0.10, f.suspicious_keyword_count * 0.02))
    return fired


def score_sender(f: SenderFeatures) -> List[Indicator]:
    fired = []
    if f.reputation_score >= 0:
        _fire(fired, 'low_reputation', (1 - f.reputation_score) * 0.25)
    if f.domain_age_days >= 0:
        if f.domain_age_days < 30:
            _fire(fired, 'new_domain', 0.20)
        elif f.domain_age_days < 90:
            _fire(fired, 'new_domain', 0.10)
        elif f.domain_age_days < 365:
            _fire(fired, 'new_domain', 0.05)
    if f.is_freemail_provider:
        _fire(fired, 'free_email', 0.05)
    if f.is_disposable_email:
        _fire(fired, 'disposable_email', 0.20)
    _fire(fired, 'brand_similarity', f.domain_similarity_score * 0.15)
    if f.is_first_contact:
        _fire(fired, 'first_contact', 0.05)
    if f.is_cousin_domain:
        _fire(fired, 'lookalike_domain', 0.20)
    _fire(fired, 'vip_impersonation', f.executive_impersonation_score * 0.25)
    return fired


def score_url(f: UrlFeatures) -> List[Indicator]:
    fired = []
    _fire(fired, 'url_count', min(0.15, f.url_count * 0.02))
    _fire(fired, 'external_urls', min(0.15, f.external_url_count * 0.03))
    _fire(fired, 'shortened_urls', min(0.20, f.shortener_count * 0.10))
    _fire(fired, 'ip_urls', min(0.20, f.ip_url_count * 0.15))
    _fire(fired, 'malicious_urls', min(0.40, f.malicious_url_count * 0.20))
    _fire(fired, 'url_suspicion', f.max_url_suspicion_score * 0.20)
    if f.has_redirects:
        _fire(fired, 'redirect_chain', 0.10)
    _fire(fired, 'new_domain_urls', min(0.15, f.new_domain_url_count * 0.05))
    return fired


def score_attachment(f: AttachmentFeatures) -> List[Indicator]:
    fired = []
    _fire(fired, 'attachment_risk', f.attachment_risk_score * 0.30)
    if f.has_executable:
        _fire(fired, 'executable_attachment', 0.35)
    if f.has_macros:
        _fire(fired, 'macro_enabled', 0.20)
    if f.has_password_protected:
        _fire(fired, 'password_protected', 0.15)
    if f.has_double_extension:
        _fire(fired, 'double_extension', 0.25)
    _fire(fired, 'attachment_count', min(0.10, f.attachment_count * 0.02))
    return fired


def score_behavioral(f: BehavioralFeatures) -> List[Indicator]:
    fired = []
    _fire(fired, 'bec_pattern', f.bec_pattern_score * 0.30)
    if f.has_wire_transfer_request:
        _fire(fired, 'wire_transfer', 0.25)
    if f.has_gift_card_request:
        _fire(fired, 'gift_card', 0.25)
    if f.has_invoice_update:
        _fire(fired, 'invoice_update', 0.15)
    # legitimate signals lower the score
    if f.is_reply_chain:
        _fire(fired, 'reply_chain', -0.10)
    if f.has_unsubscribe_link:
        _fire(fired, 'unsubscribe_link', -0.10)
    if f.sent_during_business_hours:
        _fire(fired, 'business_hours', -0.05)
    return fired


CATEGORY_SCORERS = {
    FeatureCategory.HEADER.value: (lambda fv: fv.header, score_header),
    FeatureCategory.CONTENT.value: (lambda fv: fv.content, score_content),
    FeatureCategory.SENDER.value: (lambda fv: fv.sender, score_sender),
    FeatureCategory.URL.value: (lambda fv: fv.url, score_url),
    FeatureCategory.ATTACHMENT.value: (lambda fv: fv.attachment, score_attachment),
    FeatureCategory.BEHAVIORAL.value: (lambda fv: fv.behavioral, score_behavioral),
}


def _is_malware(fv: FeatureVector) -> bool:
    a = fv.attachment
    return a.has_executable or (a.has_macros and a.attachment_risk_score > 0.3) or a.attachment_risk_score > 0.6


def _is_phishing(fv: FeatureVector) -> bool:
    c, s = fv.content, fv.sender
    return (
        c.requests_credentials
        or c.requests_personal_info
        or fv.url.malicious_url_count > 0
        or s.is_cousin_domain
        or s.domain_similarity_score > 0.5
        or (c.threat_score > 0.4 and c.urgency_score > 0.3)
    )


def _is_bec(fv: FeatureVector) -> bool:
    b, s = fv.behavioral, fv.sender
    return (
        b.bec_pattern_score > 0.4
        or b.has_wire_transfer_request
        or b.has_gift_card_request
        or s.executive_impersonation_score > 0.4
        or (fv.content.has_financial_request and s.executive_impersonation_score > 0.2)
    )


def _is_spam(fv: FeatureVector) -> bool:
    c = fv.content
    return (
        (c.urgency_score > 0.3 or c.grammar_score < 0.5)
        and not c.requests_credentials
        and not c.requests_personal_info
    )


THREAT_INDICATORS = {
    ThreatType.MALWARE.value: _is_malware,
    ThreatType.PHISHING.value: _is_phishing,
    ThreatType.BEC.value: _is_bec,
    ThreatType.SPAM.value: _is_spam,
}


class FeatureScorer:
    """
    Pure scoring of a feature vector: per-category raw scores, weighted combination,
    calibration, attribution, threat type, risk level and confidence
    """

    def __init__(self, precedence=('malware', 'phishing', 'bec', 'spam'), elevated_score: float = 0.35,
                 clean_score: float = 0.15, confidence_floor: float = 0.35, confidence_ceiling: float = 0.95):
        self.precedence = precedence
        self.elevated_score = elevated_score
        self.clean_score = clean_score
        self.confidence_floor = confidence_floor
        self.confidence_ceiling = confidence_ceiling

    def raw_scores(self, features: FeatureVector) -> Tuple[Dict[str, float], Dict[str, List[Indicator]]]:
        scores = {}
        indicators = {}
        for category, (section, scorer) in CATEGORY_SCORERS.items():
            fired = scorer(section(features))
            scores[category] = _clamp(sum(points for _, points in fired))
            indicators[category] = fired
        return scores, indicators

    def combine(self, raw_scores: Dict[str, float], weights: Dict[str, float]) -> float:
        return sum(raw_scores[category] * weights.get(category, 0.0) for category in raw_scores)

    def calibrate(self, raw_score: float, calibration: CalibrationParams) -> float:
        if not calibration.enabled:
            return raw_score
        return _clamp(1.0 / (1.0 + math.exp(-(calibration.a * raw_score + calibration.b))))

    def feature_importance(self, raw_scores: Dict[str, float], indicators: Dict[str, List[Indicator]],
                           weights: Dict[str, float]) -> List[FeatureImportance]:
        importance = []
        for category, fired in indicators.items():
            total = sum(points for _, points in fired)
            raw = raw_scores[category]
            # clamped categories are rescaled so contributions still sum to weight * raw
            scale = raw / total if total and not math.isclose(total, raw) else 1.0
            weight = weights.get(category, 0.0)
            for feature, points in fired:
                importance.append(FeatureImportance(
                    feature=feature,
                    contribution=weight * points * scale,
                    direction=(Direction.INCREASES_RISK.value if points > 0
                               else Direction.DECREASES_RISK.value),
                    category=category,
                    unclamped_contribution=weight * points
                ))
        importance.sort(key=lambda fi: abs(fi.contribution), reverse=True)
        return importance

    def threat_type(self, features: FeatureVector, score: float) -> str:
        for threat_type in self.precedence:
            if THREAT_INDICATORS[threat_type](features):
                return threat_type

        if score > self.elevated_score:
            return ThreatType.PHISHING.value
        if score < self.clean_score:
            return ThreatType.CLEAN.value
        return ThreatType.SPAM.value

    def risk_level(self, score: float, threat_type: str, thresholds: ThresholdConfig) -> str:
        type_threshold = thresholds.threat_type_thresholds.get(threat_type)
        if type_threshold is not None and score >= type_threshold:
            return RiskLevel.CRITICAL.value

        if score >= thresholds.critical_threshold:
            return RiskLevel.CRITICAL.value
        if score >= thresholds.high_threshold:
            return RiskLevel.HIGH.value
        if score >= thresholds.medium_threshold:
            return RiskLevel.MEDIUM.value
        if score >= thresholds.low_threshold:
            return RiskLevel.LOW.value
        return RiskLevel.SAFE.value

    def confidence(self, features: FeatureVector, score: float) -> float:
        header, sender = features.header, features.sender
        certainty = abs(score - 0.5) * 2

        known = [
            header.spf_score >= 0,
            header.dkim_score >= 0,
            header.dmarc_score >= 0,
            sender.reputation_score >= 0,
            sender.domain_age_days >= 0,
            features.url.url_count > 0,
        ]
        coverage = sum(known) / len(known)

        boost = 0.0
        if features.attachment.has_executable:
            boost += 0.15
        if features.behavioral.has_wire_transfer_request:
            boost += 0.15
        if features.content.requests_credentials:
            boost += 0.15
        if sender.is_cousin_domain:
            boost += 0.15
        if header.spf_score == 1 and header.dkim_score == 1 and header.dmarc_score == 1:
            boost += 0.2

        return max(self.confidence_floor, min(self.confidence_ceiling, 0.4 * certainty + 0.35 * coverage + boost))
