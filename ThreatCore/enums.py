from enum import Enum


class ThreatType(Enum):
    """Classification attached to a verdict"""
    PHISHING = "phishing"
    BEC = "bec"
    MALWARE = "malware"
    SPAM = "spam"
    CLEAN = "clean"


class RiskLevel(Enum):
    """Risk buckets, most severe first"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SAFE = "safe"


class FeatureCategory(Enum):
    """The six feature groups scored independently"""
    HEADER = "header"
    CONTENT = "content"
    SENDER = "sender"
    URL = "url"
    ATTACHMENT = "attachment"
    BEHAVIORAL = "behavioral"


class Direction(Enum):
    INCREASES_RISK = "increases_risk"
    DECREASES_RISK = "decreases_risk"
