from enum import Enum


class FeedbackType(Enum):
    """Normalized feedback classes"""
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"
    CONFIRMED_THREAT = "confirmed_threat"


class PatternType(Enum):
    DOMAIN = "domain"
    URL_PATTERN = "url_pattern"
    SUBJECT_PATTERN = "subject_pattern"
    CONTENT_PATTERN = "content_pattern"


class RuleType(Enum):
    TRUST_BOOST = "trust_boost"
    SUSPICION_BOOST = "suspicion_boost"
    AUTO_PASS = "auto_pass"
    AUTO_FLAG = "auto_flag"


class SenderCategory(Enum):
    UNKNOWN = "unknown"
    MARKETING = "marketing"
    TRUSTED = "trusted"
    TRANSACTIONAL = "transactional"
    SUSPICIOUS = "suspicious"


class LearningEvent(Enum):
    """Entries written to the feedback learning log"""
    PATTERN_CREATED = "pattern_created"
    PATTERN_UPDATED = "pattern_updated"
    PATTERN_DEACTIVATED = "pattern_deactivated"
    RULE_CREATED = "rule_created"
    RULE_EXPIRED = "rule_expired"
    RULE_DEACTIVATED = "rule_deactivated"
    SENDER_PROMOTED = "sender_promoted"
    SENDER_DEMOTED = "sender_demoted"
