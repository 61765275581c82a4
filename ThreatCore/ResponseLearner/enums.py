from enum import Enum


class OriginalVerdict(Enum):
    PASS = "pass"
    QUARANTINE = "quarantine"
    BLOCK = "block"
    REVIEW = "review"


class DecisionAction(Enum):
    """What an administrator did with a verdict"""
    RELEASE = "release"
    DELETE = "delete"
    BLOCK = "block"
    WHITELIST = "whitelist"
    CONFIRM = "confirm"


class ActionType(Enum):
    """Verdict-changing actions recorded through record_action"""
    RELEASE = "release"
    QUARANTINE = "quarantine"
    BLOCK = "block"
    DELETE = "delete"
    MARK_SAFE = "mark_safe"
    MARK_THREAT = "mark_threat"


class PatternKind(Enum):
    DOMAIN = "domain"
    SENDER = "sender"
    FEATURE = "feature"
    TIME = "time"


class SuggestionType(Enum):
    WHITELIST_DOMAIN = "whitelist_domain"
    WHITELIST_SENDER = "whitelist_sender"
    ADJUST_THRESHOLD = "adjust_threshold"
    ADD_RULE = "add_rule"
    REMOVE_RULE = "remove_rule"
    MODIFY_RULE = "modify_rule"


class SuggestionStatus(Enum):
    PENDING = "pending"
    TESTING = "testing"
    APPLIED = "applied"
    REJECTED = "rejected"


class DriftType(Enum):
    NONE = "none"
    FEATURE = "feature"
    LABEL = "label"
    CONCEPT = "concept"


class ABTestStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Recommendation(Enum):
    APPLY = "apply"
    REJECT = "reject"
    CONTINUE = "continue"


class SignalType(Enum):
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"
    CORRECT = "correct"


class Trend(Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"
