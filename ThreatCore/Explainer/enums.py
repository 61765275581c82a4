from enum import Enum


class Audience(Enum):
    END_USER = "end_user"
    ANALYST = "analyst"
    ADMIN = "admin"
    EXECUTIVE = "executive"


class Verbosity(Enum):
    BRIEF = "brief"
    DETAILED = "detailed"
    TECHNICAL = "technical"


class Impact(Enum):
    """Ordered most severe first"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Feasibility(Enum):
    IMPOSSIBLE = "impossible"
    UNLIKELY = "unlikely"
    POSSIBLE = "possible"


class Outcome(Enum):
    CONFIRMED_THREAT = "confirmed_threat"
    FALSE_POSITIVE = "false_positive"
    UNKNOWN = "unknown"
