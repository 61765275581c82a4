from ..config import CoreConfig


class FeedbackLearningConfig:
    """Thresholds and horizons for feedback pattern mining and rule synthesis"""

    DATABASE_URL = CoreConfig.DATABASE_URL

    PATTERN_INITIAL_CONFIDENCE = 10
    PATTERN_CONFIDENCE_STEP = 5
    PATTERN_CONFIDENCE_CEILING = 95
    PATTERN_CONFIDENCE_FLOOR = 10

    RULE_MIN_OCCURRENCES = 5
    RULE_MIN_CONFIDENCE = 70
    RULE_EXPIRY_DAYS = 90
    MAX_APPLICABLE_RULES = 10
    MAX_TOTAL_ADJUSTMENT = 30

    RULE_ADJUSTMENTS = {
        'false_positive': ('trust_boost', -15),
        'false_negative': ('suspicion_boost', 20),
        'confirmed_threat': ('suspicion_boost', 10)
    }

    MARKETING_SUBJECT_PATTERNS = [
        r'newsletter',
        r'digest',
        r'weekly.*update',
        r'monthly.*report',
        r'your.*subscription',
        r'special.*offer',
        r'limited.*time'
    ]

    DEFAULT_TRUST_SCORE = 50
    PROMOTION_MIN_FEEDBACK = 5
    PROMOTION_SAFE_RATIO = 0.8
    PROMOTION_MIN_SAFE = 5
    PROMOTION_MAX_TRUST = 85
    DEMOTION_THREAT_RATIO = 0.5
    DEMOTION_MIN_THREATS = 3
    DEMOTION_MIN_TRUST = 10
    PROMOTED_CATEGORIES = ('marketing', 'trusted', 'transactional')

    DECAY_AFTER_DAYS = 30
    DEACTIVATE_AFTER_DAYS = 60
    DEACTIVATE_BELOW_CONFIDENCE = 20

    ANALYTICS_TOP_N = 10
    ANALYTICS_TREND_DAYS = 7
