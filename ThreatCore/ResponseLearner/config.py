from ..config import CoreConfig


class ResponseLearnerConfig:
    """Windows, floors and thresholds for admin decision analytics"""

    DATABASE_URL = CoreConfig.DATABASE_URL

    MIN_SAMPLE_SIZE = 10
    PATTERN_CONFIDENCE_THRESHOLD = 0.7
    DRIFT_THRESHOLD = 0.15

    ANALYSIS_WINDOW_DAYS = 30
    TUNING_WINDOW_DAYS = 14
    DRIFT_WINDOW_DAYS = 30
    TRAINING_WINDOW_DAYS = 90
    TRAINING_MAX_SAMPLES = 10000
    SIGNAL_LIMIT = 1000
    ACTION_PATTERN_LIMIT = 5000

    HISTORY_DEFAULT_LIMIT = 1000
    HISTORY_MAX_LIMIT = 5000

    # tenant detection settings tuned by threshold adjustments
    DEFAULT_DETECTION_THRESHOLDS = {
        'deterministic_quarantine_threshold': 40,
        'ml_quarantine_threshold': 50,
        'urgency_score_threshold': 30
    }
    THRESHOLD_FEATURES = {
        'deterministic_quarantine_threshold': 'deterministic_score',
        'ml_quarantine_threshold': 'ml_score',
        'urgency_score_threshold': 'urgency_score'
    }
    TUNING_STEP = 5
    RELEASED_MEAN_CEILING = 35
    BLOCKED_MEAN_FLOOR = 50
    TUNING_MIN_GROUP = 5

    EMERGING_DOMAIN_RELEASES = 5
    EMERGING_DOMAIN_WINDOW_DAYS = 7
    HIGH_VOLUME_ACTIONS = 20

    DRIFT_FEATURES = [
        'urgency_score',
        'threat_language_score',
        'link_count',
        'shortener_link_count',
        'deterministic_score',
        'ml_score'
    ]
    DRIFT_FEATURE_CATEGORIES = {
        'urgency_score': 'content',
        'threat_language_score': 'content',
        'link_count': 'url',
        'shortener_link_count': 'url',
        'deterministic_score': 'detection',
        'ml_score': 'detection'
    }
    FEATURE_SHIFT_THRESHOLD = 0.2
    LABEL_SHIFT_THRESHOLD = 0.15
    RETRAIN_DRIFT_SCORE = 0.3

    AB_SIGNIFICANCE = 0.95

    TREND_WEEKS = 4
    TREND_CHANGE = 0.1
    WILSON_Z = 1.96

    CONSISTENCY_MIN_ACTIONS = 5
    OUTLIER_FREQUENCY = 0.05
    MAX_OUTLIERS = 10

    AGGREGATION_MIN_TENANTS = 3
    AGGREGATION_WINDOW_DAYS = 30
    EMERGING_THREAT_MIN = 5
