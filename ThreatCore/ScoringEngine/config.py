from ..config import CoreConfig


class ScoringConfig:
    """Configuration for weighted multi-layer scoring, calibration and model lifecycle"""

    DATABASE_URL = CoreConfig.DATABASE_URL

    DEFAULT_MODEL_VERSION = "1.0.0"

    DEFAULT_WEIGHTS = {
        'header': 0.20,
        'content': 0.25,
        'sender': 0.20,
        'url': 0.15,
        'attachment': 0.10,
        'behavioral': 0.10
    }

    # sigmoid(a * x + b); disabled until a calibrated version is deployed
    DEFAULT_CALIBRATION = {
        'a': 2.0,
        'b': -0.5,
        'enabled': False
    }

    DEFAULT_METRICS = {
        'accuracy': 0.92,
        'precision': 0.89,
        'recall': 0.87,
        'f1_score': 0.88
    }

    DEFAULT_THRESHOLDS = {
        'critical_threshold': 0.85,
        'high_threshold': 0.70,
        'medium_threshold': 0.50,
        'low_threshold': 0.30
    }

    MAX_BATCH_SIZE = 100

    ENABLE_CACHE = True
    CACHE_TTL_MS = 60000
    ENABLE_FEATURE_IMPORTANCE = True

    CONFIDENCE_FLOOR = 0.35
    CONFIDENCE_CEILING = 0.95

    THREAT_TYPE_PRECEDENCE = ('malware', 'phishing', 'bec', 'spam')
    ELEVATED_SCORE = 0.35
    CLEAN_SCORE = 0.15

    VERDICT_ACTIONS = {
        'critical': 'block',
        'high': 'quarantine',
        'medium': 'suspicious',
        'low': 'pass',
        'safe': 'pass'
    }

    SCOPE_GLOBAL = "global"
