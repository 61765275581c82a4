import os


class CoreConfig:
    """Shared settings for storage and the HTTP surface"""

    DATABASE_URL = os.environ.get("THREATCORE_DATABASE_URL", "sqlite:///./threat_core.db")

    AUDIT_QUERY_LIMIT = 500
    NOTIFICATION_HISTORY = 200

    API_HOST = "0.0.0.0"
    API_PORT = 8002
