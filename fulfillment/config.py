import os
import re


def _env_bool(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Inbound carrier webhooks ---
    # Shared secret the carrier sends in the X-Api-Key header.
    CARRIER_WEBHOOK_TOKEN = os.environ.get("CARRIER_WEBHOOK_TOKEN")
    WEBHOOK_RATE_LIMIT = os.environ.get("WEBHOOK_RATE_LIMIT", "120 per minute")

    # --- Operator API ---
    # Bearer token for the operator board and maintenance endpoints.
    OPS_API_KEY = os.environ.get("OPS_API_KEY")

    # --- Display order ids: PREFIX-YYMMDD-#### ---
    ORDER_ID_PREFIX = os.environ.get("ORDER_ID_PREFIX", "ORD")
    ORDER_SEQUENCE_OFFSET = int(os.environ.get("ORDER_SEQUENCE_OFFSET", 1000))
    ORDER_SEQUENCE_MIN_DIGITS = int(os.environ.get("ORDER_SEQUENCE_MIN_DIGITS", 4))
    COUNTER_RETENTION_DAYS = int(os.environ.get("COUNTER_RETENTION_DAYS", 7))

    # --- Risk gate ---
    # Amounts are in minor currency units (paise). 5_000_000 = ₹50,000.
    HIGH_COD_THRESHOLD_MINOR = int(
        os.environ.get("HIGH_COD_THRESHOLD_MINOR", 5_000_000)
    )
    RISK_GATE_BLOCK_ON_HIGH = _env_bool("RISK_GATE_BLOCK_ON_HIGH", "true")

    # --- Webhook retry ledger ---
    WEBHOOK_MAX_RETRIES = int(os.environ.get("WEBHOOK_MAX_RETRIES", 5))
    WEBHOOK_RETRY_BASE_SECONDS = int(os.environ.get("WEBHOOK_RETRY_BASE_SECONDS", 60))
    WEBHOOK_RETRY_MAX_SECONDS = int(os.environ.get("WEBHOOK_RETRY_MAX_SECONDS", 3600))
    WEBHOOK_LOOKUP_TIMEOUT_MS = int(os.environ.get("WEBHOOK_LOOKUP_TIMEOUT_MS", 3000))
    WEBHOOK_SWEEP_BATCH_SIZE = int(os.environ.get("WEBHOOK_SWEEP_BATCH_SIZE", 100))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing or malformed."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "CARRIER_WEBHOOK_TOKEN",
            "OPS_API_KEY",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        prefix = os.environ.get("ORDER_ID_PREFIX", "ORD")
        if not re.fullmatch(r"[A-Z]+", prefix):
            raise RuntimeError(
                f"ORDER_ID_PREFIX must be upper-case letters only, got {prefix!r}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CARRIER_WEBHOOK_TOKEN = "carrier_test_token"
    OPS_API_KEY = "ops_test_key"
    RISK_GATE_BLOCK_ON_HIGH = True
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
