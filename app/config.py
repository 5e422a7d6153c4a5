import os


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

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    STRIPE_BASIC_PRICE_ID = os.environ.get("STRIPE_BASIC_PRICE_ID")
    STRIPE_PREMIUM_PRICE_ID = os.environ.get("STRIPE_PREMIUM_PRICE_ID")
    STRIPE_PRO_PRICE_ID = os.environ.get("STRIPE_PRO_PRICE_ID")

    # Where Checkout sends the browser back to (the marketplace frontend).
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    # --- Memberships ---
    # "sql"      -> memberships table in DATABASE_URL (SQLAlchemy)
    # "supabase" -> memberships table behind the Supabase REST API
    MEMBERSHIP_STORE = os.environ.get("MEMBERSHIP_STORE", "sql").lower()
    # Fallback validity window when a checkout payload has no period end.
    MEMBERSHIP_TERM_DAYS = int(os.environ.get("MEMBERSHIP_TERM_DAYS", 30))

    # --- Supabase ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key
    SUPABASE_TIMEOUT = int(os.environ.get("SUPABASE_TIMEOUT", 10))

    # --- CORS (browser-facing payment endpoints only) ---
    CORS_ALLOW_ORIGIN = os.environ.get("CORS_ALLOW_ORIGIN", "*")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "STRIPE_BASIC_PRICE_ID",
            "STRIPE_PREMIUM_PRICE_ID",
            "STRIPE_PRO_PRICE_ID",
            "FRONTEND_URL",
        ]
        store = os.environ.get("MEMBERSHIP_STORE", "sql").lower()
        if store == "supabase":
            required += ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]
        else:
            required.append("DATABASE_URL")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        frontend_url = os.environ.get("FRONTEND_URL", "")
        if not frontend_url.startswith("http"):
            raise RuntimeError("FRONTEND_URL must be an http(s) URL")


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    # Local dev runs without Postgres unless DATABASE_URL is set.
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///dev.db"


class TestConfig(Config):
    """Testing: in-memory SQLite, rate limits off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_WEBHOOK_TOLERANCE = 300
    STRIPE_BASIC_PRICE_ID = "price_basic_test"
    STRIPE_PREMIUM_PRICE_ID = "price_premium_test"
    STRIPE_PRO_PRICE_ID = "price_pro_test"
    FRONTEND_URL = "http://localhost:5173"
    MEMBERSHIP_STORE = "sql"
    MEMBERSHIP_TERM_DAYS = 30
    SUPABASE_URL = None
    SUPABASE_SERVICE_KEY = None
    CORS_ALLOW_ORIGIN = "*"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode, everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
