# ==========================================================================================================
# -------------- Configuration file for the referral commission backend ------------------------------------
# ==========================================================================================================
import os
import json
from decimal import Decimal
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


DEFAULT_PLAN_PRICING = {
    "knowic":   {"rank": 1, "price": "24",  "direct": "16", "passive": "2", "max_discount": "7"},
    "learnic":  {"rank": 2, "price": "59",  "direct": "40", "passive": "4", "max_discount": "18"},
    "masteric": {"rank": 3, "price": "130", "direct": "85", "passive": "7", "max_discount": "44"},
}

DEFAULT_RETENTION = {"daily": 7, "weekly": 4, "monthly": 12}


def _json_env(name, default):
    """Read a JSON document from the environment, falling back to `default`."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be valid JSON: {e}") from e


def _bool_env(name, default="False"):
    return os.getenv(name, default).lower() in ("true", "1", "t")


class Config:

    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    DEBUG = _bool_env("DEBUG")
    TESTING = False

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        if FLASK_ENV == "production":
            raise ValueError("SECRET_KEY must be set in production")
        SECRET_KEY = "dev_key_change_me"

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'commission.db')}"

    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    if not _database_url.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        }

    # ------------------------------------------------------------------------
    # Business rules
    # ------------------------------------------------------------------------
    PLAN_PRICING = _json_env("PLAN_PRICING", DEFAULT_PLAN_PRICING)
    MIN_WITHDRAWAL = Decimal(os.getenv("MIN_WITHDRAWAL", "30"))
    SUPPRESS_PASSIVE_ON_DISCOUNT = _bool_env("SUPPRESS_PASSIVE_ON_DISCOUNT", "True")

    # ------------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------------
    LEADERBOARD_STRATEGY = os.getenv("LEADERBOARD_STRATEGY", "full")      # full | incremental
    LEADERBOARD_WINDOW = os.getenv("LEADERBOARD_WINDOW", "calendar")      # calendar | rolling
    LEADERBOARD_RETENTION = _json_env("LEADERBOARD_RETENTION", DEFAULT_RETENTION)
    LEADERBOARD_TOP_N = int(os.getenv("LEADERBOARD_TOP_N", "10"))
    LEADERBOARD_INTERVAL_MINUTES = int(os.getenv("LEADERBOARD_INTERVAL_MINUTES", "5"))

    SCHEDULER_ENABLED = _bool_env("SCHEDULER_ENABLED")


class TestConfig(Config):
    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PLAN_PRICING = DEFAULT_PLAN_PRICING
    MIN_WITHDRAWAL = Decimal("30")
    SUPPRESS_PASSIVE_ON_DISCOUNT = True
    LEADERBOARD_STRATEGY = "full"
    LEADERBOARD_WINDOW = "calendar"
    LEADERBOARD_RETENTION = DEFAULT_RETENTION
    LEADERBOARD_TOP_N = 10
    SCHEDULER_ENABLED = False
