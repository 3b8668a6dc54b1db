"""
CareDraft Proposal Workflow Service
Configuration classes for the app factory.

Every setting is read from the environment once, at import time.

Usage:
    app.config.from_object(config[os.getenv("APP_ENV", "development")]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _database_url(var, fallback=None):
    # Hosted Postgres providers still hand out postgres://, SQLAlchemy 2 wants postgresql://
    url = os.getenv(var, "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or fallback


def _env_int(var, default):
    return int(os.getenv(var, str(default)))


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    LOG_FORMAT = os.getenv("LOG_FORMAT", "")

    # Rate-limit storage and the optional health probe target
    REDIS_URL = os.getenv("REDIS_URL", "")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Deadline processing ──
    # Shared secret the external cron presents as "Authorization: Bearer <secret>"
    CRON_SECRET = os.getenv("CRON_SECRET", "")
    # A proposal taking longer than this is logged as over budget
    DEADLINE_PROPOSAL_BUDGET_MS = _env_int("DEADLINE_PROPOSAL_BUDGET_MS", 2000)

    # Read notifications older than this are deleted by the nightly cleanup job
    NOTIFICATION_RETENTION_DAYS = _env_int("NOTIFICATION_RETENTION_DAYS", 30)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "DATABASE_URL", f"sqlite:///{os.path.join(basedir, 'instance', 'caredraft_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    CRON_SECRET = ""
    REDIS_URL = ""


class ProductionConfig(Config):
    """Postgres only; refuses to start without its required settings."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # The deadline batch commits per proposal; no single statement should need 30s
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [name for name, value in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ("CRON_SECRET", self.CRON_SECRET),
        ) if not value]
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
