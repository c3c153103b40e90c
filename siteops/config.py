"""
Configuration classes, picked by ``APP_ENV`` (development | testing | production).

Environment:
    DATABASE_URL         PostgreSQL in production, SQLite file otherwise
    SECRET_KEY           Flask secret; also signs JWTs unless JWT_SECRET_KEY is set
    JWT_SECRET_KEY       optional separate signing key
    JWT_ACCESS_EXPIRES   token lifetime in seconds (default 3600)
    CORS_ORIGINS         comma-separated origins, "*" outside production
    REDIS_URL            Flask-Limiter storage (memory:// when unset)
    LOG_LEVEL            DEBUG / INFO / ...
"""

import os
import secrets

PROJECT_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _database_url(default=None):
    url = os.getenv("DATABASE_URL") or default
    # SQLAlchemy 2 only accepts the postgresql:// scheme
    if url and url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    RATELIMIT_ENABLED = True
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Proposal payloads with many sections are the largest bodies we accept
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    @classmethod
    def check(cls):
        """Raise if the environment is missing something this config needs."""


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "sqlite:///" + os.path.join(PROJECT_ROOT, "instance", "siteops_dev.db"),
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "siteops-test-secret-key-0123456789abcdef"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    @classmethod
    def check(cls):
        missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Production requires {', '.join(missing)} to be set")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
