"""
Environment-aware configuration.
Values are read from the environment (and .env when present); the app factory
builds its services from these keys.
"""
import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # jwt configurations
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me-before-deploying")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "fx-gateway")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "fx-gateway-clients")
    ACCESS_TOKEN_EXPIRES = timedelta(minutes=int(os.getenv("ACCESS_TOKEN_EXPIRES_MINUTES", "30")))
    REFRESH_TOKEN_EXPIRES = timedelta(days=int(os.getenv("REFRESH_TOKEN_EXPIRES_DAYS", "7")))

    # key-value store; an empty REDIS_URL falls back to the in-process store
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "Currencies_")

    # upstream + cache
    FRANKFURTER_BASE_URL = os.getenv("FRANKFURTER_BASE_URL", "https://api.frankfurter.app")
    UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10"))
    CACHE_LATEST_MINUTES = int(os.getenv("CACHE_LATEST_MINUTES", "30"))
    CACHE_HISTORICAL_HOURS = int(os.getenv("CACHE_HISTORICAL_HOURS", "24"))

    # resilience
    RETRY_COUNT = int(os.getenv("RETRY_COUNT", "3"))
    BASE_BACKOFF_SECONDS = float(os.getenv("BASE_BACKOFF_SECONDS", "2"))
    FAILURES_BEFORE_BREAKING = int(os.getenv("FAILURES_BEFORE_BREAKING", "5"))
    BREAK_DURATION_MINUTES = float(os.getenv("BREAK_DURATION_MINUTES", "1"))

    # rates
    UNSUPPORTED_SYMBOLS = _csv(os.getenv("UNSUPPORTED_SYMBOLS", "TRY,PLN,THB,MXN"))
    DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "frankfurter")
    DEFAULT_BASE = os.getenv("DEFAULT_BASE", "EUR")
    HISTORICAL_MAX_RANGE_DAYS = int(os.getenv("HISTORICAL_MAX_RANGE_DAYS", "365"))
    HISTORICAL_MAX_PAGE_SIZE = int(os.getenv("HISTORICAL_MAX_PAGE_SIZE", "100"))
    HISTORICAL_DEFAULT_PAGE_SIZE = int(os.getenv("HISTORICAL_DEFAULT_PAGE_SIZE", "50"))

    # fixed-window rate limits (Flask-Limiter reads the RATELIMIT_* keys)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_STRATEGY = "fixed-window"
    RATELIMIT_HEADERS_ENABLED = True
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "30 per minute")
    CURRENCIES_RATE_LIMIT = os.getenv("CURRENCIES_RATE_LIMIT", "100 per minute")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(BaseConfig):
    DEBUG = False


class TestingConfig(BaseConfig):
    TESTING = True
    REDIS_URL = ""
    JWT_SECRET = "test-secret-key-for-the-fx-gateway-suite"
    FRANKFURTER_BASE_URL = "https://frankfurter.test"
    BASE_BACKOFF_SECONDS = 0.0


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/prod/test).
    """
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig
