"""
Service configuration, read from the environment (.env supported).
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _database_uri():
    url = os.environ.get("DATABASE_URL")
    if url:
        return url

    db_user = os.environ.get("DB_USER", "escrow_svc_user")
    db_pass = os.environ.get("DB_PASS", "password")
    db_host = os.environ.get("DB_HOST", "escrow-db")
    db_name = os.environ.get("DB_NAME", "escrow_db")
    return f"postgresql://{db_user}:{db_pass}@{db_host}/{db_name}"


def _flag(name, default):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET", "dev-secret-change-me")
    JWT_ACCESS_MINUTES = int(os.environ.get("JWT_ACCESS_MINUTES", "15"))
    JWT_REFRESH_DAYS = int(os.environ.get("JWT_REFRESH_DAYS", "7"))

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
    USE_MOCK_STRIPE = _flag("USE_MOCK_STRIPE", "True")

    # Platform cut of an order total, held back when escrow is split
    PLATFORM_COMMISSION_RATE = Decimal(os.environ.get("PLATFORM_COMMISSION_RATE", "0.10"))
    # Processing fee deducted from an artisan withdrawal
    WITHDRAWAL_FEE_RATE = Decimal(os.environ.get("WITHDRAWAL_FEE_RATE", "0.02"))
    MIN_WITHDRAWAL_AMOUNT = Decimal(os.environ.get("MIN_WITHDRAWAL_AMOUNT", "1000"))
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "PKR")

    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    API_PREFIX = os.environ.get("API_PREFIX", "/api/v1")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-with-enough-length-for-hs256"
    STRIPE_SECRET_KEY = ""
    STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    USE_MOCK_STRIPE = True
    MIN_WITHDRAWAL_AMOUNT = Decimal("10")
    LOG_LEVEL = "WARNING"
