# backend/salon_pos/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salon_pos.sqlite3 by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///salon_pos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty rules (branch-scoped balances)
    # 0.01 points per currency unit = 1 point per 100 spent
    LOYALTY_POINTS_PER_CURRENCY_UNIT = _env_float("LOYALTY_POINTS_PER_CURRENCY_UNIT", 0.01)
    # 1 point = 1 currency unit of discount
    LOYALTY_POINT_VALUE_CENTS = _env_int("LOYALTY_POINT_VALUE_CENTS", 100)

    # Referral rewards, credited as loyalty points at the code's branch
    REFERRER_REWARD_POINTS = _env_int("REFERRER_REWARD_POINTS", 50)
    REFERRED_REWARD_POINTS = _env_int("REFERRED_REWARD_POINTS", 25)
    REFERRAL_CODE_MAX_ATTEMPTS = _env_int("REFERRAL_CODE_MAX_ATTEMPTS", 5)
    REFERRAL_CODE_SUFFIX_LENGTH = _env_int("REFERRAL_CODE_SUFFIX_LENGTH", 2)

    # Optimistic locking retry policy
    CONCURRENCY_RETRY_ATTEMPTS = _env_int("CONCURRENCY_RETRY_ATTEMPTS", 3)
    CONCURRENCY_RETRY_BACKOFF = _env_float("CONCURRENCY_RETRY_BACKOFF", 0.05)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CONCURRENCY_RETRY_BACKOFF = 0.0
