# backend/fiscalpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fiscalpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///fiscalpos.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tax authority gateway and the external XML signing service
    AUTHORITY_GATEWAY_URL = os.environ.get("AUTHORITY_GATEWAY_URL", "http://127.0.0.1:8085")
    AUTHORITY_TIMEOUT_SECONDS = float(os.environ.get("AUTHORITY_TIMEOUT_SECONDS", "30"))
    SIGNING_SERVICE_URL = os.environ.get("SIGNING_SERVICE_URL", "http://127.0.0.1:8086")

    # Subscription server (trial / plans)
    SUBSCRIPTION_API_URL = os.environ.get("SUBSCRIPTION_API_URL", "")
    SUBSCRIPTION_API_KEY = os.environ.get("SUBSCRIPTION_API_KEY", "")
    SUBSCRIPTION_OFFLINE_GRACE_DAYS = int(os.environ.get("SUBSCRIPTION_OFFLINE_GRACE_DAYS", "7"))
    FREE_INVOICE_ALLOWANCE = int(os.environ.get("FREE_INVOICE_ALLOWANCE", "10"))
    MACHINE_ID = os.environ.get("MACHINE_ID", "local-terminal")

    # Outbound e-mail for authorized documents
    EMAIL_SERVICE_URL = os.environ.get("EMAIL_SERVICE_URL", "")
    EMAIL_SERVICE_API_KEY = os.environ.get("EMAIL_SERVICE_API_KEY", "")
    EMAIL_TIMEOUT_SECONDS = float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "30"))

    # Deferred notification sweep
    NOTIFICATION_SWEEP_ENABLED = _env_bool("NOTIFICATION_SWEEP_ENABLED", False)
    NOTIFICATION_SWEEP_INTERVAL_SECONDS = float(os.environ.get("NOTIFICATION_SWEEP_INTERVAL_SECONDS", "60"))
    NOTIFICATION_SWEEP_BATCH_SIZE = int(os.environ.get("NOTIFICATION_SWEEP_BATCH_SIZE", "5"))
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "4"))

    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "1500"))

    # bcrypt cost factor (tests lower it)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
