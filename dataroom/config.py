"""
Data Room Governance Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import json
import os
import secrets

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)

# role -> user ids used to staff approval stages
_DEFAULT_APPROVERS = {
    "analyst": ["analyst-1", "analyst-2"],
    "manager": ["manager-1"],
    "admin": ["admin-1", "admin-2", "admin-3"],
}


def _load_directory(raw: str | None) -> dict:
    """Parse APPROVER_DIRECTORY (JSON object of role -> [user ids])."""
    if not raw:
        return dict(_DEFAULT_APPROVERS)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"APPROVER_DIRECTORY is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise RuntimeError("APPROVER_DIRECTORY must be a JSON object of role -> [user ids]")
    return {str(role): [str(u) for u in users] for role, users in data.items()}


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # Share links: <SHARE_BASE_URL>/share/<session-id>
    SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "http://localhost:5000")
    # "7days" | "30days" | "never" | ISO date; empty means links never expire
    DEFAULT_SHARE_EXPIRY = os.getenv("DEFAULT_SHARE_EXPIRY") or None
    DEFAULT_NDA_DEADLINE = os.getenv("DEFAULT_NDA_DEADLINE", "7days")
    DEFAULT_VIEWER_TIER = os.getenv("DEFAULT_VIEWER_TIER", "investors")

    # Comma separated; empty disables clearing the access log
    AUDIT_ADMINS = os.getenv("AUDIT_ADMINS", "")
    APPROVER_DIRECTORY = _load_directory(os.getenv("APPROVER_DIRECTORY"))

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Flask-Limiter
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    SHARE_LINK_RATE_LIMIT = os.getenv("SHARE_LINK_RATE_LIMIT", "30/minute")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SHARE_BASE_URL = "https://dataroom.test"
    DEFAULT_SHARE_EXPIRY = None
    DEFAULT_NDA_DEADLINE = "7days"
    DEFAULT_VIEWER_TIER = "investors"
    AUDIT_ADMINS = "auditor"
    APPROVER_DIRECTORY = dict(_DEFAULT_APPROVERS)
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "")

    def __init__(self):
        if not self.SHARE_BASE_URL:
            raise RuntimeError("SHARE_BASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
