"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
budget alert thresholds and notification windows. It uses environment variables for sensitive information and
defaults for development. In production, make sure to set the appropriate environment variables and secure the
secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'po_tracker.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (JSON clients send the token as X-CSRFToken)
    WTF_CSRF_ENABLED = True

    APP_NAME = "PO Tracker"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Budget alerts: > warning -> medium, > critical -> high, > 100 -> exceeded
    BUDGET_WARNING_PERCENT = int(os.environ.get("BUDGET_WARNING_PERCENT", "75"))
    BUDGET_CRITICAL_PERCENT = int(os.environ.get("BUDGET_CRITICAL_PERCENT", "90"))

    # Notification recency windows
    NOTIFICATION_PO_WINDOW_HOURS = 24
    NOTIFICATION_TRANSACTION_WINDOW_HOURS = 24
    NOTIFICATION_PURCHASED_WINDOW_HOURS = 72

    # How much recent data feeds the notification deriver
    NOTIFICATION_RECENT_PO_LIMIT = 20
    NOTIFICATION_RECENT_TRANSACTION_LIMIT = 10


class TestConfig(Config):
    """In-memory database, no CSRF. Used by the test suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "WARNING"
