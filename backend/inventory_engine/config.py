# backend/inventory_engine/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/inventory_engine.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///inventory_engine.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tenant context is injected upstream; never resolved here
    ORG_CONTEXT_HEADER = os.environ.get("ORG_CONTEXT_HEADER", "X-Org-Id")

    # Range operations (BulkCreate, bulk update) commit in batches of this size
    ALLOCATION_BATCH_SIZE = int(os.environ.get("ALLOCATION_BATCH_SIZE", "100"))

    # Strict less-than: a bucket at exactly 10% is not LOW
    LOW_AVAILABILITY_THRESHOLD_PCT = int(os.environ.get("LOW_AVAILABILITY_THRESHOLD_PCT", "10"))

    DEFAULT_DAILY_QUANTITY = int(os.environ.get("DEFAULT_DAILY_QUANTITY", "10"))

    # Attempts include the first try: 2 == one retry
    SELECTION_RETRY_ATTEMPTS = int(os.environ.get("SELECTION_RETRY_ATTEMPTS", "2"))
    COUNTER_RETRY_ATTEMPTS = int(os.environ.get("COUNTER_RETRY_ATTEMPTS", "2"))

    RELEASE_WARNING_WINDOW_DAYS = int(os.environ.get("RELEASE_WARNING_WINDOW_DAYS", "30"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
