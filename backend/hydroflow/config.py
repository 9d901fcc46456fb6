# backend/hydroflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/hydroflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///hydroflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bulk order generation commits one transaction per batch
    GENERATION_BATCH_SIZE = int(os.environ.get("GENERATION_BATCH_SIZE", "50"))

    # Retry policy for transient DB faults (deadlocks, optimistic lock conflicts)
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF = float(os.environ.get("TX_RETRY_BACKOFF", "0.1"))

    # Optional callable(event_type: str, payload: dict) for outbound notifications
    NOTIFICATION_HOOK = None
