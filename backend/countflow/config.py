# backend/countflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Workflow database (requests, count items, audits, approvals, history)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///countflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Read-only catalog/inventory source. Unset means no catalog client is
    # opened and request creation reports the catalog as unavailable.
    CATALOG_DATABASE_URL = os.environ.get("CATALOG_DATABASE_URL")
    CATALOG_MAX_PRODUCTS = int(os.environ.get("CATALOG_MAX_PRODUCTS", "1000"))
    CATALOG_CHUNK_SIZE = int(os.environ.get("CATALOG_CHUNK_SIZE", "500"))

    # Fixed seed makes audit sampling reproducible (tests, re-runs)
    AUDIT_SAMPLING_SEED = os.environ.get("AUDIT_SAMPLING_SEED")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
