# backend/tcms/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tcms.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tcms.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Finalize (print confirmation) retry policy: attempts and linear backoff step
    PAYMENT_FINALIZE_ATTEMPTS = int(os.environ.get("PAYMENT_FINALIZE_ATTEMPTS", "3"))
    PAYMENT_FINALIZE_BACKOFF_SECONDS = float(os.environ.get("PAYMENT_FINALIZE_BACKOFF_SECONDS", "0.1"))

    # "manual" (transcribed from the physical OR) or "sequence" (OR-YYYY-NNNNNN)
    RECEIPT_NUMBER_SOURCE = os.environ.get("RECEIPT_NUMBER_SOURCE", "manual")

    STALE_PENDING_PRINT_HOURS = int(os.environ.get("STALE_PENDING_PRINT_HOURS", "24"))
    PAYMENT_LIST_MAX_LIMIT = int(os.environ.get("PAYMENT_LIST_MAX_LIMIT", "200"))
