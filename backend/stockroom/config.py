# backend/stockroom/config.py
from __future__ import annotations
import os


BATCH_MODE_TRANSACTION = "transaction"
BATCH_MODE_COMPENSATE = "compensate"
BATCH_MODES = {BATCH_MODE_TRANSACTION, BATCH_MODE_COMPENSATE}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockroom.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "transaction": one DB transaction per invoice/order batch.
    # "compensate": each line commits on its own; failures are reversed in reverse order.
    STOCK_BATCH_MODE = os.environ.get("STOCK_BATCH_MODE", BATCH_MODE_TRANSACTION)

    DEFAULT_REORDER_LEVEL = int(os.environ.get("DEFAULT_REORDER_LEVEL", "10"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the API (comma-separated)
    CORS_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if o.strip()
    )

    # Replays of a unit of work after a lock/version conflict
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "5"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCK_RETRY_BACKOFF", "0.05"))
