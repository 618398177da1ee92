# backend/campuscare/config.py
from __future__ import annotations
import os


class Config:
    # Signs identity tokens handed out by the auth service
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/campuscare.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///campuscare.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Orders must be collected within this window after placement
    ORDER_COLLECT_WINDOW_MINUTES = int(os.environ.get("ORDER_COLLECT_WINDOW_MINUTES", "30"))

    AUTH_TOKEN_MAX_AGE_SECONDS = int(os.environ.get("AUTH_TOKEN_MAX_AGE_SECONDS", "86400"))

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100

    # Attempts for critical sections that lose a lock/version race
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))

    # Student and kiosk frontends (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    )
