# backend/opsdesk/config.py
from __future__ import annotations
import os


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the working directory unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///opsdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Resolved permissions may be served from cache for this long
    PERMISSIONS_CACHE_TTL_SECONDS = int(os.environ.get("PERMISSIONS_CACHE_TTL_SECONDS", "30"))

    # Required header value for bootstrapping the very first superadmin
    SUPERADMIN_INIT_TOKEN = os.environ.get("SUPERADMIN_INIT_TOKEN")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    ALLOWED_ORIGINS = _split_origins(
        os.environ.get("ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )
