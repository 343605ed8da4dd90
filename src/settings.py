"""
settings.py

Centralised configuration for the Student Project Tracker.

Every value is a typed module-level constant read from the environment with
a safe default, so the service starts without any extra configuration.  A
``.env`` file in the working directory is honoured.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# --- App ---
APP_VERSION: str = "1.0.0"
HOST: str = os.getenv("TRACKER_HOST", "127.0.0.1")
PORT: int = int(os.getenv("TRACKER_PORT", "8000"))

# --- Storage ---
DATA_DIR: str = os.getenv("TRACKER_DATA_DIR", "./data")
PROJECTS_STORAGE_KEY: str = "projects-data"
NOTIFICATION_CONFIG_STORAGE_KEY: str = "telegram-config"

# --- Attachments ---
MAX_ATTACHMENT_BYTES: int = int(
    os.getenv("TRACKER_MAX_ATTACHMENT_BYTES", str(5 * 1024 * 1024))
)

# --- Bot API ---
TELEGRAM_API_BASE: str = os.getenv(
    "TRACKER_TELEGRAM_API_BASE", "https://api.telegram.org"
)
TELEGRAM_TIMEOUT_SECONDS: float = float(os.getenv("TRACKER_TELEGRAM_TIMEOUT", "10"))

# --- Student messages ---
SENDER_NAME: str = os.getenv("TRACKER_SENDER_NAME", "")
