"""Configuration for the consultation queue service."""
import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Database connection
DATABASE_URL = os.getenv("DATABASE_URL")
# Must match the channel pg_notify() uses in sql/schema.sql
LISTEN_CHANNEL = os.getenv("LISTEN_CHANNEL", "queue_entries_changes")

# Email function (HTTP endpoint that renders and sends the templates)
EMAIL_FUNCTION_URL = os.getenv("EMAIL_FUNCTION_URL")
EMAIL_FUNCTION_TOKEN = os.getenv("EMAIL_FUNCTION_TOKEN")
EMAIL_TIMEOUT = int(os.getenv("EMAIL_TIMEOUT", "30"))  # seconds

# Queue behaviour
MINUTES_PER_PERSON = int(os.getenv("MINUTES_PER_PERSON", "12"))
TOP_POSITION_THRESHOLD = int(os.getenv("TOP_POSITION_THRESHOLD", "3"))
RECONCILE_INTERVAL = int(os.getenv("RECONCILE_INTERVAL", "0"))  # seconds, 0 disables
# Office hours are local to this zone
OFFICE_TIMEZONE = os.getenv("OFFICE_TIMEZONE", "Africa/Johannesburg")

# Admin codes
ADMIN_CODE_PREFIX = os.getenv("ADMIN_CODE_PREFIX", "AFMA")


def validate_config():
    """Validate required configuration."""
    errors = []

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if not EMAIL_FUNCTION_URL:
        errors.append("EMAIL_FUNCTION_URL is required")
    elif not EMAIL_FUNCTION_URL.startswith(("http://", "https://")):
        errors.append(f"EMAIL_FUNCTION_URL must be an http(s) URL: {EMAIL_FUNCTION_URL}")

    if not EMAIL_FUNCTION_TOKEN:
        errors.append("EMAIL_FUNCTION_TOKEN is required")

    if MINUTES_PER_PERSON <= 0:
        errors.append(f"MINUTES_PER_PERSON must be positive: {MINUTES_PER_PERSON}")

    if TOP_POSITION_THRESHOLD < 1:
        errors.append(f"TOP_POSITION_THRESHOLD must be at least 1: {TOP_POSITION_THRESHOLD}")

    try:
        ZoneInfo(OFFICE_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"OFFICE_TIMEZONE is not a known time zone: {OFFICE_TIMEZONE}")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
