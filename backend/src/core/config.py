"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    # Try multiple possible locations for .env file
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # .env (when run from src)
        pathlib.Path.cwd() / ".env",  # .env in current directory
        pathlib.Path.cwd().parent / ".env",  # .env in parent directory
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _get_int_list(name: str, default: list[int]) -> list[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return [int(part.strip()) for part in raw.split(",") if part.strip()]


# Configuration constants with defaults
# These match the environment variables defined in .env.example
def get_database_url():
    """
    Get the async database URL from environment.

    Plain driver URLs are rewritten to their asyncio drivers so the same
    DATABASE_URL works for migrations tooling and the async engine.
    """
    url = os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://localhost/clinic_planning_dev"
    )
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite:///"):
        url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url

DATABASE_URL = get_database_url()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# External slot-computation service
SCHEDULING_SERVICE_URL = os.getenv("SCHEDULING_SERVICE_URL", "http://localhost:8080/api/planning")
SCHEDULING_SERVICE_TOKEN = os.getenv("SCHEDULING_SERVICE_TOKEN", "")

# Slot search tuning
SLOT_FETCH_TIMEOUT_SECONDS = _get_float("SLOT_FETCH_TIMEOUT_SECONDS", 10.0)
PROVIDER_CHECK_TIMEOUT_SECONDS = _get_float("PROVIDER_CHECK_TIMEOUT_SECONDS", 5.0)
SEARCH_WINDOW_DAYS = int(os.getenv("SEARCH_WINDOW_DAYS", "7"))

# Python weekday numbers (0=Monday ... 6=Sunday) that are never searched
NON_WORKING_WEEKDAYS = _get_int_list("NON_WORKING_WEEKDAYS", [6])

# Clinic-local clock
CLINIC_UTC_OFFSET_HOURS = _get_float("CLINIC_UTC_OFFSET_HOURS", 1.0)

# Optional JSON weekly schedule for clinic operating hours
CLINIC_OPERATING_HOURS = os.getenv("CLINIC_OPERATING_HOURS", "")
