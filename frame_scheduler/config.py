import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")

# Calendar configuration
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "America/Chicago")
WORK_DAY_START = os.getenv("WORK_DAY_START", "08:00")  # HH:MM, local time
WORK_DAY_END = os.getenv("WORK_DAY_END", "17:00")
# Comma separated ISO weekday numbers, Monday=0
WORKING_DAYS = os.getenv("WORKING_DAYS", "0,1,2,3,4")
MAX_DAILY_HOURS = float(os.getenv("MAX_DAILY_HOURS", "8"))
SLOT_INTERVAL_MINUTES = int(os.getenv("SLOT_INTERVAL_MINUTES", "30"))
TASK_BUFFER_MINUTES = int(os.getenv("TASK_BUFFER_MINUTES", "15"))
SCHEDULING_HORIZON_DAYS = int(os.getenv("SCHEDULING_HORIZON_DAYS", "60"))

# Confirmation codes shown to customers (JF = Jay's Frames)
CONFIRMATION_PREFIX = os.getenv("CONFIRMATION_PREFIX", "JF")

# Overload is advisory unless explicitly switched on
ENFORCE_DAILY_CAPACITY = os.getenv("ENFORCE_DAILY_CAPACITY", "false").lower() == "true"

# Transient database failure retries
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_BASE_DELAY = float(os.getenv("DB_RETRY_BASE_DELAY", "0.1"))
DB_LOCK_TIMEOUT_SECONDS = float(os.getenv("DB_LOCK_TIMEOUT_SECONDS", "15"))

# Notification collaborator - receives due reminders, handles actual delivery
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

# Background worker (ARQ)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")


def _parse_hhmm(value: str):
    from datetime import time

    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def default_scheduling_config():
    """Build the scheduling configuration from environment settings"""
    from .domain.scheduling.calendar import SchedulingConfig

    return SchedulingConfig(
        timezone=SCHEDULER_TIMEZONE,
        working_days=frozenset(int(d) for d in WORKING_DAYS.split(",") if d.strip()),
        day_start=_parse_hhmm(WORK_DAY_START),
        day_end=_parse_hhmm(WORK_DAY_END),
        max_daily_hours=MAX_DAILY_HOURS,
        slot_interval_minutes=SLOT_INTERVAL_MINUTES,
        task_buffer_minutes=TASK_BUFFER_MINUTES,
        horizon_days=SCHEDULING_HORIZON_DAYS,
        confirmation_prefix=CONFIRMATION_PREFIX,
        enforce_daily_capacity=ENFORCE_DAILY_CAPACITY,
        retry_attempts=DB_RETRY_ATTEMPTS,
        retry_base_delay=DB_RETRY_BASE_DELAY,
    )
