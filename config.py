import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, value))


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    COACH_PHONE_NUMBER = os.environ.get("COACH_PHONE_NUMBER")

    # --- Local time ---
    # Must be a zone without DST transitions; follow-ups land at local noon.
    LOCAL_TIMEZONE = os.environ.get("LOCAL_TIMEZONE", "America/Phoenix")

    # --- Dispatcher ---
    REMINDER_BATCH_SIZE = _env_int("REMINDER_BATCH_SIZE", 60, 1, 200)
    REMINDER_WINDOW_MINUTES = _env_int("REMINDER_WINDOW_MINUTES", 15, 1, 120)
    UNDELIVERABLE_POLICY = os.environ.get("UNDELIVERABLE_POLICY", "undeliverable")
    COACH_CONFIRMATIONS = _env_bool("COACH_CONFIRMATIONS", True)

    # --- Scheduling ---
    FOLLOW_UP_BACKFILL = _env_bool("FOLLOW_UP_BACKFILL", False)
    SESSION_DAY_OF_REMINDERS = _env_bool("SESSION_DAY_OF_REMINDERS", False)
    STAGE_TABLE_FILE = os.environ.get("STAGE_TABLE_FILE")

    # --- Message copy and deep links ---
    MESSAGE_PREFIX = os.environ.get("MESSAGE_PREFIX", "Davids Soccer Training. DO NOT REPLY")
    MESSAGE_SUFFIX = os.environ.get(
        "MESSAGE_SUFFIX", "For any questions reach out to Coach David: 7206122979"
    )
    PARENT_PROFILE_URL_TEMPLATE = os.environ.get("PARENT_PROFILE_URL_TEMPLATE")
    PARENT_FEEDBACK_URL_TEMPLATE = os.environ.get("PARENT_FEEDBACK_URL_TEMPLATE")
    PARENT_TESTS_URL_TEMPLATE = os.environ.get("PARENT_TESTS_URL_TEMPLATE")

    # --- Manual trigger endpoints ---
    CRON_SECRET = os.environ.get("CRON_SECRET")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
