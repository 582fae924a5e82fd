import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

SLOT_GENERATION_HORIZON_DAYS = _get_int(os.getenv("SLOT_GENERATION_HORIZON_DAYS"), 28)
SLOT_GENERATION_MAX_WORKERS = _get_int(os.getenv("SLOT_GENERATION_MAX_WORKERS"), 4)

REMINDER_DISPATCH_BATCH_SIZE = _get_int(os.getenv("REMINDER_DISPATCH_BATCH_SIZE"), 100)
REMINDER_DISPATCH_MIN_INTERVAL_SECONDS = _get_float(os.getenv("REMINDER_DISPATCH_MIN_INTERVAL_SECONDS"), 1.0)
NOTIFICATION_SEND_TIMEOUT_SECONDS = _get_float(os.getenv("NOTIFICATION_SEND_TIMEOUT_SECONDS"), 10.0)
REMINDER_CLAIM_EXPIRY_MINUTES = _get_int(os.getenv("REMINDER_CLAIM_EXPIRY_MINUTES"), 15)

# JSON list of reminder rules; the built-in defaults apply when unset.
REMINDER_RULES_PATH = os.getenv("REMINDER_RULES_PATH", "")

DEFAULT_PHONE_COUNTRY_CODE = os.getenv("DEFAULT_PHONE_COUNTRY_CODE", "1")

def validate_runtime_config() -> None:
    if NOTIFICATION_SEND_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("NOTIFICATION_SEND_TIMEOUT_SECONDS must be positive.")
    if REMINDER_DISPATCH_BATCH_SIZE <= 0:
        raise RuntimeError("REMINDER_DISPATCH_BATCH_SIZE must be positive.")
    if REMINDER_DISPATCH_MIN_INTERVAL_SECONDS < 0:
        raise RuntimeError("REMINDER_DISPATCH_MIN_INTERVAL_SECONDS cannot be negative.")
    if SLOT_GENERATION_HORIZON_DAYS <= 0:
        raise RuntimeError("SLOT_GENERATION_HORIZON_DAYS must be positive.")
    if REMINDER_RULES_PATH and not os.path.exists(REMINDER_RULES_PATH):
        raise RuntimeError(f"REMINDER_RULES_PATH does not exist: {REMINDER_RULES_PATH}")
