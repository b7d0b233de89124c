import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _get_list(name: str, default: str) -> list[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


class Settings:
    APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
    APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Kuala_Lumpur").strip()
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    CORS_ORIGINS = _get_list("CORS_ORIGINS", "*")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ess.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", True)
    TX_RETRIES = _get_int("TX_RETRIES", 1)

    AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "change-me").strip()
    AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256").strip()
    SESSION_HOURS = _get_int("SESSION_HOURS", 8)
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "ess_session").strip()
    COOKIE_SECURE = _get_bool("COOKIE_SECURE", APP_ENV == "production")

    MEDICAL_BACKDATE_DAYS = _get_int("MEDICAL_BACKDATE_DAYS", 7)
    OT_FLAG_MINUTES = _get_int("OT_FLAG_MINUTES", 60)
    OT_DEFAULT_THRESHOLD_MINUTES = _get_int("OT_DEFAULT_THRESHOLD_MINUTES", 510)
    SCHEDULE_LEAD_DAYS = _get_int("SCHEDULE_LEAD_DAYS", 2)
    STALE_REQUEST_DAYS = _get_int("STALE_REQUEST_DAYS", 30)
    DEFAULT_MAX_CARRY_FORWARD = _get_int("DEFAULT_MAX_CARRY_FORWARD", 5)

    GEOCODER_URL = os.getenv("GEOCODER_URL", "").strip()
    GEOCODER_TIMEOUT_SECONDS = _get_int("GEOCODER_TIMEOUT_SECONDS", 5)

    HOLIDAY_COUNTRY = os.getenv("HOLIDAY_COUNTRY", "MY").strip().upper()


settings = Settings()
