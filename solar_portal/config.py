# solar_portal/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
# load .env into process env vars
load_dotenv(ROOT / ".env")


def _as_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "y", "on")


def _as_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        return default


class Settings:
    # App
    ENV: str = os.getenv("ENV", "dev")
    PORT: int = _as_int("PORT", 8000)
    TZ: str = os.getenv("TZ", "Europe/Malta")

    # Links
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
    BACKOFFICE_URL: str = os.getenv("BACKOFFICE_URL", "http://localhost:3000").rstrip("/")

    # Secrets
    CRON_SECRET: str = (os.getenv("CRON_SECRET") or "").strip()
    # unsubscribe / signing links; falls back to the cron secret
    PORTAL_CONTRACT_SECRET: str = (os.getenv("PORTAL_CONTRACT_SECRET") or os.getenv("CRON_SECRET") or "").strip()

    # CRM (Zoho)
    ZOHO_CLIENT_ID: str = os.getenv("ZOHO_CLIENT_ID", "").strip()
    ZOHO_CLIENT_SECRET: str = os.getenv("ZOHO_CLIENT_SECRET", "").strip()
    ZOHO_REFRESH_TOKEN: str = os.getenv("ZOHO_REFRESH_TOKEN", "").strip()
    ZOHO_ACCOUNTS_URL: str = os.getenv("ZOHO_ACCOUNTS_URL", "https://accounts.zoho.eu").rstrip("/")
    ZOHO_API_DOMAIN: str = os.getenv("ZOHO_API_DOMAIN", "https://www.zohoapis.eu").rstrip("/")

    # Chat notifications (Telegram)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "").strip()

    # Outbound webhook (n8n)
    N8N_API_URL: str = os.getenv("N8N_API_URL", "").rstrip("/")
    N8N_WEBHOOK_SECRET: str = os.getenv("N8N_WEBHOOK_SECRET", "").strip()

    # Twilio
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
    TWILIO_API_KEY: str = os.getenv("TWILIO_API_KEY", "").strip()
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
    TWILIO_MESSAGING_SERVICE_SID: str = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "").strip()
    TWILIO_FROM: str = os.getenv("TWILIO_FROM", "").strip()
    SMS_DRY_RUN: bool = _as_bool("SMS_DRY_RUN", False)

    # Email (sent through the CRM mail relay)
    EMAIL_DRY_RUN: bool = _as_bool("EMAIL_DRY_RUN", False)
    FROM_NAME: str = os.getenv("FROM_NAME", "GhawdeX Solar")
    FROM_EMAIL: str = os.getenv("FROM_EMAIL", "info@ghawdex.pro")
    SALES_PHONE: str = os.getenv("SALES_PHONE", "+356 7905 5156")

    # Jobs
    FOLLOW_UP_BATCH_SIZE: int = _as_int("FOLLOW_UP_BATCH_SIZE", 100)
    SESSION_ABANDON_MINUTES: int = _as_int("SESSION_ABANDON_MINUTES", 30)
    SESSION_CLEANUP_BATCH_SIZE: int = _as_int("SESSION_CLEANUP_BATCH_SIZE", 100)
    CALLBACK_REMINDER_HOURS: int = _as_int("CALLBACK_REMINDER_HOURS", 24)
    CALLBACK_REMINDER_LIMIT: int = _as_int("CALLBACK_REMINDER_LIMIT", 10)
    TOKEN_MAX_AGE_DAYS: int = _as_int("TOKEN_MAX_AGE_DAYS", 7)


# process-wide settings, read once at import
settings = Settings()
