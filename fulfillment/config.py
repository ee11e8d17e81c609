import os
from pathlib import Path
from dotenv import load_dotenv

# .env sits at the project root, next to pyproject.toml
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _float(name: str, default: float, *fallbacks: str) -> float:
    for key in (name, *fallbacks):
        raw = os.getenv(key)
        if raw not in (None, ""):
            try:
                return float(raw)
            except ValueError:
                break
    return default


DEFAULT_COMMISSION_PCT = max(
    0.0, _float("MARKETPLACE_COMMISSION_PCT", 20.0, "COMMISSION_PCT_DEFAULT")
)
CURRENCY = (os.getenv("MARKETPLACE_CURRENCY") or "usd").strip().lower()
PUBLIC_WEB_BASE_URL = (
    os.getenv("PUBLIC_WEB_BASE_URL") or "http://localhost:5173"
).rstrip("/")

LICENSE_SERVICE_URL = (os.getenv("LICENSE_SERVICE_URL") or "").rstrip("/")
LICENSE_SERVICE_TOKEN = os.getenv("LICENSE_SERVICE_TOKEN") or ""
LICENSE_SERVICE_TIMEOUT = _float("LICENSE_SERVICE_TIMEOUT", 15.0)
LICENSE_PROVIDER_NAME = os.getenv("LICENSE_PROVIDER_NAME") or "license-service"

MAILER_API_URL = os.getenv("MAILER_API_URL") or ""
MAILER_API_KEY = os.getenv("MAILER_API_KEY") or ""
MAILER_SENDER = os.getenv("MAILER_SENDER") or "no-reply@localhost"
MAILER_TIMEOUT = _float("MAILER_TIMEOUT", 15.0)

SUBSCRIPTION_AFFILIATE_RATE = _float("SUBSCRIPTION_AFFILIATE_RATE", 0.15)

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()
LOG_JSON = (os.getenv("LOG_JSON") or "").lower() in ("1", "true", "yes")
SQL_ECHO = (os.getenv("SQL_ECHO") or "").lower() in ("1", "true", "yes")
