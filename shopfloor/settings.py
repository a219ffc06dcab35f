import os
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"


def _require_env(name: str) -> str:
    value = (os.environ.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _parse_bool_env(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def _parse_optional_float_env(name: str) -> float | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def remote_api_url() -> str:
    return _require_env("REMOTE_API_URL").rstrip("/")


REMOTE_TIMEOUT_SECONDS = _parse_optional_float_env("REMOTE_TIMEOUT_SECONDS")
SHOPFLOOR_TIMEZONE = (os.environ.get("SHOPFLOOR_TIMEZONE") or "Asia/Taipei").strip()
LOCAL_TZ = ZoneInfo(SHOPFLOOR_TIMEZONE)
AUDIT_DB_URL = (
    os.environ.get("SHOPFLOOR_AUDIT_DB_URL") or f"sqlite+pysqlite:///{DATA_DIR / 'shopfloor_audit.db'}"
).strip()
SYNC_ON_STARTUP = _parse_bool_env("SHOPFLOOR_SYNC_ON_STARTUP", "true")
HISTORY_VIEW_LIMIT = int(os.environ.get("HISTORY_VIEW_LIMIT") or "100")

CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
CORS_ALLOW_CREDENTIALS = _parse_bool_env("CORS_ALLOW_CREDENTIALS", "true")
if "*" in CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    CORS_ALLOW_CREDENTIALS = False


def local_now() -> datetime:
    """Current wall-clock time in the configured zone, as a naive datetime."""
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)
