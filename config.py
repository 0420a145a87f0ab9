import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent
INSTANCE_DIR = BASE_DIR / "instance"


def _load_dotenv(path: Path) -> None:
    if not path.exists():
        return
    try:
        for raw in path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, val = line.split("=", 1)
            key = key.strip()
            if not key or key in os.environ:
                continue
            val = val.strip().strip("'").strip('"')
            os.environ[key] = val
    except (OSError, UnicodeDecodeError):
        # Fail open if .env can't be read.
        return


_load_dotenv(BASE_DIR / ".env")


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _resolve_path(value: str, fallback: Path) -> str:
    if not value:
        return str(fallback)
    p = Path(value)
    if not p.is_absolute():
        p = BASE_DIR / p
    return str(p)


APP_NAME = _env("HEALTHPULSE_APP_NAME", "HealthPulse Collect")
APP_VERSION = _env("HEALTHPULSE_APP_VERSION", "0.3.0")
APP_ENV = _env("HEALTHPULSE_ENV", "development").strip().lower()

# Record store: "sqlite" for a local file, "supabase" for the hosted service.
STORE_BACKEND = _env("HEALTHPULSE_STORE", "sqlite").strip().lower()
DB_PATH = _resolve_path(_env("HEALTHPULSE_DB_PATH", ""), INSTANCE_DIR / "healthpulse.db")

SUPABASE_URL = _env("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_ANON_KEY = _env("SUPABASE_ANON_KEY", "").strip()
STORE_TIMEOUT = _env_float("HEALTHPULSE_STORE_TIMEOUT", 30.0)

# Registry submissions undo committed rows when a later step fails.
COMPENSATE_ON_FAILURE = _env_bool("HEALTHPULSE_COMPENSATE_ON_FAILURE", True)

# Upper bound on members in one household registration.
MAX_MEMBERS = _env_int("HEALTHPULSE_MAX_MEMBERS", 50)

# Optional seed credential for the local store's admin_portal table.
ADMIN_USERNAME = _env("HEALTHPULSE_ADMIN_USERNAME", "").strip()
ADMIN_PASSWORD = _env("HEALTHPULSE_ADMIN_PASSWORD", "")

HOST = _env("HEALTHPULSE_HOST", "127.0.0.1")
PORT = _env_int("HEALTHPULSE_PORT", _env_int("PORT", 5000))
DEBUG = _env_bool(
    "HEALTHPULSE_DEBUG",
    APP_ENV in ("dev", "development", "local"),
)

SECRET_KEY = _env("HEALTHPULSE_SECRET_KEY", "")
LOG_LEVEL = _env("HEALTHPULSE_LOG_LEVEL", "INFO").strip().upper() or "INFO"
CORS_ORIGINS = [o.strip() for o in _env("HEALTHPULSE_CORS_ORIGINS", "*").split(",") if o.strip()]
