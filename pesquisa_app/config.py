# pesquisa_app/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# Load the .env from the project root so the settings are also available
# when a module is imported indirectly (alembic, tests).
PROJECT_ROOT_DIR = Path(__file__).resolve().parent.parent
dotenv_path = PROJECT_ROOT_DIR / ".env"
if dotenv_path.exists():
    load_dotenv(dotenv_path)
else:
    load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL")
SQL_ECHO = _env_bool("SQL_ECHO", False)

# --- Admin bootstrap ---
# Example .env:
# ADMIN_EMAIL="admin@example.com"
# ADMIN_PASSWORD="change-me"
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "secret")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrador")

# --- Auth ---
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
EMAIL_TOKEN_TTL_HOURS = int(os.getenv("EMAIL_TOKEN_TTL_HOURS", "48"))
FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

# --- Researcher dashboard ---
ASSIGNMENT_POLL_INTERVAL_SECONDS = float(
    os.getenv("ASSIGNMENT_POLL_INTERVAL_SECONDS", "300")
)
DASHBOARD_DEBOUNCE_SECONDS = float(os.getenv("DASHBOARD_DEBOUNCE_SECONDS", "0.2"))
PURGE_ORPHANS_ON_SURVEY_DELETE = _env_bool("PURGE_ORPHANS_ON_SURVEY_DELETE", True)

# --- CORS ---
FALLBACK_ORIGINS = [
    "http://127.0.0.1:5173",
    "http://localhost:5173",
]


def allowed_origins() -> list:
    env_origins = os.getenv("BACKEND_ALLOWED_ORIGINS")
    if env_origins:
        origins = [origin.strip() for origin in env_origins.split(",") if origin.strip()]
        if origins:
            return origins
    return list(FALLBACK_ORIGINS)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Server ---
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
