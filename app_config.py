from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

ENV_FILE = os.environ.get("GLUG_ENV_FILE", os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
    """Split one `.env` line into (key, value); comments, blanks and `export ` prefixes are handled."""
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None

    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip("'").strip('"')


def load_env_file(path: str = ENV_FILE) -> int:
    """Seed os.environ from a `.env` file without overriding real variables. Returns keys applied."""
    if not os.path.exists(path):
        return 0

    applied = 0
    try:
        with open(path, "r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                pair = parse_env_line(raw_line)
                if pair and pair[0] not in os.environ:
                    os.environ[pair[0]] = pair[1]
                    applied += 1
    except OSError:
        logger.exception("Failed to read %s", path)
    return applied


load_env_file()

try:
    DATABASE_URL = os.environ["DATABASE_URL"]
except KeyError as exc:
    raise RuntimeError("DATABASE_URL environment variable is required") from exc

SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

SUPABASE_URL = os.environ.get("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
AUTH_TIMEOUT_SECONDS = float(os.environ.get("AUTH_TIMEOUT_SECONDS", "5"))

TICKET_PREFIX = os.environ.get("TICKET_PREFIX", "GLUG").strip() or "GLUG"
DEV_USER_ID = os.environ.get("DEV_USER_ID", "").strip()

CORS_ALLOWED_ORIGINS = {
    origin.strip()
    for origin in os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
    ).split(",")
    if origin.strip()
}


def dev_user_id() -> str:
    """Profile to act as while auth is not configured; ignored once it is."""
    if auth_configured():
        return ""
    return DEV_USER_ID


def auth_configured() -> bool:
    """True when user-facing auth calls can be made (sign-in, sign-up, session lookup)."""
    return bool(SUPABASE_URL and SUPABASE_ANON_KEY)


def admin_configured() -> bool:
    return bool(SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY)
