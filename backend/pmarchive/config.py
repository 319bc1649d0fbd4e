"""Application configuration loaded from environment variables.

Reads from a .env file in the backend directory if present, then
overrides with actual environment variables.
"""

import os
from pathlib import Path

_BACKEND_DIR = Path(__file__).parent.parent


def _load_dotenv():
    """Load .env file from backend directory if it exists."""
    env_file = _BACKEND_DIR / ".env"
    if not env_file.exists():
        return
    for line in env_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        # Don't override existing env vars
        if key not in os.environ:
            os.environ[key] = value


_load_dotenv()


# --- Settings ---

APP_VERSION: str = "1.0.0"

HOST: str = os.environ.get("PMA_HOST", "127.0.0.1")
PORT: int = int(os.environ.get("PMA_PORT", "8000"))
DB_PATH: Path = Path(os.environ.get("PMA_DB_PATH", str(_BACKEND_DIR / "pmarchive.db")))
LOG_LEVEL: str = os.environ.get("PMA_LOG_LEVEL", "info")

# Structured logging: "json" for JSON lines, "text" for human-readable (default)
LOG_FORMAT: str = os.environ.get("PMA_LOG_FORMAT", "text")

# Comma-separated list of allowed origins (the dashboard dev server by default)
_default_origins = "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.environ.get("PMA_CORS_ORIGINS", _default_origins).split(",") if o.strip()
]

# API key for service-to-service authentication (empty = disabled)
API_KEY: str = os.environ.get("PMA_API_KEY", "")

# Header carrying the authenticated caller's user id, set by the auth gateway
USER_HEADER: str = os.environ.get("PMA_USER_HEADER", "X-User-Id")

# Request logging: log all HTTP requests with method, path, status, duration (default disabled)
REQUEST_LOG: bool = os.environ.get("PMA_REQUEST_LOG", "").lower() in ("1", "true", "yes")
