import os


def _default_sqlite_url() -> str:
    data_dir = "/data"
    if os.path.isdir(data_dir):
        return f"sqlite:////{os.path.join(data_dir.lstrip('/'), 'familyboard.db')}"
    return "sqlite:///familyboard.db"


DATABASE_URL = os.getenv("DATABASE_URL", _default_sqlite_url())
SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-secret")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))

GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-preview-05-20")
GEMINI_TIMEOUT = float(os.getenv("GEMINI_TIMEOUT", "30"))

# Local calendar used for "today", streak days and daily assignments.
TIMEZONE = os.getenv("TIMEZONE", "Europe/Paris")
STREAK_WINDOW_DAYS = int(os.getenv("STREAK_WINDOW_DAYS", "30"))
HINT_COST = int(os.getenv("HINT_COST", "10"))
ANALYSIS_TTL_HOURS = int(os.getenv("ANALYSIS_TTL_HOURS", "24"))


def gemini_api_key() -> str:
    # Read on every call so a key added at runtime is picked up.
    return os.getenv("GEMINI_API_KEY", "")
