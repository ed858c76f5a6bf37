import os
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv, find_dotenv

# Load .env robustly (works when called from the project root or a subdirectory)
_env = find_dotenv(usecwd=True)
if not _env:
    p = Path(__file__).resolve().parent.parent / ".env"
    if p.exists():
        _env = str(p)
load_dotenv(dotenv_path=_env or ".env", override=False)

MOVIDESK_TOKEN = os.getenv("MOVIDESK_TOKEN")
assert MOVIDESK_TOKEN, "MOVIDESK_TOKEN missing in .env"

DATABASE_URL = os.getenv("DATABASE_URL")
assert DATABASE_URL, "DATABASE_URL missing in .env (Postgres connection string)."
_u = urlparse(DATABASE_URL)
assert _u.hostname and _u.scheme.startswith("postgres"), "Malformed DATABASE_URL"

MOVIDESK_BASE_URL = os.getenv("MOVIDESK_BASE_URL", "https://api.movidesk.com/public/v1").rstrip("/")
CHECKPOINT_FILE = os.getenv("CHECKPOINT_FILE", "ticket_ids.txt")

# Observed API limit: 10 detail requests per minute
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "10"))
RATE_LIMIT_WINDOW_SECS = float(os.getenv("RATE_LIMIT_WINDOW_SECS", "60"))

HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "60"))
HTTP_MAX_ATTEMPTS = int(os.getenv("HTTP_MAX_ATTEMPTS", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
