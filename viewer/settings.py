import os
from pathlib import Path
from dotenv import load_dotenv, find_dotenv

# Load .env robustly (works when called from root or viewer/)
_env = find_dotenv(usecwd=True)
if not _env:
    p = Path(__file__).resolve().parent.parent / ".env"
    if p.exists():
        _env = str(p)
load_dotenv(dotenv_path=_env or ".env", override=False)

# Same DSN the backup writes to
DATABASE_URL = os.getenv("DATABASE_URL")
assert DATABASE_URL, "DATABASE_URL missing in .env for viewer."

# Viewer settings
PER_PAGE_DEFAULT = int(os.getenv("VIEWER_PER_PAGE", "25"))
CHECKPOINT_FILE = os.getenv("CHECKPOINT_FILE", "ticket_ids.txt")
