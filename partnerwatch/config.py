"""Application configuration loaded from environment variables."""

import os
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
COOKIES_PATH = Path(os.getenv("COOKIES_PATH", DATA_DIR / "cookies.json"))
DB_PATH = Path(os.getenv("DB_PATH", DATA_DIR / "partnerwatch.db"))

# Credentials
PORTAL_USERNAME = os.getenv("PORTAL_USERNAME", "")
PORTAL_PASSWORD = os.getenv("PORTAL_PASSWORD", "")
DEVICE_NAME = os.getenv("DEVICE_NAME", "partnerwatch")

# Stats page
PORTAL_APP_ID = os.getenv("PORTAL_APP_ID", "")
STATS_URL = os.getenv(
    "STATS_URL",
    "https://partner.steampowered.com/app/details/"
    f"{PORTAL_APP_ID}/?dateStart=2000-01-01&dateEnd={date.today().isoformat()}",
)

# Polling (0 disables)
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "600"))
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
AUTH_CODE_TIMEOUT = float(os.getenv("AUTH_CODE_TIMEOUT", "120"))

# Session manager
SESSION_MANAGER_HOST = os.getenv("SESSION_MANAGER_HOST", "127.0.0.1")
SESSION_MANAGER_PORT = int(os.getenv("SESSION_MANAGER_PORT", "8025"))
SESSION_MANAGER_URL = f"http://{SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}"

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "30000"))

# HTTP
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    COOKIES_PATH.parent.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
