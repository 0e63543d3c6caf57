"""Project-wide settings and defaults."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()  # Load .env file if present

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("RENEWALS_DATA_DIR", str(PROJECT_ROOT / "data")))

# Store backend: "file" (local JSON) or "http" (remote backend)
STORE_BACKEND = os.environ.get("STORE_BACKEND", "file").lower()
STORE_PATH = os.environ.get("STORE_PATH", str(DATA_DIR / "renewals.json"))
STORE_BASE_URL = os.environ.get("STORE_BASE_URL", "")
STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "30"))

# Sync driver
SYNC_INTERVAL_SECONDS = int(os.environ.get("SYNC_INTERVAL_SECONDS", "60"))
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"

# Web
FLASK_SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-renewals-key")

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
