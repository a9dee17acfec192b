"""Runtime configuration read from the environment (and an optional .env file)."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Storage
DB_PATH = Path(os.getenv("FAMILYTREE_DB_PATH", "./familytree.db"))
PERSIST_RETRY_ATTEMPTS = int(os.getenv("PERSIST_RETRY_ATTEMPTS", "3"))
PERSIST_RETRY_BACKOFF = float(os.getenv("PERSIST_RETRY_BACKOFF", "0.5"))  # seconds, doubled per attempt

# Copilot CLI server (start separately with: copilot --server --port 4321)
COPILOT_CLI_URL = os.getenv("COPILOT_CLI_URL", "localhost:4321")
COPILOT_MODEL = os.getenv("COPILOT_MODEL", "gpt-4.1")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173",
    ).split(",")
    if origin.strip()
]
