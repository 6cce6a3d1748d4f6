"""Server launcher for the Inventory Tracker API.

This module provides a small entrypoint to initialize the local store, check
the cloud sync settings and run the FastAPI app via uvicorn.

Copyright (c) Bryn Gwalad 2025
"""

import logging
import os

from dotenv import load_dotenv

# Load .env from repo root so init_db and the sync backend pick up config
load_dotenv()

from utils.database import init_db
from core.gateway import build_gateway
from core.sync import SyncMode

logger = logging.getLogger("inventory_server")


def check_sync_config() -> str:
    """Fail fast on a bad SYNC_MODE/SYNC_BACKEND instead of at app startup.

    Returns a one-line description of the configured sync setup.
    """
    mode = os.getenv("SYNC_MODE", "manual")
    try:
        SyncMode(mode)
    except ValueError:
        raise SystemExit(f"Invalid SYNC_MODE {mode!r}; expected auto or manual")
    try:
        gateway = build_gateway()
    except ValueError as exc:
        raise SystemExit(f"Invalid sync configuration: {exc}")
    return f"backend={gateway.name} mode={mode}"


def main() -> None:
    """Initialize DB and run uvicorn.

    Environment variables:
    - HOST: listen address (default 127.0.0.1)
    - PORT: listen port (default 8000)
    - RELOAD: set to '1' to enable uvicorn reload
    - SYNC_BACKEND: mock, file, script or sheets (default mock)
    - SYNC_MODE: auto or manual (default manual)
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    # Initialize DB (creates tables if needed)
    init_db()
    logger.info("Cloud sync: %s", check_sync_config())

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "0") in ("1", "true", "True")

    import uvicorn

    # uvicorn can only reload an app given as an import string
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
