"""Database helpers for the Inventory Tracker.

The local SQLite file is the Entity Store's persistent tier. Utilities
provided:
- initialize the SQLite engine
- create sessions
- load the three collections into a Snapshot
- replace whole collections after a mutation or a pull
- read/write the last-sync timestamp

The default local SQLite file is `database/database.db` (configurable via
the `SQLITE_FILE` environment variable). The module ensures the parent
directory exists before creating the SQLAlchemy engine so the database can
be created on first use.

Copyright (c) Bryn Gwalad 2025
"""

import os
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv
from sqlalchemy import delete
from sqlmodel import Session, SQLModel, create_engine, select

# Load environment variables from .env if present
load_dotenv()

# Import models (absolute import so this works when scripts run from
# different CWDs).
from api.models import InventoryItemRow, Snapshot, SyncMeta, TransferLogRow, WarehouseRow
from api.models import InventoryItem, TransferLog, Warehouse

# Default SQLite file location. Honor the SQLITE_FILE env var when set.
sqlite_file_name = os.getenv("SQLITE_FILE", "database/database.db")
sqlite_url = f"sqlite:///{sqlite_file_name}"

# Ensure parent directory exists before creating the engine
db_path = Path(sqlite_file_name)
try:
    db_path.parent.mkdir(parents=True, exist_ok=True)
except OSError:
    # If directory creation fails, let create_engine raise a clearer error
    # later rather than crashing during import.
    pass

# Create the engine (no echo by default)
engine = create_engine(sqlite_url, echo=False)

LAST_SYNC_KEY = "last_sync"

# collection name -> (row table, record model)
TABLES = {
    "warehouses": (WarehouseRow, Warehouse),
    "items": (InventoryItemRow, InventoryItem),
    "logs": (TransferLogRow, TransferLog),
}


def init_db() -> None:
    """Create database tables from SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    return Session(engine)


def load_snapshot(session: Optional[Session] = None) -> Snapshot:
    """Read all three collections. Logs come back newest first."""
    own_session = session is None
    session = session or get_session()
    try:
        collections = {}
        for name, (row_model, record_model) in TABLES.items():
            rows = session.exec(select(row_model)).all()
            collections[name] = [record_model(**row.model_dump()) for row in rows]
        collections["logs"].sort(key=lambda log: log.timestamp, reverse=True)
        return Snapshot(**collections)
    finally:
        if own_session:
            session.close()


def is_empty() -> bool:
    with get_session() as session:
        return all(session.exec(select(row_model)).first() is None for row_model, _ in TABLES.values())


def save_snapshot(snapshot: Snapshot, collections: Iterable[str] = ("warehouses", "items", "logs")) -> None:
    """Replace the named collections wholesale in one transaction."""
    with get_session() as session:
        for name in collections:
            row_model, _ = TABLES[name]
            session.exec(delete(row_model))
            for record in getattr(snapshot, name):
                session.add(row_model(**record.model_dump()))
        session.commit()


def get_last_sync() -> Optional[str]:
    with get_session() as session:
        meta = session.get(SyncMeta, LAST_SYNC_KEY)
        return meta.value if meta else None


def set_last_sync(value: str) -> None:
    with get_session() as session:
        meta = session.get(SyncMeta, LAST_SYNC_KEY) or SyncMeta(key=LAST_SYNC_KEY)
        meta.value = value
        session.add(meta)
        session.commit()


class EntityStore:
    """Thin object facade over the module functions, handed to the session."""

    def load(self) -> Snapshot:
        return load_snapshot()

    def save(self, snapshot: Snapshot, collections: Iterable[str] = ("warehouses", "items", "logs")) -> None:
        save_snapshot(snapshot, collections)

    def is_empty(self) -> bool:
        return is_empty()

    def get_last_sync(self) -> Optional[str]:
        return get_last_sync()

    def set_last_sync(self, value: str) -> None:
        set_last_sync(value)


# Ensure tables exist on import: tests and scripts may use the store before
# the application startup handler runs.
try:
    SQLModel.metadata.create_all(engine)
except Exception:
    pass
