"""HTTP API for the Inventory Tracker.

Provides endpoints for warehouse administration, item receipt/edit/delete,
batch transfers, bulk import, transfer history, item tracking, dashboard
statistics and cloud sync (backup/restore against the configured remote
mirror). The module pulls the remote snapshot once at startup and, in auto
sync mode, pushes after every mutation.

Copyright (c) Bryn Gwalad 2025
"""

from typing import List, Optional
import os
import asyncio

from fastapi import FastAPI, Header, HTTPException, Query
from dotenv import load_dotenv
import logging

# Load environment variables from a .env file at project root if present.
load_dotenv()

from utils.database import EntityStore, init_db
from core import engine
from core.errors import DuplicateIdentifierError, InventoryError, NotFoundError, ValidationError
from core.gateway import build_gateway
from core.session import InventorySession, can_edit
from core.sync import SyncController, SyncMode
from .models import (
    BulkImportRequest,
    InventoryItem,
    ItemDraft,
    ItemStatus,
    TransferLog,
    TransferRequest,
    UserRole,
    Warehouse,
    WarehouseCreate,
    WarehouseUpdate,
)

# Sync configuration. SYNC_MODE=auto mirrors every mutation; manual only
# pushes when /sync/push is called.
SYNC_MODE = os.getenv("SYNC_MODE", "manual")
SYNC_TIMEOUT = float(os.getenv("SYNC_TIMEOUT", "30"))
SYNC_STATUS_RESET = float(os.getenv("SYNC_STATUS_RESET", "3"))
SEED_MOCK_DATA = os.getenv("SEED_MOCK_DATA", "1") in ("1", "true", "True")

# Actor used when the caller does not identify itself.
DEFAULT_USER = os.getenv("DEFAULT_USER", "Admin User")
DEFAULT_ROLE = os.getenv("DEFAULT_ROLE", UserRole.ADMIN.value)

app = FastAPI(title="Inventory Tracker API")

# Module logger
logger = logging.getLogger("inventory_api")

_ERROR_STATUS = {
    DuplicateIdentifierError: 409,
    NotFoundError: 404,
    ValidationError: 400,
}


def _http_error(exc: InventoryError) -> HTTPException:
    status = _ERROR_STATUS.get(type(exc), 400)
    return HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})


def _session() -> InventorySession:
    return app.state.session


def _require_editor(role: str) -> None:
    """Reject mutations from the Viewer role (local role flag only)."""
    try:
        parsed = UserRole(role)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role {role!r}")
    if not can_edit(parsed):
        raise HTTPException(status_code=403, detail="Viewer role cannot modify inventory")


def _serialize_warehouse(wh: Warehouse, item_count: Optional[int] = None) -> dict:
    data = {
        "id": wh.id,
        "name": wh.name,
        "location": wh.location,
        "is_central": wh.is_central,
    }
    if item_count is not None:
        data["item_count"] = item_count
    return data


def _serialize_item(item: InventoryItem) -> dict:
    return {
        "serial_number": item.serial_number,
        "part_number": item.part_number,
        "board_name": item.board_name,
        "category": item.category,
        "status": item.status.value,
        "warehouse_id": item.warehouse_id,
        "last_modified": item.last_modified,
    }


def _mutation_response(result, item: Optional[InventoryItem] = None) -> dict:
    body = {
        "logs": [log.model_dump() for log in result.logs],
        "warnings": result.warnings,
    }
    if item is not None:
        body["item"] = _serialize_item(item)
    if result.skipped:
        body["skipped"] = result.skipped
    return body


@app.on_event("startup")
async def on_startup():
    """Application startup handler.

    Initializes the database, loads (or seeds) the local store and runs the
    one pull from the remote mirror that happens at process start.
    """
    init_db()

    # Configure logger (do not override global config if already set by app)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    gateway = build_gateway()
    store = EntityStore()
    controller = SyncController(
        gateway,
        store=store,
        mode=SyncMode(SYNC_MODE),
        timeout=SYNC_TIMEOUT,
        status_reset=SYNC_STATUS_RESET,
    )
    app.state.session = InventorySession.open(controller, store=store, seed=SEED_MOCK_DATA)
    logger.info("Inventory sync starting; backend=%s mode=%s", gateway.name, controller.mode.value)

    result = await app.state.session.start()
    if not result.ok:
        logger.warning("Startup pull failed; continuing with local data: %s", result.error)


# --------------------------------------------------------------------------
# Warehouses
# --------------------------------------------------------------------------


@app.get("/warehouses/")
def list_warehouses():
    """Return all warehouses with the number of units each holds."""
    state = _session().state
    return [
        _serialize_warehouse(wh, sum(1 for i in state.items if i.warehouse_id == wh.id))
        for wh in state.warehouses
    ]


@app.post("/warehouses/")
async def create_warehouse(
    warehouse: WarehouseCreate,
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Create a new warehouse. Only one warehouse may be central."""
    _require_editor(role)
    try:
        result = _session().add_warehouse(warehouse.name, warehouse.location, warehouse.is_central)
    except InventoryError as exc:
        raise _http_error(exc)
    return _serialize_warehouse(result.state.warehouses[-1])


@app.put("/warehouses/{warehouse_id}")
async def update_warehouse(
    warehouse_id: str,
    warehouse: WarehouseUpdate,
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Rename and/or relocate a warehouse."""
    _require_editor(role)
    session = _session()
    try:
        session.update_warehouse(warehouse_id, warehouse.name, warehouse.location)
    except InventoryError as exc:
        raise _http_error(exc)
    return _serialize_warehouse(session.state.find_warehouse(warehouse_id))


# --------------------------------------------------------------------------
# Items
# --------------------------------------------------------------------------


@app.get("/items/")
def list_items(
    warehouse_id: Optional[str] = Query(default=None),
    status: Optional[ItemStatus] = Query(default=None),
    q: Optional[str] = Query(default=None),
):
    """List items, optionally filtered by warehouse, status and a search term."""
    items = engine.filter_items(_session().state, warehouse_id=warehouse_id, status=status, search=q)
    return [_serialize_item(i) for i in items]


@app.get("/items/transferable")
def list_transferable_items(warehouse_id: str, q: Optional[str] = Query(default=None)):
    """Items in ``warehouse_id`` that can be selected for a transfer (not Faulty)."""
    return [_serialize_item(i) for i in engine.transferable_items(_session().state, warehouse_id, q)]


@app.get("/items/{serial_number}")
def get_item(serial_number: str):
    """Return an item by serial number or raise 404 if not found."""
    item = _session().state.find_item(serial_number)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return _serialize_item(item)


@app.post("/items/")
async def receive_item(
    draft: ItemDraft,
    user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Receive a new item into stock.

    Status defaults to Free and the warehouse to the central one. The
    `X-User-Id` header is recorded on the receipt log entry.
    """
    _require_editor(role)
    session = _session()
    try:
        result = session.receive(draft, user_id)
    except InventoryError as exc:
        raise _http_error(exc)
    return _mutation_response(result, result.state.find_item(draft.serial_number.strip()))


@app.put("/items/{serial_number}")
async def update_item(
    serial_number: str,
    draft: ItemDraft,
    user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Edit an item. Changing the serial number is allowed and audited."""
    _require_editor(role)
    try:
        result = _session().update(serial_number, draft, user_id)
    except InventoryError as exc:
        raise _http_error(exc)
    return _mutation_response(result, result.state.find_item(draft.serial_number.strip()))


@app.delete("/items/{serial_number}")
async def delete_item(
    serial_number: str,
    confirm: bool = Query(False),
    user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Delete an item. Deletion is irreversible, so ``confirm=true`` is required."""
    _require_editor(role)
    if not confirm:
        raise HTTPException(status_code=400, detail=f"Pass confirm=true to delete item {serial_number}")
    try:
        result = _session().delete(serial_number, user_id)
    except InventoryError as exc:
        raise _http_error(exc)
    return _mutation_response(result)


@app.post("/items/bulk")
async def bulk_import_items(
    request: BulkImportRequest,
    user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Import rows (serial, part, board, category, warehouse name).

    Serial numbers that already exist are skipped; blank rows are excluded.
    """
    _require_editor(role)
    result = _session().bulk_import_rows(request.rows, user_id, has_header=request.has_header)
    body = _mutation_response(result)
    body["imported"] = len(result.logs)
    return body


# --------------------------------------------------------------------------
# Transfers and history
# --------------------------------------------------------------------------


@app.post("/transfers/")
async def transfer_items(
    request: TransferRequest,
    user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    role: str = Header(DEFAULT_ROLE, alias="X-User-Role"),
):
    """Move one or more items between warehouses; one log entry per item."""
    _require_editor(role)
    try:
        result = _session().transfer(
            request.serial_numbers,
            request.from_warehouse_id,
            request.to_warehouse_id,
            request.reason,
            user_id,
        )
    except InventoryError as exc:
        raise _http_error(exc)
    return _mutation_response(result)


@app.get("/logs/", response_model=List[TransferLog])
def get_logs(
    q: Optional[str] = None,
    warehouse_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return transfer log entries, most recent first.

    Filtering:
    - `q` matches serial number, board name or user (case-insensitive)
    - `warehouse_id` matches either the origin or the destination
    - `limit` and `offset` provide pagination.
    """
    return engine.filter_logs(_session().state, search=q, warehouse_id=warehouse_id, limit=limit, offset=offset)


@app.get("/tracking/{serial_number}")
def track_item(serial_number: str):
    """Return the item and its full movement history, following renames."""
    item, history = engine.item_history(_session().state, serial_number)
    if item is None and not history:
        raise HTTPException(status_code=404, detail="No item or history for this serial number")
    return {
        "item": _serialize_item(item) if item else None,
        "history": [log.model_dump() for log in history],
    }


@app.get("/dashboard/")
def dashboard():
    """Return stock totals per status, per board and per warehouse."""
    return engine.dashboard_stats(_session().state)


# --------------------------------------------------------------------------
# Cloud sync
# --------------------------------------------------------------------------


@app.get("/sync/")
def sync_status():
    """Return the sync status, mode, backend and last sync time."""
    return _session().controller.describe()


@app.post("/sync/push")
async def sync_push():
    """Back up the full local snapshot to the remote mirror."""
    session = _session()
    result = await session.push()
    return {"ok": result.ok, "error": result.error, **session.controller.describe()}


@app.post("/sync/pull")
async def sync_pull():
    """Restore from the remote mirror; empty remote collections keep local data."""
    session = _session()
    result = await session.pull()
    return {
        "ok": result.ok,
        "error": result.error,
        "replaced": list(result.replaced),
        **session.controller.describe(),
    }


@app.on_event("shutdown")
async def on_shutdown():
    # let in-flight background pushes finish
    session = getattr(app.state, "session", None)
    if session:
        try:
            await asyncio.wait_for(session.controller.wait_idle(), timeout=SYNC_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Shutting down with background pushes still in flight")
