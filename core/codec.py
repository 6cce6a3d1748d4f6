"""Wire format for snapshots exchanged with the remote mirror.

Spreadsheet rows arrive flat and untyped: numbers may come back as text,
booleans as "TRUE"/"false", enums as their display value. Decoding is
tolerant so a single bad row never blocks a whole pull: unparseable numbers
become 0, unknown statuses fall back to Free, and rows missing their key are
dropped with a warning.

Copyright (c) Bryn Gwalad 2025
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from api.models import InventoryItem, ItemDraft, ItemStatus, Snapshot, TransferLog, Warehouse

logger = logging.getLogger("inventory.codec")

WAREHOUSE_COLUMNS = ("id", "name", "isCentral", "location")
ITEM_COLUMNS = ("serialNumber", "partNumber", "boardName", "category", "status", "warehouseId", "lastModified")
LOG_COLUMNS = (
    "id",
    "timestamp",
    "itemId",
    "serialNumber",
    "boardName",
    "partNumber",
    "fromWarehouseId",
    "toWarehouseId",
    "reason",
    "user",
    "quantity",
)

_TRUE_TEXT = {"true", "1", "yes", "y"}


def parse_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if not isinstance(value, float):
        try:
            value = float(str(value).strip())
        except (TypeError, ValueError):
            return default
    # "Infinity" and NaN cells parse as floats but have no integer value
    if not math.isfinite(value):
        return default
    return int(value)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value or "").strip().lower() in _TRUE_TEXT


def parse_status(value: Any) -> ItemStatus:
    text = str(value or "").strip().lower()
    for status in ItemStatus:
        if status.value.lower() == text or status.name.lower() == text:
            return status
    if text:
        logger.warning("Unknown item status %r; defaulting to Free", value)
    return ItemStatus.FREE


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# --------------------------------------------------------------------------
# Encoding
# --------------------------------------------------------------------------


def warehouse_to_row(wh: Warehouse) -> Dict[str, Any]:
    return {"id": wh.id, "name": wh.name, "isCentral": wh.is_central, "location": wh.location}


def item_to_row(item: InventoryItem) -> Dict[str, Any]:
    return {
        "serialNumber": item.serial_number,
        "partNumber": item.part_number,
        "boardName": item.board_name,
        "category": item.category,
        "status": item.status.value,
        "warehouseId": item.warehouse_id,
        "lastModified": item.last_modified,
    }


def log_to_row(log: TransferLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "timestamp": log.timestamp,
        "itemId": log.item_id,
        "serialNumber": log.serial_number,
        "boardName": log.board_name,
        "partNumber": log.part_number,
        "fromWarehouseId": log.from_warehouse_id,
        "toWarehouseId": log.to_warehouse_id,
        "reason": log.reason,
        "user": log.user,
        "quantity": log.quantity,
    }


def encode_snapshot(snapshot: Snapshot) -> Dict[str, List[Dict[str, Any]]]:
    """Flatten a snapshot into ``{warehouses, items, logs}`` rows of primitives."""
    return {
        "warehouses": [warehouse_to_row(w) for w in snapshot.warehouses],
        "items": [item_to_row(i) for i in snapshot.items],
        "logs": [log_to_row(log) for log in snapshot.logs],
    }


# --------------------------------------------------------------------------
# Decoding
# --------------------------------------------------------------------------


def warehouse_from_row(row: Dict[str, Any]) -> Optional[Warehouse]:
    wid = _text(row.get("id"))
    if not wid:
        logger.warning("Dropping warehouse row without id: %s", row)
        return None
    return Warehouse(
        id=wid,
        name=_text(row.get("name")),
        location=_text(row.get("location")),
        is_central=parse_bool(row.get("isCentral")),
    )


def item_from_row(row: Dict[str, Any]) -> Optional[InventoryItem]:
    serial = _text(row.get("serialNumber"))
    if not serial:
        logger.warning("Dropping item row without serial number: %s", row)
        return None
    return InventoryItem(
        serial_number=serial,
        part_number=_text(row.get("partNumber")),
        board_name=_text(row.get("boardName")),
        category=_text(row.get("category")),
        status=parse_status(row.get("status")),
        warehouse_id=_text(row.get("warehouseId")),
        last_modified=parse_int(row.get("lastModified")),
    )


def log_from_row(row: Dict[str, Any]) -> Optional[TransferLog]:
    log_id = _text(row.get("id"))
    if not log_id:
        logger.warning("Dropping log row without id: %s", row)
        return None
    serial = _text(row.get("serialNumber"))
    return TransferLog(
        id=log_id,
        timestamp=parse_int(row.get("timestamp")),
        item_id=_text(row.get("itemId")) or serial,
        serial_number=serial,
        board_name=_text(row.get("boardName")),
        part_number=_text(row.get("partNumber")),
        from_warehouse_id=_text(row.get("fromWarehouseId")),
        to_warehouse_id=_text(row.get("toWarehouseId")),
        reason=_text(row.get("reason")),
        user=_text(row.get("user")),
        quantity=parse_int(row.get("quantity")),
    )


def _decode_rows(rows: Any, decode) -> list:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ValueError(f"expected a list of rows, got {type(rows).__name__}")
    decoded = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Dropping non-object row: %r", row)
            continue
        record = decode(row)
        if record is not None:
            decoded.append(record)
    return decoded


def decode_snapshot(payload: Any) -> Snapshot:
    """Parse a ``{warehouses, items, logs}`` payload into a typed Snapshot.

    Missing collections decode as empty lists. A payload that is not an object
    or whose collections are not lists raises ValueError.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"snapshot must be an object, got {type(payload).__name__}")
    return Snapshot(
        warehouses=_decode_rows(payload.get("warehouses"), warehouse_from_row),
        items=_decode_rows(payload.get("items"), item_from_row),
        logs=_decode_rows(payload.get("logs"), log_from_row),
    )


# --------------------------------------------------------------------------
# Tabular rows <-> records
# --------------------------------------------------------------------------


def rows_to_records(values: List[List[Any]]) -> List[Dict[str, Any]]:
    """Turn a header row plus data rows into a list of dicts keyed by header."""
    if len(values) < 2:
        return []
    headers = [_text(h) for h in values[0]]
    records = []
    for raw in values[1:]:
        record = {}
        for idx, header in enumerate(headers):
            if header:
                record[header] = raw[idx] if idx < len(raw) else ""
        records.append(record)
    return records


def records_to_rows(records: List[Dict[str, Any]], columns: Iterable[str]) -> List[List[Any]]:
    """Inverse of rows_to_records: header row first, one row per record."""
    columns = list(columns)
    return [columns] + [[record.get(c, "") for c in columns] for record in records]


def match_warehouse(name: str, warehouses: List[Warehouse]) -> Optional[Warehouse]:
    """Case-insensitive containment match of a free-text name against warehouse names."""
    needle = name.strip().lower()
    if not needle:
        return None
    for wh in warehouses:
        hay = wh.name.lower()
        if needle in hay or hay in needle:
            return wh
    return None


def parse_import_rows(rows: List[List[Any]], warehouses: List[Warehouse], has_header: bool = True) -> List[ItemDraft]:
    """Map bulk-import sheet rows to item drafts.

    Columns: serial number, part number, board name, category, warehouse name.
    Rows with an empty serial number are excluded. An unmatched warehouse name
    leaves ``warehouse_id`` unset so the central warehouse is used.
    """
    drafts = []
    for raw in rows[1:] if has_header else rows:
        cells = list(raw) + [""] * (5 - len(raw))
        serial = _text(cells[0])
        if not serial:
            continue
        matched = match_warehouse(_text(cells[4]), warehouses)
        drafts.append(
            ItemDraft(
                serial_number=serial,
                part_number=_text(cells[1]),
                board_name=_text(cells[2]),
                category=_text(cells[3]) or "Uncategorized",
                status=ItemStatus.FREE,
                warehouse_id=matched.id if matched else None,
            )
        )
    return drafts
