"""Mutation engine for the Inventory Tracker.

Every operation is a pure function over a Snapshot: it validates the command
against the current state, builds the next ``(items, logs)`` pair and returns
it in a MutationResult together with the audit entries it created. Nothing is
written anywhere; the caller decides whether to persist and mirror the new
state. A rejected command raises and leaves the input snapshot untouched.

Copyright (c) Bryn Gwalad 2025
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from api.models import (
    DELETED,
    EXTERNAL,
    SYSTEM,
    InventoryItem,
    ItemDraft,
    ItemStatus,
    Snapshot,
    TransferLog,
    Warehouse,
)
from .errors import DuplicateIdentifierError, NotFoundError, ValidationError

logger = logging.getLogger("inventory.engine")

RECEIPT_REASON = "New Purchase Receipt"
BULK_IMPORT_REASON = "Bulk Data Import"
DELETE_REASON = "Item removed from system"

# Fields an edit may change; compared to decide whether an update is a no-op.
EDITABLE_FIELDS = ("serial_number", "part_number", "board_name", "category", "status", "warehouse_id")


@dataclass
class MutationResult:
    """Outcome of one engine command.

    ``changed`` names the collections that differ from the input snapshot so
    the caller only persists what moved. ``skipped`` lists serial numbers a
    bulk operation left out.
    """

    state: Snapshot
    logs: List[TransferLog] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    changed: Tuple[str, ...] = ()


def now_ms() -> int:
    return int(time.time() * 1000)


def _log_id(prefix: str, serial_number: str, ts: int) -> str:
    return f"{prefix}-{serial_number}-{ts}-{uuid.uuid4().hex[:6]}"


def _make_log(
    prefix: str,
    item: InventoryItem,
    from_id: str,
    to_id: str,
    reason: str,
    user: str,
    ts: int,
    quantity: int = 1,
    item_id: Optional[str] = None,
) -> TransferLog:
    return TransferLog(
        id=_log_id(prefix, item.serial_number, ts),
        timestamp=ts,
        item_id=item_id or item.serial_number,
        serial_number=item.serial_number,
        board_name=item.board_name,
        part_number=item.part_number,
        from_warehouse_id=from_id,
        to_warehouse_id=to_id,
        reason=reason,
        user=user,
        quantity=quantity,
    )


def _require_item(state: Snapshot, serial_number: str) -> InventoryItem:
    item = state.find_item(serial_number)
    if item is None:
        raise NotFoundError(f"Item {serial_number} not found", serial_number)
    return item


def _require_warehouse(state: Snapshot, warehouse_id: str) -> Warehouse:
    wh = state.find_warehouse(warehouse_id)
    if wh is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found", warehouse_id)
    return wh


def _default_warehouse_id(state: Snapshot) -> str:
    central = state.central_warehouse()
    if central is None:
        raise ValidationError("No warehouse available to receive stock")
    return central.id


def _new_item(draft: ItemDraft, serial_number: str, warehouse_id: str, ts: int) -> InventoryItem:
    return InventoryItem(
        serial_number=serial_number,
        part_number=draft.part_number.strip(),
        board_name=draft.board_name.strip(),
        category=draft.category.strip(),
        status=draft.status or ItemStatus.FREE,
        warehouse_id=warehouse_id,
        last_modified=ts,
    )


def _with(state: Snapshot, items: List[InventoryItem], new_logs: List[TransferLog]) -> Snapshot:
    # logs are kept newest first
    return state.model_copy(update={"items": items, "logs": new_logs + list(state.logs)})


# --------------------------------------------------------------------------
# Item commands
# --------------------------------------------------------------------------


def receive_item(state: Snapshot, draft: ItemDraft, user: str, now: Optional[int] = None) -> MutationResult:
    """Add a new item and log its receipt from ``EXTERNAL``.

    Raises ValidationError for a blank serial number, DuplicateIdentifierError
    when the serial number is already in the store and NotFoundError when the
    target warehouse does not exist.
    """
    ts = now if now is not None else now_ms()
    serial = draft.serial_number.strip()
    if not serial:
        raise ValidationError("Serial number is required")
    if state.find_item(serial) is not None:
        raise DuplicateIdentifierError(f"An item with serial number {serial} already exists", serial)

    warehouse_id = draft.warehouse_id or _default_warehouse_id(state)
    _require_warehouse(state, warehouse_id)

    item = _new_item(draft, serial, warehouse_id, ts)
    log = _make_log("in", item, EXTERNAL, warehouse_id, draft.reason or RECEIPT_REASON, user, ts)
    return MutationResult(
        state=_with(state, list(state.items) + [item], [log]),
        logs=[log],
        changed=("items", "logs"),
    )


def update_item(
    state: Snapshot, old_serial_number: str, draft: ItemDraft, user: str, now: Optional[int] = None
) -> MutationResult:
    """Replace an item record in place.

    A change of serial number, of warehouse or of any descriptive field
    produces exactly one log entry. An edit that changes nothing is a no-op.
    """
    ts = now if now is not None else now_ms()
    current = _require_item(state, old_serial_number)

    new_serial = draft.serial_number.strip()
    if not new_serial:
        raise ValidationError("Serial number is required")
    if new_serial != old_serial_number and state.find_item(new_serial) is not None:
        raise DuplicateIdentifierError(f"Serial number {new_serial} is already taken by another item", new_serial)

    warehouse_id = draft.warehouse_id or current.warehouse_id
    _require_warehouse(state, warehouse_id)

    replacement = current.model_copy(
        update={
            "serial_number": new_serial,
            "part_number": draft.part_number.strip(),
            "board_name": draft.board_name.strip(),
            "category": draft.category.strip(),
            "status": draft.status or current.status,
            "warehouse_id": warehouse_id,
        }
    )
    changes = [f for f in EDITABLE_FIELDS if getattr(current, f) != getattr(replacement, f)]
    if not changes:
        return MutationResult(state=state)
    replacement = replacement.model_copy(update={"last_modified": ts})

    parts = []
    if "serial_number" in changes:
        parts.append(f"Serial number changed from {old_serial_number} to {new_serial}")
    others = [f for f in changes if f not in ("serial_number", "warehouse_id")]
    if others:
        parts.append("Updated fields: " + ", ".join(others))
    moved = "warehouse_id" in changes
    if moved:
        parts.append(f"Location changed from {current.warehouse_id} to {warehouse_id}")

    log = _make_log(
        "upd",
        replacement,
        current.warehouse_id if moved else SYSTEM,
        warehouse_id,
        draft.reason or "; ".join(parts),
        user,
        ts,
        quantity=1 if moved else 0,
        item_id=old_serial_number,
    )
    items = [replacement if i.serial_number == old_serial_number else i for i in state.items]
    return MutationResult(state=_with(state, items, [log]), logs=[log], changed=("items", "logs"))


def delete_item(state: Snapshot, serial_number: str, user: str, now: Optional[int] = None) -> MutationResult:
    """Remove an item irreversibly and log it to ``DELETED``."""
    ts = now if now is not None else now_ms()
    item = _require_item(state, serial_number)
    log = _make_log("del", item, item.warehouse_id, DELETED, DELETE_REASON, user, ts, quantity=0)
    items = [i for i in state.items if i.serial_number != serial_number]
    return MutationResult(state=_with(state, items, [log]), logs=[log], changed=("items", "logs"))


def transfer_items(
    state: Snapshot,
    serial_numbers: Iterable[str],
    from_warehouse_id: str,
    to_warehouse_id: str,
    reason: str,
    user: str,
    now: Optional[int] = None,
) -> MutationResult:
    """Move a batch of items to another warehouse, one log entry per item.

    The whole batch is validated before anything moves. An item whose current
    warehouse differs from ``from_warehouse_id`` (a stale view) is still
    moved; the log records where it actually came from and a warning is
    returned. Items already in the destination are skipped.
    """
    ts = now if now is not None else now_ms()
    serials = list(dict.fromkeys(s.strip() for s in serial_numbers if s and s.strip()))
    if not serials:
        raise ValidationError("Select at least one item to transfer")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A transfer reason is required")
    _require_warehouse(state, from_warehouse_id)
    _require_warehouse(state, to_warehouse_id)
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Destination must differ from origin")

    by_serial = {sn: _require_item(state, sn) for sn in serials}

    warnings: List[str] = []
    skipped: List[str] = []
    moved: Dict[str, InventoryItem] = {}
    logs: List[TransferLog] = []
    for sn, item in by_serial.items():
        if item.warehouse_id == to_warehouse_id:
            skipped.append(sn)
            warnings.append(f"{sn} is already in {to_warehouse_id}")
            continue
        if item.warehouse_id != from_warehouse_id:
            msg = f"{sn} was in {item.warehouse_id}, not {from_warehouse_id}"
            logger.warning("Stale transfer origin: %s", msg)
            warnings.append(msg)
        moved[sn] = item.model_copy(update={"warehouse_id": to_warehouse_id, "last_modified": ts})
        logs.append(_make_log("tr", item, item.warehouse_id, to_warehouse_id, reason, user, ts))

    if not moved:
        return MutationResult(state=state, warnings=warnings, skipped=skipped)
    items = [moved.get(i.serial_number, i) for i in state.items]
    return MutationResult(
        state=_with(state, items, logs),
        logs=logs,
        warnings=warnings,
        skipped=skipped,
        changed=("items", "logs"),
    )


def transfer_item(
    state: Snapshot,
    serial_number: str,
    from_warehouse_id: str,
    to_warehouse_id: str,
    reason: str,
    user: str,
    now: Optional[int] = None,
) -> MutationResult:
    return transfer_items(state, [serial_number], from_warehouse_id, to_warehouse_id, reason, user, now)


def bulk_import(state: Snapshot, drafts: Iterable[ItemDraft], user: str, now: Optional[int] = None) -> MutationResult:
    """Append many items at once.

    Serial numbers already present (in the store or earlier in the batch) are
    skipped silently; rows with no serial number or an unknown warehouse are
    excluded. Each accepted item gets its own ``Bulk Data Import`` entry.
    """
    ts = now if now is not None else now_ms()
    seen = {i.serial_number for i in state.items}
    central = state.central_warehouse()

    accepted: List[InventoryItem] = []
    logs: List[TransferLog] = []
    skipped: List[str] = []
    warnings: List[str] = []
    for draft in drafts:
        serial = draft.serial_number.strip()
        if not serial:
            warnings.append("Row without serial number excluded")
            continue
        if serial in seen:
            skipped.append(serial)
            continue
        warehouse_id = draft.warehouse_id or (central.id if central else "")
        if not warehouse_id or state.find_warehouse(warehouse_id) is None:
            logger.warning("Bulk import row %s references unknown warehouse %r", serial, warehouse_id)
            warnings.append(f"{serial}: unknown warehouse {warehouse_id!r}")
            skipped.append(serial)
            continue
        item = _new_item(draft, serial, warehouse_id, ts)
        seen.add(serial)
        accepted.append(item)
        logs.append(_make_log("imp", item, EXTERNAL, warehouse_id, BULK_IMPORT_REASON, user, ts))

    if skipped:
        logger.info("Bulk import skipped %d row(s): %s", len(skipped), ", ".join(skipped))
    if not accepted:
        return MutationResult(state=state, warnings=warnings, skipped=skipped)
    return MutationResult(
        state=_with(state, list(state.items) + accepted, logs),
        logs=logs,
        warnings=warnings,
        skipped=skipped,
        changed=("items", "logs"),
    )


# --------------------------------------------------------------------------
# Warehouse administration
# --------------------------------------------------------------------------


def add_warehouse(
    state: Snapshot,
    name: str,
    location: Optional[str] = None,
    is_central: bool = False,
    warehouse_id: Optional[str] = None,
    now: Optional[int] = None,
) -> MutationResult:
    ts = now if now is not None else now_ms()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Warehouse name is required")
    wid = warehouse_id or f"wh-{ts}-{uuid.uuid4().hex[:6]}"
    if state.find_warehouse(wid) is not None:
        raise DuplicateIdentifierError(f"Warehouse {wid} already exists", wid)
    if is_central and any(w.is_central for w in state.warehouses):
        raise ValidationError("A central warehouse already exists")
    wh = Warehouse(id=wid, name=name, location=(location or "").strip() or "Main Hub", is_central=is_central)
    return MutationResult(
        state=state.model_copy(update={"warehouses": list(state.warehouses) + [wh]}),
        changed=("warehouses",),
    )


def update_warehouse(
    state: Snapshot, warehouse_id: str, name: Optional[str] = None, location: Optional[str] = None
) -> MutationResult:
    """Rename and/or relocate a warehouse."""
    current = _require_warehouse(state, warehouse_id)
    update = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("Warehouse name is required")
        update["name"] = name.strip()
    if location is not None:
        update["location"] = location.strip()
    replacement = current.model_copy(update=update)
    if replacement == current:
        return MutationResult(state=state)
    warehouses = [replacement if w.id == warehouse_id else w for w in state.warehouses]
    return MutationResult(state=state.model_copy(update={"warehouses": warehouses}), changed=("warehouses",))


# --------------------------------------------------------------------------
# Queries
# --------------------------------------------------------------------------


def _matches(search: Optional[str], *values: str) -> bool:
    if not search:
        return True
    needle = search.lower()
    return any(needle in (v or "").lower() for v in values)


def transferable_items(state: Snapshot, warehouse_id: str, search: Optional[str] = None) -> List[InventoryItem]:
    """Items that may be offered for transfer out of ``warehouse_id``; Faulty stock stays put."""
    return [
        i
        for i in state.items
        if i.warehouse_id == warehouse_id
        and i.status != ItemStatus.FAULTY
        and _matches(search, i.serial_number, i.board_name, i.part_number)
    ]


def filter_items(
    state: Snapshot,
    warehouse_id: Optional[str] = None,
    status: Optional[ItemStatus] = None,
    search: Optional[str] = None,
) -> List[InventoryItem]:
    return [
        i
        for i in state.items
        if (warehouse_id is None or i.warehouse_id == warehouse_id)
        and (status is None or i.status == status)
        and _matches(search, i.serial_number, i.board_name, i.part_number)
    ]


def filter_logs(
    state: Snapshot,
    search: Optional[str] = None,
    warehouse_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[TransferLog]:
    """Return logs newest first, filtered by search term and warehouse (either side)."""
    logs = [
        log
        for log in state.logs
        if _matches(search, log.serial_number, log.board_name, log.user)
        and (warehouse_id is None or warehouse_id in (log.from_warehouse_id, log.to_warehouse_id))
    ]
    logs.sort(key=lambda log: log.timestamp, reverse=True)
    end = offset + limit if limit is not None else None
    return logs[offset:end]


def item_history(state: Snapshot, serial_number: str) -> Tuple[Optional[InventoryItem], List[TransferLog]]:
    """Return the live item (if any) and every log entry for it, newest first.

    Rename entries carry the previous serial number in ``item_id``; those are
    followed so history recorded under an earlier serial stays attached.
    """
    aliases = {serial_number}
    grew = True
    while grew:
        grew = False
        for log in state.logs:
            if log.serial_number in aliases and log.item_id and log.item_id not in aliases:
                aliases.add(log.item_id)
                grew = True
    history = [log for log in state.logs if log.serial_number in aliases]
    history.sort(key=lambda log: log.timestamp, reverse=True)
    return state.find_item(serial_number), history


def dashboard_stats(state: Snapshot) -> dict:
    """Totals per status, counts per board and per-warehouse distribution."""
    by_status = {s.value: 0 for s in ItemStatus}
    by_board: Dict[str, int] = {}
    for item in state.items:
        by_status[item.status.value] += 1
        by_board[item.board_name] = by_board.get(item.board_name, 0) + 1
    warehouses = []
    for wh in state.warehouses:
        held = [i for i in state.items if i.warehouse_id == wh.id]
        warehouses.append(
            {
                "warehouse_id": wh.id,
                "name": wh.name,
                "count": len(held),
                "free": sum(1 for i in held if i.status == ItemStatus.FREE),
            }
        )
    return {
        "total": len(state.items),
        "by_status": by_status,
        "by_board": by_board,
        "warehouses": warehouses,
        "transfers": len(state.logs),
    }
