"""Data models for the Inventory Tracker.

This module defines the SQLModel models used across the service: the three
entity records (Warehouse, InventoryItem, TransferLog), the Snapshot that
groups them, the table-backed rows used by the local cache and the request
bodies accepted by the HTTP API.

Copyright (c) Bryn Gwalad 2025
"""

from enum import Enum
from typing import Any, List, Optional

from sqlmodel import Field, SQLModel


# Sentinel warehouse ids used in transfer logs for non-physical
# origins/destinations.
EXTERNAL = "EXTERNAL"
DELETED = "DELETED"
SYSTEM = "SYSTEM"
SENTINEL_WAREHOUSE_IDS = (EXTERNAL, DELETED, SYSTEM)


class ItemStatus(str, Enum):
    FREE = "Free"
    USED = "Used"
    RESERVED = "Reserved"
    FAULTY = "Faulty"


class UserRole(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Store Manager"
    VIEWER = "Viewer"


class Warehouse(SQLModel):
    """A storage location.

    Attributes:
        id: stable opaque identifier (e.g. ``wh-001``)
        name: display name
        location: free-text location
        is_central: default destination for new stock; at most one is central
    """

    id: str = Field(primary_key=True)
    name: str
    location: str = ""
    is_central: bool = False


class InventoryItem(SQLModel):
    """A single electronic board identified by its serial number.

    Attributes:
        serial_number: unique identifier and primary key
        part_number: manufacturer part number
        board_name: descriptive board name
        category: free-text grouping (e.g. Logic, Power)
        status: one of ItemStatus
        warehouse_id: id of the warehouse currently holding the item
        last_modified: epoch milliseconds of the last mutation
    """

    serial_number: str = Field(primary_key=True)
    part_number: str = ""
    board_name: str = ""
    category: str = ""
    status: ItemStatus = Field(default=ItemStatus.FREE)
    warehouse_id: str = ""
    last_modified: int = 0


class TransferLog(SQLModel):
    """Append-only audit entry for a change to an item.

    ``board_name`` and ``part_number`` are copies of the item's fields at the
    time of the event so history survives deletes and edits.
    """

    id: str = Field(primary_key=True)
    timestamp: int = 0
    item_id: str = ""
    serial_number: str = ""
    board_name: str = ""
    part_number: str = ""
    from_warehouse_id: str = ""
    to_warehouse_id: str = ""
    reason: str = ""
    user: str = ""
    quantity: int = 1


class Snapshot(SQLModel):
    """Full contents of the three collections at one instant."""

    warehouses: List[Warehouse] = Field(default_factory=list)
    items: List[InventoryItem] = Field(default_factory=list)
    logs: List[TransferLog] = Field(default_factory=list)

    def find_item(self, serial_number: str) -> Optional[InventoryItem]:
        for item in self.items:
            if item.serial_number == serial_number:
                return item
        return None

    def find_warehouse(self, warehouse_id: str) -> Optional[Warehouse]:
        for wh in self.warehouses:
            if wh.id == warehouse_id:
                return wh
        return None

    def central_warehouse(self) -> Optional[Warehouse]:
        """Return the central warehouse, or the first one when none is flagged."""
        for wh in self.warehouses:
            if wh.is_central:
                return wh
        return self.warehouses[0] if self.warehouses else None


# Table-backed rows for the local SQLite cache. They share the fields of the
# records above; conversion goes through ``model_dump`` in utils.database.


class WarehouseRow(Warehouse, table=True):
    __tablename__ = "warehouse"


class InventoryItemRow(InventoryItem, table=True):
    __tablename__ = "inventory_item"


class TransferLogRow(TransferLog, table=True):
    __tablename__ = "transfer_log"


class SyncMeta(SQLModel, table=True):
    """Key/value table for sync bookkeeping such as the last sync timestamp."""

    key: str = Field(primary_key=True)
    value: Optional[str] = None


# Request bodies


class ItemDraft(SQLModel):
    """Body for receiving or editing an item.

    ``status`` and ``warehouse_id`` are optional on receipt and default to
    Free and the central warehouse.
    """

    serial_number: str
    part_number: str = ""
    board_name: str = ""
    category: str = ""
    status: Optional[ItemStatus] = None
    warehouse_id: Optional[str] = None
    reason: Optional[str] = None


class TransferRequest(SQLModel):
    serial_numbers: List[str]
    from_warehouse_id: str
    to_warehouse_id: str
    reason: str


class BulkImportRequest(SQLModel):
    """Rows of a tabular sheet: serial, part, board, category, warehouse name."""

    rows: List[List[Any]]
    has_header: bool = True


class WarehouseCreate(SQLModel):
    name: str
    location: Optional[str] = None
    is_central: bool = False


class WarehouseUpdate(SQLModel):
    name: Optional[str] = None
    location: Optional[str] = None
