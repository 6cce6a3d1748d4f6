"""Seed data used by the mock backend and on first start of an empty cache.

Copyright (c) Bryn Gwalad 2025
"""

import time
from typing import Optional

from api.models import InventoryItem, ItemStatus, Snapshot, TransferLog, Warehouse

DAY_MS = 86400000


def initial_snapshot(now: Optional[int] = None) -> Snapshot:
    """Return a fresh copy of the seed snapshot."""
    now = now if now is not None else int(time.time() * 1000)
    warehouses = [
        Warehouse(id="wh-001", name="Main Store (Central)", is_central=True, location="Building A, Floor 1"),
        Warehouse(id="wh-002", name="R&D Lab North", is_central=False, location="Building B, Floor 2"),
        Warehouse(id="wh-003", name="Assembly Line 4", is_central=False, location="Building C, Floor 1"),
        Warehouse(id="wh-004", name="Quality Assurance", is_central=False, location="Building B, Floor 3"),
    ]

    def board(sn, pn, name, category, status, wh):
        return InventoryItem(
            serial_number=sn,
            part_number=pn,
            board_name=name,
            category=category,
            status=status,
            warehouse_id=wh,
            last_modified=now,
        )

    items = [
        board("SN-X1001", "PN-782", "Main Controller V2", "Logic", ItemStatus.FREE, "wh-001"),
        board("SN-X1002", "PN-782", "Main Controller V2", "Logic", ItemStatus.FREE, "wh-001"),
        board("SN-P2001", "PN-412", "Power Shield 30A", "Power", ItemStatus.USED, "wh-002"),
        board("SN-C3001", "PN-991", "Comms Bridge WiFi", "Wireless", ItemStatus.RESERVED, "wh-001"),
        board("SN-D4001", "PN-223", 'Display Module 7"', "UI", ItemStatus.FAULTY, "wh-004"),
        board("SN-X1003", "PN-782", "Main Controller V2", "Logic", ItemStatus.FREE, "wh-003"),
    ]
    logs = [
        TransferLog(
            id="tr-001",
            timestamp=now - DAY_MS * 2,
            item_id="SN-P2001",
            serial_number="SN-P2001",
            board_name="Power Shield 30A",
            part_number="PN-412",
            from_warehouse_id="wh-001",
            to_warehouse_id="wh-002",
            reason="Initial allocation for R&D Project Alpha",
            user="John Doe",
            quantity=1,
        )
    ]
    return Snapshot(warehouses=warehouses, items=items, logs=logs)
