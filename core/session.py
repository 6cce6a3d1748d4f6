"""Application state for one client session.

InventorySession holds the current snapshot and wires the pure engine to the
local store and the sync controller: a command runs against ``state``, the
collections it changed are persisted, the new snapshot becomes current, and
in auto mode a push is started in the background.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from typing import Iterable, List, Optional, Set

from api.models import ItemDraft, Snapshot, UserRole
from . import engine
from .codec import parse_import_rows
from .engine import MutationResult
from .mock_data import initial_snapshot
from .sync import SyncController, SyncResult

logger = logging.getLogger("inventory.session")

EDITOR_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


def can_edit(role: UserRole) -> bool:
    return role in EDITOR_ROLES


class InventorySession:
    def __init__(self, controller: SyncController, store=None, state: Optional[Snapshot] = None):
        self.controller = controller
        self.store = store
        if state is None:
            state = store.load() if store is not None else Snapshot()
        self.state = state
        # one set per in-flight pull, collecting collections mutated meanwhile
        self._pull_touched: List[Set[str]] = []

    @classmethod
    def open(cls, controller: SyncController, store=None, seed: bool = True) -> "InventorySession":
        """Load the local cache, seeding it with demo data when it is empty."""
        if store is None:
            return cls(controller, state=initial_snapshot() if seed else Snapshot())
        if seed and store.is_empty():
            logger.info("Local store is empty; seeding with demo data")
            store.save(initial_snapshot())
        return cls(controller, store=store)

    def _apply(self, result: MutationResult) -> MutationResult:
        if not result.changed:
            return result
        if self.store is not None:
            self.store.save(result.state, result.changed)
        self.state = result.state
        for touched in self._pull_touched:
            touched.update(result.changed)
        self.controller.schedule_push(self.state)
        return result

    # item commands

    def receive(self, draft: ItemDraft, user: str) -> MutationResult:
        return self._apply(engine.receive_item(self.state, draft, user))

    def update(self, old_serial_number: str, draft: ItemDraft, user: str) -> MutationResult:
        return self._apply(engine.update_item(self.state, old_serial_number, draft, user))

    def delete(self, serial_number: str, user: str) -> MutationResult:
        return self._apply(engine.delete_item(self.state, serial_number, user))

    def transfer(
        self, serial_numbers: Iterable[str], from_warehouse_id: str, to_warehouse_id: str, reason: str, user: str
    ) -> MutationResult:
        return self._apply(
            engine.transfer_items(self.state, serial_numbers, from_warehouse_id, to_warehouse_id, reason, user)
        )

    def bulk_import(self, drafts: List[ItemDraft], user: str) -> MutationResult:
        return self._apply(engine.bulk_import(self.state, drafts, user))

    def bulk_import_rows(self, rows: list, user: str, has_header: bool = True) -> MutationResult:
        drafts = parse_import_rows(rows, self.state.warehouses, has_header=has_header)
        return self.bulk_import(drafts, user)

    # warehouse commands

    def add_warehouse(self, name: str, location: Optional[str] = None, is_central: bool = False) -> MutationResult:
        return self._apply(engine.add_warehouse(self.state, name, location, is_central))

    def update_warehouse(self, warehouse_id: str, name: Optional[str] = None, location: Optional[str] = None) -> MutationResult:
        return self._apply(engine.update_warehouse(self.state, warehouse_id, name, location))

    # sync

    async def pull(self) -> SyncResult:
        """Pull the mirror without losing commands applied while it runs.

        The merge uses the state as it is when the fetch returns, and any
        collection a command changed in the meantime stays local.
        """
        touched: Set[str] = set()
        self._pull_touched.append(touched)
        try:
            result = await self.controller.pull_all(lambda: self.state, keep=touched)
        finally:
            self._pull_touched = [t for t in self._pull_touched if t is not touched]
        if result.ok:
            self.state = result.state
        return result

    async def push(self) -> SyncResult:
        return await self.controller.push_all(self.state)

    async def start(self) -> SyncResult:
        """Run the one pull that happens at process start."""
        return await self.pull()
