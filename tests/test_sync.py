"""Tests for the synchronization controller and the session wiring.

Controller coroutines are driven with ``asyncio.run``; the mirror is the
in-memory MockGateway or a small failing stand-in.

Copyright (c) Bryn Gwalad 2025
"""

import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import asyncio
import time
import unittest

from api.models import InventoryItem, ItemDraft, Snapshot, Warehouse
from core.codec import encode_snapshot
from core.errors import DuplicateIdentifierError, TransportError
from core.gateway import MirrorGateway, MockGateway
from core.session import InventorySession
from core.sync import SyncController, SyncMode, SyncStatus, reconcile


def local_state() -> Snapshot:
    return Snapshot(
        warehouses=[Warehouse(id="wh-A", name="Alpha", is_central=True)],
        items=[InventoryItem(serial_number="SN-LOCAL", board_name="Local", warehouse_id="wh-A")],
    )


class FailingGateway(MirrorGateway):
    name = "failing"

    def fetch_snapshot(self):
        raise TransportError("connection refused")

    def push_snapshot(self, payload):
        raise TransportError("connection refused")


class SlowGateway(MockGateway):
    name = "slow"

    def fetch_snapshot(self):
        time.sleep(0.3)
        return super().fetch_snapshot()


class StaggeredGateway(MockGateway):
    """Pushes of larger snapshots take longer, so they finish last."""

    name = "staggered"

    def push_snapshot(self, payload):
        if len(payload["items"]) > 1:
            time.sleep(0.3)
        super().push_snapshot(payload)


class ReconcileTest(unittest.TestCase):
    def test_empty_remote_collection_keeps_local(self):
        remote = Snapshot(warehouses=[Warehouse(id="wh-R", name="Remote")])
        merged, replaced = reconcile(local_state(), remote)
        self.assertEqual(replaced, ("warehouses",))
        self.assertEqual([w.id for w in merged.warehouses], ["wh-R"])
        self.assertEqual([i.serial_number for i in merged.items], ["SN-LOCAL"])


class PullTest(unittest.TestCase):
    def test_pull_with_empty_items_leaves_local_items(self):
        remote = {"warehouses": [{"id": "wh-A", "name": "Alpha", "isCentral": True}], "items": [], "logs": []}
        controller = SyncController(MockGateway(remote), status_reset=None)

        result = asyncio.run(controller.pull_all(local_state()))

        self.assertTrue(result.ok)
        self.assertEqual([i.serial_number for i in result.state.items], ["SN-LOCAL"])
        self.assertEqual(controller.status, SyncStatus.SUCCESS)
        self.assertIsNotNone(controller.last_sync)

    def test_pull_is_idempotent(self):
        controller = SyncController(MockGateway(), status_reset=None)

        async def run():
            first = await controller.pull_all(local_state())
            second = await controller.pull_all(first.state)
            return first.state, second.state

        first, second = asyncio.run(run())
        self.assertEqual(first, second)
        self.assertEqual(len(first.warehouses), 4)

    def test_failed_pull_leaves_state_untouched(self):
        controller = SyncController(FailingGateway(), status_reset=None)
        state = local_state()

        result = asyncio.run(controller.pull_all(state))

        self.assertFalse(result.ok)
        self.assertIs(result.state, state)
        self.assertEqual(controller.status, SyncStatus.ERROR)
        self.assertIn("connection refused", controller.last_error)
        self.assertIsNone(controller.last_sync)

    def test_malformed_snapshot_is_an_error(self):
        controller = SyncController(MockGateway({"items": "not rows"}), status_reset=None)
        result = asyncio.run(controller.pull_all(local_state()))
        self.assertFalse(result.ok)
        self.assertEqual(controller.status, SyncStatus.ERROR)

    def test_timeout_is_an_error(self):
        controller = SyncController(SlowGateway(), timeout=0.05, status_reset=None)
        result = asyncio.run(controller.pull_all(local_state()))
        self.assertFalse(result.ok)
        self.assertIn("timed out", result.error)

    def test_non_finite_cell_does_not_fail_the_pull(self):
        remote = {
            "items": [
                {"serialNumber": "SN-INF", "warehouseId": "wh-A", "lastModified": "Infinity"},
                {"serialNumber": "SN-OK", "warehouseId": "wh-A", "lastModified": 7},
            ]
        }
        controller = SyncController(MockGateway(remote), status_reset=None)

        result = asyncio.run(controller.pull_all(local_state()))

        self.assertTrue(result.ok)
        self.assertEqual(controller.status, SyncStatus.SUCCESS)
        self.assertEqual(result.state.find_item("SN-INF").last_modified, 0)
        self.assertEqual(result.state.find_item("SN-OK").last_modified, 7)

    def test_command_applied_during_pull_is_kept(self):
        remote = encode_snapshot(
            Snapshot(
                warehouses=[Warehouse(id="wh-A", name="Alpha (remote)", is_central=True)],
                items=[InventoryItem(serial_number="SN-REMOTE", warehouse_id="wh-A")],
            )
        )
        controller = SyncController(SlowGateway(remote), status_reset=None)
        session = InventorySession(controller, state=local_state())

        async def run():
            pull = asyncio.ensure_future(session.pull())
            await asyncio.sleep(0.05)
            session.receive(ItemDraft(serial_number="SN-NEW"), "ann")
            return await pull

        result = asyncio.run(run())

        self.assertTrue(result.ok)
        self.assertEqual(result.replaced, ("warehouses",))
        self.assertEqual(session.state.warehouses[0].name, "Alpha (remote)")
        self.assertEqual({i.serial_number for i in session.state.items}, {"SN-LOCAL", "SN-NEW"})
        self.assertEqual(len(session.state.logs), 1)

        # a later pull with nothing in flight takes the remote items again
        asyncio.run(session.pull())
        self.assertEqual([i.serial_number for i in session.state.items], ["SN-REMOTE"])


class PushTest(unittest.TestCase):
    def test_round_trip_through_mirror(self):
        gateway = MockGateway(seed=False)
        controller = SyncController(gateway, status_reset=None)
        session = InventorySession(controller, state=local_state())

        async def run():
            session.receive(ItemDraft(serial_number="SN-RT", part_number="PN-7", board_name="Trip", category="Logic"), "ann")
            await session.push()
            fresh = InventorySession(SyncController(gateway, status_reset=None), state=Snapshot())
            await fresh.pull()
            return fresh.state

        pulled = asyncio.run(run())
        original = session.state.find_item("SN-RT")
        self.assertEqual(pulled.find_item("SN-RT"), original)
        self.assertEqual(len(pulled.logs), 1)

    def test_last_writer_wins(self):
        gateway = MockGateway(seed=False)
        controller = SyncController(gateway, status_reset=None)
        older = local_state()
        newer = older.model_copy(update={"items": []})

        async def run():
            await controller.push_all(older)
            await controller.push_all(newer)

        asyncio.run(run())
        self.assertEqual(gateway.remote, encode_snapshot(newer))
        self.assertEqual(controller.pushes_started, 2)

    def test_failed_push_reports_error(self):
        controller = SyncController(FailingGateway(), status_reset=None)
        result = asyncio.run(controller.push_all(local_state()))
        self.assertFalse(result.ok)
        self.assertEqual(controller.status, SyncStatus.ERROR)

    def test_status_reverts_to_idle(self):
        controller = SyncController(MockGateway(seed=False), status_reset=0.01)

        async def run():
            await controller.push_all(local_state())
            seen = controller.status
            await asyncio.sleep(0.05)
            return seen, controller.status

        seen, later = asyncio.run(run())
        self.assertEqual(seen, SyncStatus.SUCCESS)
        self.assertEqual(later, SyncStatus.IDLE)

    def test_overlapping_pushes_stay_syncing_until_the_last_lands(self):
        controller = SyncController(StaggeredGateway(seed=False), mode=SyncMode.AUTO, status_reset=None)
        one = local_state()
        two = one.model_copy(update={"items": list(one.items) + [InventoryItem(serial_number="SN-2", warehouse_id="wh-A")]})

        async def run():
            first = controller.schedule_push(one)
            second = controller.schedule_push(two)
            await first
            during = (controller.status, controller.describe()["in_flight"])
            await second
            return during, controller.status

        during, after = asyncio.run(run())
        self.assertEqual(during, (SyncStatus.SYNCING, 1))
        self.assertEqual(after, SyncStatus.SUCCESS)


class PushPolicyTest(unittest.TestCase):
    def test_auto_mode_pushes_after_each_mutation(self):
        gateway = MockGateway(seed=False)
        controller = SyncController(gateway, mode=SyncMode.AUTO, status_reset=None)
        session = InventorySession(controller, state=local_state())

        async def run():
            session.receive(ItemDraft(serial_number="SN-A1"), "ann")
            await controller.wait_idle()
            session.delete("SN-LOCAL", "ann")
            await controller.wait_idle()

        asyncio.run(run())
        self.assertEqual(gateway.push_count, 2)
        self.assertEqual([row["serialNumber"] for row in gateway.remote["items"]], ["SN-A1"])

    def test_manual_mode_does_not_push(self):
        gateway = MockGateway(seed=False)
        controller = SyncController(gateway, mode=SyncMode.MANUAL, status_reset=None)
        session = InventorySession(controller, state=local_state())

        async def run():
            session.receive(ItemDraft(serial_number="SN-M1"), "ann")
            await controller.wait_idle()

        asyncio.run(run())
        self.assertEqual(gateway.push_count, 0)

    def test_rejected_mutation_does_not_push(self):
        gateway = MockGateway(seed=False)
        controller = SyncController(gateway, mode=SyncMode.AUTO, status_reset=None)
        session = InventorySession(controller, state=local_state())

        async def run():
            with self.assertRaises(DuplicateIdentifierError):
                session.receive(ItemDraft(serial_number="SN-LOCAL"), "ann")
            await controller.wait_idle()

        asyncio.run(run())
        self.assertEqual(gateway.push_count, 0)


if __name__ == "__main__":
    unittest.main()
