"""Tests for the snapshot wire format and bulk-import row parsing.

Copyright (c) Bryn Gwalad 2025
"""

import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import unittest

from api.models import ItemStatus, Warehouse
from core.codec import (
    decode_snapshot,
    parse_bool,
    parse_import_rows,
    parse_int,
    parse_status,
    records_to_rows,
    rows_to_records,
)


class FieldParsingTest(unittest.TestCase):
    def test_parse_int_falls_back_to_zero(self):
        self.assertEqual(parse_int("12"), 12)
        self.assertEqual(parse_int(" 1700000000000 "), 1700000000000)
        self.assertEqual(parse_int(3.9), 3)
        self.assertEqual(parse_int("not a number"), 0)
        self.assertEqual(parse_int(None), 0)
        self.assertEqual(parse_int(""), 0)

    def test_parse_int_rejects_non_finite_numbers(self):
        self.assertEqual(parse_int("Infinity"), 0)
        self.assertEqual(parse_int("-inf"), 0)
        self.assertEqual(parse_int("NaN"), 0)
        self.assertEqual(parse_int(float("inf")), 0)
        self.assertEqual(parse_int(float("nan")), 0)

    def test_parse_bool_from_sheet_text(self):
        self.assertTrue(parse_bool("TRUE"))
        self.assertTrue(parse_bool(True))
        self.assertFalse(parse_bool("false"))
        self.assertFalse(parse_bool(""))

    def test_parse_status(self):
        self.assertEqual(parse_status("Faulty"), ItemStatus.FAULTY)
        self.assertEqual(parse_status("reserved"), ItemStatus.RESERVED)
        self.assertEqual(parse_status("broken?"), ItemStatus.FREE)


class DecodeSnapshotTest(unittest.TestCase):
    def test_bad_rows_do_not_block_the_pull(self):
        payload = {
            "warehouses": [{"id": "wh-1", "name": "Main", "isCentral": "TRUE", "location": "A"}],
            "items": [
                {
                    "serialNumber": "SN-1",
                    "partNumber": "PN-1",
                    "boardName": "Board",
                    "category": "Logic",
                    "status": "Used",
                    "warehouseId": "wh-1",
                    "lastModified": "garbage",
                },
                {"serialNumber": "", "boardName": "no key"},
                "not an object",
            ],
            "logs": [{"id": "tr-1", "timestamp": "5", "serialNumber": "SN-1", "quantity": "1"}],
        }
        snapshot = decode_snapshot(payload)

        self.assertTrue(snapshot.warehouses[0].is_central)
        self.assertEqual(len(snapshot.items), 1)
        item = snapshot.items[0]
        self.assertEqual(item.status, ItemStatus.USED)
        self.assertEqual(item.last_modified, 0)
        log = snapshot.logs[0]
        self.assertEqual(log.timestamp, 5)
        self.assertEqual(log.item_id, "SN-1")

    def test_non_finite_numbers_decode_as_zero(self):
        payload = {
            "items": [
                {"serialNumber": "SN-INF", "status": "Free", "lastModified": "Infinity"},
                {"serialNumber": "SN-NAN", "status": "Free", "lastModified": float("nan")},
                {"serialNumber": "SN-OK", "status": "Free", "lastModified": 42},
            ],
            "logs": [{"id": "tr-1", "timestamp": float("inf"), "serialNumber": "SN-OK", "quantity": "nan"}],
        }
        snapshot = decode_snapshot(payload)

        self.assertEqual([i.serial_number for i in snapshot.items], ["SN-INF", "SN-NAN", "SN-OK"])
        self.assertEqual([i.last_modified for i in snapshot.items], [0, 0, 42])
        self.assertEqual(snapshot.logs[0].timestamp, 0)
        self.assertEqual(snapshot.logs[0].quantity, 0)

    def test_missing_collections_are_empty(self):
        snapshot = decode_snapshot({"items": []})
        self.assertEqual(snapshot.warehouses, [])
        self.assertEqual(snapshot.logs, [])

    def test_malformed_payload_raises(self):
        with self.assertRaises(ValueError):
            decode_snapshot(["warehouses"])
        with self.assertRaises(ValueError):
            decode_snapshot({"items": "oops"})


class TabularRowsTest(unittest.TestCase):
    def test_rows_and_records(self):
        records = rows_to_records([["id", "name"], ["wh-1", "Main"], ["wh-2"]])
        self.assertEqual(records, [{"id": "wh-1", "name": "Main"}, {"id": "wh-2", "name": ""}])
        self.assertEqual(rows_to_records([["id", "name"]]), [])
        self.assertEqual(records_to_rows(records, ("id", "name"))[0], ["id", "name"])

    def test_parse_import_rows(self):
        warehouses = [
            Warehouse(id="wh-1", name="Main Store (Central)", is_central=True),
            Warehouse(id="wh-2", name="R&D Lab North"),
        ]
        rows = [
            ["Serial", "Part", "Board", "Category", "Warehouse"],
            ["SN-1", "PN-1", "Board One", "Logic", "r&d lab"],
            ["SN-2", "PN-2", "Board Two", "", ""],
            ["", "PN-3", "No serial", "Logic", "Main"],
            ["SN-4"],
        ]
        drafts = parse_import_rows(rows, warehouses)

        self.assertEqual([d.serial_number for d in drafts], ["SN-1", "SN-2", "SN-4"])
        self.assertEqual(drafts[0].warehouse_id, "wh-2")
        self.assertIsNone(drafts[1].warehouse_id)
        self.assertEqual(drafts[1].category, "Uncategorized")
        self.assertEqual(drafts[2].status, ItemStatus.FREE)


if __name__ == "__main__":
    unittest.main()
