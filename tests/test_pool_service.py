from __future__ import annotations

import re
import unittest

from stowqr.models import AssignmentOutcome, EntityType
from stowqr.services.pool_service import (
    PoolAssignmentConflict,
    PreGeneratedQR,
    assign_entry,
    clear_unassigned,
    delete_entry,
    generate_pool,
    release_entries,
    unassigned_entries,
    validate_pool_count,
)
from stowqr.services.qr_codec_service import is_valid_payload

PRE_RE = re.compile(r'^OFFICE-PRE:[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$')


class PoolServiceTests(unittest.TestCase):
    def test_generate_pool_yields_distinct_prefixed_payloads(self) -> None:
        pool = generate_pool(5, 'OFFICE', max_count=100, now='2024-01-15T10:00:00.000Z')
        self.assertEqual(len(pool), 5)
        self.assertEqual(len({entry.qr_data for entry in pool}), 5)
        for entry in pool:
            self.assertRegex(entry.qr_data, PRE_RE)
            self.assertTrue(is_valid_payload(entry.qr_data))
            self.assertEqual(entry.prefix, 'OFFICE')
            self.assertEqual(entry.created_at, '2024-01-15T10:00:00.000Z')
            self.assertIsNone(entry.assigned_to)
            self.assertIsNone(entry.assigned_type)

    def test_generate_pool_without_prefix(self) -> None:
        pool = generate_pool(2, None, max_count=10)
        self.assertTrue(all(entry.qr_data.startswith('PRE:') for entry in pool))
        self.assertTrue(all(entry.prefix is None for entry in pool))

    def test_pool_count_bounds(self) -> None:
        for bad in [0, -1, 11, 2.5, '3', True]:
            with self.assertRaises(ValueError):
                validate_pool_count(bad, 10)
        self.assertEqual(validate_pool_count(10, 10), 10)

    def test_assignment_fields_must_be_set_together(self) -> None:
        with self.assertRaises(ValueError):
            PreGeneratedQR(qr_data='PRE:x', prefix=None, created_at='', assigned_to='item-1')
        with self.assertRaises(ValueError):
            PreGeneratedQR(qr_data='PRE:x', prefix=None, created_at='', assigned_type=EntityType.ITEM)

    def test_assign_marks_only_matching_entry(self) -> None:
        pool = generate_pool(3, 'A', max_count=10)
        updated, outcome = assign_entry(pool, pool[1].qr_data, entity_id='item-1', entity_type=EntityType.ITEM)
        self.assertEqual(outcome, AssignmentOutcome.ASSIGNED)
        self.assertEqual(updated[1].assigned_to, 'item-1')
        self.assertEqual(updated[1].assigned_type, EntityType.ITEM)
        self.assertIsNone(updated[0].assigned_to)
        self.assertIsNone(updated[2].assigned_to)
        self.assertIsNone(pool[1].assigned_to)

    def test_assign_unknown_payload_is_noop(self) -> None:
        pool = generate_pool(1, None, max_count=10)
        updated, outcome = assign_entry(pool, 'PRE:missing', entity_id='x', entity_type=EntityType.AREA)
        self.assertEqual(outcome, AssignmentOutcome.NOT_IN_POOL)
        self.assertEqual(updated, pool)

    def test_reassigning_to_other_entity_conflicts(self) -> None:
        pool = generate_pool(1, None, max_count=10)
        pool, _ = assign_entry(pool, pool[0].qr_data, entity_id='item-1', entity_type=EntityType.ITEM)
        same, outcome = assign_entry(pool, pool[0].qr_data, entity_id='item-1', entity_type=EntityType.ITEM)
        self.assertEqual(outcome, AssignmentOutcome.ALREADY_ASSIGNED)
        self.assertEqual(same, pool)
        with self.assertRaises(PoolAssignmentConflict) as ctx:
            assign_entry(pool, pool[0].qr_data, entity_id='item-2', entity_type=EntityType.ITEM)
        self.assertEqual(ctx.exception.assigned_to, 'item-1')

    def test_filters(self) -> None:
        pool = generate_pool(3, None, max_count=10)
        pool, _ = assign_entry(pool, pool[0].qr_data, entity_id='loc-1', entity_type=EntityType.LOCATION)
        self.assertEqual(len(unassigned_entries(pool)), 2)
        self.assertEqual([entry.qr_data for entry in clear_unassigned(pool)], [pool[0].qr_data])
        self.assertEqual(len(delete_entry(pool, pool[2].qr_data)), 2)

    def test_release_returns_entries_to_unassigned(self) -> None:
        pool = generate_pool(2, None, max_count=10)
        pool, _ = assign_entry(pool, pool[0].qr_data, entity_id='loc-1', entity_type=EntityType.LOCATION)
        released = release_entries(pool, {'loc-1'})
        self.assertTrue(all(not entry.is_assigned for entry in released))

    def test_wire_format_round_trip_keeps_unknown_fields(self) -> None:
        raw = {
            'qrData': 'PRE:abc',
            'prefix': None,
            'createdAt': '2024-01-15T10:00:00.000Z',
            'assignedTo': 'item-1',
            'assignedType': 'item',
            'printedAt': '2024-01-16',
        }
        entry = PreGeneratedQR.from_dict(raw)
        self.assertEqual(entry.assigned_type, EntityType.ITEM)
        self.assertEqual(entry.to_dict(), raw)

    def test_from_dict_rejects_non_text_assignment(self) -> None:
        base = {'qrData': 'PRE:abc', 'createdAt': '2024-01-15T10:00:00.000Z', 'assignedType': 'item'}
        for bad in (42, {'id': 'item-1'}, ['item-1']):
            with self.assertRaises(ValueError):
                PreGeneratedQR.from_dict({**base, 'assignedTo': bad})
        with self.assertRaises(ValueError):
            PreGeneratedQR.from_dict({'qrData': 'PRE:abc', 'prefix': 7})


if __name__ == '__main__':
    unittest.main()
