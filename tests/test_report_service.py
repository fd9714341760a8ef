from __future__ import annotations

import unittest

from stowqr.services.inventory_service import InventoryState, add_area, add_item, add_location, add_section
from stowqr.services.report_service import inventory_report


class InventoryReportTests(unittest.TestCase):
    def test_report_nests_sections_and_loose_items(self) -> None:
        state, office = add_location(InventoryState(), 'Office')
        state, empty = add_location(state, 'Attic')
        state, closet = add_area(state, 'Closet', office.id)
        state, shelf = add_section(state, 'Top Shelf', office.id, closet.id)
        state, stapler = add_item(state, 'Stapler', office.id, closet.id, shelf.id)
        state, tape = add_item(state, 'Tape', office.id, closet.id)

        report = inventory_report(state, now='2024-03-01T00:00:00.000Z')

        self.assertEqual(
            (report.total_locations, report.total_areas, report.total_sections, report.total_items),
            (2, 1, 1, 2),
        )
        office_report, attic_report = report.locations
        self.assertEqual(attic_report.location, empty)
        self.assertEqual((attic_report.areas, attic_report.item_count), ([], 0))

        closet_report = office_report.areas[0]
        self.assertEqual(closet_report.items, [tape])
        self.assertEqual(closet_report.sections[0].items, [stapler])
        self.assertEqual(office_report.item_count, 2)

    def test_report_wire_shape(self) -> None:
        state, office = add_location(InventoryState(), 'Office')
        state, closet = add_area(state, 'Closet', office.id)
        state, _ = add_item(state, 'Tape', office.id, closet.id)

        data = inventory_report(state, now='2024-03-01T00:00:00.000Z').to_dict()
        self.assertEqual(data['generatedAt'], '2024-03-01T00:00:00.000Z')
        self.assertEqual(data['totalItems'], 1)
        area = data['locations'][0]['areas'][0]
        self.assertEqual(area['area']['name'], 'Closet')
        self.assertEqual([item['name'] for item in area['items']], ['Tape'])
        self.assertEqual(area['sections'], [])

    def test_empty_inventory(self) -> None:
        report = inventory_report(InventoryState())
        self.assertEqual(report.locations, [])
        self.assertTrue(report.generated_at.endswith('Z'))


if __name__ == '__main__':
    unittest.main()
