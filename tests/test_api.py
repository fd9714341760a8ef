from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from stowqr.dependencies import repository
from stowqr.main import app
from stowqr.services.hex_service import format_for_display, to_hex
from stowqr.services.storage_service import InventoryRepository, MemoryKeyValueStore, StaleWriteError


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InventoryRepository(MemoryKeyValueStore())
        app.dependency_overrides[repository] = lambda: self.repo
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _tree(self) -> tuple[dict, dict, dict]:
        location = self.client.post('/inventory/locations', json={'name': 'Office'}).json()
        area = self.client.post('/inventory/areas', json={'name': 'Closet', 'locationId': location['id']}).json()
        item = self.client.post(
            '/inventory/items',
            json={'name': 'Stapler', 'locationId': location['id'], 'areaId': area['id']},
        ).json()
        return location, area, item

    def test_create_and_read_hierarchy(self) -> None:
        location, area, item = self._tree()
        self.assertEqual(item['hexDisplay'], format_for_display(to_hex(item['qrData'])))
        body = self.client.get(f"/inventory/area/{area['id']}").json()
        self.assertEqual([row['id'] for row in body['items']], [item['id']])
        self.assertEqual(self.client.get('/inventory/location/missing').status_code, 404)

    def test_assign_pool_entry_by_hex(self) -> None:
        _, _, item = self._tree()
        entries = self.client.post('/pool', json={'count': 3, 'prefix': 'A'}).json()
        response = self.client.put(f"/inventory/item/{item['id']}/qr", json={'hex': entries[1]['hexDisplay']})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['assignment'], 'ASSIGNED')

        pool = self.client.get('/pool').json()
        self.assertEqual([entry['assignedTo'] for entry in pool], [None, item['id'], None])
        self.assertEqual(len(self.client.get('/pool', params={'unassigned': True}).json()), 2)

    def test_bad_hex_and_pool_limits(self) -> None:
        _, _, item = self._tree()
        self.assertEqual(self.client.put(f"/inventory/item/{item['id']}/qr", json={'hex': 'ZZ'}).status_code, 400)
        self.assertEqual(self.client.post('/pool', json={'count': 0}).status_code, 400)
        self.assertEqual(self.client.post('/pool', json={'count': 100000}).status_code, 400)

    def test_conflicting_assignment_is_409(self) -> None:
        location, area, item = self._tree()
        other = self.client.post(
            '/inventory/items',
            json={'name': 'Tape', 'locationId': location['id'], 'areaId': area['id']},
        ).json()
        response = self.client.put(f"/inventory/item/{other['id']}/qr", json={'qrData': item['qrData']})
        self.assertEqual(response.status_code, 409)

    def test_persistent_write_conflict_is_409_on_every_router(self) -> None:
        self._tree()
        with patch.object(self.repo, 'mutate', side_effect=StaleWriteError('inventory changed')):
            self.assertEqual(self.client.post('/inventory/locations', json={'name': 'Shed'}).status_code, 409)
            self.assertEqual(self.client.post('/pool', json={'count': 1}).status_code, 409)
            backup = self.client.get('/backup').json()
            self.assertEqual(self.client.post('/backup/restore', json=backup).status_code, 409)

    def test_non_ascii_qr_is_refused_and_entity_stays_readable(self) -> None:
        _, _, item = self._tree()
        response = self.client.put(
            f"/inventory/item/{item['id']}/qr",
            json={'qrData': 'ITE:6f1c2a8e-3b4d-4c5e-9f60-718293a4b5c6:日本'},
        )
        self.assertEqual(response.status_code, 400)
        current = self.client.get(f"/inventory/item/{item['id']}")
        self.assertEqual(current.status_code, 200)
        self.assertEqual(current.json()['qrData'], item['qrData'])

    def test_restore_with_non_ascii_pool_entry_is_refused(self) -> None:
        self._tree()
        backup = self.client.get('/backup').json()
        backup['preGeneratedQRs'] = [{'qrData': 'PRE:日本', 'createdAt': '2024-01-15T10:00:00.000Z'}]
        self.assertEqual(self.client.post('/backup/restore', json=backup).status_code, 400)
        self.assertEqual(self.client.get('/pool').status_code, 200)

    def test_bulk_items_and_report(self) -> None:
        location, area, _ = self._tree()
        response = self.client.post(
            '/inventory/items/bulk',
            json={
                'locationId': location['id'],
                'areaId': area['id'],
                'items': [{'name': 'Pens', 'quantity': 3}, {'name': ' '}, {'name': 'Paper', 'condition': 'new'}],
            },
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual([row['name'] for row in response.json()], ['Pens', 'Paper'])
        self.assertEqual(
            self.client.post(
                '/inventory/items/bulk',
                json={'locationId': location['id'], 'areaId': area['id'], 'items': [{'name': ''}]},
            ).status_code,
            400,
        )

        report = self.client.get('/inventory/report').json()
        self.assertEqual(report['totalItems'], 3)
        self.assertEqual(report['locations'][0]['itemCount'], 3)

    def test_scan_and_codec(self) -> None:
        _, _, item = self._tree()
        hit = self.client.post('/inventory/scan', json={'raw': item['qrData']}).json()
        self.assertTrue(hit['valid'])
        self.assertEqual(hit['entity']['id'], item['id'])
        self.assertEqual(self.client.post('/inventory/scan', json={'raw': 'garbage'}).json(), {'valid': False})

        decoded = self.client.post('/codec/from-hex', json={'hex': item['hex']}).json()
        self.assertEqual(decoded['payload'], item['qrData'])
        self.assertTrue(decoded['valid'])
        self.assertEqual(self.client.post('/codec/from-hex', json={'hex': 'ABC'}).status_code, 400)

    def test_backup_round_trip_and_future_version(self) -> None:
        self._tree()
        backup = self.client.get('/backup').json()
        self.assertEqual(backup['version'], '1.1')

        self.assertEqual(self.client.delete('/inventory').status_code, 200)
        self.assertEqual(self.client.get('/inventory').json()['items'], [])

        restored = self.client.post('/backup/restore', params={'mode': 'replace'}, json=backup).json()
        self.assertEqual(restored['items'], 1)

        backup['version'] = '9.0'
        check = self.client.post('/backup/check', json=backup).json()
        self.assertFalse(check['compatible'])
        response = self.client.post('/backup/restore', json=backup)
        self.assertEqual(response.status_code, 422)
        self.assertFalse(response.json()['detail']['compatible'])


if __name__ == '__main__':
    unittest.main()
