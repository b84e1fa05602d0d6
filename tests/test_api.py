from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from rollship.db import SessionLocal, get_db, get_session_factory
from rollship.main import app
from rollship.models import PrincipalRole
from rollship.security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from rollship.security.passwords import hash_password
from tests.support import add_jumbo, add_order, add_principal, item, make_session_factory


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            add_principal(db, username='scanner', password_hash=hash_password('scannerpass'))
            add_principal(
                db,
                username='lead',
                role=PrincipalRole.SUPERVISOR,
                password_hash=hash_password('leadpass1'),
            )
            self.u1_id = add_jumbo(db, 'U1', material_type='A', width='100').id
            self.u2_id = add_jumbo(db, 'U2', material_type='A', width='100').id
            self.order_id = add_order(db, item(2, material_type='A', width=100)).id
            db.commit()

        def _get_db():
            with self.session_factory() as db:
                try:
                    yield db
                except Exception:
                    db.rollback()
                    raise

        app.state.session_factory = self.session_factory
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_session_factory] = lambda: self.session_factory
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        app.state.session_factory = SessionLocal

    def _login(self, username='scanner', password='scannerpass') -> dict:
        response = self.client.post('/login', json={'username': username, 'password': password})
        self.assertEqual(response.status_code, 200)
        return {'Authorization': f"Bearer {response.json()['token']}"}

    def test_requests_without_session_are_rejected(self) -> None:
        response = self.client.get('/shipment/orders')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'UNAUTHORIZED')

    def test_robots_txt_is_public(self) -> None:
        response = self.client.get('/robots.txt')
        self.assertEqual(response.status_code, 200)
        self.assertIn('Disallow: /', response.text)

    def test_outstanding_orders_list_open_and_in_progress_orders(self) -> None:
        headers = self._login()

        listed = self.client.get('/shipment/orders', headers=headers)
        self.assertEqual(listed.status_code, 200)
        self.assertEqual([row['id'] for row in listed.json()['orders']], [self.order_id])
        self.assertEqual(listed.json()['orders'][0]['total_required'], 2)
        self.assertIsNone(listed.json()['orders'][0]['shipment_status'])

        self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'U1'}, headers=headers)
        in_progress = self.client.get('/shipment/orders', headers=headers).json()
        self.assertEqual(in_progress['total_items'], 1)
        self.assertEqual(in_progress['orders'][0]['shipment_status'], 'IN_PROGRESS')
        self.assertEqual(in_progress['orders'][0]['total_scanned'], 1)

        self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'U2'}, headers=headers)
        self.client.post(f'/shipment/orders/{self.order_id}/finalize', json={}, headers=headers)
        shipped = self.client.get('/shipment/orders', headers=headers).json()
        self.assertEqual(shipped['orders'], [])
        self.assertEqual(shipped['total_items'], 0)

    def test_supervisor_edits_and_deletes_jumbo_rolls(self) -> None:
        lead = self._login('lead', 'leadpass1')

        forbidden = self.client.patch(f'/inventory/jumbo-rolls/{self.u1_id}', json={'length': '1200'}, headers=self._login())
        self.assertEqual(forbidden.status_code, 403)

        edited = self.client.patch(f'/inventory/jumbo-rolls/{self.u1_id}', json={'length': '1200'}, headers=lead)
        self.assertEqual(edited.status_code, 200)
        self.assertEqual(float(edited.json()['remaining_length']), 1200.0)

        self.client.post(f'/inventory/jumbo-rolls/{self.u2_id}/divide', json={'length': '100', 'count': 1}, headers=lead)
        blocked = self.client.delete(f'/inventory/jumbo-rolls/{self.u2_id}', headers=lead)
        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.json()['error'], 'CONFLICT')

        bulk = self.client.post('/inventory/jumbo-rolls/bulk-delete', json={'ids': [self.u1_id, self.u2_id]}, headers=lead)
        self.assertEqual(bulk.status_code, 409)

        deleted = self.client.delete(f'/inventory/jumbo-rolls/{self.u1_id}', headers=lead)
        self.assertEqual(deleted.status_code, 200)
        gone = self.client.get('/inventory/units/by-barcode/U1', headers=lead)
        self.assertEqual(gone.status_code, 404)

    def test_bad_password(self) -> None:
        response = self.client.post('/login', json={'username': 'scanner', 'password': 'wrong-password'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'INVALID_LOGIN')

    def test_scan_and_finalize_over_http(self) -> None:
        headers = self._login()

        first = self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'U1'}, headers=headers)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['progress']['total_scanned'], 1)
        self.assertFalse(first.json()['already_recorded'])

        repeat = self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'U1'}, headers=headers)
        self.assertTrue(repeat.json()['already_recorded'])

        self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'U2'}, headers=headers)
        progress = self.client.get(f'/shipment/orders/{self.order_id}/progress', headers=headers).json()
        self.assertTrue(progress['is_complete'])

        done = self.client.post(f'/shipment/orders/{self.order_id}/finalize', json={'notes': 'ok'}, headers=headers)
        self.assertEqual(done.status_code, 200)
        self.assertEqual(done.json()['status'], 'COMPLETED')

        again = self.client.post(f'/shipment/orders/{self.order_id}/finalize', json={}, headers=headers)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()['error'], 'ALREADY_SHIPPED')

        history = self.client.get('/shipment/history', params={'page_size': 5}, headers=headers)
        self.assertEqual(history.json()['total_items'], 1)
        self.assertEqual(history.headers['cache-control'], 'no-store')

    def test_unknown_barcode_maps_to_not_found(self) -> None:
        headers = self._login()
        response = self.client.post(f'/shipment/orders/{self.order_id}/scans', json={'barcode': 'NOPE'}, headers=headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'NOT_FOUND')

    def test_cookie_session_needs_csrf_header(self) -> None:
        self._login()
        url = f'/shipment/orders/{self.order_id}/scans'

        rejected = self.client.post(url, json={'barcode': 'U1'})
        self.assertEqual(rejected.status_code, 403)

        accepted = self.client.post(
            url,
            json={'barcode': 'U1'},
            headers={CSRF_HEADER_NAME: self.client.cookies.get(CSRF_COOKIE_NAME)},
        )
        self.assertEqual(accepted.status_code, 200)

    def test_operator_cannot_register_stock(self) -> None:
        body = {'barcode': 'J-9', 'material_type': 'Kraft', 'basis_weight': '80', 'width': '100', 'length': '500'}

        forbidden = self.client.post('/inventory/jumbo-rolls', json=body, headers=self._login())
        self.assertEqual(forbidden.status_code, 403)

        created = self.client.post('/inventory/jumbo-rolls', json=body, headers=self._login('lead', 'leadpass1'))
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['barcode'], 'J-9')


if __name__ == '__main__':
    unittest.main()
