"""Tests for the changelog middleware, health endpoints and SSE helpers."""
from api.routers import events


def _h(token: str) -> dict:
    return {'X-Auth-Token': token}


CLIENT = {
    'client_code': '0001_ACME', 'client_name': 'Acme', 'marketer': 'R', 'contact_person': 'J',
    'contact_number': '1', 'email': 'a@b.co', 'designation': 'd', 'country': 'USA', 'address': 'x',
}


class TestHealth:
    def test_health_is_public(self, client):
        """Verify /v1/health answers without a token."""
        res = client.get('/v1/health')
        assert res.status_code == 200
        data = res.json()
        assert data['status'] == 'ok'
        assert data['storage']['status'] == 'ok'
        assert data['sse_clients'] == 0

    def test_version_is_public(self, client):
        """Verify /v1/version answers without a token."""
        res = client.get('/v1/version')
        assert res.status_code == 200
        assert res.json()['version'] == '1.0.0'

    def test_stats_need_auth(self, client, admin_headers):
        """Verify collection counts are behind authentication."""
        assert client.get('/v1/stats').status_code == 401
        assert client.get('/v1/stats', headers=admin_headers).json()['clients'] == 0


class TestChangelog:
    def test_writes_are_logged(self, client, admin_headers):
        """Verify a create and a delete land in the changelog with the user name."""
        client.post('/v1/client/create-client', headers=admin_headers, json=CLIENT)
        client.delete('/v1/client/delete-client/1', headers=admin_headers)
        entries = client.get('/v1/changelog', headers=admin_headers).json()
        assert {(e['action'], e['entity'], e['entity_id']) for e in entries} == {
            ('CREATE', 'client', 0), ('DELETE', 'client', 1),
        }
        assert all(e['user'] == 'admin' for e in entries)

    def test_searches_and_failures_are_not_logged(self, client, admin_headers):
        """Verify read-only POSTs and failed writes leave no entry."""
        client.post('/v1/client/search-clients', headers=admin_headers, json={})
        client.delete('/v1/client/delete-client/9', headers=admin_headers)
        assert client.get('/v1/changelog', headers=admin_headers).json() == []

    def test_status_changes_are_updates(self, client, admin_headers):
        """Verify finishing an order is logged as an update of the order."""
        client.post('/v1/order/create-order', headers=admin_headers, json={
            'client_code': '0001_ACME', 'client_name': 'Acme', 'task': 'Retouch', 'download_date': '2024-05-01',
        })
        client.post('/v1/order/finish-order/1', headers=admin_headers)
        entries = client.get('/v1/changelog?user=admin', headers=admin_headers).json()
        assert ('UPDATE', 'order', 1) in {(e['action'], e['entity'], e['entity_id']) for e in entries}

    def test_hyphenated_entities(self, client, admin_headers):
        """Verify multi-word path segments map to entity names."""
        client.post('/v1/attendance-flags', headers=admin_headers, json={'code': 'X', 'name': 'X'})
        entries = client.get('/v1/changelog', headers=admin_headers).json()
        assert entries[0]['entity'] == 'attendance_flag'

    def test_changelog_requires_permission(self, client, token_for):
        """Verify the changelog needs admin:view_page."""
        res = client.get('/v1/changelog', headers=_h(token_for('task:view_page')))
        assert res.status_code == 403


class TestValidationErrors:
    def test_errors_are_flattened(self, client, admin_headers):
        """Verify validation errors become one readable detail string."""
        res = client.post('/v1/client/create-client', headers=admin_headers, json={'client_code': 'X'})
        assert res.status_code == 422
        detail = res.json()['detail']
        assert 'client_name: Field required' in detail
        assert '; ' in detail


class TestEvents:
    def test_broadcast_without_subscribers(self):
        """Verify broadcasting with nobody listening is a no-op."""
        events.broadcast('client_changed', {'id': 1})
        assert events.subscriber_count() == 0

    def test_event_types_cover_domains(self):
        """Verify every domain has a change event."""
        for name in ('client', 'order', 'shift_plan', 'ticket', 'approval', 'department', 'attendance_flag'):
            assert f'{name}_changed' in events.EVENT_TYPES
