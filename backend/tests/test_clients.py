"""Tests for the client endpoints."""
from schllib.dates import today_local

CLIENT = {
    'client_code': '0001_ACME',
    'client_name': 'Acme Studio',
    'marketer': 'Rahim',
    'contact_person': 'John Doe',
    'contact_number': '+1 555 0100',
    'email': 'John@Acme.com',
    'designation': 'Art Director',
    'country': 'USA',
    'address': '1 Main Street',
}


def _create(client, headers, **overrides):
    res = client.post('/v1/client/create-client', headers=headers, json={**CLIENT, **overrides})
    assert res.status_code == 200, res.text
    return res.json()['record']


class TestCreateClient:
    def test_create_client(self, client, admin_headers):
        """Verify a client is stored with a lower-cased email."""
        record = _create(client, admin_headers)
        assert record['id'] == 1
        assert record['email'] == 'john@acme.com'
        assert record['currency'] == '$'
        assert record['updated_by'] == 'Administrator'

    def test_duplicate_code_is_rejected(self, client, admin_headers):
        """Verify client codes are unique regardless of case."""
        _create(client, admin_headers)
        res = client.post('/v1/client/create-client', headers=admin_headers,
                          json={**CLIENT, 'client_code': '0001_acme'})
        assert res.status_code == 400
        assert res.json()['detail'] == "Client with the same code already exists"

    def test_empty_client_code_is_rejected(self, client, admin_headers):
        """Verify an empty client code fails validation."""
        res = client.post('/v1/client/create-client', headers=admin_headers, json={**CLIENT, 'client_code': ''})
        assert res.status_code == 422
        assert 'client_code' in res.json()['detail']

    def test_invalid_email_is_rejected(self, client, admin_headers):
        """Verify the email needs an @ and a domain."""
        res = client.post('/v1/client/create-client', headers=admin_headers, json={**CLIENT, 'email': 'nope'})
        assert res.status_code == 422

    def test_unknown_currency_is_rejected(self, client, admin_headers):
        """Verify only known currencies are accepted."""
        res = client.post('/v1/client/create-client', headers=admin_headers, json={**CLIENT, 'currency': 'BTC'})
        assert res.status_code == 422

    def test_create_requires_permission(self, client, token_for):
        """Verify create-client needs admin:create_client."""
        tok = token_for('admin:manage_client')
        res = client.post('/v1/client/create-client', headers={'X-Auth-Token': tok}, json=CLIENT)
        assert res.status_code == 403


class TestGetClient:
    def test_get_by_id(self, client, admin_headers):
        """Verify a numeric parameter looks up the id."""
        _create(client, admin_headers)
        res = client.get('/v1/client/get-client/1', headers=admin_headers)
        assert res.status_code == 200
        assert res.json()['client_code'] == '0001_ACME'

    def test_get_by_code(self, client, admin_headers):
        """Verify other parameters look up the client code, ignoring case."""
        _create(client, admin_headers)
        res = client.get('/v1/client/get-client/0001_acme', headers=admin_headers)
        assert res.status_code == 200
        assert res.json()['id'] == 1

    def test_unknown_client(self, client, admin_headers):
        """Verify an unknown client answers 400."""
        res = client.get('/v1/client/get-client/42', headers=admin_headers)
        assert res.status_code == 400
        assert res.json()['detail'] == "Client not found"


class TestUpdateClient:
    def test_update_changes_only_sent_fields(self, client, admin_headers):
        """Verify a patch keeps the other fields."""
        _create(client, admin_headers)
        res = client.put('/v1/client/update-client/1', headers=admin_headers, json={'country': 'Canada'})
        assert res.status_code == 200
        record = res.json()['record']
        assert record['country'] == 'Canada'
        assert record['client_name'] == 'Acme Studio'

    def test_empty_update_is_rejected(self, client, admin_headers):
        """Verify an update without fields answers 400."""
        _create(client, admin_headers)
        res = client.put('/v1/client/update-client/1', headers=admin_headers, json={})
        assert res.status_code == 400

    def test_update_to_taken_code_is_409(self, client, admin_headers):
        """Verify renaming onto an existing code conflicts."""
        _create(client, admin_headers)
        _create(client, admin_headers, client_code='0002_BETA')
        res = client.put('/v1/client/update-client/2', headers=admin_headers, json={'client_code': '0001_ACME'})
        assert res.status_code == 409

    def test_update_unknown_client(self, client, admin_headers):
        """Verify updating a missing client answers 400."""
        res = client.put('/v1/client/update-client/9', headers=admin_headers, json={'country': 'Canada'})
        assert res.status_code == 400
        assert res.json()['detail'] == "Client not found"


class TestSearchClients:
    def _seed(self, client, headers):
        _create(client, headers, client_code='0010_ZED', country='Norway')
        _create(client, headers)
        _create(client, headers, client_code='0002_BETA', country='Germany', marketer='Karim')

    def test_sorted_by_code_number(self, client, admin_headers):
        """Verify results are ordered by the numeric code prefix."""
        self._seed(client, admin_headers)
        res = client.post('/v1/client/search-clients', headers=admin_headers, json={})
        assert res.status_code == 200
        assert [c['client_code'] for c in res.json()] == ['0001_ACME', '0002_BETA', '0010_ZED']

    def test_filter_by_country_prefix(self, client, admin_headers):
        """Verify the country filter matches from a word start."""
        self._seed(client, admin_headers)
        res = client.post('/v1/client/search-clients', headers=admin_headers, json={'countryName': 'nor'})
        assert [c['client_code'] for c in res.json()] == ['0010_ZED']
        res = client.post('/v1/client/search-clients', headers=admin_headers, json={'countryName': 'way'})
        assert res.json() == []

    def test_general_search(self, client, admin_headers):
        """Verify the general search string looks at several fields."""
        self._seed(client, admin_headers)
        res = client.post('/v1/client/search-clients', headers=admin_headers,
                          json={'generalSearchString': 'karim'})
        assert [c['client_code'] for c in res.json()] == ['0002_BETA']

    def test_paginated(self, client, admin_headers):
        """Verify paginated=true wraps the page in {pagination, items}."""
        self._seed(client, admin_headers)
        res = client.post('/v1/client/search-clients?paginated=true&page=2&itemsPerPage=2',
                          headers=admin_headers, json={})
        data = res.json()
        assert data['pagination'] == {'count': 3, 'pageCount': 2}
        assert [c['client_code'] for c in data['items']] == ['0010_ZED']

    def test_items_per_page_is_capped(self, client, admin_headers):
        """Verify page sizes above 100 are rejected."""
        res = client.post('/v1/client/search-clients?itemsPerPage=500', headers=admin_headers, json={})
        assert res.status_code == 422

    def test_order_frequency(self, client, admin_headers):
        """Verify clients ordering within 14 days count as consistent."""
        self._seed(client, admin_headers)
        client.post('/v1/order/create-order', headers=admin_headers, json={
            'client_code': '0001_ACME', 'client_name': 'Acme Studio', 'task': 'Retouch',
            'download_date': today_local().isoformat(),
        })
        res = client.post('/v1/client/search-clients', headers=admin_headers,
                          json={'orderFrequency': 'consistent'})
        rows = res.json()
        assert [c['client_code'] for c in rows] == ['0001_ACME']
        assert rows[0]['last_order_date'] == today_local().isoformat()
        res = client.post('/v1/client/search-clients', headers=admin_headers,
                          json={'orderFrequency': 'irregular'})
        assert [c['client_code'] for c in res.json()] == ['0002_BETA', '0010_ZED']


class TestDeleteClient:
    def test_delete_client(self, client, admin_headers, db):
        """Verify a client manager can delete a client."""
        _create(client, admin_headers)
        res = client.delete('/v1/client/delete-client/1', headers=admin_headers)
        assert res.status_code == 200
        assert res.json()['message'] == "Deleted the client successfully"
        assert db.get_client(1) is None

    def test_delete_unknown_client(self, client, admin_headers):
        """Verify deleting a missing client answers 400."""
        res = client.delete('/v1/client/delete-client/5', headers=admin_headers)
        assert res.status_code == 400

    def test_delete_requires_permission(self, client, admin_headers, token_for):
        """Verify delete-client needs admin:manage_client."""
        _create(client, admin_headers)
        tok = token_for('admin:create_client')
        res = client.delete('/v1/client/delete-client/1', headers={'X-Auth-Token': tok})
        assert res.status_code == 403
