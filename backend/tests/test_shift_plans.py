"""Tests for shift templates, overrides and shift resolution."""


def _h(token: str) -> dict:
    return {'X-Auth-Token': token}


def _bulk(client, headers, **overrides):
    body = {
        'employeeIds': [1, 2],
        'fromDate': '2025-01-01',
        'toDate': '2025-01-31',
        'shiftType': 'morning',
        **overrides,
    }
    return client.post('/v1/shift-plan/create-bulk', headers=headers, json=body)


class TestCreateBulk:
    def test_standard_shift_uses_fixed_times(self, client, admin_headers):
        """Verify morning templates get 07:00-15:00."""
        res = _bulk(client, admin_headers)
        assert res.status_code == 200
        data = res.json()
        assert data['total'] == 2
        assert data['message'] == "Created 2 shift template(s)"
        first = data['created'][0]
        assert (first['shift_start'], first['shift_end'], first['crosses_midnight']) == ('07:00', '15:00', False)
        assert first['active'] is True

    def test_night_shift_crosses_midnight(self, client, admin_headers):
        """Verify night templates are flagged as crossing midnight."""
        res = _bulk(client, admin_headers, shiftType='night', employeeIds=[3])
        assert res.json()['created'][0]['crosses_midnight'] is True

    def test_custom_shift_needs_times(self, client, admin_headers):
        """Verify custom shifts without times are rejected."""
        res = _bulk(client, admin_headers, shiftType='custom')
        assert res.status_code == 400
        assert res.json()['detail'] == "Custom shifts require shiftStart and shiftEnd"

    def test_custom_shift_across_midnight(self, client, admin_headers):
        """Verify a custom 22:00-06:00 shift is accepted as crossing midnight."""
        res = _bulk(client, admin_headers, shiftType='custom', shiftStart='22:00', shiftEnd='06:00')
        assert res.status_code == 200
        assert res.json()['created'][0]['crosses_midnight'] is True

    def test_overlap_creates_nothing(self, client, admin_headers, db):
        """Verify an overlap for one employee blocks the whole batch."""
        _bulk(client, admin_headers, employeeIds=[2])
        res = _bulk(client, admin_headers, employeeIds=[1, 2], fromDate='2025-01-15', toDate='2025-02-15')
        assert res.status_code == 400
        assert res.json()['detail'] == "Overlapping shift template exists for one or more employees"
        assert len(db.search_shift_templates()) == 1

    def test_reversed_range(self, client, admin_headers):
        """Verify the to date may not precede the from date."""
        res = _bulk(client, admin_headers, fromDate='2025-02-01', toDate='2025-01-01')
        assert res.status_code == 400

    def test_impossible_date(self, client, admin_headers):
        """Verify a well-formed but impossible date is rejected."""
        res = _bulk(client, admin_headers, fromDate='2025-02-30')
        assert res.status_code == 400
        assert res.json()['detail'] == "Invalid date: 2025-02-30"

    def test_requires_permission(self, client, token_for):
        """Verify create-bulk needs admin:create_shift_plan."""
        res = _bulk(client, _h(token_for('admin:view_shift_plan')))
        assert res.status_code == 403
        assert res.json()['detail'] == "You don't have permission to create shift plans"


class TestTemplates:
    def test_get_and_search(self, client, admin_headers):
        """Verify templates can be fetched and searched by employee."""
        _bulk(client, admin_headers)
        assert client.get('/v1/shift-plan/1', headers=admin_headers).json()['employee'] == 1
        res = client.post('/v1/shift-plan/search', headers=admin_headers, json={'employeeId': 2})
        assert [t['employee'] for t in res.json()] == [2]
        res = client.post('/v1/shift-plan/search', headers=admin_headers, json={'fromDate': '2025-03-01'})
        assert res.json() == []

    def test_by_employee(self, client, admin_headers):
        """Verify by-employee lists one employee's templates."""
        _bulk(client, admin_headers)
        rows = client.get('/v1/shift-plan/by-employee/1', headers=admin_headers).json()
        assert len(rows) == 1

    def test_missing_template(self, client, admin_headers):
        """Verify an unknown template answers 404."""
        res = client.get('/v1/shift-plan/99', headers=admin_headers)
        assert res.status_code == 404

    def test_update_recomputes_midnight_flag(self, client, admin_headers):
        """Verify changing the times re-derives crosses_midnight."""
        _bulk(client, admin_headers, employeeIds=[1])
        res = client.put('/v1/shift-plan/1', headers=admin_headers,
                         json={'shiftType': 'custom', 'shiftStart': '20:00', 'shiftEnd': '04:00'})
        assert res.status_code == 200
        assert res.json()['crosses_midnight'] is True
        assert res.json()['updated_by'] == 1

    def test_update_into_overlap(self, client, admin_headers):
        """Verify an update may not overlap another active template."""
        _bulk(client, admin_headers, employeeIds=[1])
        _bulk(client, admin_headers, employeeIds=[1], fromDate='2025-02-01', toDate='2025-02-28')
        res = client.put('/v1/shift-plan/2', headers=admin_headers, json={'fromDate': '2025-01-20'})
        assert res.status_code == 400
        assert res.json()['detail'] == "Update causes overlap with existing active shift template"

    def test_inactive_template_may_overlap(self, client, admin_headers):
        """Verify deactivating skips the overlap check."""
        _bulk(client, admin_headers, employeeIds=[1])
        _bulk(client, admin_headers, employeeIds=[1], fromDate='2025-02-01', toDate='2025-02-28')
        res = client.put('/v1/shift-plan/2', headers=admin_headers,
                         json={'fromDate': '2025-01-20', 'active': False})
        assert res.status_code == 200

    def test_update_moves_range(self, client, admin_headers):
        """Verify fromDate and toDate move the effective range."""
        _bulk(client, admin_headers, employeeIds=[1])
        res = client.put('/v1/shift-plan/1', headers=admin_headers,
                         json={'fromDate': '2025-03-01', 'toDate': '2025-03-31'})
        assert res.status_code == 200
        assert (res.json()['effective_from'], res.json()['effective_to']) == ('2025-03-01', '2025-03-31')

    def test_update_unknown_template(self, client, admin_headers):
        """Verify updating a missing template answers 404."""
        res = client.put('/v1/shift-plan/5', headers=admin_headers, json={'active': False})
        assert res.status_code == 404


class TestOverrides:
    def test_replace_needs_shift_fields(self, client, admin_headers):
        """Verify replace overrides need type, start and end."""
        res = client.post('/v1/shift-plan/create', headers=admin_headers, json={
            'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': 'replace',
        })
        assert res.status_code == 400
        assert res.json()['detail'] == "Replace overrides require shiftType, shiftStart, and shiftEnd"

    def test_override_is_upserted(self, client, admin_headers, db):
        """Verify a second override for the same day replaces the first."""
        for kind in ('cancel', 'off_day'):
            res = client.post('/v1/shift-plan/create', headers=admin_headers, json={
                'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': kind,
            })
            assert res.status_code == 200
        rows = db.search_shift_overrides(1)
        assert len(rows) == 1
        assert rows[0]['override_type'] == 'off_day'

    def test_search_overrides_shape(self, client, admin_headers):
        """Verify override search always answers {pagination, items}."""
        res = client.post('/v1/shift-plan/overrides/search', headers=admin_headers, json={})
        assert res.json() == {'pagination': {'count': 0, 'pageCount': 0}, 'items': []}

    def test_unpaginated_page_count(self, client, admin_headers):
        """Verify the page count follows itemsPerPage when the page is not applied."""
        for day in ('2025-01-10', '2025-01-11', '2025-01-12'):
            client.post('/v1/shift-plan/create', headers=admin_headers, json={
                'employeeId': 1, 'shiftDate': day, 'overrideType': 'cancel',
            })
        data = client.post('/v1/shift-plan/overrides/search?itemsPerPage=2', headers=admin_headers, json={}).json()
        assert data['pagination'] == {'count': 3, 'pageCount': 2}
        assert len(data['items']) == 3

    def test_delete_override(self, client, admin_headers):
        """Verify an override can be deleted once."""
        client.post('/v1/shift-plan/create', headers=admin_headers, json={
            'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': 'cancel',
        })
        assert client.delete('/v1/shift-plan/overrides/1', headers=admin_headers).status_code == 200
        res = client.delete('/v1/shift-plan/overrides/1', headers=admin_headers)
        assert res.status_code == 404
        assert res.json()['detail'] == "Override not found"


class TestResolve:
    def test_template_applies(self, client, admin_headers):
        """Verify a day inside a template resolves to the template."""
        _bulk(client, admin_headers, employeeIds=[1])
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers)
        assert res.status_code == 200
        assert res.json()['source'] == 'template'
        assert res.json()['shift_start'] == '07:00'

    def test_no_template_is_null(self, client, admin_headers):
        """Verify a day without template resolves to null."""
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers)
        assert res.status_code == 200
        assert res.json() is None

    def test_override_wins_and_refreshes_cache(self, client, admin_headers):
        """Verify a new override replaces an already resolved template shift."""
        _bulk(client, admin_headers, employeeIds=[1])
        client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers)
        client.post('/v1/shift-plan/create', headers=admin_headers, json={
            'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': 'replace',
            'shiftType': 'evening', 'shiftStart': '15:00', 'shiftEnd': '23:00',
        })
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers).json()
        assert res['source'] == 'override'
        assert res['shift_type'] == 'evening'

    def test_cancel_override_removes_shift(self, client, admin_headers):
        """Verify cancel overrides leave the day without a shift."""
        _bulk(client, admin_headers, employeeIds=[1])
        client.post('/v1/shift-plan/create', headers=admin_headers, json={
            'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': 'cancel',
        })
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers)
        assert res.json() is None

    def test_off_day_override_is_reported(self, client, admin_headers):
        """Verify off_day overrides resolve to an override record rather than null."""
        _bulk(client, admin_headers, employeeIds=[1])
        client.post('/v1/shift-plan/create', headers=admin_headers, json={
            'employeeId': 1, 'shiftDate': '2025-01-10', 'overrideType': 'off_day',
        })
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=admin_headers).json()
        assert res['source'] == 'override'
        assert res['override_type'] == 'off_day'

    def test_resolution_is_cached_once(self, client, admin_headers, db):
        """Verify repeated lookups of one day keep a single cached row."""
        _bulk(client, admin_headers, employeeIds=[1])
        first = db.resolve_shift(1, '2025-01-10')
        second = db.resolve_shift(1, '2025-01-10')
        assert first == second
        rows = [r for r in db._read('shift_resolved') if r['shift_date'] == '2025-01-10']
        assert len(rows) == 1

    def test_resolved_range_marks_weekends(self, client, admin_headers, db):
        """Verify the range view flags the department weekend days."""
        db.create_department({'name': 'Production', 'weekend_days': [5]})
        db.create_employee({'e_id': 'E-001', 'real_name': 'Rafi', 'department': 'Production'})
        _bulk(client, admin_headers, employeeIds=[1])
        # 2025-01-03 is a Friday
        rows = client.get('/v1/shift-plan/resolved/1?fromDate=2025-01-02&toDate=2025-01-04',
                          headers=admin_headers).json()
        assert [r['date'] for r in rows] == ['2025-01-02', '2025-01-03', '2025-01-04']
        assert [r['is_weekend'] for r in rows] == [False, True, False]
        assert all(r['shift']['source'] == 'template' for r in rows)

    def test_resolved_range_limit(self, client, admin_headers):
        """Verify ranges longer than 62 days are refused."""
        res = client.get('/v1/shift-plan/resolved/1?fromDate=2025-01-01&toDate=2025-06-01', headers=admin_headers)
        assert res.status_code == 400
        assert res.json()['detail'] == "Date range must not exceed 62 days"

    def test_resolve_requires_view_permission(self, client, token_for):
        """Verify resolving needs admin:view_shift_plan."""
        res = client.get('/v1/shift-plan/resolve/1?date=2025-01-10', headers=_h(token_for('admin:create_shift_plan')))
        assert res.status_code == 403
