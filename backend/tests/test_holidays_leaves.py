"""Tests for holidays, leave applications and their effect on the resolved shift range."""
import pytest


def _h(token: str) -> dict:
    return {'X-Auth-Token': token}


def _holiday(client, headers, **fields):
    body = {'name': 'Victory Day', 'dateFrom': '2025-12-16', **fields}
    return client.post('/v1/holidays', headers=headers, json=body)


@pytest.fixture
def employee(db):
    db.seed_attendance_flags()
    return db.create_employee({'e_id': 'E-001', 'real_name': 'Rafi'})


def _leave(client, headers, employee_id, **fields):
    body = {
        'employeeId': employee_id, 'isPaid': True, 'startDate': '2025-03-10',
        'endDate': '2025-03-12', 'reason': 'Family event', **fields,
    }
    return client.post('/v1/leaves', headers=headers, json=body)


class TestHolidays:
    def test_single_day_defaults(self, client, db, admin_headers):
        """Verify a holiday without end date covers one day and gets the H flag."""
        db.seed_attendance_flags()
        res = _holiday(client, admin_headers)
        assert res.status_code == 200
        record = res.json()['record']
        assert record['date_to'] == '2025-12-16'
        assert db.get_attendance_flag(record['flag'])['code'] == 'H'

    def test_overlap_is_refused(self, client, admin_headers):
        """Verify two holidays may not share a day."""
        _holiday(client, admin_headers, name='Eid', dateFrom='2025-03-30', dateTo='2025-04-02')
        res = _holiday(client, admin_headers, dateFrom='2025-04-01')
        assert res.status_code == 400
        assert res.json()['detail'] == "A holiday already exists on this date"

    def test_end_before_start(self, client, admin_headers):
        res = _holiday(client, admin_headers, dateTo='2025-12-01')
        assert res.status_code == 400
        assert res.json()['detail'] == "End date must be the same or after Start date"

    def test_unknown_flag(self, client, admin_headers):
        res = _holiday(client, admin_headers, flagId=42)
        assert res.status_code == 400
        assert res.json()['detail'] == "Attendance flag not found"

    def test_list_by_year(self, client, admin_headers):
        """Verify the year filter keeps holidays touching that year, sorted by date."""
        _holiday(client, admin_headers, name='New Year', dateFrom='2025-12-31', dateTo='2026-01-01')
        _holiday(client, admin_headers, name='Language Day', dateFrom='2026-02-21')
        _holiday(client, admin_headers, name='Old', dateFrom='2024-02-21')
        rows = client.get('/v1/holidays?year=2026', headers=admin_headers).json()
        assert [r['name'] for r in rows] == ['New Year', 'Language Day']

    def test_update_and_delete(self, client, admin_headers):
        _holiday(client, admin_headers)
        res = client.put('/v1/holidays/1', headers=admin_headers, json={'dateTo': '2025-12-17'})
        assert res.status_code == 200
        assert res.json()['record']['date_to'] == '2025-12-17'
        assert client.delete('/v1/holidays/1', headers=admin_headers).status_code == 200
        assert client.delete('/v1/holidays/1', headers=admin_headers).status_code == 404

    def test_update_unknown(self, client, admin_headers):
        res = client.put('/v1/holidays/9', headers=admin_headers, json={'name': 'x'})
        assert res.status_code == 404

    def test_writes_need_super_admin(self, client, token_for):
        """Verify only super admins manage holidays while any user may list them."""
        headers = _h(token_for('admin:view_page'))
        assert _holiday(client, headers).status_code == 403
        assert client.get('/v1/holidays', headers=headers).status_code == 200


class TestLeaves:
    def test_apply_is_pending_with_leave_flag(self, client, db, admin_headers, employee):
        """Verify a new leave is pending and tagged with the L flag."""
        res = _leave(client, admin_headers, employee['id'])
        assert res.status_code == 200
        record = res.json()
        assert record['status'] == 'pending'
        assert record['approved_by'] is None
        assert db.get_attendance_flag(record['flag'])['code'] == 'L'

    def test_apply_without_leave_flag(self, client, db, admin_headers):
        employee = db.create_employee({'e_id': 'E-002', 'real_name': 'Mina'})
        res = _leave(client, admin_headers, employee['id'])
        assert res.status_code == 400
        assert res.json()['detail'] == "No attendance flag with code L configured"

    def test_apply_for_unknown_employee(self, client, admin_headers, employee):
        res = _leave(client, admin_headers, 99)
        assert res.status_code == 400
        assert res.json()['detail'] == "Employee not found"

    def test_end_before_start(self, client, admin_headers, employee):
        res = _leave(client, admin_headers, employee['id'], endDate='2025-03-01')
        assert res.status_code == 400
        assert res.json()['detail'] == "End date cannot be before start date"

    def test_filing_approved_needs_manage_rights(self, client, token_for, employee):
        """Verify plain users can only file pending leaves."""
        headers = _h(token_for('task:view_page'))
        assert _leave(client, headers, employee['id'], status='approved').status_code == 403
        assert _leave(client, headers, employee['id']).status_code == 200

    def test_status_workflow(self, client, db, admin_headers, employee):
        """Verify approving records the reviewer and locks the leave for edits."""
        _leave(client, admin_headers, employee['id'])
        res = client.patch('/v1/leaves/1/status', headers=admin_headers, json={'status': 'approved'})
        assert res.status_code == 200
        assert (res.json()['status'], res.json()['approved_by']) == ('approved', 1)
        res = client.patch('/v1/leaves/1', headers=admin_headers, json={'reason': 'Trip'})
        assert res.status_code == 400
        assert res.json()['detail'] == "Only pending leaves can be edited"

    def test_status_of_unknown_leave(self, client, admin_headers):
        res = client.patch('/v1/leaves/5/status', headers=admin_headers, json={'status': 'rejected'})
        assert res.status_code == 404
        assert res.json()['detail'] == "Leave request not found"

    def test_edit_pending_leave(self, client, admin_headers, employee):
        _leave(client, admin_headers, employee['id'])
        res = client.patch('/v1/leaves/1', headers=admin_headers, json={'endDate': '2025-03-14', 'isPaid': False})
        assert res.status_code == 200
        assert (res.json()['end_date'], res.json()['is_paid']) == ('2025-03-14', False)
        res = client.patch('/v1/leaves/1', headers=admin_headers, json={'endDate': '2025-03-01'})
        assert res.status_code == 400

    def test_search_overlap_and_filters(self, client, admin_headers, employee):
        """Verify search keeps leaves touching the range and honours the paid flag."""
        _leave(client, admin_headers, employee['id'])
        _leave(client, admin_headers, employee['id'], startDate='2025-05-01', endDate='2025-05-02', isPaid=False)
        data = client.post('/v1/leaves/search', headers=admin_headers,
                           json={'fromDate': '2025-03-12', 'toDate': '2025-06-01'}).json()
        assert data['pagination'] == {'count': 2, 'pageCount': 1}
        assert [r['start_date'] for r in data['items']] == ['2025-05-01', '2025-03-10']
        assert data['items'][0]['employee_name'] == 'Rafi'
        unpaid = client.post('/v1/leaves/search', headers=admin_headers, json={'isPaid': False}).json()
        assert [r['start_date'] for r in unpaid['items']] == ['2025-05-01']

    def test_delete(self, client, admin_headers, employee):
        _leave(client, admin_headers, employee['id'])
        assert client.delete('/v1/leaves/1', headers=admin_headers).json() == {'success': True}
        assert client.delete('/v1/leaves/1', headers=admin_headers).status_code == 404


class TestResolvedRangeFlags:
    def test_holiday_and_leave_days(self, client, admin_headers, employee):
        """Verify the resolved range marks holidays and approved leave days."""
        _holiday(client, admin_headers, dateFrom='2025-03-10')
        _leave(client, admin_headers, employee['id'], startDate='2025-03-11', endDate='2025-03-11')
        pending = client.get('/v1/shift-plan/resolved/1?fromDate=2025-03-10&toDate=2025-03-12',
                             headers=admin_headers).json()
        assert [r['is_holiday'] for r in pending] == [True, False, False]
        assert not any(r['on_leave'] for r in pending)
        client.patch('/v1/leaves/1/status', headers=admin_headers, json={'status': 'approved'})
        rows = client.get('/v1/shift-plan/resolved/1?fromDate=2025-03-10&toDate=2025-03-12',
                          headers=admin_headers).json()
        assert [r['on_leave'] for r in rows] == [False, True, False]
