"""Tests for tickets and the ticket work log."""
import re
from datetime import datetime, timezone

import pytest


def _h(token: str) -> dict:
    return {'X-Auth-Token': token}


@pytest.fixture
def creator(token_for):
    """Ticket author without reviewer rights."""
    return _h(token_for('ticket:create_ticket', user_id=10, name='creator'))


@pytest.fixture
def reviewer(token_for):
    return _h(token_for('ticket:review_works', user_id=20, name='reviewer'))


@pytest.fixture
def worker(token_for):
    """Assignee who only submits daily work."""
    return _h(token_for('ticket:submit_daily_work', user_id=30, name='worker'))


def _create(client, headers, **overrides):
    body = {'title': 'Export button broken', 'type': 'bug', **overrides}
    res = client.post('/v1/ticket/create-ticket', headers=headers, json=body)
    assert res.status_code == 200, res.text
    return res.json()


class TestCreateTicket:
    def test_ticket_number_format(self, client, creator):
        """Verify numbers follow SCHL-T<YYYYMM>-<seq>."""
        first = _create(client, creator)
        second = _create(client, creator)
        month = datetime.now(timezone.utc).strftime('%Y%m')
        assert first['ticket_number'] == f"SCHL-T{month}-0001"
        assert second['ticket_number'] == f"SCHL-T{month}-0002"
        assert re.match(r'^SCHL-T\d{6}-\d{4}$', first['ticket_number'])

    def test_values_are_lower_cased(self, client, creator):
        """Verify type, status and priority are normalized."""
        ticket = _create(client, creator, type='BUG', status='In-Progress', priority='High')
        assert (ticket['type'], ticket['status'], ticket['priority']) == ('bug', 'in-progress', 'high')

    def test_defaults_and_owner(self, client, creator):
        """Verify defaults and the creator are recorded."""
        ticket = _create(client, creator)
        assert ticket['status'] == 'backlog'
        assert ticket['priority'] == 'medium'
        assert ticket['created_by'] == 10
        assert ticket['assigned_by'] is None

    def test_assignees_set_assigned_by(self, client, creator):
        """Verify assigning people records who assigned them."""
        ticket = _create(client, creator, assignees=[{'name': 'Worker', 'db_id': 30}])
        assert ticket['assigned_by'] == 10

    def test_unknown_type(self, client, creator):
        """Verify an unknown type fails validation."""
        res = client.post('/v1/ticket/create-ticket', headers=creator, json={'title': 'x', 'type': 'chore'})
        assert res.status_code == 422

    def test_requires_permission(self, client, reviewer):
        """Verify create-ticket needs ticket:create_ticket."""
        res = client.post('/v1/ticket/create-ticket', headers=reviewer, json={'title': 'x', 'type': 'bug'})
        assert res.status_code == 403


class TestTicketAccess:
    def test_owner_and_reviewer_can_view(self, client, creator, reviewer):
        """Verify the owner and reviewers can read a ticket."""
        ticket = _create(client, creator)
        assert client.get(f"/v1/ticket/get-ticket/{ticket['id']}", headers=creator).status_code == 200
        assert client.get(f"/v1/ticket/get-ticket/{ticket['id']}", headers=reviewer).status_code == 200

    def test_other_user_cannot_view(self, client, creator, worker):
        """Verify other users get 403."""
        ticket = _create(client, creator)
        res = client.get(f"/v1/ticket/get-ticket/{ticket['id']}", headers=worker)
        assert res.status_code == 403
        assert res.json()['detail'] == "You don't have permission to view this ticket"

    def test_get_by_number(self, client, creator):
        """Verify lookup by ticket number."""
        ticket = _create(client, creator)
        res = client.get(f"/v1/ticket/get-ticket?ticketNo={ticket['ticket_number']}", headers=creator)
        assert res.json()['id'] == ticket['id']

    def test_missing_ticket(self, client, reviewer):
        """Verify an unknown ticket answers 404."""
        assert client.get('/v1/ticket/get-ticket/99', headers=reviewer).status_code == 404


class TestSearchTickets:
    def test_non_reviewers_only_see_their_tickets(self, client, creator, token_for):
        """Verify the search is limited to own tickets without review rights."""
        _create(client, creator)
        other = _h(token_for('ticket:create_ticket', user_id=11, name='other'))
        _create(client, other, title='Other ticket')
        rows = client.post('/v1/ticket/search-tickets', headers=creator, json={}).json()
        assert [t['title'] for t in rows] == ['Export button broken']

    def test_reviewer_sees_all(self, client, creator, reviewer, token_for):
        """Verify reviewers search across everybody's tickets."""
        _create(client, creator)
        _create(client, _h(token_for('ticket:create_ticket', user_id=11)), title='Other ticket')
        rows = client.post('/v1/ticket/search-tickets', headers=reviewer, json={}).json()
        assert len(rows) == 2

    def test_open_tickets_first_by_priority(self, client, creator):
        """Verify done tickets sink and open ones sort by priority."""
        _create(client, creator, title='low', priority='low')
        _create(client, creator, title='done', priority='critical', status='done')
        _create(client, creator, title='critical', priority='critical')
        rows = client.post('/v1/ticket/search-tickets', headers=creator, json={}).json()
        assert [t['title'] for t in rows] == ['critical', 'low', 'done']

    def test_exclude_closed(self, client, creator):
        """Verify excludeClosed drops done tickets."""
        _create(client, creator, status='done')
        rows = client.post('/v1/ticket/search-tickets', headers=creator, json={'excludeClosed': True}).json()
        assert rows == []

    def test_overdue_filter(self, client, creator):
        """Verify the overdue filter compares the deadline with now."""
        _create(client, creator, title='late', deadline='2000-01-01T00:00:00.000Z')
        _create(client, creator, title='future', deadline='2999-01-01T00:00:00.000Z')
        rows = client.post('/v1/ticket/search-tickets', headers=creator,
                           json={'deadlineStatus': 'overdue'}).json()
        assert [t['title'] for t in rows] == ['late']

    def test_work_log_tickets(self, client, creator, worker):
        """Verify the work log lists open tickets assigned to the caller."""
        _create(client, creator, assignees=[{'name': 'Worker', 'db_id': 30}])
        _create(client, creator, title='closed', status='done', assignees=[{'name': 'Worker', 'db_id': 30}])
        _create(client, creator, title='unassigned')
        rows = client.get('/v1/ticket/work-log-tickets', headers=worker).json()
        assert [t['title'] for t in rows] == ['Export button broken']


class TestUpdateTicket:
    def test_owner_updates(self, client, creator, db):
        """Verify the owner can change the ticket."""
        ticket = _create(client, creator)
        res = client.put(f"/v1/ticket/update-ticket/{ticket['id']}", headers=creator, json={'status': 'REVIEW'})
        assert res.status_code == 200
        assert res.json()['message'] == "Updated the ticket successfully"
        assert db.get_ticket(ticket['id'])['status'] == 'review'

    def test_clearing_assignees_clears_assigned_by(self, client, creator, db):
        """Verify removing every assignee resets assigned_by."""
        ticket = _create(client, creator, assignees=[{'name': 'Worker', 'db_id': 30}])
        client.put(f"/v1/ticket/update-ticket/{ticket['id']}", headers=creator, json={'assignees': []})
        assert db.get_ticket(ticket['id'])['assigned_by'] is None

    def test_stranger_cannot_update(self, client, creator, worker):
        """Verify non-owners without review rights get 403."""
        ticket = _create(client, creator)
        res = client.put(f"/v1/ticket/update-ticket/{ticket['id']}", headers=worker, json={'title': 'x'})
        assert res.status_code == 403

    def test_empty_update(self, client, creator):
        """Verify an update without fields answers 400."""
        ticket = _create(client, creator)
        res = client.put(f"/v1/ticket/update-ticket/{ticket['id']}", headers=creator, json={})
        assert res.status_code == 400

    def test_delete_removes_work_log(self, client, creator, db):
        """Verify deleting a ticket also deletes its commits."""
        ticket = _create(client, creator)
        client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=creator, json={'message': 'wip'})
        res = client.delete(f"/v1/ticket/delete-ticket/{ticket['id']}", headers=creator)
        assert res.status_code == 200
        assert db.get_ticket(ticket['id']) is None
        assert db.search_commit_logs() == []


class TestCommits:
    def test_assignee_adds_commit_and_moves_ticket(self, client, creator, worker, db):
        """Verify an assignee can log work and change the ticket status."""
        ticket = _create(client, creator, assignees=[{'name': 'Worker', 'db_id': 30}])
        res = client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=worker,
                          json={'message': 'Fixed export', 'sha': 'abc123', 'status': 'testing'})
        assert res.status_code == 200
        commit = res.json()['record']
        assert commit['ticket_number'] == ticket['ticket_number']
        assert commit['created_by'] == 30
        assert db.get_ticket(ticket['id'])['status'] == 'testing'

    def test_commit_needs_message(self, client, creator):
        """Verify a commit without message fails validation."""
        ticket = _create(client, creator)
        res = client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=creator, json={'sha': 'abc'})
        assert res.status_code == 422

    def test_unrelated_user_cannot_commit(self, client, creator, worker):
        """Verify only owner, assignees and reviewers may log work."""
        ticket = _create(client, creator)
        res = client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=worker, json={'message': 'x'})
        assert res.status_code == 403

    def test_search_commit_logs(self, client, creator):
        """Verify the work log can be filtered by ticket number."""
        ticket = _create(client, creator)
        client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=creator, json={'message': 'first'})
        rows = client.post('/v1/ticket/search-commit-logs', headers=creator,
                           json={'ticketNumber': ticket['ticket_number']}).json()
        assert [c['message'] for c in rows] == ['first']
        assert 'created_by_name' in rows[0]

    def test_update_and_delete_commit(self, client, creator, worker):
        """Verify the author edits and deletes a commit, strangers cannot."""
        ticket = _create(client, creator)
        commit = client.post(f"/v1/ticket/add-commit/{ticket['id']}", headers=creator,
                             json={'message': 'first'}).json()['record']
        assert client.put(f"/v1/ticket/update-commit/{commit['id']}", headers=worker,
                          json={'message': 'x'}).status_code == 403
        res = client.put(f"/v1/ticket/update-commit/{commit['id']}", headers=creator, json={'message': ' second '})
        assert res.json()['record']['message'] == 'second'
        assert client.delete(f"/v1/ticket/delete-commit/{commit['id']}", headers=creator).status_code == 200
        assert client.delete(f"/v1/ticket/delete-commit/{commit['id']}", headers=creator).status_code == 404
