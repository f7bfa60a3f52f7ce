"""
High-level data access for the SCHL portal JSON collections.
"""
import copy
import hashlib
import logging
import os
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .jsonstore import delete_document, locked_collection, read_collection
from .changes import changes_to_patch
from .constants import (
    APPROVAL_ACTIONS, APPROVAL_MODELS, CLOSED_TICKET_STATUSES, DEFAULT_ATTENDANCE_FLAGS,
)
from .dates import (
    calculate_time_difference, get_dates_in_range, in_date_range, in_timestamp_range,
    js_weekday, last_months, month_label, parse_date, today_local, utc_now_iso,
)
from .filters import (
    add_if_defined, build_or_regex, create_regex_query, filter_documents, paginate,
    plus_separated_contains_all,
)
from .permissions import KNOWN_PERMISSIONS, SUPER_ADMIN, has_perm, sanitize_permissions
from .shifts import crosses_midnight, validate_shift_times

# ── Global cross-request collection cache ───────────────────────
# Maps (data_dir, collection) → ((mtime_ns, size), documents)
# Avoids re-reading unchanged JSON files across requests.
_GLOBAL_STORE_CACHE: Dict[tuple, tuple] = {}

_logger = logging.getLogger('schlapi')

_PBKDF2_ITERATIONS = 120_000

_TICKET_PRIORITY_RANK = {'low': 1, 'medium': 2, 'high': 3, 'critical': 4}


def _client_code_number(code: Optional[str]) -> int:
    """Numeric prefix of a client code (``0042_ACME`` → 42), 0 if there is none."""
    try:
        return int(str(code or '').split('_')[0])
    except ValueError:
        return 0


def _order_sort_rank(order: Dict) -> int:
    finished = order.get('status') == 'finished'
    is_test = order.get('type') == 'test'
    if order.get('status') == 'paused' or (is_test and not finished):
        return 0
    if not finished:
        return 1
    if is_test:
        return 2
    return 3


def _ticket_sort_rank(ticket: Dict) -> int:
    if ticket.get('status') in CLOSED_TICKET_STATUSES:
        return 0
    return _TICKET_PRIORITY_RANK.get(ticket.get('priority'), 0)


class PortalDatabase:
    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def _collection(self, name: str) -> str:
        return os.path.join(self.data_dir, f"{name}.json")

    def _read(self, name: str) -> List[Dict[str, Any]]:
        """Read a collection, using a global mtime-based cache.

        The cache is shared across all requests and instances for the same
        data_dir. Callers get a deep copy, so they may mutate what they read.
        """
        path = self._collection(name)
        key = (self.data_dir, name)
        try:
            st = os.stat(path)
            stamp = (st.st_mtime_ns, st.st_size)
        except OSError:
            stamp = (0, 0)

        cached = _GLOBAL_STORE_CACHE.get(key)
        if cached is not None and cached[0] == stamp:
            return copy.deepcopy(cached[1])

        data = read_collection(path)
        _GLOBAL_STORE_CACHE[key] = (stamp, data)
        return copy.deepcopy(data)

    def _invalidate_cache(self, name: str) -> None:
        """Drop the cached copy of a collection after a write.

        Needed when a file is rewritten within the same mtime tick.
        """
        _GLOBAL_STORE_CACHE.pop((self.data_dir, name), None)

    # ── Generic write helpers ────────────────────────────────────
    @staticmethod
    def _next_id(documents: List[Dict]) -> int:
        """Return max(id)+1 for a document list."""
        return max((d.get('id', 0) or 0 for d in documents), default=0) + 1

    def _find(self, name: str, doc_id: int) -> Optional[Dict]:
        for doc in self._read(name):
            if doc.get('id') == doc_id:
                return doc
        return None

    def _insert(self, name: str, data: Dict,
                check: Optional[Callable[[List[Dict]], None]] = None) -> Dict:
        """Append a new document. *check* runs under the lock and may raise."""
        with locked_collection(self._collection(name)) as documents:
            if check is not None:
                check(documents)
            now = utc_now_iso()
            record = {'id': self._next_id(documents), **data, 'created_at': now, 'updated_at': now}
            documents.append(record)
        self._invalidate_cache(name)
        return copy.deepcopy(record)

    def _update(self, name: str, doc_id: int, data: Dict,
                check: Optional[Callable[[List[Dict], Dict], None]] = None) -> Optional[Dict]:
        """Merge *data* into a document; None if it does not exist."""
        updated = None
        with locked_collection(self._collection(name)) as documents:
            for doc in documents:
                if doc.get('id') == doc_id:
                    if check is not None:
                        check(documents, doc)
                    doc.update(data)
                    doc['updated_at'] = utc_now_iso()
                    updated = copy.deepcopy(doc)
                    break
        self._invalidate_cache(name)
        return updated

    def _delete(self, name: str, doc_id: int) -> Optional[Dict]:
        removed = delete_document(self._collection(name), doc_id)
        self._invalidate_cache(name)
        return removed

    def get_stats(self) -> Dict[str, int]:
        """Document count per collection."""
        names = ('users', 'employees', 'clients', 'orders', 'shift_templates',
                 'shift_overrides', 'tickets', 'commit_logs', 'departments',
                 'attendance_flags', 'holidays', 'leaves', 'approvals')
        return {n: len(self._read(n)) for n in names}

    # ── Users ──────────────────────────────────────────────────
    @staticmethod
    def _hash_password(password: str, salt: Optional[str] = None) -> str:
        """Return ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
        salt = salt or secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac(
            'sha256', password.encode('utf-8'), salt.encode('utf-8'), _PBKDF2_ITERATIONS
        )
        return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt}${digest.hex()}"

    @staticmethod
    def _check_password(password: str, stored: str) -> bool:
        try:
            _, iterations, salt, expected = stored.split('$')
        except (AttributeError, ValueError):
            return False
        digest = hashlib.pbkdf2_hmac(
            'sha256', password.encode('utf-8'), salt.encode('utf-8'), int(iterations)
        )
        return secrets.compare_digest(digest.hex(), expected)

    @staticmethod
    def _public_user(record: Dict) -> Dict:
        return {k: v for k, v in record.items() if k != 'password_hash'}

    def get_users(self) -> List[Dict]:
        rows = [self._public_user(r) for r in self._read('users')]
        rows.sort(key=lambda x: (x.get('name') or '').lower())
        return rows

    def get_user(self, user_id: int) -> Optional[Dict]:
        row = self._find('users', user_id)
        return self._public_user(row) if row else None

    def get_user_names(self) -> Dict[int, str]:
        """Map user id → display name (real name, falling back to login name)."""
        return {
            r['id']: r.get('real_name') or r.get('name', '')
            for r in self._read('users')
        }

    def create_user(self, data: dict) -> dict:
        name = (data.get('name') or '').strip()
        password = data.get('password') or ''
        if not name or not password:
            raise ValueError("INVALID:USER:name and password are required")

        def _unique(documents):
            for row in documents:
                if (row.get('name') or '').strip().lower() == name.lower():
                    raise ValueError(f"DUPLICATE:USERNAME:{name}")

        record = self._insert('users', {
            'name': name,
            'real_name': (data.get('real_name') or '').strip(),
            'role': data.get('role') or 'Employee',
            'permissions': sanitize_permissions(data.get('permissions')),
            'employee_id': data.get('employee_id'),
            'comment': data.get('comment') or '',
            'password_hash': self._hash_password(password),
        }, check=_unique)
        return self._public_user(record)

    def update_user(self, user_id: int, data: dict) -> dict:
        update_data: Dict[str, Any] = {}
        for key in ('name', 'real_name', 'role', 'employee_id', 'comment'):
            if key in data and data[key] is not None:
                update_data[key] = data[key].strip() if isinstance(data[key], str) else data[key]
        if data.get('permissions') is not None:
            update_data['permissions'] = sanitize_permissions(data['permissions'])
        if data.get('password'):
            update_data['password_hash'] = self._hash_password(data['password'])

        def _unique(documents, current):
            new_name = (update_data.get('name') or '').lower()
            if not new_name:
                return
            for row in documents:
                if row['id'] != current['id'] and (row.get('name') or '').strip().lower() == new_name:
                    raise ValueError(f"DUPLICATE:USERNAME:{update_data['name']}")

        updated = self._update('users', user_id, update_data, check=_unique)
        if updated is None:
            raise ValueError(f"NOT_FOUND:USER:{user_id}")
        return self._public_user(updated)

    def delete_user(self, user_id: int) -> int:
        """Delete a user. Returns 1 if found, 0 otherwise."""
        return 1 if self._delete('users', user_id) else 0

    def change_password(self, user_id: int, new_password_plain: str) -> bool:
        """Change a user's password. Returns False if the user does not exist."""
        updated = self._update('users', user_id, {'password_hash': self._hash_password(new_password_plain)})
        return updated is not None

    def verify_user_password(self, name: str, password: str) -> Optional[Dict]:
        """Verify username+password, return user dict (without hash) or None."""
        for r in self._read('users'):
            if (r.get('name') or '').strip().lower() != (name or '').strip().lower():
                continue
            if self._check_password(password, r.get('password_hash', '')):
                return self._public_user(r)
            return None
        return None

    def ensure_admin_user(self, name: str, password: str) -> Optional[Dict]:
        """Create a super admin with every permission when no user exists yet."""
        if self._read('users'):
            return None
        return self.create_user({
            'name': name,
            'password': password,
            'real_name': 'Administrator',
            'role': 'Super Admin',
            'permissions': sorted(KNOWN_PERMISSIONS),
        })

    # ── Employees ──────────────────────────────────────────────
    def get_employee(self, emp_id: int) -> Optional[Dict]:
        return self._find('employees', emp_id)

    def get_employee_by_eid(self, e_id: str) -> Optional[Dict]:
        wanted = (e_id or '').strip().lower()
        for e in self._read('employees'):
            if (e.get('e_id') or '').strip().lower() == wanted:
                return e
        return None

    def search_employees(self, general_search: Optional[str] = None,
                         department: Optional[str] = None,
                         status: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'department', create_regex_query(department, exact=True))
        add_if_defined(query, 'status', status)
        any_of = build_or_regex(general_search, ['e_id', 'real_name', 'designation', 'department', 'email'])
        rows = filter_documents(self._read('employees'), query, any_of)
        rows.sort(key=lambda e: (e.get('e_id') or '').lower())
        return rows

    def create_employee(self, data: dict) -> dict:
        e_id = (data.get('e_id') or '').strip()

        def _unique(documents):
            for row in documents:
                if (row.get('e_id') or '').strip().lower() == e_id.lower():
                    raise ValueError(f"DUPLICATE:E_ID:{e_id}")

        return self._insert('employees', {**data, 'e_id': e_id}, check=_unique)

    def update_employee(self, emp_id: int, data: dict) -> dict:
        def _unique(documents, current):
            new_eid = (data.get('e_id') or '').strip().lower()
            if not new_eid:
                return
            for row in documents:
                if row['id'] != current['id'] and (row.get('e_id') or '').strip().lower() == new_eid:
                    raise ValueError(f"DUPLICATE:E_ID:{data['e_id']}")

        updated = self._update('employees', emp_id, data, check=_unique)
        if updated is None:
            raise ValueError(f"NOT_FOUND:EMPLOYEE:{emp_id}")
        return updated

    def delete_employee(self, emp_id: int) -> Optional[Dict]:
        return self._delete('employees', emp_id)

    # ── Clients ────────────────────────────────────────────────
    def get_client(self, client_id: int) -> Optional[Dict]:
        return self._find('clients', client_id)

    def get_client_by_code(self, code: str) -> Optional[Dict]:
        wanted = (code or '').strip().lower()
        for c in self._read('clients'):
            if (c.get('client_code') or '').strip().lower() == wanted:
                return c
        return None

    def _last_order_dates(self) -> Dict[str, str]:
        latest: Dict[str, str] = {}
        for o in self._read('orders'):
            code, day = o.get('client_code'), o.get('download_date') or ''
            if code and day > latest.get(code, ''):
                latest[code] = day
        return latest

    @staticmethod
    def _order_frequency(last_order_date: Optional[str]) -> str:
        if not last_order_date:
            return 'irregular'
        try:
            days = (today_local() - parse_date(last_order_date)).days
        except ValueError:
            return 'irregular'
        if days <= 14:
            return 'consistent'
        if days < 30:
            return 'regular'
        return 'irregular'

    def search_clients(self, country: Optional[str] = None, client_code: Optional[str] = None,
                       contact_person: Optional[str] = None, marketer: Optional[str] = None,
                       category: Optional[str] = None, general_search: Optional[str] = None,
                       order_frequency: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'country', create_regex_query(country))
        add_if_defined(query, 'client_code', create_regex_query(client_code))
        add_if_defined(query, 'contact_person', create_regex_query(contact_person))
        add_if_defined(query, 'marketer', create_regex_query(marketer))
        add_if_defined(query, 'category', create_regex_query(category))
        any_of = build_or_regex(general_search, [
            'client_code', 'country', 'marketer', 'category',
            'client_name', 'contact_person', 'email',
        ])
        rows = filter_documents(self._read('clients'), query, any_of)
        latest = self._last_order_dates()
        for r in rows:
            r['last_order_date'] = latest.get(r.get('client_code'))
        if order_frequency:
            rows = [r for r in rows if self._order_frequency(r['last_order_date']) == order_frequency]
        rows.sort(key=lambda c: _client_code_number(c.get('client_code')))
        return rows

    def create_client(self, data: dict) -> dict:
        code = (data.get('client_code') or '').strip()

        def _unique(documents):
            for row in documents:
                if (row.get('client_code') or '').strip().lower() == code.lower():
                    raise ValueError(f"DUPLICATE:CLIENT_CODE:{code}")

        return self._insert('clients', {**data, 'client_code': code}, check=_unique)

    def update_client(self, client_id: int, data: dict) -> dict:
        def _unique(documents, current):
            new_code = (data.get('client_code') or '').strip().lower()
            if not new_code:
                return
            for row in documents:
                if row['id'] != current['id'] and (row.get('client_code') or '').strip().lower() == new_code:
                    raise ValueError(f"DUPLICATE:CLIENT_CODE:{data['client_code']}")

        updated = self._update('clients', client_id, data, check=_unique)
        if updated is None:
            raise ValueError(f"NOT_FOUND:CLIENT:{client_id}")
        return updated

    def delete_client(self, client_id: int) -> Optional[Dict]:
        return self._delete('clients', client_id)

    # ── Orders ─────────────────────────────────────────────────
    def get_order(self, order_id: int) -> Optional[Dict]:
        return self._find('orders', order_id)

    def create_order(self, data: dict) -> dict:
        return self._insert('orders', data)

    def update_order(self, order_id: int, data: dict) -> dict:
        updated = self._update('orders', order_id, data)
        if updated is None:
            raise ValueError(f"NOT_FOUND:ORDER:{order_id}")
        return updated

    def delete_order(self, order_id: int) -> Optional[Dict]:
        return self._delete('orders', order_id)

    def search_orders(self, client_code: Optional[str] = None, task: Optional[str] = None,
                      folder: Optional[str] = None, order_type: Optional[str] = None,
                      status: Optional[str] = None, date_from: Optional[str] = None,
                      date_to: Optional[str] = None, general_search: Optional[str] = None,
                      exact_client: bool = False, by_status: bool = False) -> List[Dict]:
        """Filter orders.

        by_status=True sorts unfinished work (paused and open test jobs
        first) ahead of finished work, newest download first inside each
        group. Otherwise orders come oldest download first.
        """
        query: Dict[str, Any] = {}
        add_if_defined(query, 'folder', create_regex_query(folder))
        add_if_defined(query, 'client_code', create_regex_query(client_code, exact=exact_client))
        if task and '+' in task:
            add_if_defined(query, 'task', plus_separated_contains_all(task))
        else:
            add_if_defined(query, 'task', create_regex_query(task))
        add_if_defined(query, 'type', create_regex_query(order_type, exact=True))
        add_if_defined(query, 'status', create_regex_query(status, exact=True))
        any_of = build_or_regex(general_search, ['client_code', 'client_name', 'folder', 'task'])
        rows = filter_documents(
            self._read('orders'), query, any_of,
            predicate=lambda o: in_date_range(o.get('download_date'), date_from, date_to),
        )
        if by_status:
            rows.sort(key=lambda o: o.get('download_date') or '', reverse=True)
            rows.sort(key=_order_sort_rank)
        else:
            rows.sort(key=lambda o: o.get('download_date') or '')
        return rows

    def get_client_orders(self, client_code: str) -> List[Dict]:
        pattern = create_regex_query(client_code, exact=True)
        rows = filter_documents(self._read('orders'), {'client_code': pattern})
        rows.sort(key=lambda o: o.get('download_date') or '', reverse=True)
        return rows

    def _with_time_difference(self, rows: List[Dict]) -> List[Dict]:
        for r in rows:
            r['timeDifference'] = calculate_time_difference(r.get('delivery_date'), r.get('delivery_bd_time'))
        rows.sort(key=lambda r: r['timeDifference'])
        return rows

    def get_unfinished_orders(self) -> List[Dict]:
        """Running production: not finished or in correction, not a test, files still pending."""
        rows = [
            o for o in self._read('orders')
            if o.get('status') not in ('finished', 'correction')
            and o.get('type') != 'test'
            and (o.get('production') or 0) != (o.get('quantity') or 0)
        ]
        return self._with_time_difference(rows)

    def get_qc_orders(self) -> List[Dict]:
        """Orders whose production is complete and that wait for QC."""
        rows = [
            o for o in self._read('orders')
            if o.get('status') not in ('finished', 'correction')
            and o.get('type') != 'test'
            and (o.get('production') or 0) == (o.get('quantity') or 0)
        ]
        return self._with_time_difference(rows)

    def get_rework_orders(self) -> List[Dict]:
        """Unfinished test jobs and orders sent back for correction."""
        rows = [
            o for o in self._read('orders')
            if o.get('status') != 'finished'
            and (o.get('type') == 'test' or o.get('status') == 'correction')
        ]
        return self._with_time_difference(rows)

    def get_orders_by_month(self, client_code: Optional[str], page: int, items_per_page: int) -> Dict:
        """Order count and file total per client for the last 12 months."""
        clients = self._read('clients')
        if client_code:
            pattern = create_regex_query(client_code, exact=True)
            clients = filter_documents(clients, {'client_code': pattern})
        clients.sort(key=lambda c: _client_code_number(c.get('client_code')))
        result = paginate(clients, page, items_per_page)
        codes = {c.get('client_code') for c in result['items']}

        months = last_months(12)
        first = f"{months[0][0]:04d}-{months[0][1]:02d}"
        buckets: Dict[str, Dict[str, Dict[str, int]]] = {}
        for o in self._read('orders'):
            code, day = o.get('client_code'), o.get('download_date') or ''
            if code not in codes or day[:7] < first:
                continue
            month_agg = buckets.setdefault(code, {}).setdefault(day[:7], {'count': 0, 'totalFiles': 0})
            month_agg['count'] += 1
            try:
                month_agg['totalFiles'] += int(o.get('quantity') or 0)
            except (TypeError, ValueError):
                pass

        items = []
        for c in result['items']:
            per_month = buckets.get(c.get('client_code'), {})
            items.append({
                'client_code': c.get('client_code'),
                'orders': [
                    {month_label(y, m): per_month.get(f"{y:04d}-{m:02d}", {'count': 0, 'totalFiles': 0})}
                    for y, m in months
                ],
            })
        result['items'] = items
        return result

    # ── Shift templates & overrides ────────────────────────────
    def get_shift_template(self, template_id: int) -> Optional[Dict]:
        return self._find('shift_templates', template_id)

    @staticmethod
    def _overlaps(doc: Dict, date_from: str, date_to: str) -> bool:
        return doc.get('effective_from', '') <= date_to and doc.get('effective_to', '') >= date_from

    def create_shift_templates(self, employee_ids: List[int], date_from: str, date_to: str,
                               shift_type: str, shift_start: str, shift_end: str,
                               crosses: bool, updated_by: Optional[int],
                               change_reason: Optional[str] = None) -> List[Dict]:
        """Create one active template per employee; all or nothing."""
        created: List[Dict] = []
        with locked_collection(self._collection('shift_templates')) as documents:
            for doc in documents:
                if (doc.get('employee') in employee_ids and doc.get('active')
                        and self._overlaps(doc, date_from, date_to)):
                    raise ValueError("INVALID:OVERLAP:Overlapping shift template exists for one or more employees")
            now = utc_now_iso()
            for emp_id in employee_ids:
                record = {
                    'id': self._next_id(documents),
                    'employee': emp_id,
                    'effective_from': date_from,
                    'effective_to': date_to,
                    'shift_type': shift_type,
                    'shift_start': shift_start,
                    'shift_end': shift_end,
                    'crosses_midnight': crosses,
                    'active': True,
                    'updated_by': updated_by,
                    'change_reason': change_reason,
                    'created_at': now,
                    'updated_at': now,
                }
                documents.append(record)
                created.append(copy.deepcopy(record))
        self._invalidate_cache('shift_templates')
        for emp_id in employee_ids:
            self.clear_resolved_cache(emp_id, date_from, date_to)
        return created

    def update_shift_template(self, template_id: int, data: dict, updated_by: Optional[int]) -> Dict:
        """Apply a template update, re-deriving the midnight flag and checking overlaps."""
        existing = self.get_shift_template(template_id)
        if existing is None:
            raise ValueError(f"NOT_FOUND:SHIFT_TEMPLATE:{template_id}")

        start = data.get('shift_start') or existing.get('shift_start')
        end = data.get('shift_end') or existing.get('shift_end')
        crosses = existing.get('crosses_midnight', False)
        if start and end:
            crosses = crosses_midnight(start, end)
            validate_shift_times(start, end, crosses)

        target_active = data['active'] if data.get('active') is not None else existing.get('active', True)
        target_from = data.get('effective_from') or existing['effective_from']
        target_to = data.get('effective_to') or existing['effective_to']
        if target_to < target_from:
            raise ValueError("To date must be after from date")

        patch = {
            'shift_type': data.get('shift_type') or existing.get('shift_type'),
            'shift_start': start,
            'shift_end': end,
            'crosses_midnight': crosses,
            'updated_by': updated_by,
            'change_reason': data.get('change_reason') or existing.get('change_reason'),
            'active': target_active,
            'effective_from': target_from,
            'effective_to': target_to,
        }

        def _no_overlap(documents, current):
            if not target_active:
                return
            for doc in documents:
                if (doc['id'] != current['id'] and doc.get('employee') == current.get('employee')
                        and doc.get('active') and self._overlaps(doc, target_from, target_to)):
                    raise ValueError("Update causes overlap with existing active shift template")

        updated = self._update('shift_templates', template_id, patch, check=_no_overlap)
        if updated is None:
            raise ValueError(f"NOT_FOUND:SHIFT_TEMPLATE:{template_id}")
        self.clear_resolved_cache(existing['employee'], existing['effective_from'], existing['effective_to'])
        self.clear_resolved_cache(updated['employee'], updated['effective_from'], updated['effective_to'])
        return updated

    def search_shift_templates(self, employee_id: Optional[int] = None,
                               date_from: Optional[str] = None, date_to: Optional[str] = None,
                               shift_type: Optional[str] = None,
                               active: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'employee', employee_id)
        add_if_defined(query, 'shift_type', shift_type)
        if active in ('true', 'false'):
            query['active'] = active == 'true'

        def _in_range(doc):
            if date_from and doc.get('effective_to', '') < date_from:
                return False
            if date_to and doc.get('effective_from', '') > date_to:
                return False
            return True

        rows = filter_documents(self._read('shift_templates'), query, predicate=_in_range)
        rows.sort(key=lambda d: (d.get('effective_from', ''), d.get('id', 0)))
        return rows

    def upsert_shift_override(self, employee_id: int, shift_date: str, data: dict) -> Dict:
        """Insert or replace the override of one employee on one day."""
        with locked_collection(self._collection('shift_overrides')) as documents:
            now = utc_now_iso()
            existing = next(
                (d for d in documents
                 if d.get('employee') == employee_id and d.get('shift_date') == shift_date),
                None,
            )
            if existing is not None:
                existing.update(data)
                existing['updated_at'] = now
                record = existing
            else:
                record = {
                    'id': self._next_id(documents),
                    'employee': employee_id,
                    'shift_date': shift_date,
                    **data,
                    'created_at': now,
                    'updated_at': now,
                }
                documents.append(record)
            result = copy.deepcopy(record)
        self._invalidate_cache('shift_overrides')
        self.clear_resolved_cache(employee_id, shift_date, shift_date)
        return result

    def search_shift_overrides(self, employee_id: Optional[int] = None,
                               date_from: Optional[str] = None,
                               date_to: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'employee', employee_id)
        rows = filter_documents(
            self._read('shift_overrides'), query,
            predicate=lambda d: in_date_range(d.get('shift_date'), date_from, date_to),
        )
        rows.sort(key=lambda d: d.get('shift_date', ''), reverse=True)
        return rows

    def delete_shift_override(self, override_id: int) -> Optional[Dict]:
        removed = self._delete('shift_overrides', override_id)
        if removed:
            self.clear_resolved_cache(removed['employee'], removed['shift_date'], removed['shift_date'])
        return removed

    def clear_resolved_cache(self, employee_id: int, date_from: str, date_to: str) -> int:
        """Forget resolved shifts of an employee inside a date range. Returns count removed."""
        removed = 0
        with locked_collection(self._collection('shift_resolved')) as documents:
            keep = []
            for d in documents:
                if d.get('employee') == employee_id and date_from <= d.get('shift_date', '') <= date_to:
                    removed += 1
                else:
                    keep.append(d)
            documents[:] = keep
        self._invalidate_cache('shift_resolved')
        return removed

    def resolve_shift(self, employee_id: int, shift_date: str) -> Optional[Dict]:
        """Effective shift of an employee on a day.

        Lookup order: resolved cache, then the day's override (cancel means
        no shift; off_day resolves with its override_type so callers can
        tell it apart from an unplanned day), then the active template
        covering the day.
        """
        def _same_day(d: Dict) -> bool:
            return d.get('employee') == employee_id and d.get('shift_date') == shift_date

        cached = next((d for d in self._read('shift_resolved') if _same_day(d)), None)
        if cached is not None:
            return cached

        override = next((d for d in self._read('shift_overrides') if _same_day(d)), None)
        if override is not None:
            if override.get('override_type') == 'cancel':
                return None
            resolved = {'source': 'override', 'source_id': override['id'],
                        'override_type': override.get('override_type')}
            source = override
        else:
            source = next(
                (d for d in self._read('shift_templates')
                 if d.get('employee') == employee_id and d.get('active')
                 and d.get('effective_from', '') <= shift_date <= d.get('effective_to', '')),
                None,
            )
            if source is None:
                return None
            resolved = {'source': 'template', 'source_id': source['id']}
        for key in ('shift_type', 'shift_start', 'shift_end', 'crosses_midnight'):
            resolved[key] = source.get(key)

        # Re-check under the lock so concurrent lookups store one row per day
        with locked_collection(self._collection('shift_resolved')) as documents:
            record = next((d for d in documents if _same_day(d)), None)
            if record is None:
                now = utc_now_iso()
                record = {
                    'id': self._next_id(documents),
                    'employee': employee_id,
                    'shift_date': shift_date,
                    **resolved,
                    'created_at': now,
                    'updated_at': now,
                }
                documents.append(record)
            result = copy.deepcopy(record)
        self._invalidate_cache('shift_resolved')
        return result

    def resolve_shift_range(self, employee_id: int, date_from: str, date_to: str) -> List[Dict]:
        """Resolved shift per day, flagged with weekend days, holidays and approved leave."""
        weekend_days: List[int] = []
        employee = self.get_employee(employee_id)
        if employee and employee.get('department'):
            dept = self.get_department_by_name(employee['department'])
            weekend_days = dept.get('weekend_days', []) if dept else []
        holidays = self.get_holidays()
        leaves = self.search_leaves(employee_id, date_from, date_to, status='approved')
        days = []
        for day in get_dates_in_range(date_from, date_to):
            days.append({
                'date': day,
                'is_weekend': js_weekday(parse_date(day)) in weekend_days,
                'is_holiday': any(h.get('date_from', '') <= day <= h.get('date_to', '') for h in holidays),
                'on_leave': any(lv['start_date'] <= day <= lv['end_date'] for lv in leaves),
                'shift': self.resolve_shift(employee_id, day),
            })
        return days

    # ── Tickets ────────────────────────────────────────────────
    def get_ticket(self, ticket_id: int) -> Optional[Dict]:
        return self._find('tickets', ticket_id)

    def get_ticket_by_number(self, ticket_number: str) -> Optional[Dict]:
        for t in self._read('tickets'):
            if t.get('ticket_number') == ticket_number:
                return t
        return None

    def create_ticket(self, data: dict, now: Optional[datetime] = None) -> Dict:
        """Create a ticket numbered ``SCHL-T<YYYYMM>-<seq>``, seq continuing this month."""
        prefix = f"SCHL-T{(now or datetime.now(timezone.utc)):%Y%m}-"

        def _assign_number(documents):
            last = 0
            for t in documents:
                number = t.get('ticket_number') or ''
                if number.startswith(prefix):
                    try:
                        last = max(last, int(number[len(prefix):]))
                    except ValueError:
                        continue
            data['ticket_number'] = f"{prefix}{last + 1:04d}"

        return self._insert('tickets', data, check=_assign_number)

    def update_ticket(self, ticket_id: int, data: dict) -> Dict:
        updated = self._update('tickets', ticket_id, data)
        if updated is None:
            raise ValueError(f"NOT_FOUND:TICKET:{ticket_id}")
        return updated

    def delete_ticket(self, ticket_id: int) -> Optional[Dict]:
        removed = self._delete('tickets', ticket_id)
        if removed:
            with locked_collection(self._collection('commit_logs')) as documents:
                documents[:] = [d for d in documents if d.get('ticket_id') != ticket_id]
            self._invalidate_cache('commit_logs')
        return removed

    def _with_user_names(self, rows: List[Dict], fields: Tuple[str, ...]) -> List[Dict]:
        names = self.get_user_names()
        for r in rows:
            for field in fields:
                r[f"{field}_name"] = names.get(r.get(field))
        return rows

    def search_tickets(self, ticket_number: Optional[str] = None, title: Optional[str] = None,
                       ticket_type: Optional[str] = None, status: Optional[str] = None,
                       priority: Optional[str] = None, date_from: Optional[str] = None,
                       date_to: Optional[str] = None, deadline_status: Optional[str] = None,
                       created_by: Optional[int] = None, assignee: Optional[int] = None,
                       exclude_closed: bool = False) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'ticket_number', ticket_number)
        add_if_defined(query, 'title', create_regex_query(title))
        add_if_defined(query, 'type', ticket_type)
        add_if_defined(query, 'status', status)
        add_if_defined(query, 'priority', priority)
        add_if_defined(query, 'created_by', created_by)
        now_iso = utc_now_iso()

        def _predicate(t: Dict) -> bool:
            if not in_timestamp_range(t.get('created_at'), date_from, date_to):
                return False
            deadline = t.get('deadline')
            if deadline_status == 'overdue' and not (deadline and deadline <= now_iso):
                return False
            if deadline_status == 'not-overdue' and deadline and deadline <= now_iso:
                return False
            if assignee is not None:
                assignees = t.get('assignees') or []
                if assignees and not any(a.get('db_id') == assignee for a in assignees):
                    return False
            if exclude_closed and t.get('status') in CLOSED_TICKET_STATUSES:
                return False
            return True

        rows = filter_documents(self._read('tickets'), query, predicate=_predicate)
        rows.sort(key=lambda t: t.get('created_at', ''), reverse=True)
        rows.sort(key=_ticket_sort_rank, reverse=True)
        return self._with_user_names(rows, ('created_by', 'assigned_by'))

    def get_work_log_tickets(self, user_id: int) -> List[Dict]:
        """Open tickets assigned to a user, newest first."""
        rows = [
            t for t in self._read('tickets')
            if t.get('status') not in CLOSED_TICKET_STATUSES
            and any(a.get('db_id') == user_id for a in t.get('assignees') or [])
        ]
        rows.sort(key=lambda t: t.get('created_at', ''), reverse=True)
        return rows

    # ── Commit logs (ticket work log) ──────────────────────────
    def get_commit_log(self, commit_id: int) -> Optional[Dict]:
        return self._find('commit_logs', commit_id)

    def create_commit_log(self, data: dict) -> Dict:
        return self._insert('commit_logs', data)

    def update_commit_log(self, commit_id: int, data: dict) -> Dict:
        updated = self._update('commit_logs', commit_id, data)
        if updated is None:
            raise ValueError(f"NOT_FOUND:COMMIT:{commit_id}")
        return updated

    def delete_commit_log(self, commit_id: int) -> Optional[Dict]:
        return self._delete('commit_logs', commit_id)

    def search_commit_logs(self, message: Optional[str] = None, ticket_number: Optional[str] = None,
                           created_by: Optional[int] = None, date_from: Optional[str] = None,
                           date_to: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        add_if_defined(query, 'message', create_regex_query(message))
        add_if_defined(query, 'ticket_number', ticket_number)
        add_if_defined(query, 'created_by', created_by)
        rows = filter_documents(
            self._read('commit_logs'), query,
            predicate=lambda c: in_timestamp_range(c.get('created_at'), date_from, date_to),
        )
        rows.sort(key=lambda c: c.get('created_at', ''), reverse=True)
        return self._with_user_names(rows, ('created_by',))

    # ── Departments ────────────────────────────────────────────
    def get_departments(self) -> List[Dict]:
        rows = self._read('departments')
        rows.sort(key=lambda d: (d.get('name') or '').lower())
        return rows

    def get_department(self, dept_id: int) -> Optional[Dict]:
        return self._find('departments', dept_id)

    def get_department_by_name(self, name: str) -> Optional[Dict]:
        wanted = (name or '').strip().lower()
        for d in self._read('departments'):
            if (d.get('name') or '').strip().lower() == wanted:
                return d
        return None

    def create_department(self, data: dict) -> Dict:
        name = (data.get('name') or '').strip()

        def _unique(documents):
            if any((d.get('name') or '').strip().lower() == name.lower() for d in documents):
                raise ValueError(f"DUPLICATE:DEPARTMENT:{name}")

        return self._insert('departments', {**data, 'name': name}, check=_unique)

    def update_department(self, dept_id: int, data: dict) -> Dict:
        def _unique(documents, current):
            new_name = (data.get('name') or '').strip().lower()
            if not new_name:
                return
            for d in documents:
                if d['id'] != current['id'] and (d.get('name') or '').strip().lower() == new_name:
                    raise ValueError(f"DUPLICATE:DEPARTMENT:{data['name']}")

        updated = self._update('departments', dept_id, data, check=_unique)
        if updated is None:
            raise ValueError(f"NOT_FOUND:DEPARTMENT:{dept_id}")
        return updated

    def delete_department(self, dept_id: int) -> Optional[Dict]:
        return self._delete('departments', dept_id)

    # ── Attendance flags ───────────────────────────────────────
    def get_attendance_flags(self) -> List[Dict]:
        rows = self._read('attendance_flags')
        rows.sort(key=lambda f: f.get('code', ''))
        return rows

    def get_attendance_flag(self, flag_id: int) -> Optional[Dict]:
        return self._find('attendance_flags', flag_id)

    def create_attendance_flag(self, data: dict) -> Dict:
        code = (data.get('code') or '').strip().upper()

        def _unique(documents):
            if any(f.get('code') == code for f in documents):
                raise ValueError(f"DUPLICATE:FLAG_CODE:{code}")

        return self._insert('attendance_flags', {**data, 'code': code}, check=_unique)

    def update_attendance_flag(self, flag_id: int, data: dict) -> Dict:
        if data.get('code'):
            data = {**data, 'code': data['code'].strip().upper()}

        def _unique(documents, current):
            if data.get('code') and any(
                f['id'] != current['id'] and f.get('code') == data['code'] for f in documents
            ):
                raise ValueError(f"DUPLICATE:FLAG_CODE:{data['code']}")

        updated = self._update('attendance_flags', flag_id, data, check=_unique)
        if updated is None:
            raise ValueError(f"NOT_FOUND:FLAG:{flag_id}")
        return updated

    def delete_attendance_flag(self, flag_id: int) -> Optional[Dict]:
        flag = self.get_attendance_flag(flag_id)
        if flag is None:
            return None
        if flag.get('type') == 'system':
            raise ValueError("INVALID:SYSTEM_FLAG:Cannot delete system flags")
        return self._delete('attendance_flags', flag_id)

    def seed_attendance_flags(self) -> int:
        """Add the missing default flags. Returns the number created."""
        created = 0
        with locked_collection(self._collection('attendance_flags')) as documents:
            existing = {f.get('code') for f in documents}
            now = utc_now_iso()
            for default in DEFAULT_ATTENDANCE_FLAGS:
                if default['code'] in existing:
                    continue
                documents.append({
                    'id': self._next_id(documents), **default, 'type': 'system',
                    'created_at': now, 'updated_at': now,
                })
                created += 1
        self._invalidate_cache('attendance_flags')
        return created

    def _flag_id_for_code(self, code: str) -> Optional[int]:
        for f in self._read('attendance_flags'):
            if f.get('code') == code:
                return f['id']
        return None

    # ── Holidays ───────────────────────────────────────────────
    def get_holidays(self, year: Optional[int] = None) -> List[Dict]:
        """Holidays by start date; with *year*, only those touching that year."""
        rows = self._read('holidays')
        if year:
            first, last = f"{year:04d}-01-01", f"{year:04d}-12-31"
            rows = [h for h in rows if h.get('date_from', '') <= last and h.get('date_to', '') >= first]
        rows.sort(key=lambda h: h.get('date_from', ''))
        return rows

    def get_holiday(self, holiday_id: int) -> Optional[Dict]:
        return self._find('holidays', holiday_id)

    @staticmethod
    def _check_holiday_dates(documents: List[Dict], date_from: str, date_to: str,
                             skip_id: Optional[int] = None) -> None:
        if date_to < date_from:
            raise ValueError("INVALID:HOLIDAY:End date must be the same or after Start date")
        for h in documents:
            if h['id'] != skip_id and h.get('date_from', '') <= date_to and date_from <= h.get('date_to', ''):
                raise ValueError(f"DUPLICATE:HOLIDAY:{h.get('date_from')}")

    def create_holiday(self, data: dict) -> Dict:
        """Store a holiday; a one-day holiday has ``date_to == date_from``. The flag defaults to H."""
        record = {**data, 'name': (data.get('name') or '').strip()}
        record['date_to'] = record.get('date_to') or record['date_from']
        if record.get('flag') is None:
            record['flag'] = self._flag_id_for_code('H')
        return self._insert(
            'holidays', record,
            check=lambda documents: self._check_holiday_dates(documents, record['date_from'], record['date_to']),
        )

    def update_holiday(self, holiday_id: int, data: dict) -> Dict:
        def _check(documents, current):
            self._check_holiday_dates(
                documents,
                data.get('date_from') or current['date_from'],
                data.get('date_to') or current['date_to'],
                skip_id=current['id'],
            )

        updated = self._update('holidays', holiday_id, data, check=_check)
        if updated is None:
            raise ValueError(f"NOT_FOUND:HOLIDAY:{holiday_id}")
        return updated

    def delete_holiday(self, holiday_id: int) -> Optional[Dict]:
        return self._delete('holidays', holiday_id)

    # ── Leaves ─────────────────────────────────────────────────
    def get_leave(self, leave_id: int) -> Optional[Dict]:
        return self._find('leaves', leave_id)

    def search_leaves(self, employee_id: Optional[int] = None, date_from: Optional[str] = None,
                      date_to: Optional[str] = None, is_paid: Optional[bool] = None,
                      leave_type: Optional[str] = None, status: Optional[str] = None) -> List[Dict]:
        """Leaves touching the date range, newest start first, with the employee name."""
        query: Dict[str, Any] = {}
        add_if_defined(query, 'employee', employee_id)
        add_if_defined(query, 'leave_type', leave_type)
        add_if_defined(query, 'status', status)
        if is_paid is not None:
            query['is_paid'] = is_paid

        def _overlaps(d):
            if date_from and d.get('end_date', '') < date_from:
                return False
            return not date_to or d.get('start_date', '') <= date_to

        rows = filter_documents(self._read('leaves'), query, predicate=_overlaps)
        rows.sort(key=lambda d: d.get('start_date', ''), reverse=True)
        names = {e['id']: e.get('real_name') for e in self._read('employees')}
        for row in rows:
            row['employee_name'] = names.get(row.get('employee'))
        return rows

    def apply_leave(self, data: dict) -> Dict:
        """File a leave for an employee, tagged with the L attendance flag."""
        if self.get_employee(data.get('employee')) is None:
            raise ValueError(f"NOT_FOUND:EMPLOYEE:{data.get('employee')}")
        flag_id = self._flag_id_for_code('L')
        if flag_id is None:
            raise ValueError("INVALID:LEAVE:No attendance flag with code L configured")
        return self._insert('leaves', {
            'employee': data['employee'],
            'flag': flag_id,
            'leave_type': data.get('leave_type'),
            'is_paid': bool(data.get('is_paid')),
            'start_date': data['start_date'],
            'end_date': data['end_date'],
            'reason': data.get('reason') or '',
            'status': data.get('status') or 'pending',
            'approved_by': None,
        })

    def set_leave_status(self, leave_id: int, status: str, reviewer_id: Optional[int]) -> Dict:
        updated = self._update('leaves', leave_id, {'status': status, 'approved_by': reviewer_id})
        if updated is None:
            raise ValueError(f"NOT_FOUND:LEAVE:{leave_id}")
        return updated

    def update_leave(self, leave_id: int, data: dict) -> Dict:
        """Edit a leave that is still pending."""
        def _check(documents, current):
            if current.get('status') != 'pending':
                raise ValueError("INVALID:LEAVE:Only pending leaves can be edited")
            if data.get('end_date', current['end_date']) < data.get('start_date', current['start_date']):
                raise ValueError("INVALID:LEAVE:End date cannot be before start date")

        if 'employee' in data and self.get_employee(data['employee']) is None:
            raise ValueError(f"INVALID:LEAVE:Employee {data['employee']} not found")
        updated = self._update('leaves', leave_id, data, check=_check)
        if updated is None:
            raise ValueError(f"NOT_FOUND:LEAVE:{leave_id}")
        return updated

    def delete_leave(self, leave_id: int) -> Optional[Dict]:
        return self._delete('leaves', leave_id)

    # ── Approvals ──────────────────────────────────────────────
    def get_approval(self, approval_id: int) -> Optional[Dict]:
        return self._find('approvals', approval_id)

    def create_approval(self, data: dict) -> Dict:
        return self._insert('approvals', {**data, 'status': 'pending', 'rev_by': None})

    def search_approvals(self, req_by: Optional[str] = None, req_type: Optional[str] = None,
                         statuses: Optional[List[str]] = None, date_from: Optional[str] = None,
                         date_to: Optional[str] = None, pending_first: bool = False) -> List[Dict]:
        names = self.get_user_names()
        query: Dict[str, Any] = {}
        pattern = create_regex_query(req_by)
        if pattern is not None:
            matching = {uid for uid, n in names.items() if pattern.search(n or '')}
            query['req_by'] = lambda v: v in matching
        if req_type:
            parts = req_type.strip().split()
            add_if_defined(query, 'target_model', parts[0] if parts else None)
            add_if_defined(query, 'action', parts[1].lower() if len(parts) > 1 else None)
        if statuses:
            query['status'] = lambda v: v in statuses
        rows = filter_documents(
            self._read('approvals'), query,
            predicate=lambda a: in_timestamp_range(a.get('created_at'), date_from, date_to),
        )
        rows.sort(key=lambda a: a.get('created_at', ''), reverse=True)
        if pending_first:
            rows.sort(key=lambda a: a.get('status') != 'pending')
        for r in rows:
            r['req_by_name'] = names.get(r.get('req_by'))
            r['rev_by_name'] = names.get(r.get('rev_by'))
        return rows

    def _apply_user_approval(self, approval: Dict, reviewer_perms: List[str]) -> Optional[Dict]:
        action = approval['action']
        if action == 'create':
            new_user = approval.get('new_data') or {}
            perms = sanitize_permissions(new_user.get('permissions'))
            if has_perm(SUPER_ADMIN, perms) and not has_perm(SUPER_ADMIN, reviewer_perms):
                raise ValueError("You can't approve creating a super admin user")
            invalid = [p for p in perms if not has_perm(p, reviewer_perms)]
            if invalid:
                raise ValueError(
                    f"You tried to approve permissions the reviewer doesn't have: {', '.join(invalid)}"
                )
            return self.create_user(new_user)
        target = self.get_user(approval.get('object_id'))
        if target is None:
            raise ValueError("User not found")
        if action == 'delete':
            if has_perm(SUPER_ADMIN, target.get('permissions')) and not has_perm(SUPER_ADMIN, reviewer_perms):
                raise ValueError("You can't approve deleting a super admin user")
            return self.delete_user(target['id']) and target
        patch = changes_to_patch(approval.get('changes') or [])
        if 'permissions' in patch:
            granted = set(sanitize_permissions(patch['permissions'])) - set(target.get('permissions') or [])
            invalid = sorted(p for p in granted if not has_perm(p, reviewer_perms))
            if invalid:
                raise ValueError(
                    f"You tried to approve permissions the reviewer doesn't have: {', '.join(invalid)}"
                )
        return self.update_user(target['id'], patch)

    def _apply_approval(self, approval: Dict, reviewer_perms: List[str]) -> Optional[Dict]:
        model, action = approval.get('target_model'), approval.get('action')
        if model not in APPROVAL_MODELS or action not in APPROVAL_ACTIONS:
            raise ValueError(f"Unsupported request type: {model} {action}")
        if model == 'User':
            return self._apply_user_approval(approval, reviewer_perms)
        handlers = {
            'Employee': (self.create_employee, self.update_employee, self.delete_employee),
            'Order': (self.create_order, self.update_order, self.delete_order),
            'Client': (self.create_client, self.update_client, self.delete_client),
        }
        create, update, delete = handlers[model]
        if action == 'create':
            return create(approval.get('new_data') or {})
        if action == 'update':
            return update(approval.get('object_id'), changes_to_patch(approval.get('changes') or []))
        return delete(approval.get('object_id'))

    def approve_requests(self, approval_ids: List[int], reviewer_id: int,
                         reviewer_perms: List[str]) -> Tuple[List[Dict], List[str]]:
        """Apply each pending request; one failure does not stop the others."""
        successful: List[Dict] = []
        errors: List[str] = []
        for approval_id in approval_ids:
            approval = self.get_approval(approval_id)
            if approval is None:
                errors.append(f"Approval request not found for ID: {approval_id}")
                continue
            if approval.get('status') != 'pending':
                errors.append(f"Approval request {approval_id} is already {approval.get('status')}")
                continue
            try:
                result = self._apply_approval(approval, reviewer_perms)
            except ValueError as e:
                errors.append(self.describe_error(e))
                continue
            except Exception:
                _logger.exception("Applying approval %s failed", approval_id)
                errors.append(
                    f"Failed to process {approval.get('target_model')} {approval.get('action')} "
                    f"request {approval_id}"
                )
                continue
            if not result:
                errors.append(f"Failed to process {approval.get('target_model')} {approval.get('action')}")
                continue
            successful.append(self._update('approvals', approval_id, {'status': 'approved', 'rev_by': reviewer_id}))
        return successful, errors

    def reject_requests(self, approval_ids: List[int], reviewer_id: int) -> Tuple[List[Dict], List[str]]:
        successful: List[Dict] = []
        errors: List[str] = []
        for approval_id in approval_ids:
            approval = self.get_approval(approval_id)
            if approval is None or approval.get('status') != 'pending':
                errors.append(f"Approval not found or not updated: {approval_id}")
                continue
            successful.append(self._update('approvals', approval_id, {'status': 'rejected', 'rev_by': reviewer_id}))
        return successful, errors

    @staticmethod
    def describe_error(e: ValueError) -> str:
        """Human-readable text for a storage ValueError (strips machine prefixes)."""
        msg = str(e)
        if msg.startswith('NOT_FOUND:'):
            parts = msg.split(':')
            return f"{parts[1].replace('_', ' ').capitalize()} not found"
        if msg.startswith('DUPLICATE:'):
            parts = msg.split(':', 2)
            return f"Duplicate {parts[1].replace('_', ' ').lower()}: {parts[2] if len(parts) > 2 else ''}".strip()
        if msg.startswith('INVALID:'):
            return msg.split(':', 2)[-1]
        return msg

    # ── Changelog ──────────────────────────────────────────────
    def _changelog_path(self) -> str:
        """Path to changelog.json inside the data directory."""
        os.makedirs(self.data_dir, exist_ok=True)
        return os.path.join(self.data_dir, 'changelog.json')

    def get_changelog(self, limit: int = 100, user: Optional[str] = None,
                      date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict]:
        """Read changelog entries, newest first."""
        path = self._changelog_path()
        if not os.path.exists(path):
            return []
        try:
            entries: List[Dict] = read_collection(path)
        except (OSError, ValueError):
            return []
        if user:
            entries = [e for e in entries if e.get('user', '').lower() == user.lower()]
        if date_from:
            entries = [e for e in entries if e.get('timestamp', '') >= date_from]
        if date_to:
            entries = [e for e in entries if e.get('timestamp', '') <= date_to + 'T23:59:59']
        entries = sorted(entries, key=lambda e: e.get('timestamp', ''), reverse=True)
        return entries[:limit]

    def log_action(self, user: str, action: str, entity: str, entity_id: int,
                   details: str = '') -> Dict:
        """Append a changelog entry. Keeps the newest 1000 entries."""
        entry = {
            'timestamp': datetime.now().isoformat(timespec='seconds'),
            'user': user,
            'action': action,          # CREATE / UPDATE / DELETE
            'entity': entity,          # client / order / ticket / shift_plan / ...
            'entity_id': entity_id,
            'details': details,
        }
        with locked_collection(self._changelog_path()) as entries:
            entries.append(entry)
            if len(entries) > 1000:
                entries[:] = entries[-1000:]
        return entry

