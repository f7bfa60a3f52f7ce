"""API Routers package."""
from . import (
    auth, clients, orders, reports, shift_plans, tickets, departments,
    attendance_flags, holidays, leaves, approvals, employees, misc, events,
)

__all__ = [
    'auth', 'clients', 'orders', 'reports', 'shift_plans', 'tickets', 'departments',
    'attendance_flags', 'holidays', 'leaves', 'approvals', 'employees', 'misc', 'events',
]
