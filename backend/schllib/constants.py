"""Enumerated field values shared by the storage layer and the API models."""

CURRENCIES = ('$', '€', '£', 'A$', 'C$', 'NOK', 'DKK', 'SEK')

ORDER_TYPES = ('general', 'test')
ORDER_STATUSES = ('running', 'uploaded', 'paused', 'client-hold', 'finished', 'correction')
ORDER_PRIORITIES = ('low', 'medium', 'high', 'urgent')

TICKET_TYPES = ('bug', 'feature', 'improvement')
TICKET_STATUSES = ('backlog', 'ready', 'in-progress', 'halt', 'review', 'testing', 'done')
TICKET_PRIORITIES = ('low', 'medium', 'high', 'critical')
CLOSED_TICKET_STATUSES = ('done',)

EMPLOYEE_STATUSES = ('Active', 'Inactive', 'Resigned', 'Fired')

APPROVAL_MODELS = ('User', 'Employee', 'Order', 'Client')
APPROVAL_ACTIONS = ('create', 'update', 'delete')
APPROVAL_STATUSES = ('pending', 'approved', 'rejected')

FLAG_TYPES = ('system', 'custom')

DEFAULT_ATTENDANCE_FLAGS = (
    {'code': 'P', 'name': 'Present', 'color': '#10B981', 'description': 'Employee present for work',
     'ignore_attendance_hours': False, 'is_payable': True, 'deduction_percent': 0},
    {'code': 'A', 'name': 'Absent', 'color': '#EF4444', 'description': 'Auto-assigned when absent (0 work hours)',
     'ignore_attendance_hours': True, 'is_payable': False, 'deduction_percent': 100},
    {'code': 'L', 'name': 'Leave', 'color': '#3B82F6', 'description': 'Employee is on approved leave',
     'ignore_attendance_hours': True, 'is_payable': True, 'deduction_percent': 0},
    {'code': 'H', 'name': 'Holiday', 'color': '#8B5CF6', 'description': 'Public holiday',
     'ignore_attendance_hours': True, 'is_payable': True, 'deduction_percent': 0},
    {'code': 'W', 'name': 'Weekend', 'color': '#F59E0B', 'description': 'Weekly off (department specific, 0 work hours)',
     'ignore_attendance_hours': True, 'is_payable': True, 'deduction_percent': 0},
    {'code': 'E', 'name': 'Early Leave', 'color': '#F97316', 'description': 'Leaving before end of shift',
     'ignore_attendance_hours': False, 'is_payable': True, 'deduction_percent': 0},
    {'code': 'D', 'name': 'Delay', 'color': '#EAB308', 'description': 'Arriving after start of shift',
     'ignore_attendance_hours': False, 'is_payable': True, 'deduction_percent': 0},
)
