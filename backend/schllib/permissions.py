"""Permission strings (``area:action``) and checks."""
from typing import Iterable, List, Optional

KNOWN_PERMISSIONS = frozenset({
    'admin:create_user',
    'admin:edit_user',
    'admin:create_employee',
    'admin:create_client',
    'admin:manage_client',
    'admin:create_task',
    'admin:check_approvals',
    'admin:view_page',
    'admin:create_shift_plan',
    'admin:edit_shift_plan',
    'admin:view_shift_plan',
    'browse:view_page',
    'browse:edit_task',
    'browse:delete_task',
    'browse:delete_task_approval',
    'task:view_page',
    'task:running_tasks',
    'task:qc_waitlist',
    'task:test_and_correction_tasks',
    'ticket:create_ticket',
    'ticket:review_works',
    'ticket:submit_daily_work',
    'settings:the_super_admin',
    'settings:change_password',
})

SUPER_ADMIN = 'settings:the_super_admin'


def has_perm(perm: str, user_perms: Optional[Iterable[str]]) -> bool:
    return perm in set(user_perms or ())


def has_any_perm(perms: Iterable[str], user_perms: Optional[Iterable[str]]) -> bool:
    granted = set(user_perms or ())
    return any(p in granted for p in perms)


def sanitize_permissions(perms: Optional[Iterable[str]]) -> List[str]:
    """Drop unknown entries and duplicates, keeping the original order."""
    seen = set()
    result = []
    for p in perms or ():
        if p in KNOWN_PERMISSIONS and p not in seen:
            seen.add(p)
            result.append(p)
    return result
