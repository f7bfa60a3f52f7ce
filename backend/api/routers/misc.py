"""Changelog router: the activity log written by the changelog middleware."""
from fastapi import APIRouter, Query, Depends
from typing import Optional
from ..dependencies import get_db, require_perm

router = APIRouter()


# ── Changelog / activity log ────────────────────────────────

@router.get("/v1/changelog", tags=["Changelog"], summary="Activity log",
            description="Recent write actions, newest first. Requires admin:view_page.")
def get_changelog(
    limit: int = Query(100, ge=1, le=1000, description="Max entries to return"),
    user: Optional[str] = Query(None, description="Filter by user"),
    date_from: Optional[str] = Query(None, description="ISO date YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="ISO date YYYY-MM-DD"),
    _user: dict = Depends(require_perm('admin:view_page', detail="You don't have permission to view the changelog")),
):
    """Return activity log entries from changelog.json."""
    return get_db().get_changelog(limit=limit, user=user, date_from=date_from, date_to=date_to)
