"""Dashboard API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from auth import get_current_user
from dashboard import DashboardManager
from errors import MarketplaceError
from models import Principal
from ratelimit import rate_limit

from ..errors import http_error

router = APIRouter(
    prefix="/dashboard",
    tags=["Dashboard"],
    dependencies=[Depends(rate_limit('general'))]
)


@router.get("/stats")
async def get_dashboard_stats(
    months_back: Optional[str] = Query(None),
    user: Principal = Depends(get_current_user)
):
    """Statistics for the caller; a months_back outside 3-12 falls back to 6."""
    try:
        manager = DashboardManager()
        return {"stats": await manager.get_dashboard_stats(user, months_back)}
    except MarketplaceError as e:
        raise http_error(e)
