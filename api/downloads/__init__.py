"""Downloads API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from auth import get_current_user
from downloads import DownloadManager
from errors import MarketplaceError
from models import DownloadType, Principal
from ratelimit import rate_limit

from ..errors import http_error

router = APIRouter(
    prefix="/downloads",
    tags=["Downloads"],
    dependencies=[Depends(rate_limit('general'))]
)


@router.post("/{project_id}")
async def download_project(
    project_id: UUID,
    request: Request,
    download_type: DownloadType = Query(DownloadType.FULL),
    user: Principal = Depends(get_current_user)
):
    """Authorize and log a download of the project."""
    try:
        manager = DownloadManager()
        download = await manager.download_project(
            user,
            project_id,
            download_type,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get('user-agent')
        )
        return {"message": "Download authorized", "download": download}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/me")
async def get_my_downloads(user: Principal = Depends(get_current_user)):
    try:
        manager = DownloadManager()
        return {"downloads": await manager.get_user_downloads(user)}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/project/{project_id}/stats")
async def get_download_stats(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    """Download counts for a project (author or staff)."""
    try:
        manager = DownloadManager()
        return await manager.get_download_stats(user, project_id)
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/project/{project_id}/history")
async def get_download_history(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = DownloadManager()
        return {"downloads": await manager.get_user_download_history(user, project_id)}
    except MarketplaceError as e:
        raise http_error(e)
