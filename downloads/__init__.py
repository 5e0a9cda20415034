"""Downloads module for gating and logging project downloads."""

import logging
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from database import get_store
from errors import ForbiddenError, MarketplaceError
from models import Download, DownloadType, Principal, Project
from projects import ProjectNotFoundError, ProjectNotPurchasableError, resolve_purchasable_status

logger = logging.getLogger(__name__)


class DownloadError(MarketplaceError):
    """Base exception for download operations."""
    pass


class DownloadForbiddenError(DownloadError, ForbiddenError):
    """Raised when a full download is requested by someone who has not bought it."""
    pass


class DownloadStats(BaseModel):
    total_downloads: int
    unique_users: int
    full_downloads: int
    demo_downloads: int
    preview_downloads: int


def authorize_download(
    project: Optional[Project],
    user_id: str,
    download_type: DownloadType = DownloadType.FULL,
    purchasable_status: Optional[str] = None
) -> Project:
    """Check that user_id may download project in the requested form.

    Full downloads need the user to be a buyer or the author; demo and preview
    downloads only need the project to be published.
    """
    if project is None:
        raise ProjectNotFoundError("Project not found")

    if project.status != resolve_purchasable_status(purchasable_status):
        logger.warning(
            f"User {user_id} download of project {project.id} refused: status {project.status.value}"
        )
        raise ProjectNotPurchasableError("Project is not available for download")

    if download_type == DownloadType.FULL:
        if not project.has_buyer(user_id) and project.author_id != user_id:
            logger.warning(f"User {user_id} full download of project {project.id} refused: not a buyer")
            raise DownloadForbiddenError("You must purchase this project to download it")

    return project


class DownloadManager:
    """Manager class for handling download operations."""

    def __init__(self, store=None, purchasable_status: Optional[str] = None):
        self.store = store
        self.purchasable_status = resolve_purchasable_status(purchasable_status)

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def download_project(
        self,
        user: Principal,
        project_id: UUID,
        download_type: DownloadType = DownloadType.FULL,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Download:
        """Authorize a download and log it.

        Every successful call appends one log row and bumps download_count;
        repeat downloads are counted too.
        """
        await self.ensure_store()

        authorize_download(
            await self.store.get_project(project_id),
            user.user_id,
            download_type,
            self.purchasable_status.value
        )

        download = await self.store.record_download(Download(
            user_id=user.user_id,
            project_id=project_id,
            download_type=download_type,
            ip_address=ip_address,
            user_agent=user_agent
        ))
        logger.info(f"User {user.user_id} downloaded project {project_id} ({download_type.value})")
        return download

    async def get_user_downloads(self, user: Principal) -> List[Download]:
        await self.ensure_store()
        return await self.store.list_downloads(user_id=user.user_id)

    async def get_user_download_history(self, user: Principal, project_id: UUID) -> List[Download]:
        await self.ensure_store()
        return await self.store.list_downloads(user_id=user.user_id, project_id=project_id)

    async def get_download_stats(self, actor: Principal, project_id: UUID) -> DownloadStats:
        """Download counts for a project, visible to its author and staff."""
        await self.ensure_store()

        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        if project.author_id != actor.user_id and not actor.is_staff:
            logger.warning(f"User {actor.user_id} denied download stats of project {project_id}")
            raise DownloadForbiddenError("Access denied")

        downloads = await self.store.list_downloads(project_id=project_id)
        return DownloadStats(
            total_downloads=len(downloads),
            unique_users=len({d.user_id for d in downloads}),
            full_downloads=sum(1 for d in downloads if d.download_type == DownloadType.FULL),
            demo_downloads=sum(1 for d in downloads if d.download_type == DownloadType.DEMO),
            preview_downloads=sum(1 for d in downloads if d.download_type == DownloadType.PREVIEW)
        )


__all__ = [
    'DownloadError',
    'DownloadForbiddenError',
    'DownloadStats',
    'authorize_download',
    'DownloadManager',
]
