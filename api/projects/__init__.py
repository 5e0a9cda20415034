"""Projects API endpoints."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import get_current_user, get_optional_user
from errors import MarketplaceError
from models import Currency, Pricing, Principal, ProjectFilters, ProjectStatus
from projects import ProjectManager
from ratelimit import rate_limit

from ..errors import http_error

router = APIRouter(
    prefix="/projects",
    tags=["Projects"]
)


# Model definitions
class CreateProjectRequest(BaseModel):
    """Request model for creating a project."""
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: Optional[str] = None
    difficulty_level: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    github_url: Optional[str] = None
    demo_url: Optional[str] = None
    thumbnail: Optional[str] = None
    pricing: Optional[Pricing] = None


class UpdateProjectRequest(BaseModel):
    """Request model for updating a project; only sent fields change."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    difficulty_level: Optional[str] = None
    tech_stack: Optional[List[str]] = None
    github_url: Optional[str] = None
    demo_url: Optional[str] = None
    thumbnail: Optional[str] = None
    pricing: Optional[Pricing] = None


class UpdateStatusRequest(BaseModel):
    """Request model for status moderation."""
    status: Optional[ProjectStatus] = None
    is_featured: Optional[bool] = None


""" Public Endpoints - Authentication Optional """
@router.get("", dependencies=[Depends(rate_limit('public'))])
async def list_projects(
    category: Optional[List[str]] = Query(None),
    author_id: Optional[str] = Query(None),
    project_status: Optional[List[ProjectStatus]] = Query(None, alias="status"),
    is_featured: Optional[bool] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    currency: Optional[Currency] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", pattern="^(created_at|title|price|view_count|purchase_count|download_count)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    viewer: Optional[Principal] = Depends(get_optional_user)
):
    """Search the catalogue with filters, sorting and pagination."""
    filters = ProjectFilters(
        category=category,
        author_id=author_id,
        status=project_status,
        is_featured=is_featured,
        min_price=min_price,
        max_price=max_price,
        currency=currency,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order
    )
    try:
        manager = ProjectManager()
        return await manager.list_projects(filters, viewer)
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/my", dependencies=[Depends(rate_limit('general'))])
async def get_my_projects(
    project_status: Optional[List[ProjectStatus]] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: Principal = Depends(get_current_user)
):
    """List the caller's projects in every status, drafts included."""
    filters = ProjectFilters(status=project_status, page=page, limit=limit)
    try:
        manager = ProjectManager()
        return await manager.get_my_projects(user, filters)
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/{project_id}", dependencies=[Depends(rate_limit('public'))])
async def get_project(
    project_id: UUID,
    viewer: Optional[Principal] = Depends(get_optional_user)
):
    """Get a project with its discount and the caller's relationship to it."""
    try:
        manager = ProjectManager()
        return {"project": await manager.get_project(project_id, viewer, count_view=True)}
    except MarketplaceError as e:
        raise http_error(e)


""" Protected Endpoints - Authentication Required """
@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit('general'))])
async def create_project(
    request: CreateProjectRequest,
    user: Principal = Depends(get_current_user)
):
    """Create a draft project owned by the caller."""
    try:
        manager = ProjectManager()
        project = await manager.create_project(
            author=user,
            title=request.title,
            description=request.description,
            category=request.category,
            difficulty_level=request.difficulty_level,
            tech_stack=request.tech_stack,
            github_url=request.github_url,
            demo_url=request.demo_url,
            thumbnail=request.thumbnail,
            pricing=request.pricing
        )
        return {"message": "Project created successfully", "project": project}
    except MarketplaceError as e:
        raise http_error(e)


@router.put("/{project_id}", dependencies=[Depends(rate_limit('general'))])
async def update_project(
    project_id: UUID,
    request: UpdateProjectRequest,
    user: Principal = Depends(get_current_user)
):
    """Update the caller's project."""
    try:
        manager = ProjectManager()
        project = await manager.update_project(
            user,
            project_id,
            request.model_dump(exclude_unset=True)
        )
        return {"message": "Project updated successfully", "project": project}
    except MarketplaceError as e:
        raise http_error(e)


@router.patch("/{project_id}/status", dependencies=[Depends(rate_limit('admin'))])
async def update_project_status(
    project_id: UUID,
    request: UpdateStatusRequest,
    user: Principal = Depends(get_current_user)
):
    """Moderate a project's status or featured flag."""
    try:
        manager = ProjectManager()
        project = await manager.update_status(
            user,
            project_id,
            status=request.status,
            is_featured=request.is_featured
        )
        return {"message": "Project status updated successfully", "project": project}
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("/{project_id}", dependencies=[Depends(rate_limit('general'))])
async def delete_project(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    """Delete the caller's project."""
    try:
        manager = ProjectManager()
        await manager.delete_project(user, project_id)
        return {"message": "Project deleted successfully"}
    except MarketplaceError as e:
        raise http_error(e)


@router.post("/{project_id}/purchase", dependencies=[Depends(rate_limit('general'))])
async def purchase_project(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    """Add the caller to the project's buyers without a payment transaction."""
    try:
        manager = ProjectManager()
        result = await manager.purchase_project(user, project_id)
        return {"message": "Project purchased successfully", "project": result.project}
    except MarketplaceError as e:
        raise http_error(e)
