"""Projects module for managing the marketplace catalogue.

This module provides functionality for:
- Creating, updating and deleting projects
- Status moderation and featuring
- Searching and filtering the catalogue
- The purchase-intent gate shared by transactions and the purchase shortcut
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ValidationError as PydanticValidationError

from config import settings_conf
from database import get_store
from errors import ConflictError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError
from models import (
    Currency, Pricing, Principal, Project, ProjectFilters, ProjectStatus
)
from pricing import compute_pricing, require_pricing

logger = logging.getLogger(__name__)


# User-mutable fields for projects
MUTABLE_FIELDS = {
    'title',
    'description',
    'category',
    'difficulty_level',
    'tech_stack',
    'github_url',
    'demo_url',
    'thumbnail',
    'pricing'
}

# System-managed fields (never set through update_project)
SYSTEM_FIELDS = {
    'id',
    'author_id',
    'status',
    'is_featured',
    'buyers',
    'purchase_count',
    'view_count',
    'download_count',
    'created_at',
    'updated_at'
}

# Statuses an author may move their own project between
AUTHOR_STATUSES = {
    ProjectStatus.DRAFT,
    ProjectStatus.PENDING,
    ProjectStatus.ARCHIVED
}


class ProjectError(MarketplaceError):
    """Base exception for project operations."""
    pass


class ProjectNotFoundError(ProjectError, NotFoundError):
    """Raised when a project is not found or not visible to the caller."""
    pass


class ProjectNotPurchasableError(ProjectError, ValidationError):
    """Raised when a project is not in the purchasable status."""
    pass


class SelfPurchaseError(ProjectError, ValidationError):
    """Raised when an author tries to buy their own project."""
    pass


class AlreadyPurchasedError(ProjectError, ValidationError):
    """Raised when the user is already in the project's buyer set."""
    pass


class ProjectForbiddenError(ProjectError, ForbiddenError):
    """Raised when the caller may not modify the project."""
    pass


class ProjectValidationError(ProjectError, ValidationError):
    """Raised when project input is invalid."""
    pass


class UserStatus(BaseModel):
    """Viewer relationship to a project."""
    has_purchased: bool = False
    in_wishlist: bool = False
    in_cart: bool = False


class ProjectView(Project):
    """Project as shown to a viewer."""
    discount_percentage: int = 0
    user_status: Optional[UserStatus] = None


class PurchaseResult(BaseModel):
    """Outcome of the direct purchase shortcut."""
    project: Project
    added: bool


def resolve_purchasable_status(status: Optional[str] = None) -> ProjectStatus:
    return ProjectStatus(status or settings_conf.get('purchasable_status', 'approved'))


def check_purchase_intent(
    project: Optional[Project],
    user_id: str,
    purchasable_status: Optional[str] = None
) -> Project:
    """Validate that user_id may buy project.

    Checks run in order and stop at the first failure: the project exists and
    is purchasable, the user is not its author, the user is not already a
    buyer.

    Returns:
        The validated project

    Raises:
        ProjectNotFoundError: If the project does not exist
        ProjectNotPurchasableError: If the project status is not purchasable
        SelfPurchaseError: If the user authored the project
        AlreadyPurchasedError: If the user already bought the project
    """
    if project is None:
        raise ProjectNotFoundError("Project not found")

    status = resolve_purchasable_status(purchasable_status)
    if project.status != status:
        logger.warning(
            f"User {user_id} tried to buy project {project.id} in status {project.status.value}"
        )
        raise ProjectNotPurchasableError("Project is not available for purchase")

    if project.author_id == user_id:
        logger.warning(f"User {user_id} tried to buy own project {project.id}")
        raise SelfPurchaseError("Cannot purchase your own project")

    if project.has_buyer(user_id):
        logger.warning(f"User {user_id} already purchased project {project.id}")
        raise AlreadyPurchasedError("Project already purchased")

    return project


def _validate_pricing(value: Any) -> Optional[Pricing]:
    if value is None:
        return None
    try:
        return Pricing.model_validate(value)
    except PydanticValidationError as e:
        raise ProjectValidationError(f"Invalid pricing: {e.errors()[0]['msg']}")


class ProjectManager:
    """Manager class for handling project operations."""

    def __init__(self, store=None, purchasable_status: Optional[str] = None):
        """Initialize the project manager.

        Args:
            store: Optional MarketStore. If not provided, will get from database module.
            purchasable_status: Status value that makes a project purchasable
        """
        self.store = store
        self.purchasable_status = resolve_purchasable_status(purchasable_status)

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    def _can_manage(self, actor: Principal, project: Project) -> bool:
        return actor.is_staff or project.author_id == actor.user_id

    async def _load(self, project_id: UUID) -> Project:
        await self.ensure_store()
        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return project

    async def create_project(
        self,
        author: Principal,
        title: str,
        description: str,
        category: Optional[str] = None,
        difficulty_level: Optional[str] = None,
        tech_stack: Optional[List[str]] = None,
        github_url: Optional[str] = None,
        demo_url: Optional[str] = None,
        thumbnail: Optional[str] = None,
        pricing: Optional[Any] = None
    ) -> Project:
        """Create a new project in draft status.

        Args:
            author: The authenticated author
            title: Project title
            description: Project description
            pricing: Optional pricing block with sale_price, original_price and currency

        Returns:
            The created project

        Raises:
            ProjectValidationError: If title, description or pricing is invalid
        """
        await self.ensure_store()

        if not title or not title.strip():
            raise ProjectValidationError("Title is required")
        if not description or not description.strip():
            raise ProjectValidationError("Description is required")

        project = Project(
            author_id=author.user_id,
            title=title.strip(),
            description=description.strip(),
            category=category,
            difficulty_level=difficulty_level,
            tech_stack=tech_stack or [],
            github_url=github_url,
            demo_url=demo_url,
            thumbnail=thumbnail,
            pricing=_validate_pricing(pricing),
            status=ProjectStatus.DRAFT
        )
        created = await self.store.insert_project(project)
        logger.info(f"User {author.user_id} created project {created.id}")
        return created

    async def get_project(
        self,
        project_id: UUID,
        viewer: Optional[Principal] = None,
        count_view: bool = False
    ) -> ProjectView:
        """Get a project with its discount and the viewer's relationship to it.

        Drafts and other unpublished projects are only visible to staff and
        their author; for everyone else they do not exist.

        Raises:
            ProjectNotFoundError: If the project is missing or not visible
        """
        project = await self._load(project_id)

        visible = project.status == self.purchasable_status or (
            viewer is not None and self._can_manage(viewer, project)
        )
        if not visible:
            logger.debug(f"Project {project_id} hidden from viewer {viewer.user_id if viewer else 'anonymous'}")
            raise ProjectNotFoundError(f"Project {project_id} not found")

        if count_view and (viewer is None or viewer.user_id != project.author_id):
            await self.store.increment_project_counter(project.id, 'view_count')
            project.view_count += 1

        summary = compute_pricing(project.pricing, Currency(settings_conf.get('default_currency', 'INR')))
        user_status = None
        if viewer is not None:
            user_status = UserStatus(
                has_purchased=project.has_buyer(viewer.user_id),
                in_wishlist=await self.store.get_wishlist_item(viewer.user_id, project.id) is not None,
                in_cart=await self.store.get_cart_item(viewer.user_id, project.id) is not None
            )

        return ProjectView(
            **project.model_dump(),
            discount_percentage=summary.discount_percent,
            user_status=user_status
        )

    async def list_projects(
        self,
        filters: Optional[ProjectFilters] = None,
        viewer: Optional[Principal] = None
    ) -> Dict[str, Any]:
        """Search the catalogue.

        Non-staff viewers only ever see purchasable projects, whatever status
        filter they pass.

        Returns:
            Dict with projects and pagination details
        """
        await self.ensure_store()
        filters = filters or ProjectFilters()

        if viewer is None or not viewer.is_staff:
            filters = filters.model_copy(update={'status': [self.purchasable_status]})

        return await self._search(filters)

    async def get_my_projects(
        self,
        author: Principal,
        filters: Optional[ProjectFilters] = None
    ) -> Dict[str, Any]:
        """List the caller's own projects, unpublished ones included.

        The author filter is always the caller; a status filter, when given,
        may name any status.
        """
        await self.ensure_store()
        filters = (filters or ProjectFilters()).model_copy(update={'author_id': author.user_id})
        return await self._search(filters)

    async def _search(self, filters: ProjectFilters) -> Dict[str, Any]:
        projects, total = await self.store.search_projects(filters)
        views = [
            ProjectView(
                **p.model_dump(),
                discount_percentage=compute_pricing(p.pricing).discount_percent
            )
            for p in projects
        ]
        return {
            'projects': views,
            'pagination': {
                'page': filters.page,
                'limit': filters.limit,
                'total': total,
                'total_pages': (total + filters.limit - 1) // filters.limit
            }
        }

    async def update_project(
        self,
        actor: Principal,
        project_id: UUID,
        updates: Dict[str, Any]
    ) -> Project:
        """Update user-mutable project fields.

        Raises:
            ProjectNotFoundError: If project not found
            ProjectForbiddenError: If actor is neither the author nor staff
            ProjectValidationError: If updates are empty or touch system fields
        """
        project = await self._load(project_id)

        if not self._can_manage(actor, project):
            logger.warning(f"User {actor.user_id} denied update of project {project_id}")
            raise ProjectForbiddenError("You can only update your own projects")

        if not updates:
            raise ProjectValidationError("No fields to update")

        invalid = set(updates) - MUTABLE_FIELDS
        if invalid:
            raise ProjectValidationError(
                f"Cannot update fields: {', '.join(sorted(invalid))}"
            )

        fields = dict(updates)
        if 'pricing' in fields:
            fields['pricing'] = _validate_pricing(fields['pricing'])
        for key in ('title', 'description'):
            if key in fields and (not fields[key] or not str(fields[key]).strip()):
                raise ProjectValidationError(f"{key.capitalize()} cannot be empty")

        updated = await self.store.update_project(project_id, fields)
        if updated is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        logger.info(f"User {actor.user_id} updated project {project_id}: {', '.join(sorted(fields))}")
        return updated

    async def update_status(
        self,
        actor: Principal,
        project_id: UUID,
        status: Optional[ProjectStatus] = None,
        is_featured: Optional[bool] = None
    ) -> Project:
        """Change a project's status or featured flag.

        Staff may set any status and the featured flag. Authors may only move
        their own project between draft, pending and archived.
        """
        project = await self._load(project_id)

        if status is None and is_featured is None:
            raise ProjectValidationError("Nothing to update")

        if not actor.is_staff:
            if project.author_id != actor.user_id:
                logger.warning(f"User {actor.user_id} denied status change of project {project_id}")
                raise ProjectForbiddenError("You can only change the status of your own projects")
            if is_featured is not None:
                raise ProjectForbiddenError("Only staff can feature projects")
            if status not in AUTHOR_STATUSES or project.status not in AUTHOR_STATUSES:
                logger.warning(
                    f"Author {actor.user_id} denied move of project {project_id} "
                    f"from {project.status.value} to {status.value}"
                )
                raise ProjectForbiddenError(
                    f"Cannot change status from {project.status.value} to {status.value}"
                )

        fields: Dict[str, Any] = {}
        if status is not None:
            fields['status'] = status
        if is_featured is not None:
            fields['is_featured'] = is_featured

        updated = await self.store.update_project(project_id, fields)
        if updated is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        logger.info(
            f"User {actor.user_id} set project {project_id} "
            f"status={updated.status.value} featured={updated.is_featured}"
        )
        return updated

    async def delete_project(self, actor: Principal, project_id: UUID) -> None:
        """Delete a project along with its carts, wishlists, reviews and downloads."""
        project = await self._load(project_id)

        if not self._can_manage(actor, project):
            logger.warning(f"User {actor.user_id} denied delete of project {project_id}")
            raise ProjectForbiddenError("You can only delete your own projects")

        if not await self.store.delete_project(project_id):
            raise ProjectNotFoundError(f"Project {project_id} not found")
        logger.info(f"User {actor.user_id} deleted project {project_id}")

    async def purchase_project(self, buyer: Principal, project_id: UUID) -> PurchaseResult:
        """Direct purchase shortcut: gate the purchase and add the buyer.

        Raises:
            ProjectNotFoundError, ProjectNotPurchasableError, SelfPurchaseError,
            AlreadyPurchasedError: From the purchase-intent gate
            PricingMissingError: If the project has no pricing
            ConflictError: If a concurrent purchase added the buyer first
        """
        await self.ensure_store()
        project = check_purchase_intent(
            await self.store.get_project(project_id),
            buyer.user_id,
            self.purchasable_status.value
        )
        require_pricing(project)

        added = await self.store.add_buyer(project.id, buyer.user_id)
        if not added:
            logger.warning(f"Concurrent purchase of project {project_id} by {buyer.user_id}")
            raise ConflictError("Project already purchased")

        logger.info(f"User {buyer.user_id} added to buyers of project {project_id}")
        return PurchaseResult(project=await self.store.get_project(project_id), added=True)


__all__ = [
    'MUTABLE_FIELDS',
    'SYSTEM_FIELDS',
    'AUTHOR_STATUSES',
    'ProjectError',
    'ProjectNotFoundError',
    'ProjectNotPurchasableError',
    'SelfPurchaseError',
    'AlreadyPurchasedError',
    'ProjectForbiddenError',
    'ProjectValidationError',
    'UserStatus',
    'ProjectView',
    'PurchaseResult',
    'resolve_purchasable_status',
    'check_purchase_intent',
    'ProjectManager',
]
