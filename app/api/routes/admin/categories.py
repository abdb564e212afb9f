"""Admin API for category tree mutations and maintenance"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.core.dependencies import get_category_service
from app.core.logging import get_logger
from app.schemas.category import (
    CategoryCreate,
    CategoryMove,
    CategoryResponse,
    CategoryUpdate,
    FlatCategoryRow,
    PurgeResult,
    RebuildResult,
)
from app.services.category_service import CategoryService

logger = get_logger(__name__)


# Request models
class RebuildRequest(BaseModel):
    rows: List[FlatCategoryRow] = Field(
        default_factory=list,
        description="Rows overriding or extending the stored tree; empty renumbers storage as is",
    )


class DeleteResponse(BaseModel):
    deleted_ids: List[UUID]
    hard: bool


class VerifyResponse(BaseModel):
    healthy: bool
    violations: List[str]


# Plain def handlers: service calls block on the tree lock, so they run in the threadpool
categories_admin_router = APIRouter()


@categories_admin_router.post(
    "/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED
)
def create_category(
    data: CategoryCreate,
    service: CategoryService = Depends(get_category_service),
):
    """Create a category as the first or last child of parent_id (or as a root)"""
    return service.create(data)


@categories_admin_router.patch("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: UUID,
    data: CategoryUpdate,
    service: CategoryService = Depends(get_category_service),
):
    """
    Update leaf attributes of a category.

    Changing the slug rewrites the path of the category and its whole subtree.
    Pass expected_version to reject the update if someone else changed it first.
    """
    return service.update(category_id, data)


@categories_admin_router.post("/categories/{category_id}/move", response_model=CategoryResponse)
def move_category(
    category_id: UUID,
    data: CategoryMove,
    service: CategoryService = Depends(get_category_service),
):
    """Move a category and its subtree under a new parent (null moves it to the root level)"""
    return service.move(category_id, data.new_parent_id, data.position)


@categories_admin_router.delete("/categories/{category_id}", response_model=DeleteResponse)
def delete_category(
    category_id: UUID,
    hard: bool = Query(False, description="Physically remove rows and compact boundaries"),
    service: CategoryService = Depends(get_category_service),
):
    """Delete a category together with every descendant"""
    deleted_ids = service.delete(category_id, hard=hard)
    return DeleteResponse(deleted_ids=deleted_ids, hard=hard)


@categories_admin_router.post("/categories/rebuild", response_model=RebuildResult)
def rebuild_tree(
    data: Optional[RebuildRequest] = None,
    service: CategoryService = Depends(get_category_service),
):
    """Renumber the whole tree from parent links"""
    rows = data.rows if data else []
    return service.rebuild_tree(rows)


@categories_admin_router.post("/categories/purge", response_model=PurgeResult)
def purge_deleted_categories(
    older_than_days: Optional[int] = Query(
        None, ge=0, description="Only purge rows deleted more than N days ago"
    ),
    service: CategoryService = Depends(get_category_service),
):
    """Physically remove soft-deleted categories and close the gaps they left"""
    cutoff = None
    if older_than_days is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
    return service.purge_deleted(cutoff)


@categories_admin_router.get("/categories/verify", response_model=VerifyResponse)
def verify_tree(service: CategoryService = Depends(get_category_service)):
    """Check the stored tree against the nested-set invariants"""
    violations = service.verify_tree()
    return VerifyResponse(healthy=not violations, violations=violations)
