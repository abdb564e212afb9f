"""Public read-only API for the category tree"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_category_service
from app.schemas.category import (
    BreadcrumbItem,
    CategoryFilters,
    CategoryResponse,
    CategoryStats,
    CategoryTreeNode,
)
from app.services.category_service import CategoryService

categories_router = APIRouter()


# Static paths are declared before /categories/{category_id}


@categories_router.get("/categories", response_model=List[CategoryResponse])
def list_categories(
    search: Optional[str] = Query(None, description="Match name or description"),
    parent_id: Optional[UUID] = Query(None),
    roots_only: bool = Query(False),
    level: Optional[int] = Query(None, ge=0),
    is_visible: Optional[bool] = Query(None),
    is_featured: Optional[bool] = Query(None),
    show_in_menu: Optional[bool] = Query(None),
    sort_by: str = Query("left", pattern="^(left|name|sort_order|created_at|updated_at)$"),
    sort_desc: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    service: CategoryService = Depends(get_category_service),
):
    """List categories with filtering and pagination"""
    filters = CategoryFilters(
        search=search,
        parent_id=parent_id,
        roots_only=roots_only,
        level=level,
        is_visible=is_visible,
        is_featured=is_featured,
        show_in_menu=show_in_menu,
        sort_by=sort_by,
        sort_desc=sort_desc,
    )
    return service.list_categories(filters, skip=skip, limit=limit)


@categories_router.get("/categories/tree", response_model=List[CategoryTreeNode])
def get_tree(
    root_id: Optional[UUID] = Query(None, description="Only the subtree under this category"),
    service: CategoryService = Depends(get_category_service),
):
    return service.get_tree(root_id)


@categories_router.get("/categories/menu", response_model=List[CategoryTreeNode])
def get_menu_tree(service: CategoryService = Depends(get_category_service)):
    """Navigation tree: visible, in-menu categories only"""
    return service.get_menu_tree()


@categories_router.get("/categories/roots", response_model=List[CategoryResponse])
def get_roots(service: CategoryService = Depends(get_category_service)):
    return service.get_roots()


@categories_router.get("/categories/featured", response_model=List[CategoryResponse])
def get_featured(
    limit: int = Query(10, ge=1, le=100),
    service: CategoryService = Depends(get_category_service),
):
    return service.get_featured(limit)


@categories_router.get("/categories/stats", response_model=CategoryStats)
def get_stats(service: CategoryService = Depends(get_category_service)):
    return service.get_stats()


@categories_router.get("/categories/slug/{slug}", response_model=CategoryResponse)
def get_category_by_slug(
    slug: str, service: CategoryService = Depends(get_category_service)
):
    return service.get_by_slug(slug)


@categories_router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    return service.get(category_id)


@categories_router.get("/categories/{category_id}/subtree", response_model=List[CategoryResponse])
def get_subtree(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    """The category followed by every descendant, in tree order"""
    return service.get_subtree(category_id)


@categories_router.get(
    "/categories/{category_id}/ancestors", response_model=List[CategoryResponse]
)
def get_ancestors(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    """Ancestors from the root down to the direct parent"""
    return service.get_ancestors(category_id)


@categories_router.get(
    "/categories/{category_id}/descendants", response_model=List[CategoryResponse]
)
def get_descendants(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    return service.get_descendants(category_id)


@categories_router.get("/categories/{category_id}/children", response_model=List[CategoryResponse])
def get_children(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    return service.get_children(category_id)


@categories_router.get(
    "/categories/{category_id}/breadcrumb", response_model=List[BreadcrumbItem]
)
def get_breadcrumb(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    return service.get_breadcrumb(category_id)


@categories_router.get("/categories/{category_id}/descendant-ids", response_model=List[UUID])
def get_category_and_descendant_ids(
    category_id: UUID, service: CategoryService = Depends(get_category_service)
):
    """Ids of the category and all its subcategories, for scoping product queries"""
    return service.get_category_and_descendant_ids(category_id)
