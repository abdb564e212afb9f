# app/schemas/category.py
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime, timezone


class MovePosition(str, Enum):
    """Placement among the new parent's children"""
    FIRST = "first"
    LAST = "last"


class CategoryEventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    DELETED = "deleted"
    REBUILT = "rebuilt"


class CategoryAttributes(BaseModel):
    """Leaf attributes with no tree impact"""
    description: Optional[str] = Field(None, description="Category description")
    is_visible: bool = Field(True, description="Whether category is visible")
    show_in_menu: bool = Field(True, description="Whether to show in navigation menu")
    is_featured: bool = Field(False, description="Whether category is featured")
    meta_title: Optional[str] = Field(None, max_length=255, description="SEO meta title")
    meta_description: Optional[str] = Field(None, description="SEO meta description")
    meta_keywords: Optional[str] = Field(None, description="SEO meta keywords")
    image_url: Optional[str] = Field(None, max_length=500, description="Category image URL")
    banner_url: Optional[str] = Field(None, max_length=500, description="Category banner URL")
    default_attributes: Optional[Dict[str, Any]] = Field(
        None, description="Default attributes for products in this category"
    )
    required_attributes: Optional[List[str]] = Field(
        None, description="Required attributes for products in this category"
    )


class CategoryCreate(CategoryAttributes):
    """Schema for creating a new Category"""
    name: str = Field(..., max_length=255, description="Display name of the category")
    slug: Optional[str] = Field(
        None, max_length=255, description="URL-friendly slug (derived from name if omitted)"
    )
    parent_id: Optional[UUID] = Field(None, description="Parent category ID (null for roots)")
    position: MovePosition = Field(MovePosition.LAST, description="first or last among siblings")
    sort_order: Optional[int] = Field(
        None, ge=0, description="Display order among siblings (appends if omitted)"
    )

    @field_validator("name")
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class CategoryUpdate(BaseModel):
    """Schema for updating a Category (all fields optional, no tree fields)"""
    name: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    sort_order: Optional[int] = Field(None, ge=0)
    is_visible: Optional[bool] = None
    show_in_menu: Optional[bool] = None
    is_featured: Optional[bool] = None
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    banner_url: Optional[str] = Field(None, max_length=500)
    default_attributes: Optional[Dict[str, Any]] = None
    required_attributes: Optional[List[str]] = None
    expected_version: Optional[int] = Field(
        None, description="Reject the update if the stored version differs"
    )

    @field_validator("name")
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class CategoryMove(BaseModel):
    """Schema for moving a category under a new parent"""
    new_parent_id: Optional[UUID] = Field(None, description="New parent ID (null to move to root)")
    position: MovePosition = Field(MovePosition.LAST)


class CategoryInDB(CategoryAttributes):
    """Schema for Category as stored in DB (includes tree fields)"""
    id: UUID
    name: str
    slug: str
    parent_id: Optional[UUID] = None
    path: str
    level: int
    left: int
    right: int
    sort_order: int
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CategoryResponse(CategoryInDB):
    """Schema for API responses"""
    pass


class CategoryTreeNode(CategoryResponse):
    """Category with its nested children"""
    children: List["CategoryTreeNode"] = Field(default_factory=list)


class BreadcrumbItem(BaseModel):
    id: UUID
    name: str
    slug: str

    model_config = ConfigDict(from_attributes=True)


class CategoryFilters(BaseModel):
    """Filters for listing categories"""
    search: Optional[str] = None
    parent_id: Optional[UUID] = None
    roots_only: bool = False
    level: Optional[int] = Field(None, ge=0)
    is_visible: Optional[bool] = None
    is_featured: Optional[bool] = None
    show_in_menu: Optional[bool] = None
    sort_by: str = "left"
    sort_desc: bool = False

    @field_validator("sort_by")
    def validate_sort_by(cls, v):
        valid = ["left", "name", "sort_order", "created_at", "updated_at"]
        if v not in valid:
            raise ValueError(f"sort_by must be one of {valid}")
        return v


class FlatCategoryRow(BaseModel):
    """A row carrying only its parent link, as consumed by rebuild_tree"""
    id: UUID
    parent_id: Optional[UUID] = None
    name: Optional[str] = None
    slug: Optional[str] = None
    sort_order: int = 0


class RebuildResult(BaseModel):
    total: int
    created: int
    updated: int
    roots: int
    max_level: int


class PurgeResult(BaseModel):
    purged: int
    remaining: int


class CategoryStats(BaseModel):
    total: int
    roots: int
    leaves: int
    max_level: int
    visible: int
    featured: int
    in_menu: int


class CategoryEvent(BaseModel):
    """Notification published after a committed tree mutation"""
    type: CategoryEventType
    category_id: Optional[UUID] = None
    path: Optional[str] = None
    affected_ids: List[UUID] = Field(default_factory=list)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


CategoryTreeNode.model_rebuild()
