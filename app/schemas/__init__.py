# app/schemas/__init__.py
from app.schemas.category import (
    CategoryCreate,
    CategoryUpdate,
    CategoryMove,
    CategoryInDB,
    CategoryResponse,
    CategoryTreeNode,
    CategoryEvent,
    FlatCategoryRow,
)
