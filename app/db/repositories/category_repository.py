# app/db/repositories/category_repository.py
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, exists, func, insert, literal, or_, String, update
from sqlalchemy.orm import Session, aliased

from app.db.models.category import Category
from app.schemas.category import CategoryFilters

BOUNDARY_FIELDS = ("left", "right")


class CategoryRepository:
    """
    Storage adapter for the nested-set category table.

    Read methods only ever see live rows (deleted_at IS NULL). Write methods
    never commit; they are meant to run inside tree_transaction() so that a
    shift and the row write depending on it commit or roll back together.
    """

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def _live(self):
        return self.db_session.query(Category).filter(Category.deleted_at.is_(None))

    # Reads

    def get_by_id(
        self, category_id: UUID, include_deleted: bool = False, refresh: bool = False
    ) -> Optional[Category]:
        """Get category by ID; refresh re-reads boundaries the session may hold stale"""
        query = self.db_session.query(Category).filter(Category.id == category_id)
        if not include_deleted:
            query = query.filter(Category.deleted_at.is_(None))
        if refresh:
            query = query.execution_options(populate_existing=True)
        return query.first()

    def get_by_slug(self, slug: str) -> Optional[Category]:
        """Get live category by slug"""
        return self._live().filter(Category.slug == slug).first()

    def slug_exists(self, slug: str, exclude_id: Optional[UUID] = None) -> bool:
        """Global slug lookup; soft-deleted rows still hold their slug"""
        query = self.db_session.query(Category.id).filter(Category.slug == slug)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        return self.db_session.query(query.exists()).scalar()

    def get_subtree_by_id(self, category_id: UUID) -> List[Category]:
        """Node plus every descendant in one range query, pre-order"""
        anchor = aliased(Category)
        return (
            self._live()
            .join(
                anchor,
                and_(Category.left >= anchor.left, Category.left <= anchor.right),
            )
            .filter(anchor.id == category_id, anchor.deleted_at.is_(None))
            .order_by(Category.left)
            .all()
        )

    def get_subtree(self, left: int, right: int) -> List[Category]:
        return (
            self._live()
            .filter(Category.left >= left, Category.left <= right)
            .order_by(Category.left)
            .all()
        )

    def get_subtree_ids(self, left: int, right: int) -> List[UUID]:
        rows = (
            self.db_session.query(Category.id)
            .filter(
                Category.deleted_at.is_(None),
                Category.left >= left,
                Category.left <= right,
            )
            .order_by(Category.left)
            .all()
        )
        return [row.id for row in rows]

    def get_ancestors(self, left: int, right: int) -> List[Category]:
        """Every live node enclosing (left, right), root first"""
        return (
            self._live()
            .filter(Category.left < left, Category.right > right)
            .order_by(Category.left)
            .all()
        )

    def get_children(self, left: int, right: int, level: int) -> List[Category]:
        return (
            self._live()
            .filter(
                Category.left > left,
                Category.left < right,
                Category.level == level + 1,
            )
            .order_by(Category.left)
            .all()
        )

    def get_roots(self) -> List[Category]:
        return self._live().filter(Category.parent_id.is_(None)).order_by(Category.left).all()

    def list_live(self) -> List[Category]:
        """Every live category in tree (pre-order) order"""
        return self._live().order_by(Category.left).all()

    def get_forest_bounds(self) -> Optional[Tuple[int, int]]:
        """(first root's left, highest right in use) over live rows, None when empty"""
        min_left, max_right = (
            self.db_session.query(func.min(Category.left), func.max(Category.right))
            .filter(Category.deleted_at.is_(None))
            .one()
        )
        if min_left is None:
            return None
        return min_left, max_right

    def max_sibling_sort_order(
        self, parent_id: Optional[UUID], exclude_id: Optional[UUID] = None
    ) -> Optional[int]:
        query = self.db_session.query(func.max(Category.sort_order)).filter(
            Category.deleted_at.is_(None)
        )
        if parent_id is None:
            query = query.filter(Category.parent_id.is_(None))
        else:
            query = query.filter(Category.parent_id == parent_id)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        return query.scalar()

    def list(
        self, filters: Optional[CategoryFilters] = None, skip: int = 0, limit: int = 100
    ) -> List[Category]:
        """List categories with filtering and pagination"""
        filters = filters or CategoryFilters()
        query = self._live()

        if filters.search:
            search_term = f"%{filters.search}%"
            query = query.filter(
                or_(
                    Category.name.ilike(search_term),
                    Category.description.ilike(search_term),
                )
            )
        if filters.roots_only:
            query = query.filter(Category.parent_id.is_(None))
        elif filters.parent_id is not None:
            query = query.filter(Category.parent_id == filters.parent_id)
        if filters.level is not None:
            query = query.filter(Category.level == filters.level)
        if filters.is_visible is not None:
            query = query.filter(Category.is_visible == filters.is_visible)
        if filters.is_featured is not None:
            query = query.filter(Category.is_featured == filters.is_featured)
        if filters.show_in_menu is not None:
            query = query.filter(Category.show_in_menu == filters.show_in_menu)

        sort_column = getattr(Category, filters.sort_by)
        query = query.order_by(sort_column.desc() if filters.sort_desc else sort_column.asc())
        return query.offset(skip).limit(limit).all()

    def list_featured(self, limit: int = 10) -> List[Category]:
        return (
            self._live()
            .filter(Category.is_featured.is_(True), Category.is_visible.is_(True))
            .order_by(Category.sort_order, Category.left)
            .limit(limit)
            .all()
        )

    def count_stats(self) -> Dict[str, int]:
        child = aliased(Category)
        has_live_child = exists().where(
            child.parent_id == Category.id, child.deleted_at.is_(None)
        )
        live = Category.deleted_at.is_(None)

        def count(*criteria) -> int:
            return self.db_session.query(func.count(Category.id)).filter(live, *criteria).scalar() or 0

        max_level = self.db_session.query(func.max(Category.level)).filter(live).scalar()
        return {
            "total": count(),
            "roots": count(Category.parent_id.is_(None)),
            "leaves": count(~has_live_child),
            "max_level": max_level or 0,
            "visible": count(Category.is_visible.is_(True)),
            "featured": count(Category.is_featured.is_(True)),
            "in_menu": count(Category.show_in_menu.is_(True)),
        }

    # Writes

    def shift_range(self, boundary_field: str, threshold: int, delta: int) -> int:
        """Add delta to boundary_field of every live row where it is >= threshold"""
        if boundary_field not in BOUNDARY_FIELDS:
            raise ValueError(f"boundary_field must be one of {BOUNDARY_FIELDS}")
        if delta == 0:
            return 0
        column = getattr(Category, boundary_field)
        result = self.db_session.execute(
            update(Category)
            .where(Category.deleted_at.is_(None), column >= threshold)
            .values({boundary_field: column + delta})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def insert_node(
        self, fields: Dict[str, Any], left: int, right: int, level: int, path: str
    ) -> Category:
        """Insert a new row at the given boundaries, version 1"""
        db_category = Category(
            **fields, left=left, right=right, level=level, path=path, version=1
        )
        self.db_session.add(db_category)
        self.db_session.flush()
        return db_category

    def detach_subtree(self, old_left: int, old_right: int) -> int:
        """
        Negate the boundaries of a subtree so the shrink/grow shifts that
        follow (which only match non-negative thresholds) leave it alone.
        """
        result = self.db_session.execute(
            update(Category)
            .where(
                Category.deleted_at.is_(None),
                Category.left >= old_left,
                Category.left <= old_right,
            )
            .values(left=-Category.left, right=-Category.right)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def relocate_subtree(
        self,
        subtree_root_id: UUID,
        old_left: int,
        old_right: int,
        translation: int,
        new_parent_id: Optional[UUID],
        new_level: int,
        level_delta: int,
        old_path_prefix: str,
        new_path_prefix: str,
        sort_order: Optional[int] = None,
    ) -> int:
        """
        Place a detached subtree (rows whose left lies in -old_right..-old_left)
        at its new position: translate boundaries, shift levels, swap the
        materialized path prefix and bump versions.
        """
        new_path = literal(new_path_prefix, type_=String) + func.substr(
            Category.path, len(old_path_prefix) + 1
        )
        result = self.db_session.execute(
            update(Category)
            .where(
                Category.deleted_at.is_(None),
                Category.left >= -old_right,
                Category.left <= -old_left,
            )
            .values(
                left=-Category.left + translation,
                right=-Category.right + translation,
                level=Category.level + level_delta,
                path=new_path,
                version=Category.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        root_values: Dict[str, Any] = {"parent_id": new_parent_id, "level": new_level}
        if sort_order is not None:
            root_values["sort_order"] = sort_order
        self.db_session.execute(
            update(Category)
            .where(Category.id == subtree_root_id)
            .values(**root_values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def rewrite_descendant_paths(
        self, left: int, right: int, old_path_prefix: str, new_path_prefix: str
    ) -> int:
        """Swap the path prefix of every live strict descendant of (left, right)"""
        new_path = literal(new_path_prefix, type_=String) + func.substr(
            Category.path, len(old_path_prefix) + 1
        )
        result = self.db_session.execute(
            update(Category)
            .where(
                Category.deleted_at.is_(None),
                Category.left > left,
                Category.left < right,
            )
            .values(path=new_path, version=Category.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def update_attributes(
        self, category_id: UUID, values: Dict[str, Any], expected_version: int
    ) -> int:
        """Versioned leaf-attribute update; 0 rows means the version moved on"""
        result = self.db_session.execute(
            update(Category)
            .where(
                Category.id == category_id,
                Category.deleted_at.is_(None),
                Category.version == expected_version,
            )
            .values(**values, version=Category.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def soft_delete_subtree(self, left: int, right: int, deleted_at: datetime) -> int:
        """Mark the root and every live descendant deleted in one statement"""
        result = self.db_session.execute(
            update(Category)
            .where(
                Category.deleted_at.is_(None),
                Category.left >= left,
                Category.right <= right,
            )
            .values(deleted_at=deleted_at, version=Category.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def hard_delete_subtree(self, left: int, right: int) -> int:
        """Physically remove the live rows of a subtree (no compaction)"""
        result = self.db_session.execute(
            delete(Category)
            .where(
                Category.deleted_at.is_(None),
                Category.left >= left,
                Category.right <= right,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_deleted(self, deleted_before: Optional[datetime] = None) -> int:
        """Physically remove soft-deleted rows, optionally only older ones"""
        statement = delete(Category).where(Category.deleted_at.is_not(None))
        if deleted_before is not None:
            statement = statement.where(Category.deleted_at < deleted_before)
        result = self.db_session.execute(
            statement.execution_options(synchronize_session=False)
        )
        return result.rowcount

    def bulk_update_numbering(self, rows: List[Dict[str, Any]]) -> None:
        """Bulk UPDATE by primary key; every dict carries 'id'"""
        if rows:
            self.db_session.execute(update(Category), rows)

    def bulk_insert(self, rows: List[Dict[str, Any]]) -> None:
        """Bulk INSERT, rows in parent-before-child order"""
        if rows:
            self.db_session.execute(insert(Category), rows)
