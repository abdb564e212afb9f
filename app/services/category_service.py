# app/services/category_service.py
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
from uuid import UUID

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.slug_generator import build_path, parent_path_of, slugify, unique_slug
from app.db.models.category import Category
from app.db.repositories.category_repository import CategoryRepository
from app.db.tree_lock import TreeLock, tree_transaction
from app.schemas.category import (
    BreadcrumbItem,
    CategoryCreate,
    CategoryEvent,
    CategoryEventType,
    CategoryFilters,
    CategoryInDB,
    CategoryStats,
    CategoryTreeNode,
    CategoryUpdate,
    FlatCategoryRow,
    MovePosition,
    PurgeResult,
    RebuildResult,
)
from app.services.cache_service import CategoryCacheService
from app.services.category_events import CategoryEventBus
from app.services.tree_arithmetic import (
    ForestRow,
    TreeBounds,
    TreeRow,
    coerce_position,
    compute_insertion_boundaries,
    compute_insertion_point,
    compute_move_boundaries,
    find_invariant_violations,
    is_within,
    number_forest,
)

logger = get_logger(__name__)

# Columns that may not be set to NULL through an update
NON_NULLABLE_UPDATE_FIELDS = {"name", "slug", "sort_order", "is_visible", "show_in_menu", "is_featured"}


def _bounds(category: Category) -> TreeBounds:
    return TreeBounds(left=category.left, right=category.right, level=category.level)


class CategoryService:
    """
    Category tree operations on top of the nested-set table.

    Mutations run as one tree_transaction each: validate, lock, read fresh
    boundaries, compute the shifts, apply them, commit. Reads are plain range
    scans. Committed mutations are announced on the event bus.
    """

    def __init__(
        self,
        db_session,
        event_bus: Optional[CategoryEventBus] = None,
        cache: Optional[CategoryCacheService] = None,
        tree_lock: Optional[TreeLock] = None,
    ):
        self.db_session = db_session
        self.category_repo = CategoryRepository(db_session)
        self.event_bus = event_bus or CategoryEventBus()
        self.cache = cache
        self.tree_lock = tree_lock or TreeLock()

    # Helpers

    def _require(self, category_id: UUID, refresh: bool = False) -> Category:
        category = self.category_repo.get_by_id(category_id, refresh=refresh)
        if not category:
            raise NotFoundError(f"Category with ID {category_id} not found")
        return category

    def _resolve_slug(self, requested: str, exclude_id: Optional[UUID] = None, taken=None) -> str:
        candidate = slugify(requested)
        if not candidate:
            raise ValidationError(
                f"Cannot derive a slug from '{requested}': it needs at least one letter or digit"
            )

        def slug_exists(slug: str) -> bool:
            if taken is not None and slug in taken:
                return True
            return self.category_repo.slug_exists(slug, exclude_id=exclude_id)

        return unique_slug(candidate, slug_exists)

    def _next_sort_order(self, parent_id: Optional[UUID], exclude_id: Optional[UUID] = None) -> int:
        current = self.category_repo.max_sibling_sort_order(parent_id, exclude_id=exclude_id)
        return 0 if current is None else current + 1

    def _forest_bounds(self) -> Optional[TreeBounds]:
        bounds = self.category_repo.get_forest_bounds()
        if bounds is None:
            return None
        return TreeBounds(left=bounds[0], right=bounds[1])

    def _publish(self, event_type: CategoryEventType, category_id=None, path=None, affected_ids=None):
        self.event_bus.publish(
            CategoryEvent(
                type=event_type,
                category_id=category_id,
                path=path,
                affected_ids=affected_ids or [],
            )
        )

    # Mutations

    def create(self, category_data: CategoryCreate, parent_id: Optional[UUID] = None) -> CategoryInDB:
        """Create a category as a new leaf under parent_id (or as a root)"""
        name = (category_data.name or "").strip()
        if not name:
            raise ValidationError("Category name must not be empty")
        position = coerce_position(category_data.position)
        parent_id = parent_id or category_data.parent_id

        with tree_transaction(self.db_session, self.tree_lock):
            parent = None
            if parent_id is not None:
                parent = self.category_repo.get_by_id(parent_id, refresh=True)
                if not parent:
                    raise NotFoundError(f"Parent category {parent_id} not found")

            slug = self._resolve_slug(category_data.slug or name)
            boundaries = compute_insertion_boundaries(
                _bounds(parent) if parent else None,
                position,
                None if parent else self._forest_bounds(),
            )

            if boundaries.shift_amount:
                self.category_repo.shift_range(
                    "left", boundaries.shift_from_boundary, boundaries.shift_amount
                )
                self.category_repo.shift_range(
                    "right", boundaries.shift_from_boundary, boundaries.shift_amount
                )

            sort_order = category_data.sort_order
            if sort_order is None:
                sort_order = self._next_sort_order(parent_id)

            fields = category_data.model_dump(
                exclude={"name", "slug", "parent_id", "position", "sort_order"}
            )
            fields.update(name=name, slug=slug, parent_id=parent_id, sort_order=sort_order)
            category = self.category_repo.insert_node(
                fields,
                left=boundaries.new_left,
                right=boundaries.new_right,
                level=boundaries.level,
                path=build_path(parent.path if parent else None, slug),
            )

        logger.info(
            f"Category created: {category.id} '{category.path}' "
            f"({category.left}, {category.right}) level {category.level}"
        )
        self._publish(CategoryEventType.CREATED, category.id, category.path, [category.id])
        return CategoryInDB.model_validate(category)

    def update(
        self,
        category_id: UUID,
        category_data: CategoryUpdate,
        expected_version: Optional[int] = None,
    ) -> CategoryInDB:
        """Update leaf attributes; a slug change rewrites the subtree's paths"""
        values = category_data.model_dump(exclude_unset=True, exclude={"expected_version"})
        if expected_version is None:
            expected_version = category_data.expected_version
        for field in NON_NULLABLE_UPDATE_FIELDS & set(values):
            if values[field] is None:
                raise ValidationError(f"{field} cannot be null")
        if "name" in values and not values["name"]:
            raise ValidationError("Category name must not be empty")

        affected: List[UUID] = [category_id]
        with tree_transaction(self.db_session, self.tree_lock):
            category = self._require(category_id, refresh=True)
            if expected_version is not None and category.version != expected_version:
                raise ConflictError(
                    f"Category {category_id} is at version {category.version}, "
                    f"expected {expected_version}"
                )

            if "slug" in values:
                new_slug = self._resolve_slug(values["slug"], exclude_id=category.id)
                values["slug"] = new_slug
                if new_slug != category.slug:
                    new_path = build_path(parent_path_of(category.path), new_slug)
                    affected = self.category_repo.get_subtree_ids(category.left, category.right)
                    self.category_repo.rewrite_descendant_paths(
                        category.left, category.right, category.path, new_path
                    )
                    values["path"] = new_path

            updated = self.category_repo.update_attributes(
                category.id, values, expected_version=category.version
            )
            if not updated:
                raise ConflictError(f"Category {category_id} was modified concurrently")

        category = self._require(category_id, refresh=True)
        logger.info(f"Category updated: {category_id} -> version {category.version}")
        self._publish(CategoryEventType.UPDATED, category.id, category.path, affected)
        return CategoryInDB.model_validate(category)

    def move(
        self,
        category_id: UUID,
        new_parent_id: Optional[UUID] = None,
        position: Union[MovePosition, str, None] = MovePosition.LAST,
    ) -> CategoryInDB:
        """
        Reparent a category (with its whole subtree) under new_parent_id,
        or to the root level when new_parent_id is None.

        Raises:
            ValidationError: invalid position, or the target lies in the
                category's own subtree (including the category itself)
            NotFoundError: the category or the new parent is not live
        """
        position = coerce_position(position)
        if new_parent_id is not None and new_parent_id == category_id:
            raise ValidationError("Cannot move a category under itself")

        with tree_transaction(self.db_session, self.tree_lock):
            category = self._require(category_id, refresh=True)
            new_parent = None
            if new_parent_id is not None:
                new_parent = self.category_repo.get_by_id(new_parent_id, refresh=True)
                if not new_parent:
                    raise NotFoundError(f"New parent category {new_parent_id} not found")
                # Cycle guard: the new parent must not sit inside the moved subtree
                if is_within(_bounds(category), _bounds(new_parent)):
                    raise ValidationError("Cannot move a category into its own subtree")

            insertion_point = compute_insertion_point(
                _bounds(new_parent) if new_parent else None,
                position,
                None if new_parent else self._forest_bounds(),
            )
            new_level = new_parent.level + 1 if new_parent else 0
            boundaries = compute_move_boundaries(_bounds(category), insertion_point, new_level)

            if boundaries.is_noop:
                logger.info(f"Category {category_id} already at requested position, nothing to move")
                return CategoryInDB.model_validate(category)

            old_path = category.path
            new_path = build_path(new_parent.path if new_parent else None, category.slug)
            sort_order = None
            if category.parent_id != new_parent_id:
                sort_order = self._next_sort_order(new_parent_id, exclude_id=category.id)
            affected = self.category_repo.get_subtree_ids(category.left, category.right)

            self.category_repo.detach_subtree(boundaries.old_left, boundaries.old_right)
            # Shrink before grow
            self.category_repo.shift_range("left", boundaries.shrink_from, -boundaries.width)
            self.category_repo.shift_range("right", boundaries.shrink_from, -boundaries.width)
            self.category_repo.shift_range("left", boundaries.grow_from, boundaries.width)
            self.category_repo.shift_range("right", boundaries.grow_from, boundaries.width)
            self.category_repo.relocate_subtree(
                category.id,
                boundaries.old_left,
                boundaries.old_right,
                boundaries.translation,
                new_parent_id,
                new_level,
                boundaries.level_delta,
                old_path,
                new_path,
                sort_order=sort_order,
            )

        category = self._require(category_id, refresh=True)
        logger.info(
            f"Category {category_id} moved to '{category.path}' "
            f"({category.left}, {category.right}), {len(affected)} rows relocated"
        )
        self._publish(CategoryEventType.MOVED, category.id, category.path, affected)
        return CategoryInDB.model_validate(category)

    def delete(self, category_id: UUID, hard: bool = False) -> List[UUID]:
        """
        Delete a category and its whole subtree.

        Soft delete (default) marks every row deleted and leaves boundaries as
        they are. hard=True physically removes the rows and compacts the
        boundaries after the freed range; maintenance tooling only.
        Returns the ids removed from the live tree.
        """
        with tree_transaction(self.db_session, self.tree_lock):
            category = self._require(category_id, refresh=True)
            left, right, path = category.left, category.right, category.path
            affected = self.category_repo.get_subtree_ids(left, right)

            if hard:
                width = right - left + 1
                self.category_repo.hard_delete_subtree(left, right)
                self.category_repo.shift_range("left", right + 1, -width)
                self.category_repo.shift_range("right", right + 1, -width)
            else:
                self.category_repo.soft_delete_subtree(left, right, datetime.now(timezone.utc))

        logger.info(
            f"Category {category_id} {'hard' if hard else 'soft'} deleted "
            f"with {len(affected) - 1} descendants"
        )
        self._publish(CategoryEventType.DELETED, category_id, path, affected)
        return affected

    # Queries

    def get(self, category_id: UUID) -> CategoryInDB:
        return CategoryInDB.model_validate(self._require(category_id))

    def get_by_slug(self, slug: str) -> CategoryInDB:
        category = self.category_repo.get_by_slug(slug)
        if not category:
            raise NotFoundError(f"Category with slug {slug} not found")
        return CategoryInDB.model_validate(category)

    def list_categories(
        self, filters: Optional[CategoryFilters] = None, skip: int = 0, limit: int = 100
    ) -> List[CategoryInDB]:
        """List categories with filtering and pagination"""
        categories = self.category_repo.list(filters, skip, limit)
        return [CategoryInDB.model_validate(category) for category in categories]

    def get_subtree(self, category_id: UUID) -> List[CategoryInDB]:
        """The category and every descendant, in pre-order"""
        rows = self.category_repo.get_subtree_by_id(category_id)
        if not rows:
            raise NotFoundError(f"Category with ID {category_id} not found")
        return [CategoryInDB.model_validate(row) for row in rows]

    def get_descendants(self, category_id: UUID) -> List[CategoryInDB]:
        return self.get_subtree(category_id)[1:]

    def get_ancestors(self, category_id: UUID) -> List[CategoryInDB]:
        """Every ancestor, root first"""
        category = self._require(category_id)
        ancestors = self.category_repo.get_ancestors(category.left, category.right)
        return [CategoryInDB.model_validate(ancestor) for ancestor in ancestors]

    def get_children(self, category_id: UUID) -> List[CategoryInDB]:
        """Direct children in tree order"""
        category = self._require(category_id)
        children = self.category_repo.get_children(category.left, category.right, category.level)
        return [CategoryInDB.model_validate(child) for child in children]

    def get_roots(self) -> List[CategoryInDB]:
        return [CategoryInDB.model_validate(root) for root in self.category_repo.get_roots()]

    def get_breadcrumb(self, category_id: UUID) -> List[BreadcrumbItem]:
        """Ancestors plus the category itself, root first"""
        category = self._require(category_id)
        chain = self.category_repo.get_ancestors(category.left, category.right) + [category]
        return [BreadcrumbItem.model_validate(item) for item in chain]

    def get_category_and_descendant_ids(self, category_id: UUID) -> List[UUID]:
        """Ids used to scope 'products in category or subcategory' queries"""
        generation = None
        if self.cache:
            cached = self.cache.get_descendant_ids(category_id)
            if cached is not None:
                return cached
            generation = self.cache.current_generation()
        ids = [category.id for category in self.get_subtree(category_id)]
        if generation is not None:
            self.cache.set_descendant_ids(category_id, ids, generation=generation)
        return ids

    def get_tree(self, root_id: Optional[UUID] = None) -> List[CategoryTreeNode]:
        """Nested tree of the whole forest, or of one subtree"""
        rows = self.category_repo.get_subtree_by_id(root_id) if root_id else self.category_repo.list_live()
        if root_id and not rows:
            raise NotFoundError(f"Category with ID {root_id} not found")
        return self._nest(rows)

    def get_menu_tree(self) -> List[CategoryTreeNode]:
        """Visible, in-menu categories; hiding a category hides its subtree"""
        rows = []
        hidden_until = None
        for row in self.category_repo.list_live():
            if hidden_until is not None and row.left < hidden_until:
                continue
            if not (row.is_visible and row.show_in_menu):
                hidden_until = row.right
                continue
            rows.append(row)
        return self._nest(rows)

    def get_featured(self, limit: int = 10) -> List[CategoryInDB]:
        return [CategoryInDB.model_validate(row) for row in self.category_repo.list_featured(limit)]

    def get_stats(self) -> CategoryStats:
        return CategoryStats(**self.category_repo.count_stats())

    @staticmethod
    def _nest(rows: List[Category]) -> List[CategoryTreeNode]:
        """Build nested nodes from rows in left order using range containment"""
        roots: List[CategoryTreeNode] = []
        stack: List[tuple] = []
        for row in rows:
            node = CategoryTreeNode.model_validate(row)
            while stack and stack[-1][0].right < row.left:
                stack.pop()
            if stack:
                stack[-1][1].children.append(node)
            else:
                roots.append(node)
            stack.append((row, node))
        return roots

    # Maintenance

    def verify_tree(self) -> List[str]:
        """Invariant violations over the live tree; empty when consistent"""
        rows = [
            TreeRow(
                id=row.id,
                parent_id=row.parent_id,
                left=row.left,
                right=row.right,
                level=row.level,
                slug=row.slug,
                path=row.path,
            )
            for row in self.category_repo.list_live()
        ]
        violations = find_invariant_violations(rows)
        if violations:
            logger.warning(f"Category tree has {len(violations)} invariant violations")
        return violations

    def rebuild_tree(self, flat_rows: List[FlatCategoryRow]) -> RebuildResult:
        """
        Renumber the whole live forest from parent links.

        flat_rows override stored rows with the same id and add new ones;
        stored rows not mentioned keep their stored parent. Cycles and
        unknown parents are rejected before anything is written.
        """
        with tree_transaction(self.db_session, self.tree_lock):
            result = self._renumber(flat_rows)

        logger.info(
            f"Category tree rebuilt: {result.total} nodes, {result.created} created, "
            f"{result.roots} roots, depth {result.max_level}"
        )
        self._publish(CategoryEventType.REBUILT)
        return result

    def rebuild_from_storage(self) -> RebuildResult:
        """Recovery: renumber the stored live rows from their parent links"""
        return self.rebuild_tree([])

    def purge_deleted(self, deleted_before: Optional[datetime] = None) -> PurgeResult:
        """Physically remove soft-deleted rows and close the gaps they left"""
        with tree_transaction(self.db_session, self.tree_lock):
            purged = self.category_repo.purge_deleted(deleted_before)
            result = self._renumber([])

        logger.info(f"Purged {purged} soft-deleted categories, {result.total} remain")
        self._publish(CategoryEventType.REBUILT)
        return PurgeResult(purged=purged, remaining=result.total)

    def _renumber(self, flat_rows: List[FlatCategoryRow]) -> RebuildResult:
        stored: Dict[UUID, Category] = {
            row.id: row for row in self.category_repo.list_live()
        }
        forest: Dict[UUID, ForestRow] = {
            row.id: ForestRow(id=row.id, parent_id=row.parent_id, sort_order=row.sort_order, name=row.name)
            for row in stored.values()
        }
        incoming: Dict[UUID, FlatCategoryRow] = {}

        for row in flat_rows:
            if row.id in incoming:
                raise ValidationError(f"Duplicate category id {row.id} in rebuild input")
            incoming[row.id] = row
            existing = stored.get(row.id)
            if existing is None:
                if not (row.name or "").strip():
                    raise ValidationError(f"New category {row.id} needs a name")
                if self.category_repo.get_by_id(row.id, include_deleted=True):
                    raise ValidationError(f"Category {row.id} is deleted and cannot be rebuilt")
            sort_order = row.sort_order
            if existing is not None and "sort_order" not in row.model_fields_set:
                sort_order = existing.sort_order
            forest[row.id] = ForestRow(
                id=row.id,
                parent_id=row.parent_id,
                sort_order=sort_order,
                name=(row.name or existing.name).strip(),
            )

        numbering = number_forest(forest.values())

        taken = set()
        paths: Dict[UUID, str] = {}
        updates, inserts = [], []
        for node_id, numbers in numbering.items():
            row = incoming.get(node_id)
            existing = stored.get(node_id)
            node = forest[node_id]

            if existing is not None and not (row and row.slug):
                slug = existing.slug
            else:
                slug = self._resolve_slug(row.slug or node.name, exclude_id=node_id, taken=taken)
            taken.add(slug)
            path = build_path(paths.get(numbers.parent_id), slug)
            paths[node_id] = path

            values = {
                "id": node_id,
                "parent_id": numbers.parent_id,
                "left": numbers.left,
                "right": numbers.right,
                "level": numbers.level,
                "path": path,
                "slug": slug,
                "name": node.name,
                "sort_order": node.sort_order,
            }
            if existing is not None:
                values["version"] = existing.version + 1
                updates.append(values)
            else:
                values.update(
                    version=1, is_visible=True, show_in_menu=True, is_featured=False
                )
                inserts.append(values)

        # New rows first: stored rows may be re-parented under them
        self.category_repo.bulk_insert(inserts)
        self.category_repo.bulk_update_numbering(updates)

        return RebuildResult(
            total=len(numbering),
            created=len(inserts),
            updated=len(updates),
            roots=sum(1 for numbers in numbering.values() if numbers.parent_id is None),
            max_level=max((numbers.level for numbers in numbering.values()), default=0),
        )
