"""
Nested-set arithmetic.

Pure functions that compute the boundary values and shift parameters needed
to insert, move and renumber nodes. Nothing here touches storage; the
repository applies the numbers these functions return.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Union

from app.core.exceptions import ValidationError
from app.core.slug_generator import build_path
from app.schemas.category import MovePosition

LEAF_WIDTH = 2


@dataclass(frozen=True)
class TreeBounds:
    left: int
    right: int
    level: int = 0


@dataclass(frozen=True)
class InsertionBoundaries:
    new_left: int
    new_right: int
    level: int
    shift_amount: int
    shift_from_boundary: int


@dataclass(frozen=True)
class MoveBoundaries:
    old_left: int
    old_right: int
    width: int
    insertion_point: int
    shrink_from: int
    grow_from: int
    translation: int
    level_delta: int

    @property
    def new_left(self) -> int:
        return self.old_left + self.translation

    @property
    def new_right(self) -> int:
        return self.old_right + self.translation

    @property
    def is_noop(self) -> bool:
        return self.translation == 0 and self.level_delta == 0


@dataclass(frozen=True)
class ForestRow:
    id: Hashable
    parent_id: Optional[Hashable] = None
    sort_order: int = 0
    name: str = ""


@dataclass(frozen=True)
class NodeNumbering:
    left: int
    right: int
    level: int
    parent_id: Optional[Hashable] = None


@dataclass(frozen=True)
class TreeRow:
    """Snapshot of a stored node, used for invariant checks."""
    id: Hashable
    parent_id: Optional[Hashable]
    left: int
    right: int
    level: int
    slug: str
    path: str


def coerce_position(position: Union[MovePosition, str, None]) -> MovePosition:
    """Accept a MovePosition or its string value; None means LAST."""
    if position is None:
        return MovePosition.LAST
    if isinstance(position, MovePosition):
        return position
    try:
        return MovePosition(str(position).lower())
    except ValueError:
        valid = [p.value for p in MovePosition]
        raise ValidationError(f"Invalid position '{position}', must be one of {valid}")


def compute_subtree_width(node: TreeBounds) -> int:
    """right - left + 1; a leaf occupies 2."""
    width = node.right - node.left + 1
    if width < LEAF_WIDTH or width % 2:
        raise ValidationError(
            f"Corrupt boundaries ({node.left}, {node.right}): width must be even and >= 2"
        )
    return width


def compute_insertion_point(
    parent: Optional[TreeBounds],
    position: Union[MovePosition, str, None],
    forest_bounds: Optional[TreeBounds] = None,
) -> int:
    """
    The left value a node inserted under parent would receive.

    FIRST sits right after the parent's own left, LAST right before the
    parent's own right. Without a parent the forest itself is the container:
    forest_bounds.left is the first root's left and forest_bounds.right the
    highest right in use (None on an empty tree).
    """
    position = coerce_position(position)
    if parent is not None:
        if position == MovePosition.FIRST:
            return parent.left + 1
        return parent.right

    if forest_bounds is None:
        return 1
    if position == MovePosition.FIRST:
        return forest_bounds.left
    return forest_bounds.right + 1


def compute_insertion_boundaries(
    parent: Optional[TreeBounds],
    position: Union[MovePosition, str, None] = MovePosition.LAST,
    forest_bounds: Optional[TreeBounds] = None,
) -> InsertionBoundaries:
    """
    Boundaries for a new leaf under parent (or at the root level).

    Every live node with left >= shift_from_boundary and every live node with
    right >= shift_from_boundary must be moved right by shift_amount before
    the new row is written.
    """
    point = compute_insertion_point(parent, position, forest_bounds)
    level = parent.level + 1 if parent is not None else 0

    # Appending after the last root: nothing sits at or after the point
    appending_root = parent is None and (
        forest_bounds is None or coerce_position(position) == MovePosition.LAST
    )
    shift_amount = 0 if appending_root else LEAF_WIDTH

    return InsertionBoundaries(
        new_left=point,
        new_right=point + 1,
        level=level,
        shift_amount=shift_amount,
        shift_from_boundary=point,
    )


def compute_move_boundaries(
    subtree_root: TreeBounds,
    insertion_point: int,
    new_level: int,
) -> MoveBoundaries:
    """
    Three-phase move of the subtree rooted at subtree_root.

    insertion_point is expressed in the numbering before the move. The
    phases are applied in order:
      a) shrink: every node with left/right >= shrink_from moves left by width
      b) grow: every node with left/right >= grow_from moves right by width
      c) translate: every node of the moved subtree moves by translation
    grow_from is the insertion point re-expressed after the shrink.
    """
    width = compute_subtree_width(subtree_root)
    old_left, old_right = subtree_root.left, subtree_root.right

    if old_left < insertion_point <= old_right:
        raise ValidationError("Cannot move a category into its own subtree")

    # A node already at the insertion point ends up with translation 0
    grow_from = insertion_point - width if insertion_point > old_right else insertion_point

    return MoveBoundaries(
        old_left=old_left,
        old_right=old_right,
        width=width,
        insertion_point=insertion_point,
        shrink_from=old_right + 1,
        grow_from=grow_from,
        translation=grow_from - old_left,
        level_delta=new_level - subtree_root.level,
    )


def is_within(outer: TreeBounds, inner: TreeBounds) -> bool:
    """True when inner lies inside outer's range (or is outer itself)."""
    return outer.left <= inner.left and inner.right <= outer.right


def number_forest(rows: Iterable[ForestRow]) -> Dict[Hashable, NodeNumbering]:
    """
    Assign fresh contiguous left/right/level values to a parent_id-only forest.

    Siblings are ordered by (sort_order, name, id). The walk is iterative so
    deep trees don't hit the recursion limit. The returned dict is in
    pre-order, so every parent precedes its children.

    Raises:
        ValidationError: duplicate ids, unknown parents, or cycles
    """
    by_id: Dict[Hashable, ForestRow] = {}
    for row in rows:
        if row.id in by_id:
            raise ValidationError(f"Duplicate category id {row.id} in rebuild input")
        by_id[row.id] = row

    def sort_key(row: ForestRow):
        return (row.sort_order or 0, row.name or "", str(row.id))

    roots: List[ForestRow] = []
    children: Dict[Hashable, List[ForestRow]] = defaultdict(list)
    for row in by_id.values():
        if row.parent_id is None:
            roots.append(row)
        elif row.parent_id not in by_id:
            raise ValidationError(f"Category {row.id} references unknown parent {row.parent_id}")
        else:
            children[row.parent_id].append(row)

    for siblings in children.values():
        siblings.sort(key=sort_key)
    roots.sort(key=sort_key)

    lefts: Dict[Hashable, int] = {}
    levels: Dict[Hashable, int] = {}
    rights: Dict[Hashable, int] = {}
    preorder: List[Hashable] = []
    counter = 1

    for root in roots:
        stack = [(root, 0, False)]
        while stack:
            row, level, closing = stack.pop()
            if closing:
                rights[row.id] = counter
                counter += 1
                continue
            lefts[row.id] = counter
            levels[row.id] = level
            preorder.append(row.id)
            counter += 1
            stack.append((row, level, True))
            for child in reversed(children.get(row.id, [])):
                stack.append((child, level + 1, False))

    if len(preorder) != len(by_id):
        # Every unreachable node's parent chain loops back on itself
        cyclic = sorted(str(node_id) for node_id in by_id if node_id not in lefts)
        raise ValidationError(f"Cycle detected in parent links: {', '.join(cyclic)}")

    return {
        node_id: NodeNumbering(
            left=lefts[node_id],
            right=rights[node_id],
            level=levels[node_id],
            parent_id=by_id[node_id].parent_id,
        )
        for node_id in preorder
    }


def find_invariant_violations(rows: Sequence[TreeRow]) -> List[str]:
    """
    Check the nested-set invariants over every live node.

    Returns a list of human-readable violations; empty means the forest is
    consistent: ranges are well-formed, properly nested, non-overlapping,
    match the parent links, and level/path agree with the parent.
    """
    violations: List[str] = []
    by_id: Dict[Hashable, TreeRow] = {row.id: row for row in rows}

    seen_values: Dict[int, Any] = {}
    for row in rows:
        if row.left >= row.right:
            violations.append(f"{row.id}: left {row.left} is not below right {row.right}")
        for value in (row.left, row.right):
            if value in seen_values:
                violations.append(
                    f"{row.id}: boundary {value} already used by {seen_values[value]}"
                )
            else:
                seen_values[value] = row.id

        if row.parent_id is None:
            if row.level != 0:
                violations.append(f"{row.id}: root has level {row.level}")
            if row.path != row.slug:
                violations.append(f"{row.id}: root path '{row.path}' != slug '{row.slug}'")
            continue

        parent = by_id.get(row.parent_id)
        if parent is None:
            violations.append(f"{row.id}: parent {row.parent_id} is not a live category")
            continue
        if not (parent.left < row.left and row.right < parent.right):
            violations.append(
                f"{row.id}: range ({row.left}, {row.right}) not inside parent "
                f"({parent.left}, {parent.right})"
            )
        if row.level != parent.level + 1:
            violations.append(f"{row.id}: level {row.level} != parent level {parent.level} + 1")
        expected_path = build_path(parent.path, row.slug)
        if row.path != expected_path:
            violations.append(f"{row.id}: path '{row.path}' != '{expected_path}'")

    # Walk in left order; the enclosing range must be the parent's
    stack: List[TreeRow] = []
    for row in sorted(rows, key=lambda r: r.left):
        while stack and stack[-1].right < row.left:
            stack.pop()
        enclosing = stack[-1] if stack else None
        if enclosing is not None and row.right > enclosing.right:
            violations.append(
                f"{row.id}: range ({row.left}, {row.right}) overlaps "
                f"{enclosing.id} ({enclosing.left}, {enclosing.right})"
            )
        enclosing_id = enclosing.id if enclosing is not None else None
        if enclosing_id != row.parent_id:
            violations.append(
                f"{row.id}: enclosed by {enclosing_id} but parent is {row.parent_id}"
            )
        stack.append(row)

    return violations
