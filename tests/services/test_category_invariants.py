# tests/services/test_category_invariants.py
"""Randomized create/move/delete sequences must keep the nested-set invariants."""
import random

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.db.models.category import Category
from app.schemas.category import CategoryCreate


def live_rows(db_session):
    db_session.expire_all()
    return (
        db_session.query(Category)
        .filter(Category.deleted_at.is_(None))
        .order_by(Category.left)
        .all()
    )


def reachable_ids(rows, root_id):
    """Ids reachable from root_id by following parent links downward."""
    children = {}
    for row in rows:
        children.setdefault(row.parent_id, []).append(row.id)
    found, stack = set(), [root_id]
    while stack:
        node_id = stack.pop()
        found.add(node_id)
        stack.extend(children.get(node_id, []))
    return found


def widths(rows):
    return {row.id: row.right - row.left + 1 for row in rows}


@pytest.mark.parametrize("seed", [3, 17, 42, 2024])
def test_random_operations_preserve_invariants(category_service, db_session, seed):
    rng = random.Random(seed)
    counter = 0

    for step in range(60):
        rows = live_rows(db_session)
        ids = [row.id for row in rows]
        operation = rng.choice(["create", "create", "move", "move", "delete"]) if ids else "create"

        if operation == "create":
            counter += 1
            parent_id = rng.choice(ids + [None]) if ids else None
            category_service.create(
                CategoryCreate(
                    name=f"Category {counter}",
                    parent_id=parent_id,
                    position=rng.choice(["first", "last"]),
                )
            )
        elif operation == "move":
            node_id = rng.choice(ids)
            target = rng.choice(ids + [None])
            before = widths(rows)
            snapshot = [(r.id, r.left, r.right) for r in rows]
            try:
                category_service.move(node_id, target, rng.choice(["first", "last"]))
            except ValidationError:
                # Target inside the moved subtree; nothing may change
                assert [(r.id, r.left, r.right) for r in live_rows(db_session)] == snapshot
            else:
                after = widths(live_rows(db_session))
                assert after[node_id] == before[node_id]
        else:
            category_service.delete(rng.choice(ids))

        violations = category_service.verify_tree()
        assert violations == [], f"step {step} ({operation}): {violations}"

    # Subtree correctness: range query agrees with the parent links
    rows = live_rows(db_session)
    for row in rows:
        subtree_ids = {node.id for node in category_service.get_subtree(row.id)}
        assert subtree_ids == reachable_ids(rows, row.id)


def test_deleted_subtree_is_not_found(category_service, sample_tree):
    category_service.delete(sample_tree["electronics"])

    for key in ("electronics", "phones", "smartphones", "laptops"):
        with pytest.raises(NotFoundError):
            category_service.get_subtree(sample_tree[key])
        with pytest.raises(NotFoundError):
            category_service.get_children(sample_tree[key])
