import sys
import uuid
from typing import Any, Dict, List, Optional

import click
import uvicorn
import yaml

from app.core.dependencies import category_service_scope
from app.core.exceptions import CategoryTreeError
from app.core.logging import get_logger
from app.schemas.category import FlatCategoryRow

logger = get_logger(__name__)


def flatten_category_rows(items: List[Dict[str, Any]], parent_id: Optional[str] = None) -> List[FlatCategoryRow]:
    """
    Turn a YAML category document into rebuild rows.

    Items either carry explicit id/parent_id links or nest their subcategories
    under 'children'; nested items without an id get a fresh one. Items
    without a sort_order keep their document order.
    """
    rows = []
    for index, item in enumerate(items):
        item = dict(item)
        children = item.pop("children", None) or []
        item.setdefault("id", str(uuid.uuid4()))
        item.setdefault("sort_order", index)
        if parent_id is not None:
            item.setdefault("parent_id", parent_id)
        rows.append(FlatCategoryRow.model_validate(item))
        rows.extend(flatten_category_rows(children, parent_id=item["id"]))
    return rows


@click.group()
def cli():
    """Category tree CLI"""
    pass


@cli.command()
@click.option("--host", default="0.0.0.0")
@click.option("--port", default=8000)
@click.option("--workers", default=1)
@click.option("--production", is_flag=True, help="Run in production mode")
def serve(host, port, workers, production):
    """Start the API server"""
    reload = not production  # Auto-reload unless production mode

    uvicorn.run(
        "app.api.web_app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=workers if production else 1,
        log_level="info" if production else "debug",
    )


@cli.command("import-categories")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def import_categories(file):
    """Load categories from a YAML file and renumber the tree"""
    try:
        with open(file, "r") as f:
            document = yaml.safe_load(f) or []

        if isinstance(document, dict):
            document = document.get("categories", [])
        rows = flatten_category_rows(document)

        with category_service_scope() as service:
            result = service.rebuild_tree(rows)

        click.echo(f"Imported {len(rows)} rows from {file}")
        click.echo(f"  created: {result.created}, updated: {result.updated}")
        click.echo(f"  total: {result.total}, roots: {result.roots}, depth: {result.max_level}")
    except (CategoryTreeError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error: {str(e)}")
        sys.exit(1)


@cli.command("rebuild-tree")
def rebuild_tree():
    """Renumber the stored tree from its parent links"""
    try:
        with category_service_scope() as service:
            result = service.rebuild_from_storage()
        click.echo(f"Rebuilt {result.total} categories ({result.roots} roots, depth {result.max_level})")
    except CategoryTreeError as e:
        click.echo(f"Error: {e.message}")
        sys.exit(1)


@cli.command("verify-tree")
def verify_tree():
    """Check the stored tree against the nested-set invariants"""
    try:
        with category_service_scope() as service:
            violations = service.verify_tree()
    except CategoryTreeError as e:
        click.echo(f"Error: {e.message}")
        sys.exit(1)

    if not violations:
        click.echo("Category tree is consistent")
        return

    click.echo(f"Found {len(violations)} violations:")
    for violation in violations:
        click.echo(f"  - {violation}")
    sys.exit(1)


@cli.command("purge-deleted")
@click.option("--days", type=int, default=None, help="Only purge categories deleted more than N days ago")
def purge_deleted(days):
    """Physically remove soft-deleted categories"""
    from datetime import datetime, timedelta, timezone

    cutoff = None
    if days is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

    try:
        with category_service_scope() as service:
            result = service.purge_deleted(cutoff)
        click.echo(f"Purged {result.purged} categories, {result.remaining} remain")
    except CategoryTreeError as e:
        click.echo(f"Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
