# tests/test_cli.py
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from app.services.category_service import CategoryService
from main import cli, flatten_category_rows


@pytest.fixture(scope="function")
def cli_services(session_factory):
    """Point the CLI commands at the test database."""

    @contextmanager
    def scope():
        session = session_factory()
        try:
            yield CategoryService(session)
        finally:
            session.close()

    with patch("main.category_service_scope", scope):
        yield


def test_flatten_keeps_document_order():
    rows = flatten_category_rows(
        [
            {"name": "Zines"},
            {"name": "Books", "children": [{"name": "Poetry"}, {"name": "Atlases", "sort_order": 7}]},
        ]
    )

    assert [(row.name, row.sort_order) for row in rows] == [
        ("Zines", 0),
        ("Books", 1),
        ("Poetry", 0),
        ("Atlases", 7),
    ]
    assert rows[2].parent_id == rows[1].id


def test_import_categories_orders_siblings_as_written(cli_services, category_service, tmp_path):
    document = tmp_path / "categories.yaml"
    document.write_text(
        "categories:\n"
        "  - name: Zines\n"
        "  - name: Books\n"
        "    children:\n"
        "      - name: Poetry\n"
        "      - name: Atlases\n"
    )

    result = CliRunner().invoke(cli, ["import-categories", str(document)])

    assert result.exit_code == 0, result.output
    assert "created: 4" in result.output
    roots = category_service.get_roots()
    assert [root.name for root in roots] == ["Zines", "Books"]
    assert [child.name for child in category_service.get_children(roots[1].id)] == ["Poetry", "Atlases"]
    assert category_service.verify_tree() == []


def test_verify_tree_command_reports_consistent_tree(cli_services, sample_tree):
    result = CliRunner().invoke(cli, ["verify-tree"])

    assert result.exit_code == 0
    assert "consistent" in result.output
