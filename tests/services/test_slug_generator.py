# tests/services/test_slug_generator.py
import pytest

from app.core.exceptions import ConflictError
from app.core.slug_generator import build_path, parent_path_of, slugify, unique_slug


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Electronics", "electronics"),
        ("TV & Home Theater", "tv-home-theater"),
        ("  Kids' Toys  ", "kids-toys"),
        ("Café Crème", "cafe-creme"),
        ("--Already--Slugged--", "already-slugged"),
        ("100% Cotton", "100-cotton"),
        ("!!!", ""),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_slugify_truncates_without_trailing_hyphen():
    assert slugify("abc def", max_length=4) == "abc"


def test_unique_slug_returns_free_candidate():
    assert unique_slug("phones", lambda slug: False) == "phones"


def test_unique_slug_appends_counter():
    taken = {"phones", "phones-2", "phones-3"}

    assert unique_slug("phones", taken.__contains__) == "phones-4"


def test_unique_slug_gives_up_after_max_attempts():
    with pytest.raises(ConflictError):
        unique_slug("phones", lambda slug: True, max_attempts=5)


def test_unique_slug_respects_max_length():
    slug = unique_slug("abcdef", {"abcdef"}.__contains__, max_length=6)

    assert slug == "abcd-2"


def test_build_path():
    assert build_path(None, "electronics") == "electronics"
    assert build_path("", "electronics") == "electronics"
    assert build_path("electronics", "phones") == "electronics/phones"


def test_parent_path_of():
    assert parent_path_of("electronics/phones/smartphones") == "electronics/phones"
    assert parent_path_of("electronics") == ""
