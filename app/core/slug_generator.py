import re
import unicodedata
from typing import Callable, Optional

from app.core.config import settings
from app.core.exceptions import ConflictError

PATH_SEPARATOR = "/"


def slugify(name: str, max_length: Optional[int] = None) -> str:
    """
    Generate a URL-friendly slug from a category name.

    Args:
        name: Display name to convert (e.g., "TV & Home Theater")
        max_length: Maximum slug length (defaults to settings.SLUG_MAX_LENGTH)

    Returns:
        Lowercase, hyphen-separated slug (e.g., "tv-home-theater"). Empty
        when the name carries no alphanumeric characters.
    """
    if not name:
        return ""
    max_length = max_length or settings.SLUG_MAX_LENGTH

    # First, normalize unicode characters
    slug = unicodedata.normalize("NFKD", name)
    slug = slug.encode("ascii", "ignore").decode("ascii")

    slug = slug.lower()

    # Replace runs of non-alphanumerics with a single hyphen
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = slug.strip("-")

    # Truncate, then make sure truncation didn't leave a trailing hyphen
    return slug[:max_length].rstrip("-")


def unique_slug(
    candidate: str,
    slug_exists: Callable[[str], bool],
    max_attempts: Optional[int] = None,
    max_length: Optional[int] = None,
) -> str:
    """
    Resolve a slug collision by suffixing -2, -3, ... until free.

    Args:
        candidate: Desired slug
        slug_exists: Global lookup, True when the slug is already taken
        max_attempts: Number of suffixes to try before giving up

    Returns:
        The first free slug

    Raises:
        ConflictError: If no free slug was found within max_attempts
    """
    max_attempts = max_attempts or settings.SLUG_MAX_ATTEMPTS
    max_length = max_length or settings.SLUG_MAX_LENGTH

    if not slug_exists(candidate):
        return candidate

    for counter in range(2, max_attempts + 2):
        suffix = f"-{counter}"
        base = candidate[: max_length - len(suffix)].rstrip("-")
        slug = f"{base}{suffix}"
        if not slug_exists(slug):
            return slug

    raise ConflictError(
        f"Could not find a free slug for '{candidate}' after {max_attempts} attempts"
    )


def build_path(parent_path: Optional[str], slug: str) -> str:
    """Materialized path for a node: parent path + '/' + slug, or slug for roots."""
    return f"{parent_path}{PATH_SEPARATOR}{slug}" if parent_path else slug


def parent_path_of(path: str) -> str:
    """Strip the last segment of a materialized path ('' for a root path)."""
    if PATH_SEPARATOR not in path:
        return ""
    return path.rsplit(PATH_SEPARATOR, 1)[0]
