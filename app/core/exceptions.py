"""Error kinds raised by the category tree engine."""


class CategoryTreeError(Exception):
    """Base class for every error surfaced by the category engine."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CategoryTreeError):
    """Malformed input: empty name, cyclic move target, invalid position."""

    kind = "validation_error"


class NotFoundError(CategoryTreeError):
    """A referenced id does not resolve to a live category."""

    kind = "not_found"


class ConflictError(CategoryTreeError):
    """Unresolvable slug collision or optimistic-concurrency version mismatch."""

    kind = "conflict"


class StorageError(CategoryTreeError):
    """The underlying transaction failed or timed out."""

    kind = "storage_error"
