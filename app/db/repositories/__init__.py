from app.db.repositories.category_repository import CategoryRepository

__all__ = [
    "CategoryRepository",
]
