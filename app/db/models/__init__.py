# app/db/models/__init__.py
from app.db.models.category import Category

__all__ = ["Category"]
