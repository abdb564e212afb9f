# app/db/models/category.py
from sqlalchemy import (
    JSON,
    UUID,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from app.db.base import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Category(Base):
    """
    Category node stored with the nested-set model.

    Every descendant of a node has left/right values strictly inside the
    node's own (left, right) range, so subtree and ancestor lookups are
    single range scans. left/right/level/path are owned by the tree service.
    """

    __tablename__ = "categories"
    __table_args__ = (
        Index("idx_categories_left_right", "left", "right"),
        Index("idx_categories_parent_id", "parent_id"),
        Index("idx_categories_level", "level"),
        Index("idx_categories_deleted_at", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text)
    parent_id = Column(
        UUID(as_uuid=True),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=True,
    )
    path = Column(String(1000), nullable=False, comment="Slash-delimited slug path from root")

    # Nested set fields
    level = Column(Integer, nullable=False, default=0, comment="Depth in tree (0 = root)")
    left = Column(Integer, nullable=False, comment="Nested set left value")
    right = Column(Integer, nullable=False, comment="Nested set right value")

    # Display settings
    sort_order = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)
    show_in_menu = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)

    # SEO fields
    meta_title = Column(String(255))
    meta_description = Column(Text)
    meta_keywords = Column(Text)

    # Images
    image_url = Column(String(500))
    banner_url = Column(String(500))

    # Attributes that products in this category inherit / must provide
    default_attributes = Column(JSONType, comment="Default attributes for products")
    required_attributes = Column(JSONType, comment="Required attribute names for products")

    version = Column(Integer, nullable=False, default=1, comment="Optimistic concurrency token")

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return self.right == self.left + 1

    @property
    def descendant_count(self) -> int:
        return (self.right - self.left - 1) // 2

    def __repr__(self):
        return f"<Category(id={self.id}, slug='{self.slug}', left={self.left}, right={self.right})>"
