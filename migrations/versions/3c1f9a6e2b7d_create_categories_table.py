"""create_categories_table

Revision ID: 3c1f9a6e2b7d
Revises:
Create Date: 2026-10-17 09:12:31.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '3c1f9a6e2b7d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the nested-set categories table."""
    op.create_table(
        'categories',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column(
            'parent_id',
            UUID(as_uuid=True),
            sa.ForeignKey('categories.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('path', sa.String(1000), nullable=False, comment='Slash-delimited slug path from root'),
        sa.Column('level', sa.Integer(), nullable=False, server_default='0', comment='Depth in tree (0 = root)'),
        sa.Column('left', sa.Integer(), nullable=False, comment='Nested set left value'),
        sa.Column('right', sa.Integer(), nullable=False, comment='Nested set right value'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_visible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('show_in_menu', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('meta_title', sa.String(255)),
        sa.Column('meta_description', sa.Text()),
        sa.Column('meta_keywords', sa.Text()),
        sa.Column('image_url', sa.String(500)),
        sa.Column('banner_url', sa.String(500)),
        sa.Column('default_attributes', JSONB(), comment='Default attributes for products'),
        sa.Column('required_attributes', JSONB(), comment='Required attribute names for products'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='Optimistic concurrency token'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_index('ix_categories_slug', 'categories', ['slug'], unique=True)
    op.create_index('idx_categories_left_right', 'categories', ['left', 'right'])
    op.create_index('idx_categories_parent_id', 'categories', ['parent_id'])
    op.create_index('idx_categories_level', 'categories', ['level'])
    op.create_index('idx_categories_deleted_at', 'categories', ['deleted_at'])


def downgrade() -> None:
    """Drop the categories table."""
    op.drop_index('idx_categories_deleted_at', table_name='categories')
    op.drop_index('idx_categories_level', table_name='categories')
    op.drop_index('idx_categories_parent_id', table_name='categories')
    op.drop_index('idx_categories_left_right', table_name='categories')
    op.drop_index('ix_categories_slug', table_name='categories')
    op.drop_table('categories')
