"""
add deleted_articles tombstones

Revision ID: c7e5a9b3d002
Revises: b1c0f2a4d001
Create Date: 2025-12-23
"""

from alembic import op
import sqlalchemy as sa

revision = 'c7e5a9b3d002'
down_revision = 'b1c0f2a4d001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'deleted_articles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('url', sa.String(2000), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_deleted_articles_url', 'deleted_articles', ['url'])
    op.create_index('ix_deleted_articles_deleted_at', 'deleted_articles', ['deleted_at'])


def downgrade() -> None:
    op.drop_index('ix_deleted_articles_deleted_at', table_name='deleted_articles')
    op.drop_index('ix_deleted_articles_url', table_name='deleted_articles')
    op.drop_table('deleted_articles')
