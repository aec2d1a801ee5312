"""
create feeds and articles

Revision ID: b1c0f2a4d001
Revises:
Create Date: 2025-12-16
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b1c0f2a4d001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'feeds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('url', sa.String(2000), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('site_url', sa.String(2000), nullable=True),
        sa.Column('favicon_url', sa.String(2000), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('url', name='uq_feed_url'),
    )
    op.create_index('ix_feeds_is_active', 'feeds', ['is_active'])
    op.create_table(
        'articles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feed_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(1000), nullable=False),
        sa.Column('url', sa.String(2000), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('author', sa.String(500), nullable=True),
        sa.Column('image_url', sa.String(2000), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['feed_id'], ['feeds.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('url', name='uq_article_url'),
    )
    op.create_index('ix_articles_feed_id', 'articles', ['feed_id'])
    op.create_index('ix_articles_published_at', 'articles', ['published_at'])


def downgrade() -> None:
    op.drop_index('ix_articles_published_at', table_name='articles')
    op.drop_index('ix_articles_feed_id', table_name='articles')
    op.drop_table('articles')
    op.drop_index('ix_feeds_is_active', table_name='feeds')
    op.drop_table('feeds')
