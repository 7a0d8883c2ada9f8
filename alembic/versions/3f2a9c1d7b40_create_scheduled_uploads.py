"""create_scheduled_uploads

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'scheduled_uploads',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('media_url', sa.Text(), nullable=False),
        sa.Column('media_path', sa.Text(), nullable=False),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('publishing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('remote_container_id', sa.String(length=255), nullable=True),
        sa.Column('remote_media_id', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'idx_scheduled_uploads_status_sched',
        'scheduled_uploads',
        ['status', 'scheduled_for', 'id'],
        unique=False
    )


def downgrade() -> None:
    op.drop_index('idx_scheduled_uploads_status_sched', table_name='scheduled_uploads')
    op.drop_table('scheduled_uploads')
