"""Initial schema for ctrlsys timers

Revision ID: 4f2a9c1e7b30
Revises:
Create Date: 2026-10-19 15:10:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'timers',
        sa.Column('timer_id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('labels', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False, server_default='api'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'cancelled')", name='ck_timers_status'
        ),
        sa.CheckConstraint('duration_seconds BETWEEN 1 AND 86400', name='ck_timers_duration'),
    )
    op.create_index('idx_timers_status', 'timers', ['status'])
    op.create_index('idx_timers_expires_at', 'timers', ['expires_at'])

    op.create_table(
        'job_completions',
        sa.Column('timer_id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('labels', sa.JSON(), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('total_duration_seconds', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False, server_default='system'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.Column('reported_at', sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('job_completions')
    op.drop_index('idx_timers_expires_at', table_name='timers')
    op.drop_index('idx_timers_status', table_name='timers')
    op.drop_table('timers')
