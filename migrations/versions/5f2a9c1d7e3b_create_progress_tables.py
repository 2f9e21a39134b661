"""create user_progress and search_history tables

Revision ID: 5f2a9c1d7e3b
Revises:
Create Date: 2025-11-09 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5f2a9c1d7e3b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the per-user progress ledger and the search history log."""
    op.create_table('user_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word', sa.String(), nullable=False),
        sa.Column('is_learned', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('last_reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('next_review_due_at', sa.DateTime(), nullable=True),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('word')
    )
    op.create_index('ix_user_progress_next_review_due_at', 'user_progress', ['next_review_due_at'])

    op.create_table('search_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('query', sa.String(), nullable=False),
        sa.Column('matched_word', sa.String(), nullable=False),
        sa.Column('searched_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_search_history_searched_at', 'search_history', ['searched_at'])
    op.create_index('ix_search_history_query_searched_at', 'search_history', ['query', 'searched_at'])


def downgrade() -> None:
    """Drop the progress tables."""
    op.drop_index('ix_search_history_query_searched_at', table_name='search_history')
    op.drop_index('ix_search_history_searched_at', table_name='search_history')
    op.drop_table('search_history')
    op.drop_index('ix_user_progress_next_review_due_at', table_name='user_progress')
    op.drop_table('user_progress')
