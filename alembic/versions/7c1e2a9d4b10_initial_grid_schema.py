"""initial_grid_schema

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-09-02 10:00:00.000000

Tables, columns and rows, plus the ordering index (table_id, created_at, id)
and the legacy single-column table_id index on table_row.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '7c1e2a9d4b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'base_table',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False, server_default=''),
        sa.Column('sort_config', _json(), nullable=False),
        sa.Column('hidden_column_ids', _json(), nullable=False),
        sa.Column('search_query', sa.Text(), nullable=True),
        sa.Column('row_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'table_column',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('table_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.Text(), nullable=False, server_default='single_line_text'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['table_id'], ['base_table.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('table_column_table_idx', 'table_column', ['table_id'], unique=False)
    op.create_table(
        'table_row',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('table_id', sa.Text(), nullable=False),
        sa.Column('data', _json(), nullable=False),
        sa.Column('search_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['table_id'], ['base_table.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('table_row_table_created_idx', 'table_row', ['table_id', 'created_at', 'id'], unique=False)
    op.create_index('table_row_table_idx', 'table_row', ['table_id'], unique=False)


def downgrade() -> None:
    op.drop_index('table_row_table_idx', table_name='table_row', if_exists=True)
    op.drop_index('table_row_table_created_idx', table_name='table_row', if_exists=True)
    op.drop_table('table_row')
    op.drop_index('table_column_table_idx', table_name='table_column')
    op.drop_table('table_column')
    op.drop_table('base_table')
