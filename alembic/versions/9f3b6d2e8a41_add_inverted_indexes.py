"""add_inverted_indexes

Revision ID: 9f3b6d2e8a41
Revises: 7c1e2a9d4b10
Create Date: 2026-09-09 14:30:00.000000

PostgreSQL only: pg_trgm, a jsonb_path_ops GIN index on table_row.data
(containment filters) and a trigram GIN index on table_row.search_text
(substring search).  Also re-syncs base_table.row_count with the stored rows.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = '9f3b6d2e8a41'
down_revision: Union[str, Sequence[str], None] = '7c1e2a9d4b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if not inspector.has_table('table_row'):
        return

    op.execute(
        "UPDATE base_table SET row_count = "
        "(SELECT count(*) FROM table_row WHERE table_row.table_id = base_table.id)"
    )

    if bind.dialect.name != 'postgresql':
        return
    existing = {ix['name'] for ix in inspector.get_indexes('table_row')}
    op.execute('CREATE EXTENSION IF NOT EXISTS pg_trgm')
    if 'table_row_data_gin_idx' not in existing:
        op.execute('CREATE INDEX table_row_data_gin_idx ON table_row USING gin (data jsonb_path_ops)')
    if 'table_row_search_text_trgm_idx' not in existing:
        op.execute('CREATE INDEX table_row_search_text_trgm_idx ON table_row USING gin (search_text gin_trgm_ops)')


def downgrade() -> None:
    if op.get_bind().dialect.name != 'postgresql':
        return
    op.execute('DROP INDEX IF EXISTS table_row_search_text_trgm_idx')
    op.execute('DROP INDEX IF EXISTS table_row_data_gin_idx')
