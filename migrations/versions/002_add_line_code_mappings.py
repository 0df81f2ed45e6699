"""Add line code mappings.

This migration adds:
- line_code_mappings table (global rows have a NULL project_id)
- unique expression index on (project, client line code)

Revision ID: 002_add_line_code_mappings
Revises: 001_initial_schema
Create Date: 2026-10-18 16:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '002_add_line_code_mappings'
down_revision: Union[str, None] = '001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'line_code_mappings',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=False),
            primary_key=True,
            server_default=sa.text('gen_random_uuid()'),
        ),
        sa.Column('project_id', sa.String(64), nullable=True),
        sa.Column('client_line_code', sa.String(16), nullable=False),
        sa.Column('supplier_line_code', sa.String(16), nullable=True),
        sa.Column('manufacturer_name', sa.String(200), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_line_code_mappings_project_id', 'line_code_mappings', ['project_id'])
    # One mapping per client line code per project; NULL project means global.
    op.execute(
        "CREATE UNIQUE INDEX uq_line_code_mappings_client "
        "ON line_code_mappings (COALESCE(project_id, ''), client_line_code)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_line_code_mappings_client")
    op.drop_index('ix_line_code_mappings_project_id', table_name='line_code_mappings')
    op.drop_table('line_code_mappings')
