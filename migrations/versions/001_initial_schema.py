"""Initial part reconciliation schema.

This migration creates:
- match_method, decision_status, rule_scope and rule_action ENUM types
- store_items and supplier_items catalog tables
- interchange_entries cross-reference table
- match_candidates table with the idempotency constraint and the
  single-confirmation partial unique index
- matching_rules table with the rule-key expression index

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MATCH_METHODS = (
    'interchange',
    'exact_normalized',
    'rule_based',
    'fuzzy',
    'fuzzy_substring',
    'ai',
    'web_search',
)
DECISION_STATUSES = ('pending', 'confirmed', 'rejected')
RULE_SCOPES = ('global', 'project')
RULE_ACTIONS = ('approve', 'block')


def _catalog_columns() -> list:
    return [
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('project_id', sa.String(64), nullable=False),
        sa.Column('part_number', sa.String(100), nullable=False),
        sa.Column('canonical_part_number', sa.String(100), nullable=False),
        sa.Column('line_code', sa.String(16), nullable=True),
        sa.Column('mfr_code', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cost', sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ===== ENUM types =====
    bind = op.get_bind()
    postgresql.ENUM(*MATCH_METHODS, name='match_method', create_type=True).create(bind, checkfirst=True)
    postgresql.ENUM(*DECISION_STATUSES, name='decision_status', create_type=True).create(bind, checkfirst=True)
    postgresql.ENUM(*RULE_SCOPES, name='rule_scope', create_type=True).create(bind, checkfirst=True)
    postgresql.ENUM(*RULE_ACTIONS, name='rule_action', create_type=True).create(bind, checkfirst=True)

    # ===== Catalog tables =====
    op.create_table('store_items', *_catalog_columns())
    op.create_index('ix_store_items_project_id', 'store_items', ['project_id'])
    op.create_index(
        'idx_store_items_project_canonical', 'store_items', ['project_id', 'canonical_part_number']
    )

    op.create_table('supplier_items', *_catalog_columns())
    op.create_index('ix_supplier_items_project_id', 'supplier_items', ['project_id'])
    op.create_index(
        'idx_supplier_items_project_canonical', 'supplier_items', ['project_id', 'canonical_part_number']
    )
    op.create_index(
        'idx_supplier_items_project_line_code', 'supplier_items', ['project_id', 'line_code']
    )

    op.create_table(
        'interchange_entries',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('project_id', sa.String(64), nullable=False),
        sa.Column('ours', sa.String(100), nullable=False),
        sa.Column('theirs', sa.String(100), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.95'),
        sa.Column('source', sa.String(100), nullable=False, server_default='curated'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_interchange_entries_project_id', 'interchange_entries', ['project_id'])

    # ===== match_candidates =====
    op.create_table(
        'match_candidates',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=False),
            primary_key=True,
            server_default=sa.text('gen_random_uuid()')
        ),
        sa.Column('project_id', sa.String(64), nullable=False),
        sa.Column(
            'store_item_id',
            sa.String(64),
            sa.ForeignKey('store_items.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column(
            'target_id',
            sa.String(64),
            sa.ForeignKey('supplier_items.id', ondelete='CASCADE'),
            nullable=True
        ),
        sa.Column('external_ref', sa.String(200), nullable=True),
        sa.Column('target_key', sa.String(220), nullable=False),
        sa.Column(
            'method',
            postgresql.ENUM(*MATCH_METHODS, name='match_method', create_type=False),
            nullable=False
        ),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('match_stage', sa.SmallInteger(), nullable=False),
        sa.Column(
            'evidence',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default='{}'
        ),
        sa.Column(
            'status',
            postgresql.ENUM(*DECISION_STATUSES, name='decision_status', create_type=False),
            nullable=False,
            server_default='pending'
        ),
        sa.Column('decided_by', sa.String(64), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'project_id', 'store_item_id', 'target_key', name='uq_match_candidates_target'
        ),
        sa.CheckConstraint(
            'confidence >= 0 AND confidence <= 1', name='check_match_candidates_confidence'
        ),
        sa.CheckConstraint(
            'target_id IS NOT NULL OR external_ref IS NOT NULL', name='check_match_candidates_target'
        ),
    )
    op.create_index('ix_match_candidates_project_id', 'match_candidates', ['project_id'])
    op.create_index('ix_match_candidates_store_item_id', 'match_candidates', ['store_item_id'])
    op.create_index('ix_match_candidates_status', 'match_candidates', ['status'])
    # At most one confirmed candidate per store item
    op.create_index(
        'uq_match_candidates_confirmed',
        'match_candidates',
        ['store_item_id'],
        unique=True,
        postgresql_where=sa.text("status = 'confirmed'")
    )

    # ===== matching_rules =====
    op.create_table(
        'matching_rules',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=False),
            primary_key=True,
            server_default=sa.text('gen_random_uuid()')
        ),
        sa.Column(
            'scope',
            postgresql.ENUM(*RULE_SCOPES, name='rule_scope', create_type=False),
            nullable=False
        ),
        sa.Column('project_id', sa.String(64), nullable=True),
        sa.Column('line_code', sa.String(16), nullable=True),
        sa.Column('signature', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column(
            'action',
            postgresql.ENUM(*RULE_ACTIONS, name='rule_action', create_type=False),
            nullable=False
        ),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('support', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(scope = 'global' AND project_id IS NULL) OR (scope = 'project' AND project_id IS NOT NULL)",
            name='check_matching_rules_scope'
        ),
    )
    op.create_index('ix_matching_rules_project_id', 'matching_rules', ['project_id'])
    op.execute(
        "CREATE UNIQUE INDEX uq_matching_rules_key ON matching_rules "
        "(scope, coalesce(project_id, ''), coalesce(line_code, ''), signature)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_matching_rules_key")
    op.drop_index('ix_matching_rules_project_id', table_name='matching_rules')
    op.drop_table('matching_rules')

    op.drop_index('uq_match_candidates_confirmed', table_name='match_candidates')
    op.drop_index('ix_match_candidates_status', table_name='match_candidates')
    op.drop_index('ix_match_candidates_store_item_id', table_name='match_candidates')
    op.drop_index('ix_match_candidates_project_id', table_name='match_candidates')
    op.drop_table('match_candidates')

    op.drop_index('ix_interchange_entries_project_id', table_name='interchange_entries')
    op.drop_table('interchange_entries')

    op.drop_index('idx_supplier_items_project_line_code', table_name='supplier_items')
    op.drop_index('idx_supplier_items_project_canonical', table_name='supplier_items')
    op.drop_index('ix_supplier_items_project_id', table_name='supplier_items')
    op.drop_table('supplier_items')

    op.drop_index('idx_store_items_project_canonical', table_name='store_items')
    op.drop_index('ix_store_items_project_id', table_name='store_items')
    op.drop_table('store_items')

    # ===== Drop ENUM types =====
    bind = op.get_bind()
    postgresql.ENUM(*RULE_ACTIONS, name='rule_action').drop(bind, checkfirst=True)
    postgresql.ENUM(*RULE_SCOPES, name='rule_scope').drop(bind, checkfirst=True)
    postgresql.ENUM(*DECISION_STATUSES, name='decision_status').drop(bind, checkfirst=True)
    postgresql.ENUM(*MATCH_METHODS, name='match_method').drop(bind, checkfirst=True)
