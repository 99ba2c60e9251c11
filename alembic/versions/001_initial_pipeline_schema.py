"""initial_pipeline_schema

Create the request context table and one versioned table per stage output:
- request_contexts: Request state machine records
- complexity_detections, thought_outputs, plan_outputs, critique_outputs,
  meta_outputs, execution_outputs, summary_outputs: Append-only stage outputs
  keyed by (request_id, version)

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OUTPUT_TABLES = (
    'complexity_detections',
    'thought_outputs',
    'plan_outputs',
    'critique_outputs',
    'meta_outputs',
    'execution_outputs',
    'summary_outputs',
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'request_contexts',
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('user_query', sa.Text(), nullable=True),
        sa.Column('agent_chain', sa.JSON(), nullable=False),
        sa.Column('complexity', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('request_id')
    )
    op.create_index('ix_request_contexts_request_id', 'request_contexts', ['request_id'], unique=False)
    op.create_index('ix_request_contexts_status', 'request_contexts', ['status'], unique=False)
    op.create_index('ix_request_contexts_created_at', 'request_contexts', ['created_at'], unique=False)
    op.create_index('idx_request_status_created', 'request_contexts', ['status', 'created_at'], unique=False)

    for table in OUTPUT_TABLES:
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('request_id', sa.String(length=64), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('agent_name', sa.String(length=64), nullable=False),
            sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
            sa.Column('score', sa.Float(), nullable=True),
            sa.Column('confidence', sa.Float(), nullable=True),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('request_id', 'version', name=f'uq_{table}_request_version')
        )
        op.create_index(f'ix_{table}_request_id', table, ['request_id'], unique=False)
        op.create_index(f'ix_{table}_timestamp', table, ['timestamp'], unique=False)
        op.create_index(f'ix_{table}_score', table, ['score'], unique=False)
        op.create_index(f'ix_{table}_confidence', table, ['confidence'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    for table in reversed(OUTPUT_TABLES):
        op.drop_index(f'ix_{table}_confidence', table_name=table)
        op.drop_index(f'ix_{table}_score', table_name=table)
        op.drop_index(f'ix_{table}_timestamp', table_name=table)
        op.drop_index(f'ix_{table}_request_id', table_name=table)
        op.drop_table(table)

    op.drop_index('idx_request_status_created', table_name='request_contexts')
    op.drop_index('ix_request_contexts_created_at', table_name='request_contexts')
    op.drop_index('ix_request_contexts_status', table_name='request_contexts')
    op.drop_index('ix_request_contexts_request_id', table_name='request_contexts')
    op.drop_table('request_contexts')
