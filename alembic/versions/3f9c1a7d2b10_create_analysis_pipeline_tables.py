"""create analysis pipeline tables

Revision ID: 3f9c1a7d2b10
Revises:
Create Date: 2026-10-18 09:12:44.201337

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

from imagineer.database import ddl

# revision identifiers, used by Alembic.
revision: str = '3f9c1a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table('entities',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('gm_notes', sa.Text(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_entities_campaign_id'), 'entities', ['campaign_id'], unique=False)

    op.create_table('entity_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('content', sa.Text(), nullable=False),
    sa.Column('occurred_at', sa.String(), nullable=True, comment='In-game date text'),
    sa.Column('job_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['entity_id'], ['entities.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_entity_logs_entity_id'), 'entity_logs', ['entity_id'], unique=False)

    op.create_table('relationship_types',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('inverse_name', sa.String(length=100), nullable=False),
    sa.Column('is_symmetric', sa.Boolean(), nullable=False),
    sa.Column('display_label', sa.String(), nullable=False),
    sa.Column('inverse_display_label', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.CheckConstraint('NOT is_symmetric OR name = inverse_name', name='ck_relationship_types_symmetric_inverse_match'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('campaign_id', 'name', name='uq_relationship_types_campaign_name')
    )
    op.create_index(op.f('ix_relationship_types_campaign_id'), 'relationship_types', ['campaign_id'], unique=False)

    op.create_table('relationships',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('source_entity_id', sa.UUID(), nullable=False),
    sa.Column('target_entity_id', sa.UUID(), nullable=False),
    sa.Column('relationship_type_id', sa.UUID(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.CheckConstraint('source_entity_id <> target_entity_id', name='ck_relationships_no_self_edge'),
    sa.ForeignKeyConstraint(['relationship_type_id'], ['relationship_types.id']),
    sa.ForeignKeyConstraint(['source_entity_id'], ['entities.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['target_entity_id'], ['entities.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('campaign_id', 'source_entity_id', 'target_entity_id', 'relationship_type_id', name='uq_relationships_source_target_type')
    )
    op.create_index(op.f('ix_relationships_campaign_id'), 'relationships', ['campaign_id'], unique=False)
    op.execute(ddl.INVERSE_GUARD_FUNCTION)
    op.execute(ddl.INVERSE_GUARD_TRIGGER)
    op.execute(ddl.RELATIONSHIP_VIEW)

    op.create_table('analysis_jobs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('source_table', sa.String(length=50), nullable=False),
    sa.Column('source_id', sa.UUID(), nullable=False),
    sa.Column('source_field', sa.String(length=50), nullable=False),
    sa.Column('game_system_code', sa.String(length=50), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False, comment='pending | analyzing | enriching | completed | failed'),
    sa.Column('phases', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('current_phase', sa.String(length=20), nullable=True),
    sa.Column('failure_reason', sa.Text(), nullable=True),
    sa.Column('revision_iteration', sa.Integer(), nullable=False),
    sa.Column('pending_revision', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('total_items', sa.Integer(), nullable=False),
    sa.Column('resolved_items', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analysis_jobs_campaign_id'), 'analysis_jobs', ['campaign_id'], unique=False)
    op.create_index('ix_analysis_jobs_source', 'analysis_jobs', ['source_table', 'source_id', 'source_field'], unique=False)

    op.create_table('analysis_items',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('phase', sa.String(length=20), nullable=False),
    sa.Column('detection_type', sa.String(length=40), nullable=False),
    sa.Column('matched_text', sa.Text(), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=True),
    sa.Column('suggested_content', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Payload tagged by kind'),
    sa.Column('confidence', sa.Float(), nullable=True),
    sa.Column('position_start', sa.Integer(), nullable=True),
    sa.Column('position_end', sa.Integer(), nullable=True),
    sa.Column('context_snippet', sa.Text(), nullable=True),
    sa.Column('agent_name', sa.String(length=40), nullable=True),
    sa.Column('resolution', sa.String(length=20), nullable=False),
    sa.Column('resolved_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['entity_id'], ['entities.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_analysis_items_job_resolution', 'analysis_items', ['job_id', 'resolution'], unique=False)

    op.create_table('enrichment_leases',
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('run_id', sa.UUID(), nullable=False),
    sa.Column('holder', sa.String(), nullable=False),
    sa.Column('cancelled', sa.Boolean(), nullable=False),
    sa.Column('acquired_at', sa.TIMESTAMP(timezone=True), nullable=False),
    sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('job_id')
    )

    op.create_table('enrichment_failures',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=False),
    sa.Column('agent_name', sa.String(length=40), nullable=False),
    sa.Column('error', sa.Text(), nullable=False),
    sa.Column('retryable', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('job_id', 'entity_id', 'agent_name', name='uq_enrichment_failures_unit')
    )

    op.create_table('enrichment_history',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('source_table', sa.String(length=50), nullable=False),
    sa.Column('source_id', sa.UUID(), nullable=False),
    sa.Column('content_hash', sa.String(length=64), nullable=False),
    sa.Column('enrichment_count', sa.Integer(), nullable=False),
    sa.Column('last_enriched_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('source_table', 'source_id', name='uq_enrichment_history_source')
    )

    op.create_table('content_chunks',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('campaign_id', sa.UUID(), nullable=False),
    sa.Column('source_table', sa.String(length=50), nullable=False),
    sa.Column('source_id', sa.UUID(), nullable=False),
    sa.Column('source_field', sa.String(length=50), nullable=False),
    sa.Column('chunk_index', sa.Integer(), nullable=False),
    sa.Column('chunk_text', sa.Text(), nullable=False),
    sa.Column('embedding', Vector(384), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_content_chunks_campaign_id'), 'content_chunks', ['campaign_id'], unique=False)
    op.create_index('ix_content_chunks_source', 'content_chunks', ['source_table', 'source_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_content_chunks_source', table_name='content_chunks')
    op.drop_index(op.f('ix_content_chunks_campaign_id'), table_name='content_chunks')
    op.drop_table('content_chunks')
    op.drop_table('enrichment_history')
    op.drop_table('enrichment_failures')
    op.drop_table('enrichment_leases')
    op.drop_index('ix_analysis_items_job_resolution', table_name='analysis_items')
    op.drop_table('analysis_items')
    op.drop_index('ix_analysis_jobs_source', table_name='analysis_jobs')
    op.drop_index(op.f('ix_analysis_jobs_campaign_id'), table_name='analysis_jobs')
    op.drop_table('analysis_jobs')
    op.execute(ddl.DROP_RELATIONSHIP_VIEW)
    op.execute(ddl.DROP_INVERSE_GUARD)
    op.drop_index(op.f('ix_relationships_campaign_id'), table_name='relationships')
    op.drop_table('relationships')
    op.drop_index(op.f('ix_relationship_types_campaign_id'), table_name='relationship_types')
    op.drop_table('relationship_types')
    op.drop_index(op.f('ix_entity_logs_entity_id'), table_name='entity_logs')
    op.drop_table('entity_logs')
    op.drop_index(op.f('ix_entities_campaign_id'), table_name='entities')
    op.drop_table('entities')
