"""SQLAlchemy models for the graph store and the analysis pipeline."""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DDL,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from imagineer.core.database import Base
from imagineer.database import ddl

EMBEDDING_DIMENSIONS = 384


# ---------------------------------------------------------------------------
# Graph store
# ---------------------------------------------------------------------------


class Entity(Base):
    """Campaign-scoped actor, place or thing."""

    __tablename__ = "entities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    gm_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    logs: Mapped[list["EntityLog"]] = relationship(
        "EntityLog", back_populates="entity", cascade="all, delete-orphan"
    )


class EntityLog(Base):
    """Chronological event recorded against an entity."""

    __tablename__ = "entity_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("entities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[str | None] = mapped_column(String, nullable=True)  # in-game date text
    job_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    entity: Mapped["Entity"] = relationship("Entity", back_populates="logs")


class RelationshipType(Base):
    """Campaign-scoped relationship verb with its inverse."""

    __tablename__ = "relationship_types"
    __table_args__ = (
        UniqueConstraint("campaign_id", "name", name="uq_relationship_types_campaign_name"),
        CheckConstraint(
            "NOT is_symmetric OR name = inverse_name",
            name="ck_relationship_types_symmetric_inverse_match",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    inverse_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_symmetric: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_label: Mapped[str] = mapped_column(String, nullable=False)
    inverse_display_label: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class Relationship(Base):
    """Single stored edge. Its inverse is derived, never stored."""

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint(
            "campaign_id", "source_entity_id", "target_entity_id", "relationship_type_id",
            name="uq_relationships_source_target_type",
        ),
        CheckConstraint("source_entity_id <> target_entity_id", name="ck_relationships_no_self_edge"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    source_entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    target_entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    relationship_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("relationship_types.id"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    relationship_type: Mapped["RelationshipType"] = relationship("RelationshipType", lazy="joined")


# ---------------------------------------------------------------------------
# Analysis pipeline
# ---------------------------------------------------------------------------


class AnalysisJob(Base):
    """One text field under analysis."""

    __tablename__ = "analysis_jobs"
    __table_args__ = (
        Index("ix_analysis_jobs_source", "source_table", "source_id", "source_field"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    source_table: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source_field: Mapped[str] = mapped_column(String(50), nullable=False)
    game_system_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending | analyzing | enriching | completed | failed
    phases: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    current_phase: Mapped[str | None] = mapped_column(String(20), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision_iteration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_revision: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    items: Mapped[list["AnalysisItem"]] = relationship(
        "AnalysisItem", back_populates="job", cascade="all, delete-orphan"
    )


class AnalysisItem(Base):
    """One candidate finding within a job."""

    __tablename__ = "analysis_items"
    __table_args__ = (
        Index("ix_analysis_items_job_resolution", "job_id", "resolution"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analysis_jobs.id", ondelete="CASCADE"), nullable=False
    )
    phase: Mapped[str] = mapped_column(String(20), nullable=False)
    detection_type: Mapped[str] = mapped_column(String(40), nullable=False)
    matched_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    entity_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("entities.id", ondelete="SET NULL"), nullable=True
    )
    suggested_content: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    position_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    context_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_name: Mapped[str | None] = mapped_column(String(40), nullable=True)
    resolution: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending | accepted | declined
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    job: Mapped["AnalysisJob"] = relationship("AnalysisJob", back_populates="items")


class EnrichmentLease(Base):
    """Job-scoped lock marking an enrichment run as in flight."""

    __tablename__ = "enrichment_leases"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analysis_jobs.id", ondelete="CASCADE"), primary_key=True
    )
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    holder: Mapped[str] = mapped_column(String, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acquired_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)


class EnrichmentFailure(Base):
    """Retryable failure marker for one (entity, sub-agent) unit."""

    __tablename__ = "enrichment_failures"
    __table_args__ = (
        UniqueConstraint("job_id", "entity_id", "agent_name", name="uq_enrichment_failures_unit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analysis_jobs.id", ondelete="CASCADE"), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    agent_name: Mapped[str] = mapped_column(String(40), nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class EnrichmentHistory(Base):
    """Content hash and pass count per enriched source."""

    __tablename__ = "enrichment_history"
    __table_args__ = (
        UniqueConstraint("source_table", "source_id", name="uq_enrichment_history_source"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_table: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    enrichment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_enriched_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class ContentChunk(Base):
    """Embedded passage of campaign content used for retrieval."""

    __tablename__ = "content_chunks"
    __table_args__ = (
        Index("ix_content_chunks_source", "source_table", "source_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    source_table: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source_field: Mapped[str] = mapped_column(String(50), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


# Database-side graph invariants (PostgreSQL only)
event.listen(
    Relationship.__table__,
    "after_create",
    DDL(ddl.INVERSE_GUARD_FUNCTION).execute_if(dialect="postgresql"),
)
event.listen(
    Relationship.__table__,
    "after_create",
    DDL(ddl.INVERSE_GUARD_TRIGGER).execute_if(dialect="postgresql"),
)
event.listen(
    Base.metadata,
    "after_create",
    DDL(ddl.RELATIONSHIP_VIEW).execute_if(dialect="postgresql"),
)
event.listen(
    Base.metadata,
    "before_drop",
    DDL(ddl.DROP_RELATIONSHIP_VIEW).execute_if(dialect="postgresql"),
)
