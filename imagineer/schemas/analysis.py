"""Pydantic schemas for analysis jobs, items and their suggestion payloads."""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Phase(str, Enum):
    IDENTIFICATION = "identification"
    ANALYSIS = "analysis"
    ENRICHMENT = "enrichment"


PHASE_ORDER = [Phase.IDENTIFICATION, Phase.ANALYSIS, Phase.ENRICHMENT]


class JobStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    ENRICHING = "enriching"
    COMPLETED = "completed"
    FAILED = "failed"


class Resolution(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    # Accepted as input only: reverting returns an item to pending
    REVERTED = "reverted"


class DetectionType(str, Enum):
    WIKI_LINK_RESOLVED = "wiki_link_resolved"
    WIKI_LINK_UNRESOLVED = "wiki_link_unresolved"
    UNTAGGED_MENTION = "untagged_mention"
    MISSPELLING = "misspelling"
    POTENTIAL_ALIAS = "potential_alias"
    DESCRIPTION_UPDATE = "description_update"
    LOG_ENTRY = "log_entry"
    RELATIONSHIP_SUGGESTION = "relationship_suggestion"
    NEW_ENTITY_SUGGESTION = "new_entity_suggestion"
    GRAPH_WARNING = "graph_warning"


IDENTIFICATION_TYPES = frozenset({
    DetectionType.WIKI_LINK_RESOLVED,
    DetectionType.WIKI_LINK_UNRESOLVED,
    DetectionType.UNTAGGED_MENTION,
    DetectionType.MISSPELLING,
    DetectionType.POTENTIAL_ALIAS,
})

ALLOWED_ENTITY_TYPES = (
    "npc", "location", "item", "faction", "clue",
    "creature", "organization", "event", "document", "other",
)


# ---------------------------------------------------------------------------
# Suggestion payloads (tagged by `kind`, which mirrors the detection type)
# ---------------------------------------------------------------------------


class NewEntityProposal(BaseModel):
    name: str
    entity_type: str = "other"
    description: Optional[str] = None
    reasoning: Optional[str] = None


class ReferencePayload(BaseModel):
    """Identification finding: a span that refers (or may refer) to an entity."""
    kind: Literal["reference"] = "reference"
    entity_name: Optional[str] = None
    display_text: Optional[str] = None
    edit_distance: Optional[int] = None
    new_entity: Optional[NewEntityProposal] = None


class DescriptionUpdatePayload(BaseModel):
    kind: Literal["description_update"] = "description_update"
    entity_name: str
    current_description: Optional[str] = None
    suggested_description: str
    rationale: Optional[str] = None


class LogEntryPayload(BaseModel):
    kind: Literal["log_entry"] = "log_entry"
    entity_name: str
    content: str
    occurred_at: Optional[str] = None
    created_log_id: Optional[UUID] = None


class RelationshipSuggestionPayload(BaseModel):
    kind: Literal["relationship_suggestion"] = "relationship_suggestion"
    source_entity_id: UUID
    source_entity_name: str
    target_entity_id: UUID
    target_entity_name: str
    relationship_type: str
    description: Optional[str] = None
    new_type_needed: bool = False
    mapped_from: Optional[str] = None
    already_satisfied: bool = False
    relationship_id: Optional[UUID] = None


class NewEntitySuggestionPayload(BaseModel):
    kind: Literal["new_entity_suggestion"] = "new_entity_suggestion"
    name: str
    entity_type: str = "other"
    description: Optional[str] = None
    reasoning: Optional[str] = None
    created_entity_id: Optional[UUID] = None


class GraphWarningPayload(BaseModel):
    kind: Literal["graph_warning"] = "graph_warning"
    warning: Literal["orphan", "redundant_edge", "type_pair", "cardinality", "missing_required"]
    entity_ids: List[UUID] = Field(default_factory=list)
    entity_names: List[str] = Field(default_factory=list)
    relationship_ids: List[UUID] = Field(default_factory=list)
    relationship_types: List[str] = Field(default_factory=list)
    detail: str = ""


SuggestionPayload = Annotated[
    Union[
        ReferencePayload,
        DescriptionUpdatePayload,
        LogEntryPayload,
        RelationshipSuggestionPayload,
        NewEntitySuggestionPayload,
        GraphWarningPayload,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER = TypeAdapter(SuggestionPayload)


def parse_payload(data: Optional[dict]):
    """Load a stored JSONB payload into its typed variant (None stays None)."""
    if data is None:
        return None
    return _PAYLOAD_ADAPTER.validate_python(data)


def dump_payload(payload) -> Optional[dict]:
    if payload is None:
        return None
    return payload.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class SourceRef(BaseModel):
    table: str
    id: UUID
    field: str


class CreateJobRequest(BaseModel):
    campaign_id: UUID
    source: SourceRef
    phases: List[Phase] = Field(default_factory=lambda: list(PHASE_ORDER))
    game_system_code: Optional[str] = None


class ResolveOverride(BaseModel):
    """Optional user corrections applied when accepting an item."""
    entity_id: Optional[UUID] = None
    new_entity: Optional[NewEntityProposal] = None
    relationship_type: Optional[str] = None
    inverse_relationship_type: Optional[str] = None
    suggested_description: Optional[str] = None
    log_content: Optional[str] = None


class ResolveItemRequest(BaseModel):
    resolution: Resolution
    override: Optional[ResolveOverride] = None


class BatchResolveRequest(BaseModel):
    detection_type: DetectionType
    resolution: Literal[Resolution.ACCEPTED, Resolution.DECLINED]


class ApplyRevisionRequest(BaseModel):
    final_text: str


class TriggerEnrichmentRequest(BaseModel):
    force: bool = False


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class PhaseCounts(BaseModel):
    total: int = 0
    resolved: int = 0


class AnalysisJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    campaign_id: UUID
    source_table: str
    source_id: UUID
    source_field: str
    status: JobStatus
    phases: List[Phase]
    current_phase: Optional[Phase] = None
    failure_reason: Optional[str] = None
    revision_iteration: int = 0
    pending_revision: Optional[dict] = None
    total_items: int = 0
    resolved_items: int = 0
    counts_by_phase: dict[str, PhaseCounts] = Field(default_factory=dict)
    enrichment_in_flight: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    phase: Phase
    detection_type: DetectionType
    matched_text: str
    entity_id: Optional[UUID] = None
    suggested_content: Optional[SuggestionPayload] = None
    confidence: Optional[float] = None
    position_start: Optional[int] = None
    position_end: Optional[int] = None
    context_snippet: Optional[str] = None
    agent_name: Optional[str] = None
    resolution: Resolution
    resolved_at: Optional[datetime] = None


class EnrichmentFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_id: UUID
    agent_name: str
    error: str
    retryable: bool


class RevisionDraft(BaseModel):
    revised_content: str
    summary: str
    iteration: int
    generated_at: datetime


class PendingCountResponse(BaseModel):
    source_table: str
    source_id: UUID
    pending: int


class TaskAcceptedResponse(BaseModel):
    job_id: UUID
    status: str
    message: str
