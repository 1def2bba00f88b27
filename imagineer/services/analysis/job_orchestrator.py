"""Job orchestration for the three-phase content pipeline.

Owns analysis jobs and items: creates jobs and runs identification in the
request, applies the side effects of user resolutions, moves jobs between
phases and records failure reasons. Revision and enrichment run as detached
tasks, each with its own database session.
"""

import os
import socket
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.config import settings
from imagineer.core.database import async_session_maker
from imagineer.core.exceptions import (
    AppError,
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    RelationshipConflictError,
    ValidationError,
)
from imagineer.core.unified_llm import UnifiedLLMClient, get_llm_client
from imagineer.database.models import AnalysisItem, AnalysisJob
from imagineer.repositories.analysis_repository import AnalysisItemRepository, AnalysisJobRepository
from imagineer.repositories.content_chunk_repository import ContentChunkRepository
from imagineer.repositories.enrichment_repository import (
    EnrichmentFailureRepository,
    EnrichmentHistoryRepository,
    EnrichmentLeaseRepository,
)
from imagineer.schemas.analysis import (
    IDENTIFICATION_TYPES,
    PHASE_ORDER,
    AnalysisJobResponse,
    DetectionType,
    JobStatus,
    NewEntityProposal,
    Phase,
    PhaseCounts,
    ReferencePayload,
    Resolution,
    ResolveOverride,
    RevisionDraft,
    dump_payload,
    parse_payload,
)
from imagineer.services.analysis.background import BackgroundTaskRegistry, task_registry
from imagineer.services.base_service import BaseService
from imagineer.services.campaign.contracts import CampaignStore, EntityRecord, validate_source
from imagineer.services.campaign.sql_store import SqlCampaignStore
from imagineer.services.context.context_assembler import ContentIndexer, ContextAssembler
from imagineer.services.enrichment.engine import EnrichmentEngine, EnrichmentOutcome
from imagineer.services.enrichment.parser import normalize_entity_type
from imagineer.services.graph.relationship_service import RelationshipService
from imagineer.services.identification.engine import identify
from imagineer.services.identification.text_fixes import (
    apply_reference,
    original_text,
    replacement_token,
    revert_reference,
)
from imagineer.services.revision.revision_service import RevisionService
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

PHASE_STATUS = {
    Phase.IDENTIFICATION: JobStatus.PENDING,
    Phase.ANALYSIS: JobStatus.ANALYZING,
    Phase.ENRICHMENT: JobStatus.ENRICHING,
}

LEASE_HOLDER = f"{socket.gethostname()}:{os.getpid()}"


def failure_reason(error: Exception, phase: Phase) -> str:
    """Human-readable job failure reason; quota exhaustion reads differently."""
    if isinstance(error, QuotaExceededError):
        return (
            f"LLM quota exhausted for {error.provider}: {error.message}. "
            "Please check your plan and billing details."
        )
    message = error.message if isinstance(error, AppError) else str(error)
    return f"{phase.value.capitalize()} failed: {message}"


def order_phases(phases: Sequence) -> List[Phase]:
    selected = {Phase(p) for p in phases}
    return [p for p in PHASE_ORDER if p in selected]


def review_order(items: Sequence[AnalysisItem]) -> List[AnalysisItem]:
    """Relationship suggestions needing a new type come first, otherwise stable."""
    def needs_new_type(item: AnalysisItem) -> bool:
        payload = item.suggested_content or {}
        return (
            item.detection_type == DetectionType.RELATIONSHIP_SUGGESTION.value
            and bool(payload.get("new_type_needed"))
        )

    return sorted(items, key=lambda i: 0 if needs_new_type(i) else 1)


class JobOrchestrator(BaseService):
    """Service behind the analysis API.

    Request-scoped: one instance per session. Background runs build their
    own instance around a fresh session from ``session_factory``.
    """

    def __init__(
        self,
        session: AsyncSession,
        llm_client: Optional[UnifiedLLMClient] = None,
        store_factory: Callable[[AsyncSession], CampaignStore] = SqlCampaignStore,
        registry: Optional[BackgroundTaskRegistry] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        super().__init__()
        self.session = session
        self.job_repository = AnalysisJobRepository(session)
        self.item_repository = AnalysisItemRepository(session)
        self.lease_repository = EnrichmentLeaseRepository(session)
        self.failure_repository = EnrichmentFailureRepository(session)
        self.history_repository = EnrichmentHistoryRepository(session)
        self.relationship_service = RelationshipService(session)
        self.store_factory = store_factory
        self.store = store_factory(session)
        self.indexer = ContentIndexer(ContentChunkRepository(session))
        self.registry = registry or task_registry
        self.session_factory = session_factory or async_session_maker
        self._llm_client = llm_client

    @property
    def llm_client(self) -> UnifiedLLMClient:
        if self._llm_client is None:
            self._llm_client = get_llm_client()
        return self._llm_client

    def validate(self, *args, **kwargs):
        if kwargs.get("action") == "create_job":
            validate_source(kwargs["source_table"], kwargs["source_field"])
            if not order_phases(kwargs.get("phases") or PHASE_ORDER):
                raise ValidationError("At least one phase must be selected")

    async def run(self, *args, **kwargs) -> Any:
        action = kwargs.pop("action", None)
        if action == "create_job":
            return await self._create_job(**kwargs)
        if action == "apply_revision":
            return await self._apply_revision(**kwargs)
        raise ValidationError(f"Unknown action: {action}")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        campaign_id: UUID,
        source_table: str,
        source_id: UUID,
        source_field: str,
        phases: Optional[Sequence[Phase]] = None,
        game_system_code: Optional[str] = None,
    ) -> AnalysisJob:
        """Create a job for one text field and run identification on it.

        Raises:
            ValidationError: If the source is not an analysable field
            NotFoundError: If the source row does not exist
        """
        return await self.execute(
            action="create_job",
            campaign_id=campaign_id,
            source_table=source_table,
            source_id=source_id,
            source_field=source_field,
            phases=phases,
            game_system_code=game_system_code,
        )

    async def _create_job(
        self,
        campaign_id: UUID,
        source_table: str,
        source_id: UUID,
        source_field: str,
        phases: Optional[Sequence[Phase]] = None,
        game_system_code: Optional[str] = None,
    ) -> AnalysisJob:
        selected = order_phases(phases or PHASE_ORDER)
        content = await self.store.get_content(source_table, source_id, source_field)
        await self.relationship_service.seed_relationship_types(campaign_id)

        job = await self.job_repository.create(
            campaign_id=campaign_id,
            source_table=source_table,
            source_id=source_id,
            source_field=source_field,
            game_system_code=game_system_code,
            status=PHASE_STATUS[selected[0]].value,
            phases=[p.value for p in selected],
            current_phase=selected[0].value,
        )
        LOGGER.info(
            "Analysis job created",
            extra={
                "job_id": str(job.id),
                "source_table": source_table,
                "source_id": str(source_id),
                "phases": job.phases,
            },
        )

        if Phase.IDENTIFICATION in selected:
            await self._run_identification(job, content)
        await self.indexer.index_source(campaign_id, source_table, source_id, source_field, content)
        await self._refresh_counts(job)
        return job

    async def get_job(self, job_id: UUID) -> AnalysisJobResponse:
        job = await self._get_job(job_id)
        counts = await self.item_repository.counts_by_phase(job.id)
        response = AnalysisJobResponse.model_validate(job)
        response.counts_by_phase = {
            phase: PhaseCounts(total=total, resolved=resolved)
            for phase, (total, resolved) in counts.items()
        }
        response.enrichment_in_flight = await self.lease_repository.is_active(job.id)
        return response

    async def list_items(self, job_id: UUID, resolution: Optional[Resolution] = None) -> List[AnalysisItem]:
        await self._get_job(job_id)
        items = await self.item_repository.list_for_job(
            job_id, resolution=resolution.value if resolution else None
        )
        return review_order(items)

    async def advance_phase(self, job_id: UUID) -> AnalysisJob:
        """Move to the next selected phase, or complete the job after the last.

        Raises:
            ConflictError: If the job is already completed or failed
        """
        job = await self._get_job(job_id)
        if job.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
            raise ConflictError(f"Job {job_id} is {job.status} and cannot advance")

        phases = order_phases(job.phases)
        current = Phase(job.current_phase) if job.current_phase else None
        index = phases.index(current) if current in phases else -1
        if index + 1 < len(phases):
            next_phase = phases[index + 1]
            job.current_phase = next_phase.value
            job.status = PHASE_STATUS[next_phase].value
        else:
            job.status = JobStatus.COMPLETED.value
        await self.job_repository.save(job)
        LOGGER.info(
            "Job advanced",
            extra={"job_id": str(job.id), "current_phase": job.current_phase, "status": job.status},
        )
        return job

    async def mark_failed(self, job_id: UUID, reason: str) -> AnalysisJob:
        job = await self._get_job(job_id)
        job.status = JobStatus.FAILED.value
        job.failure_reason = reason
        await self.job_repository.save(job)
        LOGGER.warning("Job marked failed", extra={"job_id": str(job.id), "reason": reason})
        return job

    async def get_pending_count(self, source_table: str, source_id: UUID) -> int:
        return await self.item_repository.count_pending_for_source(source_table, source_id)

    async def list_enrichment_failures(self, job_id: UUID):
        await self._get_job(job_id)
        return await self.failure_repository.list_for_job(job_id)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def resolve_item(
        self,
        item_id: UUID,
        resolution: Resolution,
        override: Optional[ResolveOverride] = None,
    ) -> AnalysisItem:
        """Accept, decline or revert an item.

        Resolving an already-resolved item returns it unchanged and applies
        no side effects.

        Raises:
            NotFoundError: If the item or its job does not exist
            ValidationError: If an accepted fix no longer fits the content
        """
        resolution = Resolution(resolution)
        if resolution == Resolution.REVERTED:
            return await self.revert_item(item_id)

        item = await self._get_item(item_id)
        if item.resolution != Resolution.PENDING.value:
            return item
        if resolution == Resolution.PENDING:
            raise ValidationError("Use 'reverted' to return an item to pending")

        job = await self._get_job(item.job_id)
        if resolution == Resolution.ACCEPTED:
            await self._apply_acceptance(job, item, override)

        item = await self.item_repository.set_resolution(item, resolution.value)
        await self._refresh_counts(job)
        LOGGER.info(
            "Item resolved",
            extra={
                "job_id": str(job.id),
                "item_id": str(item.id),
                "detection_type": item.detection_type,
                "resolution": item.resolution,
            },
        )
        return item

    async def revert_item(self, item_id: UUID) -> AnalysisItem:
        """Return an item to pending.

        A source-text rewrite is undone. Entities, logs and edges created on
        acceptance are kept.
        """
        item = await self._get_item(item_id)
        if item.resolution == Resolution.PENDING.value:
            return item

        job = await self._get_job(item.job_id)
        if item.resolution == Resolution.ACCEPTED.value and self._rewrote_text(item):
            payload = parse_payload(item.suggested_content) or ReferencePayload()
            plain = original_text(
                DetectionType(item.detection_type), item.matched_text, payload.display_text
            )
            content = await self.store.get_content(job.source_table, job.source_id, job.source_field)
            edit = revert_reference(content, item.position_start or 0, plain)
            await self.store.write_content(job.source_table, job.source_id, job.source_field, edit.content)
            item.position_start = edit.start
            item.position_end = edit.start + edit.new_length
            await self.item_repository.shift_positions(
                job.id, item.id, edit.start + edit.old_length, edit.delta
            )

        item = await self.item_repository.set_resolution(item, Resolution.PENDING.value)
        await self._refresh_counts(job)
        LOGGER.info("Item reverted", extra={"job_id": str(job.id), "item_id": str(item.id)})
        return item

    async def batch_resolve(
        self, job_id: UUID, detection_type: DetectionType, resolution: Resolution
    ) -> Dict[str, int]:
        """Resolve every pending item of one detection type.

        Text fixes go from the end of the content backwards so earlier
        offsets stay valid. An item that fails is logged and skipped.
        """
        job = await self._get_job(job_id)
        items = await self.item_repository.list_for_job(
            job.id,
            resolution=Resolution.PENDING.value,
            detection_type=DetectionType(detection_type).value,
        )
        items.sort(key=lambda i: i.position_start if i.position_start is not None else -1, reverse=True)

        resolved = 0
        skipped = 0
        for item in items:
            try:
                await self.resolve_item(item.id, resolution)
                resolved += 1
            except AppError as e:
                skipped += 1
                LOGGER.warning(
                    f"Batch resolve skipped item: {e.message}",
                    extra={"job_id": str(job.id), "item_id": str(item.id)},
                )
        return {"resolved": resolved, "skipped": skipped}

    # ------------------------------------------------------------------
    # Revision
    # ------------------------------------------------------------------

    async def trigger_revision(self, job_id: UUID) -> AnalysisJob:
        """Start generating a revision draft in the background."""
        job = await self._get_job(job_id)
        if Phase.ANALYSIS.value not in job.phases:
            raise ValidationError("The analysis phase was not selected for this job")
        self._spawn(job.id, "revision", lambda worker: worker.generate_revision(job_id))
        return job

    async def generate_revision(self, job_id: UUID) -> Optional[RevisionDraft]:
        """Produce and store a revision draft; failures mark the job failed."""
        job = await self._get_job(job_id)
        try:
            content = await self.store.get_content(job.source_table, job.source_id, job.source_field)
            accepted = await self.item_repository.list_for_job(
                job.id, resolution=Resolution.ACCEPTED.value
            )
            entity_names = await self._linked_entity_names(job.campaign_id, accepted)
            service = RevisionService(self.llm_client, ContextAssembler(self.store))
            result = await service.generate_revision(
                job.campaign_id, content, accepted, entity_names, job.game_system_code
            )
        except Exception as e:
            await self.session.rollback()
            LOGGER.error(f"Revision failed: {e}", exc_info=True, extra={"job_id": str(job_id)})
            await self.mark_failed(job_id, failure_reason(e, Phase.ANALYSIS))
            return None

        draft = RevisionDraft(
            revised_content=result.revised_content,
            summary=result.summary,
            iteration=job.revision_iteration + 1,
            generated_at=datetime.now(timezone.utc),
        )
        job.pending_revision = draft.model_dump(mode="json")
        await self.job_repository.save(job)
        LOGGER.info(
            "Revision draft stored",
            extra={"job_id": str(job.id), "iteration": draft.iteration, "llm_called": result.llm_called},
        )
        return draft

    async def apply_revision(self, job_id: UUID, final_text: str) -> AnalysisJob:
        """Write the user's final text and re-run identification on it."""
        return await self.execute(action="apply_revision", job_id=job_id, final_text=final_text)

    async def _apply_revision(self, job_id: UUID, final_text: str) -> AnalysisJob:
        job = await self._get_job(job_id)
        await self.store.write_content(job.source_table, job.source_id, job.source_field, final_text)
        job.revision_iteration += 1
        job.pending_revision = None
        await self.job_repository.save(job)

        await self.indexer.index_source(
            job.campaign_id, job.source_table, job.source_id, job.source_field, final_text
        )
        await self._run_identification(job, final_text)
        await self._refresh_counts(job)
        LOGGER.info(
            "Revision applied",
            extra={"job_id": str(job.id), "iteration": job.revision_iteration},
        )
        return job

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def trigger_enrichment(self, job_id: UUID, force: bool = False) -> AnalysisJob:
        """Take the job's lease and start an enrichment run.

        Raises:
            EnrichmentInProgressError: If a live lease already exists
        """
        return await self._start_enrichment(job_id, force=force, retry=False)

    async def retry_enrichment_failures(self, job_id: UUID) -> AnalysisJob:
        """Re-run only the (entity, agent) units recorded as failed."""
        failures = await self.failure_repository.list_for_job(job_id)
        if not failures:
            raise ValidationError(f"Job {job_id} has no enrichment failures to retry")
        return await self._start_enrichment(job_id, force=True, retry=True)

    async def _start_enrichment(self, job_id: UUID, force: bool, retry: bool) -> AnalysisJob:
        job = await self._get_job(job_id)
        if Phase.ENRICHMENT.value not in job.phases:
            raise ValidationError("The enrichment phase was not selected for this job")

        run_id = uuid4()
        await self.lease_repository.acquire(
            job.id, run_id, LEASE_HOLDER, settings.pipeline.enrichment_lease_ttl_seconds
        )
        job.status = JobStatus.ENRICHING.value
        job.current_phase = Phase.ENRICHMENT.value
        job.failure_reason = None
        await self.job_repository.save(job)

        try:
            self._spawn(
                job.id,
                "enrichment",
                lambda worker: worker.run_enrichment(job_id, run_id, force=force, retry=retry),
            )
        except ConflictError:
            await self.lease_repository.release(job.id, run_id)
            raise
        LOGGER.info(
            "Enrichment triggered",
            extra={"job_id": str(job.id), "run_id": str(run_id), "force": force, "retry": retry},
        )
        return job

    async def run_enrichment(
        self, job_id: UUID, run_id: UUID, force: bool = False, retry: bool = False
    ) -> Optional[EnrichmentOutcome]:
        """Body of a background enrichment run. Always releases the lease."""
        job = await self._get_job(job_id)
        try:
            content = await self.store.get_content(job.source_table, job.source_id, job.source_field)
            engine = self._enrichment_engine()
            if retry:
                outcome = await engine.retry_failures(job, content, run_id)
            else:
                outcome = await engine.run(job, content, run_id, force=force)
            if not outcome.cancelled:
                job.status = JobStatus.COMPLETED.value
                await self.job_repository.save(job)
            await self._refresh_counts(job)
            return outcome
        except Exception as e:
            await self.session.rollback()
            LOGGER.error(f"Enrichment failed: {e}", exc_info=True, extra={"job_id": str(job_id)})
            await self.mark_failed(job_id, failure_reason(e, Phase.ENRICHMENT))
            return None
        finally:
            await self.lease_repository.release(job_id, run_id)

    async def cancel_enrichment(self, job_id: UUID) -> AnalysisJob:
        """Stop the job's enrichment run. Persisted items are kept.

        Raises:
            ConflictError: If the job is not enriching
        """
        job = await self._get_job(job_id)
        if job.status != JobStatus.ENRICHING.value:
            raise ConflictError(f"Job {job_id} is not enriching")
        await self.lease_repository.cancel(job.id)
        self.registry.cancel(job.id)
        job.status = JobStatus.COMPLETED.value
        await self.job_repository.save(job)
        LOGGER.info("Enrichment cancelled", extra={"job_id": str(job.id)})
        return job

    def _enrichment_engine(self) -> EnrichmentEngine:
        return EnrichmentEngine(
            llm_client=self.llm_client,
            store=self.store,
            assembler=ContextAssembler(self.store),
            relationship_service=self.relationship_service,
            item_repository=self.item_repository,
            failure_repository=self.failure_repository,
            lease_repository=self.lease_repository,
            history_repository=self.history_repository,
        )

    def _spawn(self, job_id: UUID, kind: str, work: Callable[["JobOrchestrator"], Any]) -> None:
        async def runner():
            async with self.session_factory() as session:
                worker = JobOrchestrator(
                    session,
                    llm_client=self._llm_client,
                    store_factory=self.store_factory,
                    registry=self.registry,
                    session_factory=self.session_factory,
                )
                await work(worker)

        self.registry.start(job_id, kind, runner())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_job(self, job_id: UUID) -> AnalysisJob:
        job = await self.job_repository.get_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Analysis job {job_id} not found")
        return job

    async def _get_item(self, item_id: UUID) -> AnalysisItem:
        item = await self.item_repository.get_by_id(item_id)
        if item is None:
            raise NotFoundError(f"Analysis item {item_id} not found")
        return item

    async def _refresh_counts(self, job: AnalysisJob) -> None:
        counts = await self.item_repository.counts_by_phase(job.id)
        job.total_items = sum(total for total, _ in counts.values())
        job.resolved_items = sum(resolved for _, resolved in counts.values())
        await self.job_repository.save(job)

    async def _run_identification(self, job: AnalysisJob, content: str) -> int:
        """Replace the job's pending identification items with a fresh scan."""
        await self.item_repository.delete_pending(job.id, Phase.IDENTIFICATION.value)
        resolved = await self.item_repository.resolved_references(job.id)
        entities = await self.store.list_entities(job.campaign_id)
        spans = identify(content, entities, resolved)
        await self.item_repository.bulk_create(span.to_item_row(job.id) for span in spans)
        LOGGER.info(
            "Identification finished",
            extra={"job_id": str(job.id), "items": len(spans), "entities": len(entities)},
        )
        return len(spans)

    async def _linked_entity_names(self, campaign_id: UUID, items: Sequence[AnalysisItem]) -> List[str]:
        names = []
        for entity_id in {i.entity_id for i in items if i.entity_id is not None}:
            entity = await self.store.get_entity(campaign_id, entity_id)
            if entity is not None:
                names.append(entity.name)
        return sorted(names)

    @staticmethod
    def _rewrote_text(item: AnalysisItem) -> bool:
        return (
            item.phase == Phase.IDENTIFICATION.value
            and item.detection_type != DetectionType.WIKI_LINK_RESOLVED.value
        )

    async def _apply_acceptance(
        self, job: AnalysisJob, item: AnalysisItem, override: Optional[ResolveOverride]
    ) -> None:
        detection_type = DetectionType(item.detection_type)
        if detection_type in IDENTIFICATION_TYPES:
            await self._accept_reference(job, item, detection_type, override)
        elif detection_type == DetectionType.DESCRIPTION_UPDATE:
            await self._accept_description(job, item, override)
        elif detection_type == DetectionType.LOG_ENTRY:
            await self._accept_log_entry(job, item, override)
        elif detection_type == DetectionType.RELATIONSHIP_SUGGESTION:
            await self._accept_relationship(job, item, override)
        elif detection_type == DetectionType.NEW_ENTITY_SUGGESTION:
            await self._accept_new_entity(job, item, override)
        # graph_warning: acknowledgement only

    async def _reference_target(
        self,
        job: AnalysisJob,
        item: AnalysisItem,
        detection_type: DetectionType,
        payload: ReferencePayload,
        override: Optional[ResolveOverride],
    ) -> Tuple[Optional[EntityRecord], Optional[NewEntityProposal]]:
        """Existing entity to link, or the proposal for one to create."""
        if override and override.entity_id:
            entity = await self.store.get_entity(job.campaign_id, override.entity_id)
            if entity is None:
                raise NotFoundError(f"Entity {override.entity_id} not found")
            return entity, None
        if override and override.new_entity:
            return None, override.new_entity
        if item.entity_id:
            entity = await self.store.get_entity(job.campaign_id, item.entity_id)
            if entity is not None:
                return entity, None
        if payload.new_entity:
            return None, payload.new_entity
        if detection_type == DetectionType.WIKI_LINK_UNRESOLVED:
            return None, NewEntityProposal(name=item.matched_text.strip())
        raise ValidationError(f"Item {item.id} has no entity to link")

    async def _accept_reference(
        self,
        job: AnalysisJob,
        item: AnalysisItem,
        detection_type: DetectionType,
        override: Optional[ResolveOverride],
    ) -> None:
        if detection_type == DetectionType.WIKI_LINK_RESOLVED and not (override and override.entity_id):
            return

        payload = parse_payload(item.suggested_content) or ReferencePayload()
        entity, proposal = await self._reference_target(job, item, detection_type, payload, override)
        target_name = entity.name if entity else proposal.name

        content = await self.store.get_content(job.source_table, job.source_id, job.source_field)
        edit = apply_reference(
            content,
            item.position_start or 0,
            item.position_end or 0,
            original_text(detection_type, item.matched_text, payload.display_text),
            replacement_token(detection_type, item.matched_text, target_name, payload.display_text),
        )

        if entity is None:
            entity = await self.store.create_entity(
                job.campaign_id,
                proposal.name,
                normalize_entity_type(proposal.entity_type),
                proposal.description,
            )
            payload.new_entity = proposal
            item.suggested_content = dump_payload(payload)

        await self.store.write_content(job.source_table, job.source_id, job.source_field, edit.content)
        item.entity_id = entity.id
        item.position_start = edit.start
        item.position_end = edit.start + edit.new_length
        await self.item_repository.shift_positions(
            job.id, item.id, edit.start + edit.old_length, edit.delta
        )

    async def _accept_description(
        self, job: AnalysisJob, item: AnalysisItem, override: Optional[ResolveOverride]
    ) -> None:
        payload = parse_payload(item.suggested_content)
        text = (override.suggested_description if override else None) or payload.suggested_description
        await self.store.update_entity_description(job.campaign_id, item.entity_id, text)
        if text != payload.suggested_description:
            payload.suggested_description = text
            item.suggested_content = dump_payload(payload)

    async def _accept_log_entry(
        self, job: AnalysisJob, item: AnalysisItem, override: Optional[ResolveOverride]
    ) -> None:
        payload = parse_payload(item.suggested_content)
        if payload.created_log_id is not None:
            LOGGER.info(
                "Log entry already recorded",
                extra={"job_id": str(job.id), "item_id": str(item.id)},
            )
            return
        text = (override.log_content if override else None) or payload.content
        payload.created_log_id = await self.store.create_entity_log(
            job.campaign_id, item.entity_id, text, payload.occurred_at, job.id
        )
        item.suggested_content = dump_payload(payload)

    async def _accept_relationship(
        self, job: AnalysisJob, item: AnalysisItem, override: Optional[ResolveOverride]
    ) -> None:
        payload = parse_payload(item.suggested_content)
        type_name = (override.relationship_type if override else None) or payload.relationship_type

        if await self.relationship_service.resolve(job.campaign_id, type_name) is None:
            if not payload.new_type_needed and not (override and override.relationship_type):
                raise ValidationError(f"Unknown relationship type '{type_name}'")
            await self.relationship_service.create_type(
                job.campaign_id,
                type_name,
                inverse_name=override.inverse_relationship_type if override else None,
            )

        try:
            edge, resolved = await self.relationship_service.add_relationship(
                job.campaign_id,
                payload.source_entity_id,
                payload.target_entity_id,
                type_name,
                payload.description,
            )
            payload.relationship_id = edge.id
            payload.relationship_type = resolved.type.name
        except RelationshipConflictError as e:
            LOGGER.info(
                "Relationship suggestion already satisfied",
                extra={"job_id": str(job.id), "item_id": str(item.id), "detail": e.message},
            )
            payload.already_satisfied = True
        item.suggested_content = dump_payload(payload)

    async def _accept_new_entity(
        self, job: AnalysisJob, item: AnalysisItem, override: Optional[ResolveOverride]
    ) -> None:
        payload = parse_payload(item.suggested_content)
        proposal = override.new_entity if override and override.new_entity else None
        if proposal is None and payload.created_entity_id is not None:
            # Accepted before and reverted: link the entity made then
            if await self.store.get_entity(job.campaign_id, payload.created_entity_id) is not None:
                item.entity_id = payload.created_entity_id
                return
        entity = await self.store.create_entity(
            job.campaign_id,
            proposal.name if proposal else payload.name,
            normalize_entity_type(proposal.entity_type if proposal else payload.entity_type),
            (proposal.description if proposal else None) or payload.description,
        )
        item.entity_id = entity.id
        payload.created_entity_id = entity.id
        item.suggested_content = dump_payload(payload)
