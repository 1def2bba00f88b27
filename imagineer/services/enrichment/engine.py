"""Phase 3: two-pass enrichment of the entities a piece of content talks about.

Pass 1 is one cheap checklist call over the whole content. Pass 2 fans out
one call per (entity, sub-agent) unit, bounded by a semaphore. Units fail
independently: a provider error is recorded against that unit and the run
carries on, except quota exhaustion, which stops the run.

Only the consumer loop touches the database, one result at a time, so the
workers never share the session.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from imagineer.core.config import settings
from imagineer.core.exceptions import QuotaExceededError
from imagineer.core.unified_llm import UnifiedLLMClient
from imagineer.prompts.enrichment_prompts import SCAN_SYSTEM_PROMPT, build_scan_prompt
from imagineer.schemas.analysis import DetectionType, Phase, Resolution, dump_payload, parse_payload
from imagineer.services.campaign.contracts import CampaignStore
from imagineer.services.context.context_assembler import ContextAssembler, load_game_system_schema
from imagineer.services.enrichment.agents import (
    AGENT_MAX_TOKENS,
    AGENT_NAMES,
    AgentContext,
    SuggestionDraft,
    build_agents,
    new_entity_draft,
)
from imagineer.services.enrichment.parser import ScanResult, ScanTarget, parse_scan_response
from imagineer.services.graph.health import GraphRules, check_graph_health
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

SCAN_TEMPERATURE = 0.2


@dataclass
class UnitFailure:
    entity_id: UUID
    agent_name: str
    error: str


@dataclass
class EnrichmentOutcome:
    items_saved: int = 0
    failures: List[UnitFailure] = field(default_factory=list)
    cancelled: bool = False
    skipped_reason: Optional[str] = None
    targets: List[UUID] = field(default_factory=list)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def mentioned_entities(content: str, entities: Sequence) -> List:
    lowered = content.lower()
    return [e for e in entities if e.name and e.name.lower() in lowered]


def suggestion_key(detection_type: str, entity_id, payload: dict) -> Tuple:
    """Identity of a suggestion, used to drop repeats within and across runs."""
    if detection_type == DetectionType.DESCRIPTION_UPDATE.value:
        return (detection_type, str(entity_id))
    if detection_type == DetectionType.LOG_ENTRY.value:
        return (detection_type, str(entity_id), payload.get("content", "").lower())
    if detection_type == DetectionType.RELATIONSHIP_SUGGESTION.value:
        pair = frozenset((str(payload.get("source_entity_id")), str(payload.get("target_entity_id"))))
        return (detection_type, pair, payload.get("relationship_type"))
    if detection_type == DetectionType.NEW_ENTITY_SUGGESTION.value:
        return (detection_type, payload.get("name", "").lower())
    return (detection_type, str(entity_id), repr(sorted(payload.items())))


class EnrichmentEngine:
    """Runs Pass 1, Pass 2 and the graph-health check for one job."""

    def __init__(
        self,
        llm_client: UnifiedLLMClient,
        store: CampaignStore,
        assembler: ContextAssembler,
        relationship_service,
        item_repository,
        failure_repository,
        lease_repository,
        history_repository,
        concurrency: Optional[int] = None,
        max_chars: Optional[int] = None,
        max_passes: Optional[int] = None,
        agents: Optional[dict] = None,
    ):
        self.llm_client = llm_client
        self.store = store
        self.assembler = assembler
        self.relationship_service = relationship_service
        self.item_repository = item_repository
        self.failure_repository = failure_repository
        self.lease_repository = lease_repository
        self.history_repository = history_repository
        self.concurrency = concurrency or settings.pipeline.enrichment_concurrency
        self.max_chars = max_chars or settings.pipeline.enrichment_content_max_chars
        self.max_passes = max_passes or settings.pipeline.max_enrichment_passes
        self.agents = agents if agents is not None else build_agents(llm_client)

    async def run(self, job, content: str, run_id: UUID, force: bool = False) -> EnrichmentOutcome:
        """Full enrichment pass over ``content``.

        Raises:
            QuotaExceededError: If the provider reports exhausted quota
        """
        outcome = EnrichmentOutcome()
        digest = content_hash(content)
        history = await self.history_repository.get_for_source(job.source_table, job.source_id)
        if history is not None:
            if history.enrichment_count >= self.max_passes:
                outcome.skipped_reason = "pass_limit"
            elif not force and history.content_hash == digest:
                outcome.skipped_reason = "unchanged"
        if outcome.skipped_reason:
            LOGGER.info(
                "Enrichment skipped",
                extra={"job_id": str(job.id), "reason": outcome.skipped_reason},
            )
            return outcome

        entities = await self.store.list_entities(job.campaign_id)
        scan = await self._scan(job, content, entities)
        targets = [t.entity for t in scan.targets]
        outcome.targets = [e.id for e in targets]

        await self.item_repository.delete_pending(job.id, Phase.ENRICHMENT.value)
        seen = await self._existing_keys(job.id)

        seeds = [new_entity_draft(p) for p in scan.new_entities if p.name.lower() not in {
            e.name.lower() for e in entities
        }]
        outcome.items_saved += await self._persist(job.id, "scan", seeds, seen)

        units = [(entity, agent_name) for entity in targets for agent_name in AGENT_NAMES]
        await self._fan_out(job, content, run_id, entities, units, seen, outcome)

        if not outcome.cancelled:
            outcome.items_saved += await self._check_graph_health(job, targets, entities)
            await self.history_repository.record_pass(job.source_table, job.source_id, digest)

        LOGGER.info(
            "Enrichment run finished",
            extra={
                "job_id": str(job.id),
                "run_id": str(run_id),
                "targets": len(targets),
                "items_saved": outcome.items_saved,
                "failures": len(outcome.failures),
                "cancelled": outcome.cancelled,
            },
        )
        return outcome

    async def retry_failures(self, job, content: str, run_id: UUID) -> EnrichmentOutcome:
        """Re-run only the units recorded as failed, clearing the ones that now succeed."""
        outcome = EnrichmentOutcome()
        failures = await self.failure_repository.list_for_job(job.id)
        entities = await self.store.list_entities(job.campaign_id)
        by_id = {e.id: e for e in entities}
        units = [
            (by_id[f.entity_id], f.agent_name)
            for f in failures
            if f.entity_id in by_id and f.agent_name in self.agents
        ]
        if not units:
            outcome.skipped_reason = "no_failures"
            return outcome

        outcome.targets = list({e.id for e, _ in units})
        seen = await self._existing_keys(job.id)
        await self._fan_out(job, content, run_id, entities, units, seen, outcome, clear_on_success=True)
        return outcome

    async def _scan(self, job, content: str, entities: Sequence) -> ScanResult:
        try:
            raw = await self.llm_client.generate_content(
                contents=build_scan_prompt(content, entities, self.max_chars),
                system_instruction=SCAN_SYSTEM_PROMPT,
                generation_config={
                    "temperature": SCAN_TEMPERATURE,
                    "max_output_tokens": AGENT_MAX_TOKENS,
                    "response_mime_type": "application/json",
                },
            )
            return parse_scan_response(raw, entities)
        except QuotaExceededError:
            raise
        except Exception as e:
            fallback = mentioned_entities(content, entities)
            LOGGER.warning(
                f"Enrichment scan failed, using mentioned entities instead: {e}",
                extra={"job_id": str(job.id), "fallback_targets": len(fallback)},
            )
            return ScanResult(targets=[ScanTarget(entity=e, reason="mentioned") for e in fallback])

    async def _build_contexts(self, job, content: str, entities: Sequence, targets: Sequence) -> Dict[UUID, AgentContext]:
        types = await self.relationship_service.list_types(job.campaign_id)
        views = await self.relationship_service.list_relationship_views(job.campaign_id)
        names = {e.id: e.name for e in entities}
        pairs = {frozenset((v.from_entity_id, v.to_entity_id)) for v in views}

        contexts = {}
        for entity in targets:
            # Each edge as read from this entity's side, inverse rows included
            lines = []
            for v in await self.relationship_service.list_relationship_views(job.campaign_id, entity.id):
                line = f"{entity.name} -[{v.relationship_type}]-> {names.get(v.to_entity_id, v.to_entity_id)}"
                lines.append(f"{line} ({v.description})" if v.description else line)
            bundle = await self.assembler.build(
                job.campaign_id, content, [entity.name], job.game_system_code
            )
            contexts[entity.id] = AgentContext(
                entity=entity,
                content=content,
                known_entities=entities,
                relationship_types=types,
                relationship_lines=lines,
                connected_pairs=pairs,
                rag_text=bundle.render_passages(),
                game_system_schema=bundle.game_system_schema,
                max_chars=self.max_chars,
            )
        return contexts

    async def _fan_out(
        self,
        job,
        content: str,
        run_id: UUID,
        entities: Sequence,
        units: Sequence[Tuple[object, str]],
        seen: Set[Tuple],
        outcome: EnrichmentOutcome,
        clear_on_success: bool = False,
    ) -> None:
        if not units:
            return
        targets = list({e.id: e for e, _ in units}.values())
        contexts = await self._build_contexts(job, content, entities, targets)

        stop = asyncio.Event()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def work(entity, agent_name):
            async with semaphore:
                if stop.is_set():
                    return entity, agent_name, None, None
                try:
                    drafts = await self.agents[agent_name].run(contexts[entity.id])
                    return entity, agent_name, drafts, None
                except QuotaExceededError:
                    raise
                except Exception as e:
                    return entity, agent_name, None, e

        tasks = [asyncio.create_task(work(entity, agent_name)) for entity, agent_name in units]
        try:
            for next_done in asyncio.as_completed(tasks):
                entity, agent_name, drafts, error = await next_done
                if drafts is None and error is None:
                    continue
                if await self.lease_repository.is_cancelled(job.id, run_id):
                    stop.set()
                    outcome.cancelled = True
                    LOGGER.info(
                        "Enrichment cancelled, discarding remaining results",
                        extra={"job_id": str(job.id), "run_id": str(run_id)},
                    )
                    break
                if error is not None:
                    LOGGER.warning(
                        f"Enrichment unit failed: {error}",
                        extra={"job_id": str(job.id), "entity_id": str(entity.id), "agent_name": agent_name},
                    )
                    await self.failure_repository.record(
                        job.id, entity.id, agent_name, str(error), retryable=True
                    )
                    outcome.failures.append(UnitFailure(entity.id, agent_name, str(error)))
                    continue
                outcome.items_saved += await self._persist(job.id, agent_name, drafts, seen)
                if clear_on_success:
                    await self.failure_repository.clear(job.id, entity.id, agent_name)
        except QuotaExceededError as e:
            stop.set()
            LOGGER.error(
                "Provider quota exhausted during enrichment, stopping run",
                extra={"job_id": str(job.id), "provider": e.provider},
            )
            raise
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _existing_keys(self, job_id: UUID) -> Set[Tuple]:
        items = await self.item_repository.list_for_job(job_id, phase=Phase.ENRICHMENT.value)
        return {
            suggestion_key(i.detection_type, i.entity_id, i.suggested_content or {})
            for i in items
        }

    async def _persist(self, job_id: UUID, agent_name: str, drafts: Sequence[SuggestionDraft], seen: Set[Tuple]) -> int:
        rows = []
        for draft in drafts:
            payload = dump_payload(draft.payload)
            key = suggestion_key(draft.detection_type.value, draft.entity_id, payload)
            if key in seen:
                continue
            seen.add(key)
            rows.append({
                "job_id": job_id,
                "phase": Phase.ENRICHMENT.value,
                "detection_type": draft.detection_type.value,
                "matched_text": draft.matched_text,
                "entity_id": draft.entity_id,
                "suggested_content": payload,
                "confidence": draft.confidence,
                "agent_name": agent_name,
            })
        if not rows:
            return 0
        await self.item_repository.bulk_create(rows)
        return len(rows)

    async def _check_graph_health(self, job, targets: Sequence, entities: Sequence) -> int:
        await self.item_repository.delete_pending(
            job.id, Phase.ENRICHMENT.value, DetectionType.GRAPH_WARNING.value
        )
        edges = await self.store.list_relationships(job.campaign_id)
        type_names = {r.relationship_type_id: r.relationship_type for r in edges}
        rules = GraphRules.from_schema(
            load_game_system_schema(job.game_system_code, self.assembler.schemas_dir)
        )
        suggestions = []
        campaign_types = None
        if not rules.empty:
            pending = await self.item_repository.list_for_job(
                job.id,
                resolution=Resolution.PENDING.value,
                detection_type=DetectionType.RELATIONSHIP_SUGGESTION.value,
            )
            suggestions = [parse_payload(i.suggested_content) for i in pending if i.suggested_content]
            campaign_types = {t.name for t in await self.relationship_service.list_types(job.campaign_id)}
        findings = check_graph_health(
            targets, entities, edges, type_names, rules, suggestions, campaign_types
        )
        rows = [
            {
                "job_id": job.id,
                "phase": Phase.ENRICHMENT.value,
                "detection_type": DetectionType.GRAPH_WARNING.value,
                "matched_text": f.matched_text,
                "entity_id": f.entity_id,
                "suggested_content": dump_payload(f.payload),
                "agent_name": "graph_health",
            }
            for f in findings
        ]
        if rows:
            await self.item_repository.bulk_create(rows)
        return len(rows)
