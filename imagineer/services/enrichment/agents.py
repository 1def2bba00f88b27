"""Pass 2 sub-agents. Each turns one (entity, agent) unit into suggestion drafts.

Agents only call the model and shape its output. They never touch the
database, so many can run at once under the engine's worker pool.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence, Set

from imagineer.core.unified_llm import UnifiedLLMClient
from imagineer.prompts.enrichment_prompts import AGENT_SYSTEM_PROMPTS, build_agent_prompt
from imagineer.schemas.analysis import (
    DescriptionUpdatePayload,
    DetectionType,
    LogEntryPayload,
    NewEntitySuggestionPayload,
    RelationshipSuggestionPayload,
)
from imagineer.services.enrichment import parser
from imagineer.services.graph.guard import TypeSpec, normalize_type_name, resolve_type

AGENT_TEMPERATURE = 0.3
AGENT_MAX_TOKENS = 2048

AGENT_NAMES = ("description", "log_entry", "relationship", "new_entity")


@dataclass
class SuggestionDraft:
    """An agent finding, ready to become an AnalysisItem."""

    detection_type: DetectionType
    matched_text: str
    payload: object
    entity_id: Optional[object] = None
    confidence: Optional[float] = None


@dataclass
class AgentContext:
    """Everything one unit needs, gathered before the fan-out starts."""

    entity: object
    content: str
    known_entities: Sequence
    relationship_types: Sequence[TypeSpec]
    relationship_lines: List[str] = field(default_factory=list)
    connected_pairs: Set[FrozenSet] = field(default_factory=set)
    rag_text: str = ""
    game_system_schema: str = ""
    max_chars: int = 4000

    @property
    def other_entities(self) -> List:
        lowered = self.content.lower()
        return [
            e for e in self.known_entities
            if e.id != self.entity.id and e.name and e.name.lower() in lowered
        ]


class EnrichmentAgent(ABC):
    name: str = ""

    def __init__(self, llm_client: UnifiedLLMClient):
        self.llm_client = llm_client

    async def run(self, ctx: AgentContext) -> List[SuggestionDraft]:
        prompt = build_agent_prompt(
            self.name,
            ctx.content,
            ctx.entity,
            ctx.relationship_lines,
            ctx.other_entities,
            [t.name for t in ctx.relationship_types],
            ctx.rag_text,
            ctx.game_system_schema,
            ctx.max_chars,
            known_entities=ctx.known_entities,
        )
        raw = await self.llm_client.generate_content(
            contents=prompt,
            system_instruction=AGENT_SYSTEM_PROMPTS[self.name],
            generation_config={
                "temperature": AGENT_TEMPERATURE,
                "max_output_tokens": AGENT_MAX_TOKENS,
                "response_mime_type": "application/json",
            },
        )
        return self.parse(raw, ctx)

    @abstractmethod
    def parse(self, raw: str, ctx: AgentContext) -> List[SuggestionDraft]:
        pass


class DescriptionAgent(EnrichmentAgent):
    name = "description"

    def parse(self, raw: str, ctx: AgentContext) -> List[SuggestionDraft]:
        drafts = []
        for update in parser.parse_description_updates(raw)[:1]:
            if update["suggested_description"] == (ctx.entity.description or "").strip():
                continue
            drafts.append(SuggestionDraft(
                detection_type=DetectionType.DESCRIPTION_UPDATE,
                matched_text=ctx.entity.name,
                entity_id=ctx.entity.id,
                payload=DescriptionUpdatePayload(
                    entity_name=ctx.entity.name,
                    current_description=ctx.entity.description,
                    suggested_description=update["suggested_description"],
                    rationale=update["rationale"],
                ),
            ))
        return drafts


class LogEntryAgent(EnrichmentAgent):
    name = "log_entry"

    def parse(self, raw: str, ctx: AgentContext) -> List[SuggestionDraft]:
        return [
            SuggestionDraft(
                detection_type=DetectionType.LOG_ENTRY,
                matched_text=ctx.entity.name,
                entity_id=ctx.entity.id,
                payload=LogEntryPayload(
                    entity_name=ctx.entity.name,
                    content=entry["content"],
                    occurred_at=entry["occurred_at"],
                ),
            )
            for entry in parser.parse_log_entries(raw)
        ]


class RelationshipAgent(EnrichmentAgent):
    """Keeps proposals on the campaign's canonical types.

    A proposal using an inverse name is flipped onto the canonical type. One
    using an unknown type is kept but flagged ``new_type_needed``.
    """

    name = "relationship"

    def parse(self, raw: str, ctx: AgentContext) -> List[SuggestionDraft]:
        drafts = []
        for proposal in parser.parse_relationships(raw):
            source = parser.lookup_entity(
                proposal["source_entity_id"], proposal["source_entity_name"], ctx.known_entities
            )
            target = parser.lookup_entity(
                proposal["target_entity_id"], proposal["target_entity_name"], ctx.known_entities
            )
            if source is None or target is None or source.id == target.id:
                continue
            if frozenset((source.id, target.id)) in ctx.connected_pairs:
                continue

            resolved = resolve_type(proposal["relationship_type"], ctx.relationship_types)
            new_type_needed = resolved is None
            mapped_from = None
            if resolved is None:
                type_name = normalize_type_name(proposal["relationship_type"])
            else:
                type_name = resolved.type.name
                if resolved.swapped:
                    source, target = target, source
                    mapped_from = resolved.mapped_from

            drafts.append(SuggestionDraft(
                detection_type=DetectionType.RELATIONSHIP_SUGGESTION,
                matched_text=f"{source.name} {type_name} {target.name}",
                entity_id=ctx.entity.id,
                payload=RelationshipSuggestionPayload(
                    source_entity_id=source.id,
                    source_entity_name=source.name,
                    target_entity_id=target.id,
                    target_entity_name=target.name,
                    relationship_type=type_name,
                    description=proposal["description"],
                    new_type_needed=new_type_needed,
                    mapped_from=mapped_from,
                ),
            ))
        return drafts


class NewEntityAgent(EnrichmentAgent):
    name = "new_entity"

    def parse(self, raw: str, ctx: AgentContext) -> List[SuggestionDraft]:
        known = {e.name.lower() for e in ctx.known_entities}
        return [
            new_entity_draft(proposal, ctx.entity.id)
            for proposal in parser.parse_new_entities(raw)
            if proposal.name.lower() not in known
        ]


def new_entity_draft(proposal, entity_id=None) -> SuggestionDraft:
    return SuggestionDraft(
        detection_type=DetectionType.NEW_ENTITY_SUGGESTION,
        matched_text=proposal.name,
        entity_id=entity_id,
        payload=NewEntitySuggestionPayload(
            name=proposal.name,
            entity_type=proposal.entity_type,
            description=proposal.description,
            reasoning=proposal.reasoning,
        ),
    )


def build_agents(llm_client: UnifiedLLMClient) -> dict:
    return {
        agent.name: agent
        for agent in (
            DescriptionAgent(llm_client),
            LogEntryAgent(llm_client),
            RelationshipAgent(llm_client),
            NewEntityAgent(llm_client),
        )
    }
