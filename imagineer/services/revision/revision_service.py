"""Phase 2: LLM-guided rewrite of a source field."""

from dataclasses import dataclass
from typing import Optional, Sequence
from uuid import UUID

from imagineer.core.unified_llm import UnifiedLLMClient
from imagineer.prompts.revision_prompts import REVISION_SYSTEM_PROMPT, build_revision_prompt
from imagineer.schemas.analysis import parse_payload
from imagineer.services.context.context_assembler import ContextAssembler
from imagineer.utils.json_parser import parse_json_object, strip_code_fences
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

REVISION_TEMPERATURE = 0.4
REVISION_MAX_TOKENS = 8192
FALLBACK_SUMMARY = "Revision generated"


@dataclass
class RevisionResult:
    revised_content: str
    summary: str
    llm_called: bool = True


def finding_detail(item) -> Optional[str]:
    """One line describing what an accepted item asks the editor to do."""
    payload = parse_payload(item.suggested_content)
    if payload is None:
        return None
    kind = payload.kind
    if kind == "reference" and payload.entity_name:
        return f"Refer to the entity as [[{payload.entity_name}]]"
    if kind == "description_update":
        return payload.suggested_description
    if kind == "log_entry":
        return payload.content
    if kind == "relationship_suggestion":
        return (
            f"{payload.source_entity_name} {payload.relationship_type} "
            f"{payload.target_entity_name}"
        )
    if kind == "new_entity_suggestion":
        return payload.description or payload.reasoning
    if kind == "graph_warning":
        return payload.detail
    return None


def parse_revision_response(raw: str, original: str) -> RevisionResult:
    """Read {"revisedContent", "summary"}; plain text is taken as the revision itself."""
    data = parse_json_object(raw)
    if data is not None and isinstance(data.get("revisedContent"), str):
        return RevisionResult(
            revised_content=data["revisedContent"],
            summary=str(data.get("summary") or FALLBACK_SUMMARY),
        )
    text = strip_code_fences(raw or "")
    if not text:
        LOGGER.warning("Revision model returned no content, keeping original text")
        return RevisionResult(revised_content=original, summary=FALLBACK_SUMMARY)
    return RevisionResult(revised_content=text, summary=FALLBACK_SUMMARY)


class RevisionService:
    """Generates a full replacement text for a job's source field."""

    def __init__(self, llm_client: UnifiedLLMClient, assembler: ContextAssembler):
        self.llm_client = llm_client
        self.assembler = assembler

    async def generate_revision(
        self,
        campaign_id: UUID,
        content: str,
        accepted_items: Sequence,
        entity_names: Sequence[str] = (),
        game_system_code: Optional[str] = None,
    ) -> RevisionResult:
        """Ask the model for a rewrite addressing ``accepted_items``.

        With nothing accepted the original text comes back and no call is made.
        """
        if not accepted_items:
            return RevisionResult(revised_content=content, summary="", llm_called=False)

        findings = [
            {
                "detection_type": item.detection_type,
                "matched_text": item.matched_text,
                "detail": finding_detail(item),
            }
            for item in accepted_items
        ]
        bundle = await self.assembler.build(campaign_id, content, entity_names, game_system_code)
        prompt = build_revision_prompt(
            content, findings, bundle.render_passages(), bundle.game_system_schema
        )

        LOGGER.info(
            "Generating revision",
            extra={"campaign_id": str(campaign_id), "findings": len(findings)},
        )
        raw = await self.llm_client.generate_content(
            contents=prompt,
            system_instruction=REVISION_SYSTEM_PROMPT,
            generation_config={
                "temperature": REVISION_TEMPERATURE,
                "max_output_tokens": REVISION_MAX_TOKENS,
                "response_mime_type": "application/json",
            },
        )
        return parse_revision_response(raw, content)
