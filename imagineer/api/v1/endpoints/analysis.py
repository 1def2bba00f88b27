from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.database import get_async_session as get_session
from imagineer.core.exceptions import (
    AppError,
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from imagineer.schemas.analysis import (
    AnalysisItemResponse,
    AnalysisJobResponse,
    ApplyRevisionRequest,
    BatchResolveRequest,
    CreateJobRequest,
    EnrichmentFailureResponse,
    PendingCountResponse,
    Resolution,
    ResolveItemRequest,
    TaskAcceptedResponse,
    TriggerEnrichmentRequest,
)
from imagineer.services.analysis.job_orchestrator import JobOrchestrator
from imagineer.utils.logging import get_logger
from imagineer.utils.responses import create_api_response, create_error_detail

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_job_orchestrator(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> JobOrchestrator:
    return JobOrchestrator(db_session)


def _http_error(error: AppError, request: Request) -> HTTPException:
    """Map the application error hierarchy onto HTTP problem responses."""
    if isinstance(error, NotFoundError):
        code, title = status.HTTP_404_NOT_FOUND, "Not Found"
    elif isinstance(error, ValidationError):
        code, title = status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation Failed"
    elif isinstance(error, ConflictError):
        code, title = status.HTTP_409_CONFLICT, "Conflict"
    elif isinstance(error, QuotaExceededError):
        code, title = status.HTTP_402_PAYMENT_REQUIRED, "LLM Quota Exhausted"
    else:
        LOGGER.error(f"Analysis request failed: {error.message}", exc_info=True)
        code, title = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"

    error_detail = create_error_detail(
        title=title,
        status=code,
        detail=error.message,
        request=request,
    )
    return HTTPException(status_code=code, detail=error_detail.model_dump(mode="json"))


@router.post(
    "/jobs",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create an analysis job",
    operation_id="create_analysis_job",
)
async def create_job(
    request: Request,
    payload: CreateJobRequest,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    """Create a job for one text field and run identification synchronously."""
    try:
        job = await orchestrator.create_job(
            campaign_id=payload.campaign_id,
            source_table=payload.source.table,
            source_id=payload.source.id,
            source_field=payload.source.field,
            phases=payload.phases,
            game_system_code=payload.game_system_code,
        )
    except AppError as e:
        raise _http_error(e, request)

    return create_api_response(
        data=AnalysisJobResponse.model_validate(job),
        message="Analysis job created",
        request=request,
    )


@router.get(
    "/jobs/{job_id}",
    response_model=dict,
    summary="Get an analysis job",
    operation_id="get_analysis_job",
)
async def get_job(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        job = await orchestrator.get_job(job_id)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(data=job, message="Analysis job retrieved", request=request)


@router.get(
    "/jobs/{job_id}/items",
    response_model=dict,
    summary="List a job's analysis items",
    operation_id="list_analysis_items",
)
async def list_items(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
    resolution: Optional[Resolution] = Query(None),
):
    """Items in review order; relationship suggestions needing a new type come first."""
    try:
        items = await orchestrator.list_items(job_id, resolution)
    except AppError as e:
        raise _http_error(e, request)

    data = {
        "total": len(items),
        "items": [AnalysisItemResponse.model_validate(i).model_dump(mode="json") for i in items],
    }
    return create_api_response(data=data, message="Analysis items retrieved", request=request)


@router.patch(
    "/items/{item_id}",
    response_model=dict,
    summary="Accept, decline or revert an item",
    operation_id="resolve_analysis_item",
)
async def resolve_item(
    request: Request,
    item_id: UUID,
    payload: ResolveItemRequest,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        item = await orchestrator.resolve_item(item_id, payload.resolution, payload.override)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(
        data=AnalysisItemResponse.model_validate(item),
        message=f"Item {item.resolution}",
        request=request,
    )


@router.post(
    "/jobs/{job_id}/batch-resolve",
    response_model=dict,
    summary="Resolve every pending item of one detection type",
    operation_id="batch_resolve_analysis_items",
)
async def batch_resolve(
    request: Request,
    job_id: UUID,
    payload: BatchResolveRequest,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        result = await orchestrator.batch_resolve(job_id, payload.detection_type, payload.resolution)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(data=result, message="Batch resolve finished", request=request)


@router.post(
    "/jobs/{job_id}/advance",
    response_model=dict,
    summary="Advance a job to its next phase",
    operation_id="advance_analysis_job",
)
async def advance_phase(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        job = await orchestrator.advance_phase(job_id)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(
        data=AnalysisJobResponse.model_validate(job),
        message=f"Job is {job.status}",
        request=request,
    )


@router.post(
    "/jobs/{job_id}/revise",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate a revision draft in the background",
    operation_id="trigger_revision",
)
async def trigger_revision(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    """Returns immediately; poll the job for ``pending_revision``."""
    try:
        job = await orchestrator.trigger_revision(job_id)
    except AppError as e:
        raise _http_error(e, request)
    data = TaskAcceptedResponse(job_id=job.id, status=job.status, message="Revision started")
    return create_api_response(data=data, message="Revision started", request=request)


@router.put(
    "/jobs/{job_id}/revision",
    response_model=dict,
    summary="Apply the final revised text",
    operation_id="apply_revision",
)
async def apply_revision(
    request: Request,
    job_id: UUID,
    payload: ApplyRevisionRequest,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        job = await orchestrator.apply_revision(job_id, payload.final_text)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(
        data=AnalysisJobResponse.model_validate(job),
        message="Revision applied",
        request=request,
    )


@router.post(
    "/jobs/{job_id}/enrich",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start enrichment in the background",
    operation_id="trigger_enrichment",
)
async def trigger_enrichment(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
    payload: Optional[TriggerEnrichmentRequest] = None,
):
    force = payload.force if payload else False
    try:
        job = await orchestrator.trigger_enrichment(job_id, force=force)
    except AppError as e:
        raise _http_error(e, request)
    data = TaskAcceptedResponse(job_id=job.id, status=job.status, message="Enrichment started")
    return create_api_response(data=data, message="Enrichment started", request=request)


@router.delete(
    "/jobs/{job_id}/enrich",
    response_model=dict,
    summary="Cancel a running enrichment",
    operation_id="cancel_enrichment",
)
async def cancel_enrichment(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        job = await orchestrator.cancel_enrichment(job_id)
    except AppError as e:
        raise _http_error(e, request)
    return create_api_response(
        data=AnalysisJobResponse.model_validate(job),
        message="Enrichment cancelled",
        request=request,
    )


@router.post(
    "/jobs/{job_id}/enrich/retry",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry failed enrichment units",
    operation_id="retry_enrichment_failures",
)
async def retry_enrichment_failures(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        job = await orchestrator.retry_enrichment_failures(job_id)
    except AppError as e:
        raise _http_error(e, request)
    data = TaskAcceptedResponse(job_id=job.id, status=job.status, message="Enrichment retry started")
    return create_api_response(data=data, message="Enrichment retry started", request=request)


@router.get(
    "/jobs/{job_id}/failures",
    response_model=dict,
    summary="List recorded enrichment failures",
    operation_id="list_enrichment_failures",
)
async def list_enrichment_failures(
    request: Request,
    job_id: UUID,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
):
    try:
        failures = await orchestrator.list_enrichment_failures(job_id)
    except AppError as e:
        raise _http_error(e, request)
    data = {
        "total": len(failures),
        "failures": [EnrichmentFailureResponse.model_validate(f).model_dump(mode="json") for f in failures],
    }
    return create_api_response(data=data, message="Enrichment failures retrieved", request=request)


@router.get(
    "/pending-count",
    response_model=dict,
    summary="Count pending items for a source",
    operation_id="get_pending_count",
)
async def get_pending_count(
    request: Request,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
    source_table: str = Query(...),
    source_id: UUID = Query(...),
):
    try:
        pending = await orchestrator.get_pending_count(source_table, source_id)
    except AppError as e:
        raise _http_error(e, request)
    data = PendingCountResponse(source_table=source_table, source_id=source_id, pending=pending)
    return create_api_response(data=data, message="Pending count retrieved", request=request)
