"""
Bulk audio job endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GenerationSettings, HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT, get_generation_settings
from app.database import get_db
from app.models import AudioJob, Project
from app.routers.errors import JOB_ALREADY_RUNNING, api_error, not_found
from app.schemas.audio_job import (
    AudioJobResponse,
    BulkCancelResponse,
    BulkGenerateRequest,
    BulkGenerateResponse,
    BulkHistoryResponse,
    BulkStatusResponse,
)
from app.services.job_control import (
    JobAlreadyActiveError,
    ProjectNotFoundError,
    cancel_active_job,
    get_latest_job,
    list_job_history,
    start_bulk_job,
)
from app.services.job_processor import AudioJobProcessor, get_job_processor


router = APIRouter(prefix='/projects', tags=['bulk-audio'])


def _job_response(job: AudioJob) -> AudioJobResponse:
    return AudioJobResponse.model_validate(job)


async def _require_project(db: AsyncSession, project_id: int):
    if await db.get(Project, project_id) is None:
        raise not_found(f'Project not found: {project_id}')


@router.post('/{project_id}/audio/bulk-generate', response_model=BulkGenerateResponse, status_code=202)
async def bulk_generate(
    project_id: int,
    request: Optional[BulkGenerateRequest] = None,
    db: AsyncSession = Depends(get_db),
    settings: GenerationSettings = Depends(get_generation_settings),
    processor: AudioJobProcessor = Depends(get_job_processor),
) -> BulkGenerateResponse:
    """
    Start a bulk audio job for a project.

    Returns immediately with the queued job; the job runs in the background.

    Raises:
        404: Project not found
        409: A job is already queued or running for the project
    """
    request = request or BulkGenerateRequest()
    try:
        job = await start_bulk_job(
            db,
            project_id,
            settings,
            mode=request.mode.value,
            force_regenerate=request.force_regenerate,
        )
    except ProjectNotFoundError as e:
        raise not_found(str(e))
    except JobAlreadyActiveError as e:
        raise api_error(409, JOB_ALREADY_RUNNING, str(e), existing_job_id=e.existing_job_id)

    await processor.enqueue_bulk_job(job.id)

    return BulkGenerateResponse(
        job_id=job.id,
        project_id=project_id,
        mode=job.mode,
        force_regenerate=job.force_regenerate,
        status=job.status,
        message='Bulk audio generation started',
    )


@router.get('/{project_id}/audio/bulk-status', response_model=BulkStatusResponse)
async def bulk_status(
    project_id: int,
    db: AsyncSession = Depends(get_db),
) -> BulkStatusResponse:
    """
    Get the most recent bulk job of a project.

    Returns has_job=false when the project never ran one.
    """
    await _require_project(db, project_id)

    job = await get_latest_job(db, project_id)
    if job is None:
        return BulkStatusResponse(has_job=False, message='No bulk audio job found for this project')

    return BulkStatusResponse(has_job=True, job=_job_response(job))


@router.post('/{project_id}/audio/bulk-cancel', response_model=BulkCancelResponse)
async def bulk_cancel(
    project_id: int,
    db: AsyncSession = Depends(get_db),
) -> BulkCancelResponse:
    """
    Cancel the active bulk job of a project.

    The runner stops before its next batch; items already in flight finish.

    Raises:
        404: No queued or running job
    """
    job_id = await cancel_active_job(db, project_id)
    if job_id is None:
        raise not_found('No active bulk audio job found')

    return BulkCancelResponse(job_id=job_id, message='Bulk audio job canceled')


@router.get('/{project_id}/audio/bulk-history', response_model=BulkHistoryResponse)
async def bulk_history(
    project_id: int,
    limit: int = Query(default=HISTORY_DEFAULT_LIMIT, ge=1),
    db: AsyncSession = Depends(get_db),
) -> BulkHistoryResponse:
    """List a project's bulk jobs, newest first."""
    await _require_project(db, project_id)

    jobs = await list_job_history(db, project_id, min(limit, HISTORY_MAX_LIMIT))
    return BulkHistoryResponse(
        project_id=project_id,
        jobs=[_job_response(job) for job in jobs],
        count=len(jobs),
    )
