"""
Starting, inspecting and canceling bulk audio jobs.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GenerationSettings
from app.models import (
    ACTIVE_JOB_STATUSES,
    AudioJob,
    AudioJobMode,
    AudioJobStatus,
    Project,
    UtteranceRole,
    utcnow,
)
from app.services.voice_resolution import parse_project_settings, resolve_voice

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """Project does not exist."""

    def __init__(self, project_id: int):
        super().__init__(f'Project {project_id} not found')
        self.project_id = project_id


class JobAlreadyActiveError(Exception):
    """A queued or running job already exists for the project."""

    def __init__(self, project_id: int, existing_job_id: Optional[int]):
        super().__init__(f'A bulk audio job is already running for project {project_id}')
        self.project_id = project_id
        self.existing_job_id = existing_job_id


async def find_active_job(session: AsyncSession, project_id: int) -> Optional[AudioJob]:
    result = await session.execute(
        select(AudioJob)
        .where(AudioJob.project_id == project_id, AudioJob.status.in_(ACTIVE_JOB_STATUSES))
        .order_by(AudioJob.created_at.desc(), AudioJob.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def start_bulk_job(
    session: AsyncSession,
    project_id: int,
    settings: GenerationSettings,
    mode: str = AudioJobMode.missing.value,
    force_regenerate: bool = False,
    user_id: Optional[int] = None,
) -> AudioJob:
    """
    Create a queued job for a project.

    The session is committed here so the job is visible to the background
    processor before it is enqueued.

    Raises:
        ProjectNotFoundError: Unknown project
        JobAlreadyActiveError: Another job is queued or running
    """
    project = await session.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)

    existing = await find_active_job(session, project_id)
    if existing is not None:
        raise JobAlreadyActiveError(project_id, existing.id)

    # Narration voice at start time, kept for the audit record
    narration = resolve_voice(
        UtteranceRole.narration.value,
        None,
        parse_project_settings(project.settings_json),
        {},
        settings,
    )

    job = AudioJob(
        project_id=project_id,
        mode=mode,
        force_regenerate=force_regenerate,
        narration_provider=narration.provider.value,
        narration_voice_id=narration.voice_id,
        status=AudioJobStatus.queued.value,
        started_by_user_id=user_id if user_id is not None else project.user_id,
    )
    session.add(job)
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race against a concurrent start
        await session.rollback()
        existing = await find_active_job(session, project_id)
        raise JobAlreadyActiveError(project_id, existing.id if existing else None)

    logger.info('Created bulk job %s for project %s (mode=%s force=%s)', job.id, project_id, mode, force_regenerate)
    return job


async def get_latest_job(session: AsyncSession, project_id: int) -> Optional[AudioJob]:
    result = await session.execute(
        select(AudioJob)
        .where(AudioJob.project_id == project_id)
        .order_by(AudioJob.created_at.desc(), AudioJob.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def cancel_active_job(session: AsyncSession, project_id: int) -> Optional[int]:
    """
    Cancel the project's active job.

    Returns:
        The canceled job id, or None when no job was active
    """
    job = await find_active_job(session, project_id)
    if job is None:
        return None

    now = utcnow()
    result = await session.execute(
        update(AudioJob)
        .where(AudioJob.id == job.id, AudioJob.status.in_(ACTIVE_JOB_STATUSES))
        .values(status=AudioJobStatus.canceled.value, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount != 1:
        return None

    logger.info('Canceled bulk job %s for project %s', job.id, project_id)
    return job.id


async def list_job_history(session: AsyncSession, project_id: int, limit: int) -> List[AudioJob]:
    result = await session.execute(
        select(AudioJob)
        .where(AudioJob.project_id == project_id)
        .order_by(AudioJob.created_at.desc(), AudioJob.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
