"""
Bulk audio job runner.

Drives one project_audio_jobs row from queued to a terminal state, generating
audio for every utterance in the job's work set in small concurrent batches.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import GenerationSettings, get_generation_settings
from app.models import (
    ACTIVE_JOB_STATUSES,
    ApiUsageLog,
    AudioGeneration,
    AudioJob,
    AudioJobMode,
    AudioJobStatus,
    AudioStatus,
    Scene,
    Utterance,
    audio_is_complete,
    utcnow,
)
from app.services.audio_generator import (
    AudioGenerator,
    GenerationTarget,
    get_audio_generator,
    truncate_message,
)
from app.services.voice_resolution import (
    load_character_voices,
    load_project_settings,
    resolve_voice,
)

logger = logging.getLogger(__name__)

AUDIT_API_TYPE = 'bulk_audio_generation'
AUDIT_PROVIDER = 'internal'

# Item outcomes
SUCCESS = 'success'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass(frozen=True)
class WorkItem:
    """One utterance selected for a bulk job."""
    utterance_id: int
    scene_id: int
    scene_idx: int
    project_id: int
    role: str
    character_key: Optional[str]
    text: str
    audio_generation_id: Optional[int] = None
    audio_status: Optional[str] = None


@dataclass
class JobTally:
    """Running counters of a job."""
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    error_details: List[dict] = field(default_factory=list)

    def record(self, outcome: str):
        self.processed += 1
        if outcome == SUCCESS:
            self.success += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def as_values(self) -> dict:
        return {
            'processed_utterances': self.processed,
            'success_count': self.success,
            'failed_count': self.failed,
            'skipped_count': self.skipped,
            'error_details_json': json.dumps(self.error_details) if self.error_details else None,
        }


def work_set_query(project_id: int, mode: str, force_regenerate: bool):
    """
    Utterances a job processes, ordered by scene idx then order_no.

    Only visible scenes and utterances with non-blank text are eligible.
    """
    query = (
        select(
            Utterance.id,
            Utterance.scene_id,
            Scene.idx,
            Scene.project_id,
            Utterance.role,
            Utterance.character_key,
            Utterance.text,
            Utterance.audio_generation_id,
            AudioGeneration.status,
        )
        .join(Scene, Scene.id == Utterance.scene_id)
        .outerjoin(AudioGeneration, AudioGeneration.id == Utterance.audio_generation_id)
        .where(
            Scene.project_id == project_id,
            Scene.is_hidden.is_(False),
            func.length(func.trim(Utterance.text)) > 0,
        )
        .order_by(Scene.idx, Utterance.order_no)
    )

    if force_regenerate or mode == AudioJobMode.all.value:
        return query
    if mode == AudioJobMode.pending.value:
        return query.where(or_(
            AudioGeneration.id.is_(None),
            AudioGeneration.status.in_((AudioStatus.failed.value, AudioStatus.generating.value)),
        ))
    # missing
    return query.where(or_(
        AudioGeneration.id.is_(None),
        AudioGeneration.status != AudioStatus.completed.value,
    ))


class BulkAudioRunner:
    """
    Executes bulk audio jobs.

    Args:
        session_factory: Async session factory (short-lived sessions only)
        generator: Single-item audio generator
        settings: Generation settings (batch size, error caps, floors)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        generator: AudioGenerator,
        settings: GenerationSettings,
    ):
        self._session_factory = session_factory
        self._generator = generator
        self._settings = settings

    async def run(self, job_id: int):
        """Run a job to completion. Never leaves the job in 'running'."""
        try:
            if not await self._claim(job_id):
                logger.info('Job %s was not claimable, skipping', job_id)
                return
            await self._execute(job_id)
        except Exception as e:
            logger.exception('Job %s failed with a fatal error', job_id)
            await self._mark_fatal(job_id, str(e) or type(e).__name__)

    async def _claim(self, job_id: int) -> bool:
        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(AudioJob)
                .where(AudioJob.id == job_id, AudioJob.status == AudioJobStatus.queued.value)
                .values(status=AudioJobStatus.running.value, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def _execute(self, job_id: int):
        async with self._session_factory() as session:
            job = await session.get(AudioJob, job_id)
            project_settings = await load_project_settings(session, job.project_id)
            character_voices = await load_character_voices(session, job.project_id)
            result = await session.execute(
                work_set_query(job.project_id, job.mode, job.force_regenerate)
            )
            items = [WorkItem(*row) for row in result.all()]

            await session.execute(
                update(AudioJob)
                .where(AudioJob.id == job_id)
                .values(total_utterances=len(items), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        total = len(items)
        logger.info(
            'Job %s started: project=%s mode=%s force=%s items=%d',
            job_id, job.project_id, job.mode, job.force_regenerate, total,
        )

        tally = JobTally()
        if total == 0:
            await self._finalize(job, tally, total)
            return

        batch_size = max(1, self._settings.batch_size)
        for start in range(0, total, batch_size):
            if await self._is_canceled(job_id):
                logger.info('Job %s canceled, stopping after %d items', job_id, tally.processed)
                await self._write_audit(job, AudioJobStatus.canceled.value, tally)
                return

            batch = items[start:start + batch_size]
            outcomes = await asyncio.gather(*(
                self._process_item(job, item, project_settings, character_voices)
                for item in batch
            ))
            for item, (outcome, error_message) in zip(batch, outcomes):
                tally.record(outcome)
                if outcome == FAILED and len(tally.error_details) < self._settings.max_error_details:
                    tally.error_details.append({
                        'utterance_id': item.utterance_id,
                        'scene_id': item.scene_id,
                        'error_message': truncate_message(
                            error_message or 'Unknown error',
                            self._settings.error_message_max_length,
                        ),
                    })

            await self._save_progress(job_id, tally)

        await self._finalize(job, tally, total)

    async def _process_item(
        self,
        job: AudioJob,
        item: WorkItem,
        project_settings: Optional[dict],
        character_voices: Dict[str, Optional[str]],
    ) -> Tuple[str, Optional[str]]:
        skip_allowed = not job.force_regenerate and job.mode != AudioJobMode.all.value
        if skip_allowed and await self._has_complete_audio(item.utterance_id):
            return SKIPPED, None

        voice = resolve_voice(
            item.role,
            item.character_key,
            project_settings,
            character_voices,
            self._settings,
        )
        target = GenerationTarget(
            scene_id=item.scene_id,
            scene_idx=item.scene_idx,
            project_id=item.project_id,
            text=item.text,
            utterance_id=item.utterance_id,
        )
        result = await self._generator.generate(
            target,
            voice,
            duration_floor_ms=self._settings.bulk_duration_floor_ms,
        )
        if result.success:
            return SUCCESS, None
        return FAILED, result.error_message

    async def _has_complete_audio(self, utterance_id: int) -> bool:
        """Re-read the utterance's current audio; another writer may have finished it."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AudioGeneration)
                .join(Utterance, Utterance.audio_generation_id == AudioGeneration.id)
                .where(Utterance.id == utterance_id)
            )
            return audio_is_complete(result.scalar_one_or_none())

    async def _is_canceled(self, job_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(AudioJob.status).where(AudioJob.id == job_id))
            return result.scalar_one_or_none() == AudioJobStatus.canceled.value

    async def _save_progress(self, job_id: int, tally: JobTally):
        async with self._session_factory() as session:
            await session.execute(
                update(AudioJob)
                .where(AudioJob.id == job_id)
                .values(updated_at=utcnow(), **tally.as_values())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _finalize(self, job: AudioJob, tally: JobTally, total: int):
        if total > 0 and tally.failed == total:
            status = AudioJobStatus.failed.value
        else:
            status = AudioJobStatus.completed.value

        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(AudioJob)
                .where(AudioJob.id == job.id, AudioJob.status == AudioJobStatus.running.value)
                .values(status=status, completed_at=now, updated_at=now, **tally.as_values())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            logger.info('Job %s left running state externally, final status not written', job.id)
            if await self._is_canceled(job.id):
                await self._write_audit(job, AudioJobStatus.canceled.value, tally)
            return

        logger.info(
            'Job %s %s: success=%d failed=%d skipped=%d',
            job.id, status, tally.success, tally.failed, tally.skipped,
        )
        await self._write_audit(job, status, tally)

    async def _write_audit(self, job: AudioJob, status: str, tally: JobTally):
        try:
            async with self._session_factory() as session:
                session.add(ApiUsageLog(
                    user_id=job.started_by_user_id,
                    project_id=job.project_id,
                    api_type=AUDIT_API_TYPE,
                    provider=AUDIT_PROVIDER,
                    model=status,
                    estimated_cost_usd=0,
                    metadata_json=json.dumps({
                        'job_id': job.id,
                        'mode': job.mode,
                        'force_regenerate': bool(job.force_regenerate),
                        'total_utterances': tally.processed,
                        'success_count': tally.success,
                        'failed_count': tally.failed,
                        'skipped_count': tally.skipped,
                        'narration_provider': job.narration_provider,
                        'narration_voice_id': job.narration_voice_id,
                    }),
                ))
                await session.commit()
        except Exception:
            logger.warning('Job %s: failed to write audit record', job.id, exc_info=True)

    async def _mark_fatal(self, job_id: int, message: str):
        message = truncate_message(message, self._settings.error_message_max_length)
        now = utcnow()
        try:
            async with self._session_factory() as session:
                # last_error is recorded even when the job was canceled meanwhile
                await session.execute(
                    update(AudioJob)
                    .where(AudioJob.id == job_id)
                    .values(last_error=message, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(AudioJob)
                    .where(AudioJob.id == job_id, AudioJob.status.in_(ACTIVE_JOB_STATUSES))
                    .values(status=AudioJobStatus.failed.value, completed_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception:
            logger.exception('Job %s: could not record fatal error', job_id)


# Singleton instance
_bulk_runner: Optional[BulkAudioRunner] = None


def get_bulk_runner() -> BulkAudioRunner:
    """Get the bulk runner singleton instance."""
    global _bulk_runner
    if _bulk_runner is None:
        from app.database import async_session_factory

        _bulk_runner = BulkAudioRunner(
            async_session_factory,
            get_audio_generator(),
            get_generation_settings(),
        )
    return _bulk_runner


def reset_bulk_runner():
    """Reset the bulk runner singleton (for testing)."""
    global _bulk_runner
    _bulk_runner = None
