"""
Background processor for audio generation work.
"""
import asyncio
import logging
from typing import Optional, Set, Tuple

from sqlalchemy import select, update

from app.models import AudioGeneration, AudioJob, AudioJobStatus, AudioStatus, utcnow

logger = logging.getLogger(__name__)

BULK_JOB = 'bulk'
UTTERANCE_AUDIO = 'utterance'

RESTART_ERROR = 'Interrupted by server restart'

WorkOrder = Tuple[str, int]


class AudioJobProcessor:
    """
    Background work processor using asyncio.Queue.

    Each work order (a bulk job or one reserved utterance audio item) runs in
    its own task, so jobs of different projects progress independently.

    Args:
        session_factory: Async session factory (default: application factory)
        runner: Bulk job runner (default: singleton)
        generator: Audio generator (default: singleton)
    """

    def __init__(self, session_factory=None, runner=None, generator=None):
        self._queue: asyncio.Queue[Optional[WorkOrder]] = asyncio.Queue()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._work_tasks: Set[asyncio.Task] = set()
        self._session_factory = session_factory
        self._runner = runner
        self._generator = generator

    @property
    def session_factory(self):
        if self._session_factory is None:
            from app.database import async_session_factory
            self._session_factory = async_session_factory
        return self._session_factory

    @property
    def runner(self):
        if self._runner is None:
            from app.services.bulk_audio import get_bulk_runner
            self._runner = get_bulk_runner()
        return self._runner

    @property
    def generator(self):
        if self._generator is None:
            from app.services.audio_generator import get_audio_generator
            self._generator = get_audio_generator()
        return self._generator

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background processor and recover unfinished jobs."""
        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        await self.recover()

    async def stop(self, timeout: float = 5.0):
        """Stop the processor, waiting up to ``timeout`` for in-flight work."""
        self._running = False
        if self._task:
            # Sentinel to wake up the queue if waiting
            await self._queue.put(None)
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        if self._work_tasks:
            _, pending = await asyncio.wait(list(self._work_tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning('Canceled %d unfinished work orders on shutdown', len(pending))

    async def enqueue_bulk_job(self, job_id: int):
        await self._queue.put((BULK_JOB, job_id))

    async def enqueue_utterance_audio(self, audio_id: int):
        await self._queue.put((UTTERANCE_AUDIO, audio_id))

    async def recover(self):
        """
        Resume work left by a previous process.

        Queued jobs are enqueued again. Running jobs and generating audio items
        cannot be resumed and are marked failed.
        """
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                update(AudioJob)
                .where(AudioJob.status == AudioJobStatus.running.value)
                .values(
                    status=AudioJobStatus.failed.value,
                    last_error=RESTART_ERROR,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            # Audio items whose work died with the previous process
            audio_result = await session.execute(
                update(AudioGeneration)
                .where(AudioGeneration.status == AudioStatus.generating.value)
                .values(
                    status=AudioStatus.failed.value,
                    error_message=RESTART_ERROR,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount:
                logger.warning('Marked %d interrupted bulk jobs as failed', result.rowcount)
            if audio_result.rowcount:
                logger.warning('Marked %d interrupted audio items as failed', audio_result.rowcount)

            queued = await session.execute(
                select(AudioJob.id)
                .where(AudioJob.status == AudioJobStatus.queued.value)
                .order_by(AudioJob.created_at, AudioJob.id)
            )
            job_ids = list(queued.scalars().all())

        for job_id in job_ids:
            await self.enqueue_bulk_job(job_id)
        if job_ids:
            logger.info('Re-enqueued %d queued bulk jobs', len(job_ids))

    async def wait_idle(self):
        """Wait until the queue is drained and every work order has finished."""
        await self._queue.join()
        while self._work_tasks:
            await asyncio.gather(*list(self._work_tasks), return_exceptions=True)

    async def _process_loop(self):
        """Main loop - consumes work orders from the queue."""
        while self._running:
            try:
                # Wait with timeout to allow checking _running flag
                try:
                    order = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    if order is not None:
                        task = asyncio.create_task(self._execute(order))
                        self._work_tasks.add(task)
                        task.add_done_callback(self._work_tasks.discard)
                finally:
                    self._queue.task_done()

            except Exception:
                # Log but don't crash the loop
                logger.exception('Error in audio job processor loop')

    async def _execute(self, order: WorkOrder):
        kind, target_id = order
        try:
            if kind == BULK_JOB:
                await self.runner.run(target_id)
            elif kind == UTTERANCE_AUDIO:
                floor_ms = self.generator.settings.single_duration_floor_ms
                await self.generator.fulfil(target_id, duration_floor_ms=floor_ms)
            else:
                logger.warning('Unknown work order kind %r', kind)
        except Exception:
            logger.exception('Work order %s %s failed', kind, target_id)


# Singleton instance
_job_processor: Optional[AudioJobProcessor] = None


def get_job_processor() -> AudioJobProcessor:
    """Get the job processor singleton instance."""
    global _job_processor
    if _job_processor is None:
        _job_processor = AudioJobProcessor()
    return _job_processor


def reset_job_processor():
    """Reset the job processor singleton (for testing)."""
    global _job_processor
    _job_processor = None
