"""
Background processing tests.

Tests for the work queue, dispatch and restart recovery.
"""
import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AudioGeneration, AudioJob, AudioJobStatus, AudioStatus
from app.services.job_processor import (
    RESTART_ERROR,
    AudioJobProcessor,
    get_job_processor,
    reset_job_processor,
)
from conftest import create_audio, create_project, create_scene


class RecordingRunner:
    """Bulk runner stand-in."""

    def __init__(self, delay: float = 0.0, fail_on=()):
        self.delay = delay
        self.fail_on = set(fail_on)
        self.runs = []
        self.concurrent = 0
        self.max_concurrent = 0

    async def run(self, job_id):
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            await asyncio.sleep(self.delay)
            self.runs.append(job_id)
            if job_id in self.fail_on:
                raise RuntimeError(f'job {job_id} exploded')
        finally:
            self.concurrent -= 1


class RecordingGenerator:
    """Audio generator stand-in."""

    def __init__(self):
        self.settings = SimpleNamespace(single_duration_floor_ms=1000)
        self.fulfilled = []

    async def fulfil(self, audio_id, duration_floor_ms):
        self.fulfilled.append((audio_id, duration_floor_ms))


async def create_job(session: AsyncSession, status: str) -> AudioJob:
    project = await create_project(session)
    job = AudioJob(project_id=project.id, mode='missing', force_regenerate=False, status=status)
    session.add(job)
    await session.commit()
    return job


class TestAudioJobProcessor:
    """Tests for AudioJobProcessor class."""

    def test_processor_creates(self):
        processor = AudioJobProcessor()

        assert processor._queue is not None
        assert processor.is_running is False
        assert processor._task is None

    @pytest.mark.asyncio
    async def test_processor_starts_and_stops(self, session_factory):
        processor = AudioJobProcessor(session_factory, RecordingRunner(), RecordingGenerator())

        await processor.start()
        assert processor.is_running is True
        assert processor._task is not None

        await processor.stop()
        assert processor.is_running is False
        assert processor._task is None

    @pytest.mark.asyncio
    async def test_enqueue(self):
        processor = AudioJobProcessor()
        await processor.enqueue_bulk_job(1)
        await processor.enqueue_utterance_audio(2)

        assert processor._queue.qsize() == 2

    def test_processor_singleton(self):
        reset_job_processor()

        processor1 = get_job_processor()
        processor2 = get_job_processor()

        assert processor1 is processor2

        reset_job_processor()


class TestDispatch:
    """Tests for work order dispatch."""

    @pytest.mark.asyncio
    async def test_bulk_job_dispatched_to_runner(self, session_factory):
        runner = RecordingRunner()
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.enqueue_bulk_job(11)
        await processor.wait_idle()
        await processor.stop()

        assert runner.runs == [11]

    @pytest.mark.asyncio
    async def test_utterance_audio_fulfilled_with_single_floor(self, session_factory):
        generator = RecordingGenerator()
        processor = AudioJobProcessor(session_factory, RecordingRunner(), generator)

        await processor.start()
        await processor.enqueue_utterance_audio(21)
        await processor.wait_idle()
        await processor.stop()

        assert generator.fulfilled == [(21, 1000)]

    @pytest.mark.asyncio
    async def test_jobs_run_concurrently(self, session_factory):
        """Jobs of different projects do not wait for each other."""
        runner = RecordingRunner(delay=0.05)
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.enqueue_bulk_job(1)
        await processor.enqueue_bulk_job(2)
        await processor.enqueue_bulk_job(3)
        await processor.wait_idle()
        await processor.stop()

        assert sorted(runner.runs) == [1, 2, 3]
        assert runner.max_concurrent > 1

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self, session_factory):
        runner = RecordingRunner(fail_on={1})
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.enqueue_bulk_job(1)
        await processor.wait_idle()
        await processor.enqueue_bulk_job(2)
        await processor.wait_idle()

        assert processor.is_running is True
        await processor.stop()

        assert runner.runs == [1, 2]

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_work(self, session_factory):
        runner = RecordingRunner(delay=0.1)
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.enqueue_bulk_job(5)
        await asyncio.sleep(0.02)
        await processor.stop(timeout=2.0)

        assert runner.runs == [5]


class TestRecovery:
    """Tests for restart recovery."""

    @pytest.mark.asyncio
    async def test_running_jobs_marked_failed(self, session_factory, test_session: AsyncSession):
        running = await create_job(test_session, AudioJobStatus.running.value)
        runner = RecordingRunner()
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.wait_idle()
        await processor.stop()

        result = await test_session.execute(
            select(AudioJob).where(AudioJob.id == running.id).execution_options(populate_existing=True)
        )
        job = result.scalar_one()
        assert job.status == AudioJobStatus.failed.value
        assert job.last_error == RESTART_ERROR
        assert job.completed_at is not None
        assert runner.runs == []

    @pytest.mark.asyncio
    async def test_queued_jobs_reenqueued(self, session_factory, test_session: AsyncSession):
        first = await create_job(test_session, AudioJobStatus.queued.value)
        second = await create_job(test_session, AudioJobStatus.queued.value)
        await create_job(test_session, AudioJobStatus.completed.value)
        runner = RecordingRunner()
        processor = AudioJobProcessor(session_factory, runner, RecordingGenerator())

        await processor.start()
        await processor.wait_idle()
        await processor.stop()

        assert sorted(runner.runs) == sorted([first.id, second.id])

    @pytest.mark.asyncio
    async def test_generating_audio_marked_failed(self, session_factory, test_session: AsyncSession):
        project = await create_project(test_session)
        scene = await create_scene(test_session, project, idx=1)
        stuck = await create_audio(test_session, scene, status=AudioStatus.generating.value)
        done = await create_audio(test_session, scene, is_active=True)
        processor = AudioJobProcessor(session_factory, RecordingRunner(), RecordingGenerator())

        await processor.recover()

        result = await test_session.execute(
            select(AudioGeneration).execution_options(populate_existing=True).order_by(AudioGeneration.id)
        )
        rows = {audio.id: audio for audio in result.scalars().all()}
        assert rows[stuck.id].status == AudioStatus.failed.value
        assert rows[stuck.id].error_message == RESTART_ERROR
        assert rows[done.id].status == AudioStatus.completed.value
