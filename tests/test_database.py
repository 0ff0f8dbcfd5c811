"""
Database layer tests.

Tests for SQLite setup, WAL mode and the audio pipeline models.
"""
import json

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    AudioGeneration,
    AudioJob,
    AudioJobStatus,
    AudioStatus,
    audio_is_complete,
)
from conftest import create_project, create_scene


class TestDatabaseConfiguration:
    """Tests for database configuration."""

    def test_database_lives_in_data_dir(self):
        """Test database is configured inside the data directory."""
        from app.config import DATA_DIR, DATABASE_PATH

        assert DATABASE_PATH.parent == DATA_DIR
        assert DATABASE_PATH.name == 'comicvoice.db'

    def test_engine_uses_aiosqlite(self):
        from app.database import engine

        assert engine.url.drivername == 'sqlite+aiosqlite'
        assert engine.dialect.is_async

    def test_audio_dir_in_data_dir(self):
        from app.config import AUDIO_DIR, DATA_DIR

        assert AUDIO_DIR == DATA_DIR / 'audio'


class TestWALMode:
    """Tests for SQLite WAL mode."""

    @pytest.mark.asyncio
    async def test_wal_mode_can_be_enabled(self, test_engine):
        """Test that WAL mode can be enabled on the database."""
        async with test_engine.begin() as conn:
            result = await conn.execute(text('PRAGMA journal_mode=WAL'))
            mode = result.scalar()
            assert mode in ('wal', 'WAL')


class TestAudioJobModel:
    """Tests for the bulk audio job model."""

    @pytest.mark.asyncio
    async def test_job_defaults(self, test_session: AsyncSession):
        project = await create_project(test_session)
        job = AudioJob(project_id=project.id)
        test_session.add(job)
        await test_session.commit()

        result = await test_session.execute(select(AudioJob).where(AudioJob.id == job.id))
        saved = result.scalar_one()

        assert saved.status == AudioJobStatus.queued.value
        assert saved.mode == 'missing'
        assert saved.force_regenerate is False
        assert saved.total_utterances == 0
        assert saved.created_at is not None
        assert saved.is_active is True

    @pytest.mark.asyncio
    async def test_second_active_job_rejected(self, test_session: AsyncSession):
        """Only one queued/running job may exist per project."""
        project = await create_project(test_session)
        test_session.add(AudioJob(project_id=project.id, status=AudioJobStatus.running.value))
        await test_session.commit()

        test_session.add(AudioJob(project_id=project.id, status=AudioJobStatus.queued.value))
        with pytest.raises(IntegrityError):
            await test_session.commit()

    @pytest.mark.asyncio
    async def test_finished_jobs_do_not_block(self, test_session: AsyncSession):
        project = await create_project(test_session)
        for status in ('completed', 'failed', 'canceled'):
            test_session.add(AudioJob(project_id=project.id, status=status))
        test_session.add(AudioJob(project_id=project.id, status=AudioJobStatus.queued.value))
        await test_session.commit()

        result = await test_session.execute(select(AudioJob).where(AudioJob.project_id == project.id))
        assert len(result.scalars().all()) == 4

    @pytest.mark.asyncio
    async def test_active_jobs_of_different_projects(self, test_session: AsyncSession):
        first = await create_project(test_session)
        second = await create_project(test_session)
        test_session.add(AudioJob(project_id=first.id, status=AudioJobStatus.running.value))
        test_session.add(AudioJob(project_id=second.id, status=AudioJobStatus.running.value))
        await test_session.commit()

    def test_progress_percent(self):
        job = AudioJob(total_utterances=3, processed_utterances=2)
        assert job.progress_percent == 67

    def test_progress_percent_zero_total(self):
        job = AudioJob(total_utterances=0, processed_utterances=0)
        assert job.progress_percent == 0

    def test_error_details_parsed(self):
        details = [{'utterance_id': 1, 'scene_id': 2, 'error_message': 'boom'}]
        job = AudioJob(error_details_json=json.dumps(details))
        assert job.error_details == details

    def test_error_details_malformed(self):
        assert AudioJob(error_details_json='not json').error_details == []
        assert AudioJob(error_details_json=None).error_details == []


class TestAudioJobStatus:
    """Tests for job status enum."""

    def test_job_status_values(self):
        assert AudioJobStatus.queued.value == 'queued'
        assert AudioJobStatus.running.value == 'running'
        assert AudioJobStatus.completed.value == 'completed'
        assert AudioJobStatus.failed.value == 'failed'
        assert AudioJobStatus.canceled.value == 'canceled'

    def test_job_status_is_string(self):
        assert isinstance(AudioJobStatus.queued, str)


class TestAudioIsComplete:
    """Tests for the reuse rule shared by bulk and single generation."""

    def test_missing_audio(self):
        assert audio_is_complete(None) is False

    def test_completed_with_url(self):
        audio = AudioGeneration(status=AudioStatus.completed.value, r2_url='/files/a.mp3')
        assert audio_is_complete(audio) is True

    def test_completed_without_url(self):
        audio = AudioGeneration(status=AudioStatus.completed.value, r2_url=None)
        assert audio_is_complete(audio) is False

    @pytest.mark.parametrize('status', ['generating', 'failed'])
    def test_not_completed(self, status):
        audio = AudioGeneration(status=status, r2_url='/files/a.mp3')
        assert audio_is_complete(audio) is False

    @pytest.mark.asyncio
    async def test_audio_defaults(self, test_session: AsyncSession):
        project = await create_project(test_session)
        scene = await create_scene(test_session, project, idx=1)
        audio = AudioGeneration(scene_id=scene.id, voice_id='ja-JP-Neural2-B', text='hello')
        test_session.add(audio)
        await test_session.commit()

        assert audio.status == AudioStatus.generating.value
        assert audio.is_active is False
        assert audio.format == 'mp3'
