"""
Bulk audio job model.
"""
import enum
import json
from typing import List

from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, ForeignKey, Index, text

from app.models.base import Base, utcnow


class AudioJobStatus(str, enum.Enum):
    """Status states for bulk audio jobs."""
    queued = 'queued'
    running = 'running'
    completed = 'completed'
    failed = 'failed'
    canceled = 'canceled'


class AudioJobMode(str, enum.Enum):
    """Which utterances a bulk job selects."""
    missing = 'missing'
    pending = 'pending'
    all = 'all'


ACTIVE_JOB_STATUSES = (AudioJobStatus.queued.value, AudioJobStatus.running.value)

_ACTIVE_WHERE = text("status IN ('queued', 'running')")


class AudioJob(Base):
    """
    Represents one bulk audio generation run over a project.

    Attributes:
        mode: Work-set selection (missing, pending, all)
        force_regenerate: Reprocess every eligible utterance regardless of mode
        narration_provider: Narration provider snapshot taken at job creation
        narration_voice_id: Narration voice snapshot taken at job creation
        status: queued -> running -> completed / failed / canceled
        total_utterances: Size of the work set
        processed_utterances: success + failed + skipped so far
        error_details_json: JSON list of {utterance_id, scene_id, error_message}
        last_error: Job-level fault message
        started_by_user_id: Requesting user, if known
    """
    __tablename__ = 'project_audio_jobs'
    __table_args__ = (
        Index('idx_project_audio_jobs_project_status', 'project_id', 'status'),
        # At most one queued/running job per project
        Index(
            'uq_project_audio_jobs_active',
            'project_id',
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    mode = Column(String(20), nullable=False, default=AudioJobMode.missing.value)
    force_regenerate = Column(Boolean, nullable=False, default=False)
    narration_provider = Column(String(50), nullable=True)
    narration_voice_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=AudioJobStatus.queued.value)
    total_utterances = Column(Integer, nullable=False, default=0)
    processed_utterances = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    error_details_json = Column(Text, nullable=True)
    started_by_user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    @property
    def progress_percent(self) -> int:
        if not self.total_utterances:
            return 0
        return int(self.processed_utterances * 100 / self.total_utterances + 0.5)

    @property
    def error_details(self) -> List[dict]:
        if not self.error_details_json:
            return []
        try:
            details = json.loads(self.error_details_json)
        except ValueError:
            return []
        return details if isinstance(details, list) else []

    def __repr__(self):
        return f'<AudioJob {self.id} project={self.project_id} status={self.status}>'
