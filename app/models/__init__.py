"""
SQLAlchemy models.

Importing this package registers every table on ``Base.metadata``.
"""
from app.models.base import Base, utcnow
from app.models.project import Project, Scene, ProjectCharacter, SceneCharacter
from app.models.utterance import Utterance, UtteranceRole
from app.models.audio import AudioGeneration, AudioStatus, audio_is_complete
from app.models.job import AudioJob, AudioJobStatus, AudioJobMode, ACTIVE_JOB_STATUSES
from app.models.usage import ApiUsageLog

__all__ = [
    'Base',
    'utcnow',
    'Project',
    'Scene',
    'ProjectCharacter',
    'SceneCharacter',
    'Utterance',
    'UtteranceRole',
    'AudioGeneration',
    'AudioStatus',
    'audio_is_complete',
    'AudioJob',
    'AudioJobStatus',
    'AudioJobMode',
    'ACTIVE_JOB_STATUSES',
    'ApiUsageLog',
]
