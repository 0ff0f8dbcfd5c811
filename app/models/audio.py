"""
Audio item model: one synthesis attempt and its stored artifact.
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, ForeignKey, Index

from app.models.base import Base, utcnow


class AudioStatus(str, enum.Enum):
    """Status states for audio items."""
    generating = 'generating'
    completed = 'completed'
    failed = 'failed'


class AudioGeneration(Base):
    """
    Represents one TTS attempt for a scene.

    Attributes:
        provider: TTS backend name (google, fish, elevenlabs)
        voice_id: Voice identifier as configured (prefixes included)
        status: generating until the blob is verified, then completed or failed
        r2_key: Blob storage key
        r2_url: Public URL of the blob (required once completed)
        duration_ms: Playback duration, set only after a successful upload
        is_active: The item currently played for the scene (one per scene)
    """
    __tablename__ = 'audio_generations'
    __table_args__ = (
        Index('idx_audio_generations_scene_active', 'scene_id', 'is_active'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scene_id = Column(Integer, ForeignKey('scenes.id', ondelete='CASCADE'), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default='google')
    voice_id = Column(String(255), nullable=False)
    model = Column(String(100), nullable=True)
    format = Column(String(10), nullable=False, default='mp3')
    sample_rate = Column(Integer, nullable=True)
    text = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=AudioStatus.generating.value, index=True)
    error_message = Column(Text, nullable=True)
    r2_key = Column(Text, nullable=True)
    r2_url = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<AudioGeneration {self.id} scene={self.scene_id} status={self.status}>'


def audio_is_complete(audio) -> bool:
    """
    Whether an audio item counts as done and can be reused instead of regenerated.

    Shared by the bulk runner and the single-utterance endpoint so both skip
    the same items.
    """
    return (
        audio is not None
        and audio.status == AudioStatus.completed.value
        and bool(audio.r2_url)
    )
