"""
Utterance model: one speakable line of a scene.
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, UniqueConstraint

from app.models.base import Base, utcnow


class UtteranceRole(str, enum.Enum):
    """Who speaks an utterance."""
    narration = 'narration'
    dialogue = 'dialogue'


class Utterance(Base):
    """
    Represents one narration or dialogue line within a scene.

    Attributes:
        order_no: Position within the scene, contiguous from 1
        role: narration or dialogue
        character_key: Speaking character (required for dialogue, null for narration)
        audio_generation_id: Most recent audio item reserved for this line
        duration_ms: Duration copied from the completed audio item
    """
    __tablename__ = 'scene_utterances'
    __table_args__ = (UniqueConstraint('scene_id', 'order_no'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    scene_id = Column(Integer, ForeignKey('scenes.id', ondelete='CASCADE'), nullable=False, index=True)
    order_no = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)
    character_key = Column(String(100), nullable=True)
    text = Column(Text, nullable=False)
    audio_generation_id = Column(
        Integer,
        ForeignKey('audio_generations.id', ondelete='SET NULL'),
        nullable=True,
        index=True,
    )
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<Utterance {self.id} scene={self.scene_id} role={self.role}>'
