"""
Project-side tables read by the audio pipeline.

These rows are owned by the project/scene/character management side of the
product; this service only reads them (and auto-assigns characters to scenes).
"""
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, ForeignKey, UniqueConstraint

from app.models.base import Base, utcnow


class Project(Base):
    """
    A comic/video project.

    Attributes:
        settings_json: JSON settings blob; ``default_narration_voice`` holds
            ``{"provider": ..., "voice_id": ...}`` when configured
    """
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    name = Column(String(255), nullable=False, default='')
    settings_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f'<Project {self.id}>'


class Scene(Base):
    """A scene within a project, ordered by ``idx``."""
    __tablename__ = 'scenes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    idx = Column(Integer, nullable=False)
    dialogue = Column(Text, nullable=True)
    is_hidden = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f'<Scene {self.id} project={self.project_id} idx={self.idx}>'


class ProjectCharacter(Base):
    """A character of a project and its configured voice preset."""
    __tablename__ = 'project_character_models'
    __table_args__ = (UniqueConstraint('project_id', 'character_key'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    character_key = Column(String(100), nullable=False)
    character_name = Column(String(255), nullable=True)
    voice_preset_id = Column(String(255), nullable=True)


class SceneCharacter(Base):
    """Characters assigned to a scene."""
    __tablename__ = 'scene_character_map'
    __table_args__ = (UniqueConstraint('scene_id', 'character_key'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    scene_id = Column(Integer, ForeignKey('scenes.id', ondelete='CASCADE'), nullable=False, index=True)
    character_key = Column(String(100), nullable=False)
