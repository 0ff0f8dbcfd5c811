"""
Pydantic schemas for scene audio operations.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class AudioGenerationResponse(BaseModel):
    """Schema for an audio item."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    scene_id: int
    provider: str
    voice_id: str
    model: Optional[str]
    format: str
    sample_rate: Optional[int]
    text: str
    status: str
    error_message: Optional[str]
    r2_key: Optional[str]
    r2_url: Optional[str]
    duration_ms: Optional[int]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SceneAudioResponse(BaseModel):
    """Schema for a scene's audio history."""
    scene_id: int
    audio_generations: List[AudioGenerationResponse]
    active_audio: Optional[AudioGenerationResponse]


class ActivateAudioResponse(BaseModel):
    success: bool = True
    active_audio: AudioGenerationResponse
