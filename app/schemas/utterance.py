"""
Pydantic schemas for utterance API operations.
"""
from typing import List, Optional
from pydantic import BaseModel, Field

from app.models.utterance import UtteranceRole


class UtteranceCreate(BaseModel):
    """Schema for adding an utterance to a scene."""
    role: UtteranceRole
    character_key: Optional[str] = None
    text: str = Field(..., description='Line to speak (trimmed, must not be blank)')


class UtteranceUpdate(BaseModel):
    """Schema for a partial utterance update."""
    role: Optional[UtteranceRole] = None
    character_key: Optional[str] = None
    text: Optional[str] = None


class UtteranceReorder(BaseModel):
    order: List[int] = Field(..., min_length=1, description='Utterance ids in their new order')


class UtteranceResponse(BaseModel):
    """Schema for an utterance with its current audio."""
    id: int
    scene_id: int
    order_no: int
    role: str
    character_key: Optional[str]
    character_name: Optional[str] = None
    text: str
    audio_generation_id: Optional[int]
    audio_status: Optional[str] = None
    audio_url: Optional[str] = None
    duration_ms: Optional[int]


class SceneCharacterResponse(BaseModel):
    character_key: str
    name: str
    voice_preset_id: Optional[str]


class SceneUtterancesResponse(BaseModel):
    """Schema for a scene's utterance list."""
    scene_id: int
    project_id: int
    utterances: List[UtteranceResponse]
    assigned_characters: List[SceneCharacterResponse]


class GenerateAudioRequest(BaseModel):
    """Schema for generating one utterance's audio."""
    force: bool = False
    voice_id: Optional[str] = None
    provider: Optional[str] = None
    format: Optional[str] = Field(None, description='mp3 or wav where the provider supports it')


class GenerateAudioResponse(BaseModel):
    success: bool = True
    utterance_id: int
    audio_generation_id: Optional[int]
    status: str
    skipped: bool = False
    provider: Optional[str] = None
    voice_id: Optional[str] = None
    message: str


class UtteranceEnvelope(BaseModel):
    success: bool = True
    utterance: UtteranceResponse


class UtteranceDeleteResponse(BaseModel):
    success: bool = True
    message: str
    deleted_utterance_id: int
    remaining_count: int


class UtteranceOrder(BaseModel):
    id: int
    order_no: int


class UtteranceReorderResponse(BaseModel):
    success: bool = True
    message: str
    scene_id: int
    order: List[UtteranceOrder]
