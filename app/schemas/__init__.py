"""
Pydantic schemas for API request/response validation.
"""
from app.schemas.audio_job import (
    AudioJobResponse,
    BulkCancelResponse,
    BulkGenerateRequest,
    BulkGenerateResponse,
    BulkHistoryResponse,
    BulkStatusResponse,
    ErrorDetail,
)
from app.schemas.audio import ActivateAudioResponse, AudioGenerationResponse, SceneAudioResponse
from app.schemas.utterance import (
    GenerateAudioRequest,
    GenerateAudioResponse,
    SceneCharacterResponse,
    SceneUtterancesResponse,
    UtteranceCreate,
    UtteranceDeleteResponse,
    UtteranceEnvelope,
    UtteranceOrder,
    UtteranceReorder,
    UtteranceReorderResponse,
    UtteranceResponse,
    UtteranceUpdate,
)

__all__ = [
    'AudioJobResponse',
    'BulkCancelResponse',
    'BulkGenerateRequest',
    'BulkGenerateResponse',
    'BulkHistoryResponse',
    'BulkStatusResponse',
    'ErrorDetail',
    'ActivateAudioResponse',
    'AudioGenerationResponse',
    'SceneAudioResponse',
    'GenerateAudioRequest',
    'GenerateAudioResponse',
    'SceneCharacterResponse',
    'SceneUtterancesResponse',
    'UtteranceCreate',
    'UtteranceDeleteResponse',
    'UtteranceEnvelope',
    'UtteranceOrder',
    'UtteranceReorder',
    'UtteranceReorderResponse',
    'UtteranceResponse',
    'UtteranceUpdate',
]
