"""
Health check endpoint.
"""
from typing import Dict
from pydantic import BaseModel
from fastapi import APIRouter, Depends

from app.config import APP_VERSION
from app.services.audio_generator import AudioGenerator, get_audio_generator


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    version: str
    providers: Dict[str, bool]


@router.get('/health', response_model=HealthResponse)
async def health_check(generator: AudioGenerator = Depends(get_audio_generator)) -> HealthResponse:
    """
    Check server health status.

    Returns the server version and which TTS providers have credentials.
    Fast response - no database queries.
    """
    return HealthResponse(
        status='ok',
        version=APP_VERSION,
        providers={name.value: provider.is_configured for name, provider in generator.providers.items()},
    )
