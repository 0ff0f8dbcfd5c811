"""
Scene audio history endpoints.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import AudioGeneration, Scene, audio_is_complete, utcnow
from app.routers.errors import invalid_request, not_found
from app.schemas.audio import ActivateAudioResponse, AudioGenerationResponse, SceneAudioResponse
from app.services.storage import BlobStorage, StorageError, get_blob_storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['audio'])


async def _get_audio(db: AsyncSession, audio_id: int) -> AudioGeneration:
    audio = await db.get(AudioGeneration, audio_id)
    if audio is None:
        raise not_found(f'Audio not found: {audio_id}')
    return audio


@router.get('/scenes/{scene_id}/audio', response_model=SceneAudioResponse)
async def list_scene_audio(
    scene_id: int,
    db: AsyncSession = Depends(get_db),
) -> SceneAudioResponse:
    """List a scene's audio items, newest first, with the active one."""
    if await db.get(Scene, scene_id) is None:
        raise not_found(f'Scene not found: {scene_id}')

    result = await db.execute(
        select(AudioGeneration)
        .where(AudioGeneration.scene_id == scene_id)
        .order_by(AudioGeneration.created_at.desc(), AudioGeneration.id.desc())
    )
    items = [AudioGenerationResponse.model_validate(audio) for audio in result.scalars().all()]
    active = next((item for item in items if item.is_active), None)

    return SceneAudioResponse(scene_id=scene_id, audio_generations=items, active_audio=active)


@router.post('/audio/{audio_id}/activate', response_model=ActivateAudioResponse)
async def activate_audio(
    audio_id: int,
    db: AsyncSession = Depends(get_db),
) -> ActivateAudioResponse:
    """
    Make an audio item the scene's active audio.

    Raises:
        400: Item is not completed or has no stored file
        404: Item not found
    """
    audio = await _get_audio(db, audio_id)
    if not audio_is_complete(audio):
        raise invalid_request('Only completed audio with a stored file can be activated')

    now = utcnow()
    await db.execute(
        update(AudioGeneration)
        .where(AudioGeneration.scene_id == audio.scene_id, AudioGeneration.id != audio_id)
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    audio.is_active = True
    audio.updated_at = now
    await db.commit()
    await db.refresh(audio)

    return ActivateAudioResponse(active_audio=AudioGenerationResponse.model_validate(audio))


@router.delete('/audio/{audio_id}', status_code=204)
async def delete_audio(
    audio_id: int,
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    """
    Delete an inactive audio item and its stored file.

    Raises:
        400: Item is the scene's active audio
        404: Item not found
    """
    audio = await _get_audio(db, audio_id)
    if audio.is_active:
        raise invalid_request('Cannot delete the active audio; activate another one first')

    if audio.r2_key:
        try:
            await storage.delete(audio.r2_key)
        except StorageError as e:
            logger.warning('Failed to delete blob for audio %s: %s', audio_id, e)

    await db.delete(audio)
    await db.commit()
