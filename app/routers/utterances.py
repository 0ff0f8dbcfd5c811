"""
Scene utterance endpoints.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GenerationSettings, get_generation_settings
from app.database import get_db
from app.models import (
    AudioGeneration,
    AudioStatus,
    ProjectCharacter,
    Scene,
    SceneCharacter,
    Utterance,
    UtteranceRole,
    audio_is_complete,
    utcnow,
)
from app.routers.errors import AUDIO_GENERATING, api_error, invalid_request, not_found
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
from app.services.audio_generator import AudioGenerator, GenerationTarget, get_audio_generator
from app.services.job_processor import AudioJobProcessor, get_job_processor
from app.services.voice_resolution import load_character_voices, load_project_settings, resolve_voice

logger = logging.getLogger(__name__)

router = APIRouter(tags=['utterances'])


async def _get_scene(db: AsyncSession, scene_id: int) -> Scene:
    scene = await db.get(Scene, scene_id)
    if scene is None:
        raise not_found(f'Scene not found: {scene_id}')
    return scene


async def _get_utterance(db: AsyncSession, utterance_id: int) -> Utterance:
    utterance = await db.get(Utterance, utterance_id)
    if utterance is None:
        raise not_found(f'Utterance not found: {utterance_id}')
    return utterance


async def _list_utterances(
    db: AsyncSession,
    project_id: int,
    scene_id: Optional[int] = None,
    utterance_id: Optional[int] = None,
) -> List[UtteranceResponse]:
    query = (
        select(Utterance, AudioGeneration.status, AudioGeneration.r2_url, ProjectCharacter.character_name)
        .outerjoin(AudioGeneration, AudioGeneration.id == Utterance.audio_generation_id)
        .outerjoin(
            ProjectCharacter,
            and_(
                ProjectCharacter.character_key == Utterance.character_key,
                ProjectCharacter.project_id == project_id,
            ),
        )
        .order_by(Utterance.order_no)
        .execution_options(populate_existing=True)
    )
    if scene_id is not None:
        query = query.where(Utterance.scene_id == scene_id)
    if utterance_id is not None:
        query = query.where(Utterance.id == utterance_id)

    result = await db.execute(query)
    return [
        UtteranceResponse(
            id=utterance.id,
            scene_id=utterance.scene_id,
            order_no=utterance.order_no,
            role=utterance.role,
            character_key=utterance.character_key,
            character_name=character_name,
            text=utterance.text,
            audio_generation_id=utterance.audio_generation_id,
            audio_status=audio_status,
            audio_url=audio_url,
            duration_ms=utterance.duration_ms,
        )
        for utterance, audio_status, audio_url, character_name in result.all()
    ]


async def _utterance_envelope(db: AsyncSession, project_id: int, utterance_id: int) -> UtteranceEnvelope:
    rows = await _list_utterances(db, project_id, utterance_id=utterance_id)
    return UtteranceEnvelope(utterance=rows[0])


async def _migrate_scene(db: AsyncSession, scene: Scene):
    """Give a scene without utterances a narration utterance from its dialogue."""
    count = await db.scalar(select(func.count(Utterance.id)).where(Utterance.scene_id == scene.id))
    if count:
        return

    result = await db.execute(
        select(AudioGeneration)
        .where(AudioGeneration.scene_id == scene.id, AudioGeneration.is_active.is_(True))
        .order_by(AudioGeneration.created_at.desc())
        .limit(1)
    )
    active = result.scalar_one_or_none()

    db.add(Utterance(
        scene_id=scene.id,
        order_no=1,
        role=UtteranceRole.narration.value,
        character_key=None,
        text=scene.dialogue or '',
        audio_generation_id=active.id if active else None,
        duration_ms=active.duration_ms if active else None,
    ))
    await db.flush()
    logger.info('Created default narration utterance for scene %s', scene.id)


async def _ensure_scene_character(db: AsyncSession, scene: Scene, character_key: str):
    """
    Check that a dialogue character belongs to the scene or its project.

    Project characters not yet mapped to the scene are assigned to it.
    """
    mapped = await db.scalar(
        select(SceneCharacter.id)
        .where(SceneCharacter.scene_id == scene.id, SceneCharacter.character_key == character_key)
    )
    if mapped:
        return

    known = await db.scalar(
        select(ProjectCharacter.id)
        .where(ProjectCharacter.project_id == scene.project_id, ProjectCharacter.character_key == character_key)
    )
    if not known:
        raise invalid_request(f'character_key "{character_key}" not found in project characters')

    db.add(SceneCharacter(scene_id=scene.id, character_key=character_key))
    await db.flush()
    logger.info('Auto-assigned character %s to scene %s', character_key, scene.id)


async def _renumber(db: AsyncSession, utterance_ids: List[int]):
    """Set order_no to 1..n following ``utterance_ids``."""
    now = utcnow()
    # Two passes keep (scene_id, order_no) unique at every step
    for position, utterance_id in enumerate(utterance_ids, start=1):
        await db.execute(
            update(Utterance)
            .where(Utterance.id == utterance_id)
            .values(order_no=-position)
            .execution_options(synchronize_session=False)
        )
    for position, utterance_id in enumerate(utterance_ids, start=1):
        await db.execute(
            update(Utterance)
            .where(Utterance.id == utterance_id)
            .values(order_no=position, updated_at=now)
            .execution_options(synchronize_session=False)
        )


@router.get('/scenes/{scene_id}/utterances', response_model=SceneUtterancesResponse)
async def list_scene_utterances(
    scene_id: int,
    db: AsyncSession = Depends(get_db),
) -> SceneUtterancesResponse:
    """
    List a scene's utterances with their audio and assigned characters.

    Scenes that predate utterances get a default narration utterance.
    """
    scene = await _get_scene(db, scene_id)
    await _migrate_scene(db, scene)

    utterances = await _list_utterances(db, scene.project_id, scene_id=scene_id)

    result = await db.execute(
        select(SceneCharacter.character_key, ProjectCharacter.character_name, ProjectCharacter.voice_preset_id)
        .outerjoin(
            ProjectCharacter,
            and_(
                ProjectCharacter.character_key == SceneCharacter.character_key,
                ProjectCharacter.project_id == scene.project_id,
            ),
        )
        .where(SceneCharacter.scene_id == scene_id)
    )
    rows = result.all()
    if not rows:
        # No scene assignments yet: every project character is selectable
        result = await db.execute(
            select(ProjectCharacter.character_key, ProjectCharacter.character_name, ProjectCharacter.voice_preset_id)
            .where(ProjectCharacter.project_id == scene.project_id)
            .order_by(ProjectCharacter.character_name)
        )
        rows = result.all()

    return SceneUtterancesResponse(
        scene_id=scene_id,
        project_id=scene.project_id,
        utterances=utterances,
        assigned_characters=[
            SceneCharacterResponse(character_key=key, name=name or key, voice_preset_id=preset)
            for key, name, preset in rows
        ],
    )


@router.post('/scenes/{scene_id}/utterances', response_model=UtteranceEnvelope, status_code=201)
async def create_utterance(
    scene_id: int,
    body: UtteranceCreate,
    db: AsyncSession = Depends(get_db),
) -> UtteranceEnvelope:
    """
    Append an utterance to a scene.

    Raises:
        400: Blank text, or a character_key that does not fit the role
        404: Scene not found
    """
    text = body.text.strip()
    if not text:
        raise invalid_request('text is required and cannot be empty')

    scene = await _get_scene(db, scene_id)

    if body.role == UtteranceRole.narration:
        if body.character_key is not None:
            raise invalid_request('character_key must be null for narration')
    else:
        if not body.character_key:
            raise invalid_request('character_key is required for dialogue')
        await _ensure_scene_character(db, scene, body.character_key)

    max_order = await db.scalar(select(func.max(Utterance.order_no)).where(Utterance.scene_id == scene_id))
    utterance = Utterance(
        scene_id=scene_id,
        order_no=(max_order or 0) + 1,
        role=body.role.value,
        character_key=body.character_key if body.role == UtteranceRole.dialogue else None,
        text=text,
    )
    db.add(utterance)
    await db.flush()

    return await _utterance_envelope(db, scene.project_id, utterance.id)


@router.put('/utterances/{utterance_id}', response_model=UtteranceEnvelope)
async def update_utterance(
    utterance_id: int,
    body: UtteranceUpdate,
    db: AsyncSession = Depends(get_db),
) -> UtteranceEnvelope:
    """
    Partially update an utterance.

    Switching to narration clears the character; switching to dialogue needs one.
    """
    utterance = await _get_utterance(db, utterance_id)
    scene = await _get_scene(db, utterance.scene_id)
    provided = body.model_fields_set
    if not provided:
        raise invalid_request('No fields to update')
    values = {}

    if 'role' in provided:
        if body.role is None:
            raise invalid_request('role must be "narration" or "dialogue"')
        values['role'] = body.role.value
    final_role = values.get('role', utterance.role)

    if final_role == UtteranceRole.narration.value:
        if 'character_key' in provided or utterance.character_key is not None:
            values['character_key'] = None
    elif 'character_key' in provided:
        if not body.character_key:
            raise invalid_request('character_key is required for dialogue')
        await _ensure_scene_character(db, scene, body.character_key)
        values['character_key'] = body.character_key
    elif 'role' in provided and not utterance.character_key:
        raise invalid_request('character_key is required when changing to dialogue')

    if 'text' in provided:
        text = (body.text or '').strip()
        if not text:
            raise invalid_request('text cannot be empty')
        values['text'] = text

    if values:
        values['updated_at'] = utcnow()
        await db.execute(
            update(Utterance)
            .where(Utterance.id == utterance_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    return await _utterance_envelope(db, scene.project_id, utterance_id)


@router.delete('/utterances/{utterance_id}', response_model=UtteranceDeleteResponse)
async def delete_utterance(
    utterance_id: int,
    db: AsyncSession = Depends(get_db),
) -> UtteranceDeleteResponse:
    """Delete an utterance and renumber the rest of its scene from 1."""
    utterance = await _get_utterance(db, utterance_id)
    scene_id = utterance.scene_id

    await db.delete(utterance)
    await db.flush()

    result = await db.execute(
        select(Utterance.id).where(Utterance.scene_id == scene_id).order_by(Utterance.order_no)
    )
    remaining = list(result.scalars().all())
    await _renumber(db, remaining)

    return UtteranceDeleteResponse(
        message='Utterance deleted successfully',
        deleted_utterance_id=utterance_id,
        remaining_count=len(remaining),
    )


@router.put('/scenes/{scene_id}/utterances/reorder', response_model=UtteranceReorderResponse)
async def reorder_utterances(
    scene_id: int,
    body: UtteranceReorder,
    db: AsyncSession = Depends(get_db),
) -> UtteranceReorderResponse:
    """
    Reorder a scene's utterances.

    Every id must belong to the scene; ids not listed keep their place after
    the listed ones.
    """
    await _get_scene(db, scene_id)

    result = await db.execute(
        select(Utterance.id).where(Utterance.scene_id == scene_id).order_by(Utterance.order_no)
    )
    existing = list(result.scalars().all())

    invalid = [str(uid) for uid in body.order if uid not in existing]
    if invalid:
        raise invalid_request(f'These utterance ids do not belong to this scene: {", ".join(invalid)}')
    if len(set(body.order)) != len(body.order):
        raise invalid_request('order contains duplicate utterance ids')

    listed = set(body.order)
    await _renumber(db, list(body.order) + [uid for uid in existing if uid not in listed])

    result = await db.execute(
        select(Utterance.id, Utterance.order_no)
        .where(Utterance.scene_id == scene_id)
        .order_by(Utterance.order_no)
    )
    return UtteranceReorderResponse(
        message='Utterances reordered successfully',
        scene_id=scene_id,
        order=[UtteranceOrder(id=uid, order_no=order_no) for uid, order_no in result.all()],
    )


@router.post('/utterances/{utterance_id}/generate-audio', response_model=GenerateAudioResponse, status_code=202)
async def generate_utterance_audio(
    utterance_id: int,
    body: Optional[GenerateAudioRequest] = None,
    db: AsyncSession = Depends(get_db),
    settings: GenerationSettings = Depends(get_generation_settings),
    generator: AudioGenerator = Depends(get_audio_generator),
    processor: AudioJobProcessor = Depends(get_job_processor),
):
    """
    Generate audio for one utterance in the background.

    Returns 200 with skipped=true when the utterance already has completed
    audio (unless forced), 202 with the reserved audio id otherwise.

    Raises:
        400: Utterance has no text
        404: Utterance not found
        409: Audio for this utterance is still generating (unless forced)
    """
    body = body or GenerateAudioRequest()
    utterance = await _get_utterance(db, utterance_id)
    scene = await _get_scene(db, utterance.scene_id)

    text = (utterance.text or '').strip()
    if not text:
        raise invalid_request('Utterance has no text')

    if utterance.audio_generation_id and not body.force:
        existing = await db.get(AudioGeneration, utterance.audio_generation_id)
        if audio_is_complete(existing):
            skipped = GenerateAudioResponse(
                utterance_id=utterance_id,
                audio_generation_id=existing.id,
                status=existing.status,
                skipped=True,
                message='Audio already generated for this utterance',
            )
            return JSONResponse(status_code=200, content=skipped.model_dump())
        if existing is not None and existing.status == AudioStatus.generating.value:
            raise api_error(409, AUDIO_GENERATING, 'Audio generation already in progress for this utterance')

    voice = resolve_voice(
        utterance.role,
        utterance.character_key,
        await load_project_settings(db, scene.project_id),
        await load_character_voices(db, scene.project_id),
        settings,
        override_voice_id=body.voice_id,
        override_provider=body.provider,
    )
    logger.info(
        'Utterance %s voice: source=%s provider=%s voice=%s',
        utterance_id, voice.source, voice.provider.value, voice.voice_id,
    )

    target = GenerationTarget(
        scene_id=scene.id,
        scene_idx=scene.idx,
        project_id=scene.project_id,
        text=text,
        utterance_id=utterance_id,
    )
    audio = await generator.reserve(db, target, voice, body.format or 'mp3')
    await db.commit()

    await processor.enqueue_utterance_audio(audio.id)

    return GenerateAudioResponse(
        utterance_id=utterance_id,
        audio_generation_id=audio.id,
        status=AudioStatus.generating.value,
        provider=voice.provider.value,
        voice_id=voice.voice_id,
        message='Audio generation started for utterance',
    )
