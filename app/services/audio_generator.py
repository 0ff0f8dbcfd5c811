"""
Single audio item generation.

An item is generated in two phases:
    reserve  - insert a 'generating' audio row and link the utterance to it
    fulfil   - synthesize, upload, verify, measure and mark it completed

Both phases are isolated: ``generate`` and ``fulfil`` never raise, every
failure ends in a 'failed' audio row and an error message.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import GenerationSettings, get_generation_settings
from app.models import AudioGeneration, AudioStatus, Scene, Utterance, utcnow
from app.services.audio_duration import estimate_duration_ms
from app.services.storage import BlobStorage, StorageError, build_audio_key, get_blob_storage
from app.services.tts_providers import ProviderName, TTSProvider, build_providers
from app.services.voice_resolution import VoiceResolution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationTarget:
    """What an audio item is generated for."""
    scene_id: int
    scene_idx: int
    project_id: int
    text: str
    utterance_id: Optional[int] = None


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    audio_id: Optional[int] = None
    error_message: Optional[str] = None


def truncate_message(message: str, limit: int) -> str:
    if len(message) <= limit:
        return message
    return message[:limit - 3] + '...'


class AudioGenerator:
    """
    Generates and stores audio for one utterance (or scene) at a time.

    Args:
        session_factory: Async session factory; each phase uses its own session
        storage: Blob storage for the encoded audio
        settings: Generation settings
        providers: Provider adapters keyed by name (default: built from settings)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        storage: BlobStorage,
        settings: GenerationSettings,
        providers: Optional[Dict[ProviderName, TTSProvider]] = None,
    ):
        self._session_factory = session_factory
        self._storage = storage
        self._settings = settings
        self.providers = providers if providers is not None else build_providers(settings)

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    async def reserve(
        self,
        session: AsyncSession,
        target: GenerationTarget,
        voice: VoiceResolution,
        audio_format: str = 'mp3',
    ) -> AudioGeneration:
        """
        Insert the placeholder audio row and link the utterance to it.

        The caller owns the session and commits.
        """
        provider = self.providers[voice.provider]
        audio = AudioGeneration(
            scene_id=target.scene_id,
            provider=voice.provider.value,
            voice_id=voice.voice_id,
            model=getattr(provider, 'model_id', None),
            format=provider.output_format(audio_format),
            sample_rate=provider.default_sample_rate,
            text=target.text,
            status=AudioStatus.generating.value,
            is_active=False,
        )
        session.add(audio)
        await session.flush()

        if target.utterance_id is not None:
            await session.execute(
                update(Utterance)
                .where(Utterance.id == target.utterance_id)
                .values(audio_generation_id=audio.id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        return audio

    async def generate(
        self,
        target: GenerationTarget,
        voice: VoiceResolution,
        duration_floor_ms: int,
        audio_format: str = 'mp3',
    ) -> GenerationResult:
        """Reserve and fulfil one audio item."""
        try:
            async with self._session_factory() as session:
                audio = await self.reserve(session, target, voice, audio_format)
                await session.commit()
                audio_id = audio.id
        except Exception as e:
            message = self._message(e)
            logger.exception('Failed to reserve audio for scene %s: %s', target.scene_id, message)
            return GenerationResult(success=False, error_message=message)

        return await self.fulfil(audio_id, duration_floor_ms=duration_floor_ms)

    async def fulfil(self, audio_id: int, duration_floor_ms: int) -> GenerationResult:
        """Synthesize, store and finalize a reserved audio item."""
        try:
            async with self._session_factory() as session:
                audio, target = await self._load(session, audio_id)

            provider = self.providers[ProviderName(audio.provider)]
            data = await provider.synthesize(
                audio.text,
                audio.voice_id,
                sample_rate=audio.sample_rate,
                audio_format=audio.format,
            )

            key = build_audio_key(
                target.project_id,
                target.scene_idx,
                target.utterance_id,
                audio_id,
                audio.format,
            )
            url = await self._storage.put(key, data)
            if not url or not await self._storage.exists(key):
                raise StorageError('Blob upload verification failed')

            duration_ms = estimate_duration_ms(
                data,
                audio.format,
                audio.sample_rate or provider.default_sample_rate,
                floor_ms=duration_floor_ms,
                fallback_bitrate_kbps=self._settings.fallback_bitrate_kbps,
            )
            await self._complete(audio, key, url, duration_ms)

        except Exception as e:
            message = self._message(e)
            logger.error('Audio %s failed: %s', audio_id, message)
            await self._mark_failed(audio_id, message)
            return GenerationResult(success=False, audio_id=audio_id, error_message=message)

        logger.info('Audio %s completed: %s (%dms)', audio_id, url, duration_ms)
        return GenerationResult(success=True, audio_id=audio_id)

    async def _load(self, session: AsyncSession, audio_id: int):
        audio = await session.get(AudioGeneration, audio_id)
        if audio is None:
            raise LookupError(f'Audio item {audio_id} not found')
        if audio.status != AudioStatus.generating.value:
            raise RuntimeError(f'Audio item {audio_id} is {audio.status}, expected generating')

        scene = await session.get(Scene, audio.scene_id)
        if scene is None:
            raise LookupError(f'Scene {audio.scene_id} not found')

        result = await session.execute(
            select(Utterance.id).where(Utterance.audio_generation_id == audio_id).limit(1)
        )
        target = GenerationTarget(
            scene_id=scene.id,
            scene_idx=scene.idx,
            project_id=scene.project_id,
            text=audio.text,
            utterance_id=result.scalar_one_or_none(),
        )
        return audio, target

    async def _complete(self, audio: AudioGeneration, key: str, url: str, duration_ms: int):
        now = utcnow()
        async with self._session_factory() as session:
            # One active audio per scene
            await session.execute(
                update(AudioGeneration)
                .where(
                    AudioGeneration.scene_id == audio.scene_id,
                    AudioGeneration.id != audio.id,
                    AudioGeneration.is_active.is_(True),
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(AudioGeneration)
                .where(AudioGeneration.id == audio.id)
                .values(
                    status=AudioStatus.completed.value,
                    r2_key=key,
                    r2_url=url,
                    duration_ms=duration_ms,
                    is_active=True,
                    error_message=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            # Only while the utterance still points at this item
            await session.execute(
                update(Utterance)
                .where(Utterance.audio_generation_id == audio.id)
                .values(duration_ms=duration_ms, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _mark_failed(self, audio_id: int, message: str):
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(AudioGeneration)
                    .where(
                        AudioGeneration.id == audio_id,
                        AudioGeneration.status == AudioStatus.generating.value,
                    )
                    .values(status=AudioStatus.failed.value, error_message=message, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception:
            logger.exception('Could not mark audio %s as failed', audio_id)

    def _message(self, error: Exception) -> str:
        message = str(error) or type(error).__name__
        return truncate_message(message, self._settings.error_message_max_length)


# Singleton instance
_audio_generator: Optional[AudioGenerator] = None


def get_audio_generator() -> AudioGenerator:
    """Get the audio generator singleton instance."""
    global _audio_generator
    if _audio_generator is None:
        from app.database import async_session_factory

        _audio_generator = AudioGenerator(
            async_session_factory,
            get_blob_storage(),
            get_generation_settings(),
        )
    return _audio_generator


def reset_audio_generator():
    """Reset the audio generator singleton (for testing)."""
    global _audio_generator
    _audio_generator = None
