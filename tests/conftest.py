"""
Pytest fixtures for testing.
"""
import json
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.config import GenerationSettings, get_generation_settings, reset_generation_settings
from app.database import get_db
from app.models import (
    AudioGeneration,
    AudioStatus,
    Base,
    Project,
    ProjectCharacter,
    Scene,
    Utterance,
)
from app.services.audio_generator import AudioGenerator, get_audio_generator, reset_audio_generator
from app.services.bulk_audio import BulkAudioRunner, reset_bulk_runner
from app.services.job_processor import AudioJobProcessor, get_job_processor, reset_job_processor
from app.services.storage import BlobStorage, get_blob_storage, reset_blob_storage
from app.services.tts_providers import ProviderHTTPError, ProviderName, TTSProvider


# 128 kbps / 44.1 kHz MPEG-1 Layer III frame header; each frame is 417 bytes
MP3_FRAME_HEADER = b'\xff\xfb\x90\x64'
MP3_FRAME_SIZE = 417


def fake_mp3(frames: int = 100) -> bytes:
    """Constant-bitrate MP3 data (100 frames play for 2606 ms)."""
    frame = MP3_FRAME_HEADER + b'\x00' * (MP3_FRAME_SIZE - len(MP3_FRAME_HEADER))
    return frame * frames


class FakeProvider(TTSProvider):
    """Provider that answers locally; texts listed in ``failing_texts`` fail."""

    def __init__(self, name: ProviderName, audio: bytes = None, credential: Optional[str] = 'test-key'):
        super().__init__(credential)
        self.name = name
        self.audio = audio if audio is not None else fake_mp3()
        self.failing_texts = set()
        self.calls = []

    @property
    def credential_name(self) -> str:
        return f'{self.name.value.upper()}_TEST_KEY'

    async def _request(self, client, text, voice_id, sample_rate, audio_format):
        self.calls.append({'text': text, 'voice_id': voice_id, 'sample_rate': sample_rate, 'format': audio_format})
        if text in self.failing_texts:
            raise ProviderHTTPError(f'TTS API error: 500 cannot speak {text}', self.name.value, 500)
        return self.audio


@pytest.fixture
def test_db_url(tmp_path):
    """Generate a per-test database URL."""
    return f'sqlite+aiosqlite:///{tmp_path / "test.db"}'


@pytest_asyncio.fixture(scope='function')
async def test_engine(test_db_url):
    """Create a test database engine."""
    engine = create_async_engine(test_db_url, echo=False, connect_args={'timeout': 30})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope='function')
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    """Generation settings with every provider configured."""
    return GenerationSettings(
        google_api_key='google-key',
        fish_api_token='fish-token',
        elevenlabs_api_key='eleven-key',
    )


@pytest.fixture
def storage(tmp_path):
    """Blob storage under a temporary directory."""
    return BlobStorage(tmp_path / 'audio')


@pytest.fixture
def providers():
    """Fake providers keyed by name."""
    return {name: FakeProvider(name) for name in ProviderName}


@pytest.fixture
def generator(session_factory, storage, settings, providers):
    return AudioGenerator(session_factory, storage, settings, providers=providers)


@pytest.fixture
def runner(session_factory, generator, settings):
    return BulkAudioRunner(session_factory, generator, settings)


@pytest.fixture
def mock_processor():
    """Processor stand-in that records enqueued work."""
    processor = MagicMock(spec=AudioJobProcessor)
    processor.enqueue_bulk_job = AsyncMock()
    processor.enqueue_utterance_audio = AsyncMock()
    return processor


@pytest_asyncio.fixture
async def client(session_factory, settings, storage, generator, mock_processor):
    """Create a test client with mocked dependencies."""
    # Reset singletons
    reset_generation_settings()
    reset_blob_storage()
    reset_audio_generator()
    reset_bulk_runner()
    reset_job_processor()

    # Import app after resetting singletons
    from server import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # Override dependencies
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_settings] = lambda: settings
    app.dependency_overrides[get_blob_storage] = lambda: storage
    app.dependency_overrides[get_audio_generator] = lambda: generator
    app.dependency_overrides[get_job_processor] = lambda: mock_processor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
    reset_generation_settings()
    reset_blob_storage()
    reset_audio_generator()
    reset_bulk_runner()
    reset_job_processor()


# Seed helpers

async def create_project(session: AsyncSession, settings: dict = None, user_id: int = 7) -> Project:
    project = Project(
        name='Test Project',
        user_id=user_id,
        settings_json=json.dumps(settings) if settings is not None else None,
    )
    session.add(project)
    await session.commit()
    return project


async def create_scene(
    session: AsyncSession,
    project: Project,
    idx: int,
    dialogue: str = None,
    is_hidden: bool = False,
) -> Scene:
    scene = Scene(project_id=project.id, idx=idx, dialogue=dialogue, is_hidden=is_hidden)
    session.add(scene)
    await session.commit()
    return scene


async def create_character(
    session: AsyncSession,
    project: Project,
    character_key: str,
    voice_preset_id: str = None,
    name: str = None,
) -> ProjectCharacter:
    character = ProjectCharacter(
        project_id=project.id,
        character_key=character_key,
        character_name=name or character_key.title(),
        voice_preset_id=voice_preset_id,
    )
    session.add(character)
    await session.commit()
    return character


async def create_utterance(
    session: AsyncSession,
    scene: Scene,
    order_no: int,
    text: str,
    role: str = 'narration',
    character_key: str = None,
) -> Utterance:
    utterance = Utterance(
        scene_id=scene.id,
        order_no=order_no,
        role=role,
        character_key=character_key,
        text=text,
    )
    session.add(utterance)
    await session.commit()
    return utterance


async def create_audio(
    session: AsyncSession,
    scene: Scene,
    status: str = AudioStatus.completed.value,
    is_active: bool = False,
    utterance: Utterance = None,
    r2_url: Optional[str] = '/files/audio/existing.mp3',
    r2_key: Optional[str] = 'audio/existing.mp3',
) -> AudioGeneration:
    audio = AudioGeneration(
        scene_id=scene.id,
        provider='google',
        voice_id='ja-JP-Neural2-B',
        format='mp3',
        sample_rate=24000,
        text='existing',
        status=status,
        r2_key=r2_key if status == AudioStatus.completed.value else None,
        r2_url=r2_url if status == AudioStatus.completed.value else None,
        duration_ms=3000 if status == AudioStatus.completed.value else None,
        is_active=is_active,
    )
    session.add(audio)
    await session.flush()
    if utterance is not None:
        utterance.audio_generation_id = audio.id
    await session.commit()
    return audio
