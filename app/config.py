"""
Application configuration and paths.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Application identity
APP_NAME = 'ComicVoice'
APP_VERSION = '0.1.0'

# Server configuration
SERVER_HOST = os.environ.get('COMICVOICE_HOST', '127.0.0.1')
SERVER_PORT = int(os.environ.get('COMICVOICE_PORT', '5111'))

# Data directory (database + stored audio)
DATA_DIR = Path(os.environ.get('COMICVOICE_DATA_DIR', str(Path.home() / '.comicvoice')))

# Database configuration
DATABASE_PATH = DATA_DIR / 'comicvoice.db'
DATABASE_URL = os.environ.get('COMICVOICE_DATABASE_URL', f'sqlite+aiosqlite:///{DATABASE_PATH}')

# Audio blob storage
AUDIO_DIR = DATA_DIR / 'audio'

# Public base URL for stored audio (empty = served by this app under /files)
PUBLIC_BLOB_URL = os.environ.get('COMICVOICE_PUBLIC_BLOB_URL', '')
FILES_ROUTE_PREFIX = '/files'

# Voice used when neither a character preset nor a project default exists
FALLBACK_PROVIDER = 'google'
FALLBACK_VOICE_ID = 'ja-JP-Neural2-B'

# Bulk job tuning
BULK_BATCH_SIZE = 2  # concurrent provider calls per batch
MAX_ERROR_DETAILS = 50
ERROR_MESSAGE_MAX_LENGTH = 500
HISTORY_DEFAULT_LIMIT = 10
HISTORY_MAX_LIMIT = 50

# Duration estimation
BULK_DURATION_FLOOR_MS = 2000
SINGLE_DURATION_FLOOR_MS = 1000
FALLBACK_MP3_BITRATE_KBPS = 64

# Provider calls
PROVIDER_TIMEOUT_SECONDS = 60.0
ELEVENLABS_DEFAULT_MODEL = 'eleven_multilingual_v2'


@dataclass(frozen=True)
class GenerationSettings:
    """
    Tunables and credentials for audio generation.

    Built once from the module constants and environment, then passed
    explicitly to the bulk runner, the audio generator and the duration
    estimator.
    """
    fallback_provider: str = FALLBACK_PROVIDER
    fallback_voice_id: str = FALLBACK_VOICE_ID
    batch_size: int = BULK_BATCH_SIZE
    max_error_details: int = MAX_ERROR_DETAILS
    error_message_max_length: int = ERROR_MESSAGE_MAX_LENGTH
    bulk_duration_floor_ms: int = BULK_DURATION_FLOOR_MS
    single_duration_floor_ms: int = SINGLE_DURATION_FLOOR_MS
    fallback_bitrate_kbps: int = FALLBACK_MP3_BITRATE_KBPS
    provider_timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS
    google_api_key: Optional[str] = None
    fish_api_token: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_model_id: str = ELEVENLABS_DEFAULT_MODEL


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name, '').strip()
    return value or None


def load_generation_settings() -> GenerationSettings:
    """Build settings from the environment."""
    return GenerationSettings(
        batch_size=int(os.environ.get('COMICVOICE_BULK_BATCH_SIZE', BULK_BATCH_SIZE)),
        provider_timeout_seconds=float(
            os.environ.get('COMICVOICE_PROVIDER_TIMEOUT', PROVIDER_TIMEOUT_SECONDS)
        ),
        google_api_key=_env('GOOGLE_TTS_API_KEY') or _env('GEMINI_API_KEY'),
        fish_api_token=_env('FISH_AUDIO_API_TOKEN'),
        elevenlabs_api_key=_env('ELEVENLABS_API_KEY'),
        elevenlabs_model_id=_env('ELEVENLABS_MODEL_ID') or ELEVENLABS_DEFAULT_MODEL,
    )


# Singleton instance
_generation_settings: Optional[GenerationSettings] = None


def get_generation_settings() -> GenerationSettings:
    """Get the generation settings singleton instance."""
    global _generation_settings
    if _generation_settings is None:
        _generation_settings = load_generation_settings()
    return _generation_settings


def reset_generation_settings():
    """Reset the generation settings singleton (for testing)."""
    global _generation_settings
    _generation_settings = None


def ensure_directories():
    """Create required directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    AUDIO_DIR.mkdir(parents=True, exist_ok=True)
