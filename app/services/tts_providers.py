"""
Remote TTS provider adapters.

Each provider turns ``(text, voice_id)`` into encoded audio bytes with a single
HTTP call. Failures surface as ``SynthesisError`` subclasses; nothing here
retries.
"""
import base64
import binascii
import enum
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import httpx

from app.config import GenerationSettings

logger = logging.getLogger(__name__)


class ProviderName(str, enum.Enum):
    """Supported TTS backends."""
    google = 'google'
    fish = 'fish'
    elevenlabs = 'elevenlabs'


class SynthesisError(Exception):
    """Base class for provider failures."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ProviderConfigurationError(SynthesisError):
    """Missing credential or unusable request parameters; raised before any network call."""


class ProviderHTTPError(SynthesisError):
    """Provider answered with a non-success status."""

    def __init__(self, message: str, provider: str, status_code: int, body: str = ''):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body


class ProviderEmptyResponseError(SynthesisError):
    """Provider answered successfully but returned no usable audio."""


class TTSProvider(ABC):
    """
    Interface every provider adapter implements.

    Subclasses build the provider-specific request in ``_request`` and return
    the decoded audio bytes.
    """

    name: ProviderName
    default_sample_rate: int = 24000
    supported_formats: Tuple[str, ...] = ('mp3',)

    def __init__(
        self,
        credential: Optional[str],
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credential = credential
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._credential)

    @property
    @abstractmethod
    def credential_name(self) -> str:
        """Environment variable that supplies the credential."""

    def output_format(self, requested: Optional[str]) -> str:
        """Format this provider will produce for a requested one."""
        if requested in self.supported_formats:
            return requested
        return self.supported_formats[0]

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        sample_rate: Optional[int] = None,
        audio_format: str = 'mp3',
    ) -> bytes:
        """
        Synthesize speech.

        Args:
            text: Text to speak
            voice_id: Voice identifier as configured (prefixes included)
            sample_rate: Output sample rate (None = provider default)
            audio_format: mp3 or wav where supported

        Returns:
            Encoded audio bytes

        Raises:
            ProviderConfigurationError: Missing credential or bad parameters
            ProviderHTTPError: Non-success HTTP status
            ProviderEmptyResponseError: Empty or malformed payload
            SynthesisError: Transport failure
        """
        if not self._credential:
            raise ProviderConfigurationError(f'{self.credential_name} is not configured', self.name.value)
        if not text or not text.strip():
            raise ProviderConfigurationError('Text is required', self.name.value)

        sample_rate = sample_rate or self.default_sample_rate
        audio_format = self.output_format(audio_format)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                audio = await self._request(client, text, voice_id, sample_rate, audio_format)
        except httpx.HTTPError as e:
            raise SynthesisError(
                f'{self.name.value} request failed: {type(e).__name__}: {e}',
                self.name.value,
            ) from e

        if not audio:
            raise ProviderEmptyResponseError(f'{self.name.value} returned empty audio', self.name.value)

        logger.debug('%s synthesized %d bytes for voice %s', self.name.value, len(audio), voice_id)
        return audio

    @abstractmethod
    async def _request(
        self,
        client: httpx.AsyncClient,
        text: str,
        voice_id: str,
        sample_rate: int,
        audio_format: str,
    ) -> bytes:
        """Perform the HTTP call and return audio bytes."""

    def _http_error(self, response: httpx.Response, message: Optional[str] = None) -> ProviderHTTPError:
        body = response.text
        if message is None:
            message = f'{self.name.value} TTS error ({response.status_code}): {body[:300]}'
        logger.error('%s error response: status=%s body=%s', self.name.value, response.status_code, body[:500])
        return ProviderHTTPError(message, self.name.value, response.status_code, body)


class GoogleTTSProvider(TTSProvider):
    """Google Cloud Text-to-Speech (base64 JSON payload)."""

    name = ProviderName.google
    default_sample_rate = 24000
    supported_formats = ('mp3', 'wav')

    API_URL = 'https://texttospeech.googleapis.com/v1/text:synthesize'
    LANGUAGE_CODE = 'ja-JP'

    @property
    def credential_name(self) -> str:
        return 'GOOGLE_TTS_API_KEY'

    async def _request(self, client, text, voice_id, sample_rate, audio_format):
        response = await client.post(
            self.API_URL,
            headers={'X-Goog-Api-Key': self._credential},
            json={
                'input': {'text': text},
                'voice': {'languageCode': self.LANGUAGE_CODE, 'name': voice_id},
                'audioConfig': {
                    'audioEncoding': 'LINEAR16' if audio_format == 'wav' else 'MP3',
                    'sampleRateHertz': sample_rate,
                },
            },
        )
        if response.status_code >= 400:
            raise self._http_error(response, f'TTS API error: {response.status_code} {response.text[:300]}')

        try:
            content = response.json().get('audioContent')
        except (ValueError, AttributeError):
            content = None
        if not content:
            raise ProviderEmptyResponseError('TTS API returned empty audioContent', self.name.value)

        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderEmptyResponseError(f'TTS API returned malformed audioContent: {e}', self.name.value)


class FishAudioProvider(TTSProvider):
    """Fish Audio TTS (raw audio body)."""

    name = ProviderName.fish
    default_sample_rate = 44100
    supported_formats = ('mp3', 'wav')
    supported_sample_rates = (32000, 44100)

    API_URL = 'https://api.fish.audio/v1/tts'
    MODEL = 's1'
    MP3_BITRATE = 128

    @property
    def credential_name(self) -> str:
        return 'FISH_AUDIO_API_TOKEN'

    @staticmethod
    def reference_id(voice_id: str) -> str:
        return re.sub(r'^fish[-:]', '', voice_id)

    async def _request(self, client, text, voice_id, sample_rate, audio_format):
        if sample_rate not in self.supported_sample_rates:
            raise ProviderConfigurationError(
                f'Fish Audio requires a sample rate of 32000 or 44100 Hz, got {sample_rate}',
                self.name.value,
            )

        response = await client.post(
            self.API_URL,
            headers={'Authorization': f'Bearer {self._credential}'},
            json={
                'text': text,
                'reference_id': self.reference_id(voice_id),
                'model': self.MODEL,
                'temperature': 0.7,
                'top_p': 0.7,
                'format': audio_format,
                'sample_rate': sample_rate,
                'mp3_bitrate': self.MP3_BITRATE,
                'normalize': True,
                'chunk_length': 300,
                'latency': 'normal',
            },
        )
        if response.status_code >= 400:
            raise self._http_error(response, self._error_message(response))
        return response.content

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            detail = response.json()['error']['message']
        except (ValueError, KeyError, TypeError):
            detail = response.text[:300]
        return f'Fish TTS Error ({response.status_code}): {detail}'


# Japanese-friendly stock voices, addressable as el-<name>
ELEVENLABS_VOICES = {
    'el-aria': '9BWtsMINqrJLrRacOk9x',
    'el-sarah': 'EXAVITQu4vr4xnSDxMaL',
    'el-charlotte': 'XB0fDUnXU5powFXDhCwa',
    'el-adam': 'pNInz6obpgDQGcFmaJgB',
    'el-bill': 'pqHfZKP75CvOlQylNhV4',
    'el-brian': 'nPczCjzI2devNBz1zQrb',
    'el-lily': 'pFZP5JQG7iQjIQuC4Bku',
    'el-george': 'JBFqnCBsd6RMkjVDRZzb',
}

ELEVENLABS_VOICE_SETTINGS = {
    'stability': 0.5,
    'similarity_boost': 0.75,
    'style': 0.0,
    'use_speaker_boost': True,
}

_RAW_ELEVENLABS_ID = re.compile(r'^[a-zA-Z0-9]{20,}$')


def resolve_elevenlabs_voice_id(voice_id: str) -> Optional[str]:
    """
    Map a configured voice to an ElevenLabs voice id.

    Accepts 'elevenlabs:<id>', a preset key such as 'el-aria', or a raw id.
    """
    if voice_id.startswith('elevenlabs:'):
        return voice_id[len('elevenlabs:'):] or None
    if voice_id in ELEVENLABS_VOICES:
        return ELEVENLABS_VOICES[voice_id]
    if _RAW_ELEVENLABS_ID.match(voice_id):
        return voice_id
    return None


class ElevenLabsProvider(TTSProvider):
    """ElevenLabs TTS (raw mp3 body)."""

    name = ProviderName.elevenlabs
    default_sample_rate = 24000
    supported_formats = ('mp3',)

    API_BASE = 'https://api.elevenlabs.io/v1'
    OUTPUT_FORMAT = 'mp3_44100_128'

    def __init__(self, credential, model_id='eleven_multilingual_v2', timeout=60.0, transport=None):
        super().__init__(credential, timeout=timeout, transport=transport)
        self.model_id = model_id

    @property
    def credential_name(self) -> str:
        return 'ELEVENLABS_API_KEY'

    async def _request(self, client, text, voice_id, sample_rate, audio_format):
        resolved = resolve_elevenlabs_voice_id(voice_id)
        if not resolved:
            raise ProviderConfigurationError(f'Unknown ElevenLabs voice: {voice_id}', self.name.value)

        response = await client.post(
            f'{self.API_BASE}/text-to-speech/{resolved}',
            headers={'Accept': 'audio/mpeg', 'xi-api-key': self._credential},
            json={
                'text': text,
                'model_id': self.model_id,
                'voice_settings': ELEVENLABS_VOICE_SETTINGS,
                'output_format': self.OUTPUT_FORMAT,
            },
        )
        if response.status_code >= 400:
            raise self._http_error(response, self._error_message(response))
        return response.content

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        status = response.status_code
        if status == 401:
            try:
                blocked = response.json()['detail']['status'] == 'detected_unusual_activity'
            except (ValueError, KeyError, TypeError):
                blocked = False
            if blocked:
                return 'ElevenLabs (401): Free Tier is blocked from this IP'
            return 'ElevenLabs (401): Invalid API key'
        if status == 422:
            return f'ElevenLabs (422): Invalid request parameters: {response.text[:300]}'
        if status == 429:
            return 'ElevenLabs (429): Rate limit exceeded'
        return f'ElevenLabs API error ({status}): {response.text[:300]}'


def build_providers(
    settings: GenerationSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[ProviderName, TTSProvider]:
    """Create one adapter per provider from settings."""
    timeout = settings.provider_timeout_seconds
    return {
        ProviderName.google: GoogleTTSProvider(
            settings.google_api_key, timeout=timeout, transport=transport,
        ),
        ProviderName.fish: FishAudioProvider(
            settings.fish_api_token, timeout=timeout, transport=transport,
        ),
        ProviderName.elevenlabs: ElevenLabsProvider(
            settings.elevenlabs_api_key,
            model_id=settings.elevenlabs_model_id,
            timeout=timeout,
            transport=transport,
        ),
    }
