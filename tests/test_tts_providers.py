"""
TTS provider adapter tests.

HTTP is served by httpx.MockTransport; no network access.
"""
import base64
import json

import httpx
import pytest

from app.config import GenerationSettings
from app.services.tts_providers import (
    ElevenLabsProvider,
    FishAudioProvider,
    GoogleTTSProvider,
    ProviderConfigurationError,
    ProviderEmptyResponseError,
    ProviderHTTPError,
    ProviderName,
    SynthesisError,
    build_providers,
    resolve_elevenlabs_voice_id,
)


class Recorder:
    """MockTransport handler returning a canned response and keeping requests."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def transport(self):
        return httpx.MockTransport(self)

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


class TestGoogleProvider:

    @pytest.mark.asyncio
    async def test_synthesize(self):
        recorder = Recorder(httpx.Response(200, json={'audioContent': base64.b64encode(b'mp3-bytes').decode()}))
        provider = GoogleTTSProvider('google-key', transport=recorder.transport)

        audio = await provider.synthesize('こんにちは', 'ja-JP-Neural2-B')

        assert audio == b'mp3-bytes'
        request = recorder.requests[0]
        assert request.headers['X-Goog-Api-Key'] == 'google-key'
        assert recorder.body['voice'] == {'languageCode': 'ja-JP', 'name': 'ja-JP-Neural2-B'}
        assert recorder.body['audioConfig'] == {'audioEncoding': 'MP3', 'sampleRateHertz': 24000}

    @pytest.mark.asyncio
    async def test_wav_uses_linear16(self):
        recorder = Recorder(httpx.Response(200, json={'audioContent': base64.b64encode(b'wav').decode()}))
        provider = GoogleTTSProvider('google-key', transport=recorder.transport)

        await provider.synthesize('text', 'ja-JP-Neural2-B', audio_format='wav')

        assert recorder.body['audioConfig']['audioEncoding'] == 'LINEAR16'

    @pytest.mark.asyncio
    async def test_http_error(self):
        recorder = Recorder(httpx.Response(403, text='forbidden'))
        provider = GoogleTTSProvider('google-key', transport=recorder.transport)

        with pytest.raises(ProviderHTTPError) as exc_info:
            await provider.synthesize('text', 'ja-JP-Neural2-B')

        assert exc_info.value.status_code == 403
        assert str(exc_info.value) == 'TTS API error: 403 forbidden'

    @pytest.mark.asyncio
    async def test_empty_audio_content(self):
        recorder = Recorder(httpx.Response(200, json={}))
        provider = GoogleTTSProvider('google-key', transport=recorder.transport)

        with pytest.raises(ProviderEmptyResponseError):
            await provider.synthesize('text', 'ja-JP-Neural2-B')

    @pytest.mark.asyncio
    async def test_missing_key_makes_no_request(self):
        recorder = Recorder(httpx.Response(200))
        provider = GoogleTTSProvider(None, transport=recorder.transport)

        with pytest.raises(ProviderConfigurationError, match='GOOGLE_TTS_API_KEY'):
            await provider.synthesize('text', 'ja-JP-Neural2-B')

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def fail(request):
            raise httpx.ConnectError('connection refused', request=request)

        provider = GoogleTTSProvider('google-key', transport=httpx.MockTransport(fail))

        with pytest.raises(SynthesisError, match='ConnectError'):
            await provider.synthesize('text', 'ja-JP-Neural2-B')


class TestFishProvider:

    @pytest.mark.asyncio
    async def test_synthesize(self):
        recorder = Recorder(httpx.Response(200, content=b'fish-audio'))
        provider = FishAudioProvider('fish-token', transport=recorder.transport)

        audio = await provider.synthesize('text', 'fish:abc123')

        assert audio == b'fish-audio'
        assert recorder.requests[0].headers['Authorization'] == 'Bearer fish-token'
        assert recorder.body['reference_id'] == 'abc123'
        assert recorder.body['model'] == 's1'
        assert recorder.body['sample_rate'] == 44100
        assert recorder.body['format'] == 'mp3'

    def test_reference_id(self):
        assert FishAudioProvider.reference_id('fish-abc') == 'abc'
        assert FishAudioProvider.reference_id('fish:abc') == 'abc'
        assert FishAudioProvider.reference_id('abc') == 'abc'

    @pytest.mark.asyncio
    async def test_unsupported_sample_rate(self):
        recorder = Recorder(httpx.Response(200, content=b'x'))
        provider = FishAudioProvider('fish-token', transport=recorder.transport)

        with pytest.raises(ProviderConfigurationError, match='32000 or 44100'):
            await provider.synthesize('text', 'fish:abc', sample_rate=24000)

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_error_message(self):
        recorder = Recorder(httpx.Response(402, json={'error': {'message': 'Insufficient balance'}}))
        provider = FishAudioProvider('fish-token', transport=recorder.transport)

        with pytest.raises(ProviderHTTPError, match=r'Fish TTS Error \(402\): Insufficient balance'):
            await provider.synthesize('text', 'fish:abc')

    @pytest.mark.asyncio
    async def test_empty_body(self):
        recorder = Recorder(httpx.Response(200, content=b''))
        provider = FishAudioProvider('fish-token', transport=recorder.transport)

        with pytest.raises(ProviderEmptyResponseError):
            await provider.synthesize('text', 'fish:abc')


class TestElevenLabsProvider:

    @pytest.mark.asyncio
    async def test_synthesize_preset(self):
        recorder = Recorder(httpx.Response(200, content=b'el-audio'))
        provider = ElevenLabsProvider('eleven-key', transport=recorder.transport)

        audio = await provider.synthesize('text', 'el-aria')

        assert audio == b'el-audio'
        request = recorder.requests[0]
        assert request.url.path == '/v1/text-to-speech/9BWtsMINqrJLrRacOk9x'
        assert request.headers['xi-api-key'] == 'eleven-key'
        assert recorder.body['model_id'] == 'eleven_multilingual_v2'
        assert recorder.body['output_format'] == 'mp3_44100_128'

    def test_voice_id_resolution(self):
        assert resolve_elevenlabs_voice_id('elevenlabs:abc') == 'abc'
        assert resolve_elevenlabs_voice_id('el-george') == 'JBFqnCBsd6RMkjVDRZzb'
        assert resolve_elevenlabs_voice_id('pNInz6obpgDQGcFmaJgB') == 'pNInz6obpgDQGcFmaJgB'
        assert resolve_elevenlabs_voice_id('el-nobody') is None

    @pytest.mark.asyncio
    async def test_unknown_voice(self):
        recorder = Recorder(httpx.Response(200, content=b'x'))
        provider = ElevenLabsProvider('eleven-key', transport=recorder.transport)

        with pytest.raises(ProviderConfigurationError, match='Unknown ElevenLabs voice'):
            await provider.synthesize('text', 'el-nobody')

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status, body, message', [
        (401, {'detail': {'status': 'detected_unusual_activity'}}, 'Free Tier is blocked'),
        (401, {'detail': {'status': 'invalid_api_key'}}, 'Invalid API key'),
        (422, {'detail': 'bad'}, 'Invalid request parameters'),
        (429, {}, 'Rate limit exceeded'),
        (500, {}, r'ElevenLabs API error \(500\)'),
    ])
    async def test_error_messages(self, status, body, message):
        recorder = Recorder(httpx.Response(status, json=body))
        provider = ElevenLabsProvider('eleven-key', transport=recorder.transport)

        with pytest.raises(ProviderHTTPError, match=message):
            await provider.synthesize('text', 'el-aria')

    def test_mp3_only(self):
        assert ElevenLabsProvider('k').output_format('wav') == 'mp3'


class TestBuildProviders:

    def test_configuration_flags(self):
        providers = build_providers(GenerationSettings(google_api_key='g'))

        assert set(providers) == set(ProviderName)
        assert providers[ProviderName.google].is_configured is True
        assert providers[ProviderName.fish].is_configured is False
        assert providers[ProviderName.elevenlabs].is_configured is False

    def test_elevenlabs_model(self):
        providers = build_providers(GenerationSettings(elevenlabs_model_id='eleven_v3'))
        assert providers[ProviderName.elevenlabs].model_id == 'eleven_v3'
