"""
Playback duration of encoded audio.

MP3 durations are read with mutagen from the stream headers, without decoding.
When mutagen cannot find an MPEG frame the duration is estimated from the byte
length at an assumed bitrate. WAV durations come from the RIFF header, or from
raw 16-bit mono PCM arithmetic when there is none.
"""
import io
import logging
import wave
from typing import Optional

from mutagen import MutagenError
from mutagen.mp3 import MP3

logger = logging.getLogger(__name__)


def mp3_duration_ms(data: bytes) -> Optional[int]:
    """MP3 duration in milliseconds, or None if no frame can be found."""
    try:
        audio = MP3(io.BytesIO(data))
    except MutagenError as e:
        logger.debug('Could not read MP3 headers: %s', e)
        return None
    if not audio.info.length:
        return None
    return int(audio.info.length * 1000 + 0.5)


def estimate_mp3_duration_ms(byte_length: int, bitrate_kbps: int) -> int:
    """Duration of ``byte_length`` bytes at a constant bitrate."""
    return int(byte_length * 8 / bitrate_kbps + 0.5)


def wav_duration_ms(data: bytes, sample_rate: int) -> int:
    """Duration of WAV data; falls back to raw 16-bit mono PCM."""
    try:
        with wave.open(io.BytesIO(data), 'rb') as wav:
            frames = wav.getnframes()
            rate = wav.getframerate()
        if rate:
            return int(frames * 1000 / rate + 0.5)
    except (wave.Error, EOFError):
        pass
    bytes_per_second = sample_rate * 2
    return int(len(data) * 1000 / bytes_per_second + 0.5)


def estimate_duration_ms(
    data: bytes,
    audio_format: str,
    sample_rate: int,
    floor_ms: int,
    fallback_bitrate_kbps: int = 64,
) -> int:
    """
    Playback duration for stored audio, never below ``floor_ms``.

    Args:
        data: Encoded audio
        audio_format: 'mp3' or 'wav'
        sample_rate: Sample rate requested from the provider
        floor_ms: Minimum returned duration
        fallback_bitrate_kbps: Bitrate assumed when MP3 headers can't be read
    """
    if audio_format == 'wav':
        duration = wav_duration_ms(data, sample_rate)
    else:
        duration = mp3_duration_ms(data)
        if not duration:
            duration = estimate_mp3_duration_ms(len(data), fallback_bitrate_kbps)
            logger.info(
                'MP3 fallback duration: %d bytes @ %dkbps = %dms',
                len(data), fallback_bitrate_kbps, duration,
            )
    return max(floor_ms, duration)
