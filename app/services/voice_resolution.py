"""
Voice resolution: which provider and voice speaks an utterance.

Priority:
    0. explicit override (single-utterance requests only)
    1. dialogue + character_key -> the character's voice preset
    2. project settings ``default_narration_voice``
    3. configured fallback voice
"""
import json
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GenerationSettings
from app.models import Project, ProjectCharacter, UtteranceRole
from app.services.tts_providers import ProviderName

logger = logging.getLogger(__name__)


class VoiceSource:
    override = 'override'
    character = 'character'
    project_default = 'project_default'
    fallback = 'fallback'


@dataclass(frozen=True)
class VoiceResolution:
    provider: ProviderName
    voice_id: str
    source: str


def detect_provider(voice_id: str) -> ProviderName:
    """Map a voice identifier to its provider by prefix."""
    if voice_id.startswith('elevenlabs:') or voice_id.startswith('el-'):
        return ProviderName.elevenlabs
    if voice_id.startswith('fish:') or voice_id.startswith('fish-'):
        return ProviderName.fish
    return ProviderName.google


def _explicit_or_detected(provider: Optional[str], voice_id: str) -> ProviderName:
    if provider:
        try:
            return ProviderName(provider)
        except ValueError:
            logger.warning('Unknown provider %r for voice %s, detecting from voice id', provider, voice_id)
    return detect_provider(voice_id)


def resolve_voice(
    role: str,
    character_key: Optional[str],
    project_settings: Optional[dict],
    character_voices: Mapping[str, Optional[str]],
    settings: GenerationSettings,
    override_voice_id: Optional[str] = None,
    override_provider: Optional[str] = None,
) -> VoiceResolution:
    """
    Resolve the voice for one utterance.

    Args:
        role: Utterance role
        character_key: Speaking character (dialogue only)
        project_settings: Parsed project settings, or None
        character_voices: character_key -> voice preset id for the project
        settings: Generation settings (fallback voice)
        override_voice_id: Explicit voice requested by the caller
        override_provider: Explicit provider for the override voice

    Never raises; missing configuration falls through to the next tier.
    """
    if override_voice_id:
        return VoiceResolution(
            provider=_explicit_or_detected(override_provider, override_voice_id),
            voice_id=override_voice_id,
            source=VoiceSource.override,
        )

    if role == UtteranceRole.dialogue.value:
        if not character_key:
            logger.warning('Dialogue utterance has no character_key, using narration voice')
        else:
            preset = character_voices.get(character_key)
            if preset:
                return VoiceResolution(
                    provider=detect_provider(preset),
                    voice_id=preset,
                    source=VoiceSource.character,
                )

    narration = (project_settings or {}).get('default_narration_voice')
    if isinstance(narration, dict) and narration.get('voice_id'):
        voice_id = str(narration['voice_id'])
        return VoiceResolution(
            provider=_explicit_or_detected(narration.get('provider'), voice_id),
            voice_id=voice_id,
            source=VoiceSource.project_default,
        )

    return VoiceResolution(
        provider=_explicit_or_detected(settings.fallback_provider, settings.fallback_voice_id),
        voice_id=settings.fallback_voice_id,
        source=VoiceSource.fallback,
    )


def parse_project_settings(settings_json: Optional[str]) -> Optional[dict]:
    """Parse a project's settings blob; None on absence or malformed JSON."""
    if not settings_json:
        return None
    try:
        parsed = json.loads(settings_json)
    except ValueError:
        logger.warning('Failed to parse project settings_json')
        return None
    return parsed if isinstance(parsed, dict) else None


async def load_project_settings(session: AsyncSession, project_id: int) -> Optional[dict]:
    """Load and parse a project's settings."""
    result = await session.execute(
        select(Project.settings_json).where(Project.id == project_id)
    )
    return parse_project_settings(result.scalar_one_or_none())


async def load_character_voices(session: AsyncSession, project_id: int) -> Dict[str, Optional[str]]:
    """Load character_key -> voice preset id for a project."""
    result = await session.execute(
        select(ProjectCharacter.character_key, ProjectCharacter.voice_preset_id)
        .where(ProjectCharacter.project_id == project_id)
    )
    return {key: preset for key, preset in result.all()}
