from __future__ import annotations

from typing import Iterable, Sequence

from panelvoice.core.config import Settings, settings
from panelvoice.models.entities import DialogueUnit, VoiceConfig
from panelvoice.models.schemas import UserProfile, VoicePreference
from panelvoice.services.tts import TTSService


class VoiceResolver:
    """Speaker -> synthesis configuration.

    Priority: the user's per-speaker preference, then the character's
    registry ``voice_index`` into the voice catalog, then the user's default
    voice, then the process-wide default.
    """

    def __init__(self, default_voice_id: str, default_provider: str, voice_catalog: Sequence[str] = ()) -> None:
        self.default_voice_id = default_voice_id
        self.default_provider = default_provider
        self.voice_catalog = list(voice_catalog)

    @classmethod
    def from_settings(cls, config: Settings) -> VoiceResolver:
        return cls(config.default_voice_id, config.default_voice_provider, list(TTSService.VOICE_DISPLAY_NAMES))

    def resolve(self, speaker: str, profile: UserProfile | None = None) -> VoiceConfig:
        profile = profile or UserProfile()
        preference = self._lookup(speaker, profile.voice_preferences)
        if preference is not None:
            return self._to_config(preference, "character", profile)

        indexed = self._from_voice_index(speaker, profile)
        if indexed is not None:
            return indexed

        if profile.default_voice is not None:
            return self._to_config(profile.default_voice, "user_default", profile)

        return VoiceConfig(
            voice_id=self.default_voice_id,
            provider=self.default_provider,
            settings={},
            source="process_default",
        )

    def apply(self, units: Iterable[DialogueUnit], profile: UserProfile | None = None) -> None:
        for unit in units:
            unit.voice_config = self.resolve(unit.speaker, profile)

    @staticmethod
    def _lookup(speaker: str, preferences: dict[str, VoicePreference]) -> VoicePreference | None:
        if speaker in preferences:
            return preferences[speaker]
        lowered = speaker.lower()
        for name, preference in preferences.items():
            if name.lower() == lowered:
                return preference
        return None

    def _from_voice_index(self, speaker: str, profile: UserProfile) -> VoiceConfig | None:
        record = profile.characters.get(speaker)
        if record is None or record.voice_index is None or not self.voice_catalog:
            return None
        # out-of-range indexes wrap around the catalog
        voice_id = self.voice_catalog[record.voice_index % len(self.voice_catalog)]
        provider = profile.default_voice.provider if profile.default_voice else None
        return VoiceConfig(
            voice_id=voice_id,
            provider=provider or self.default_provider,
            settings={},
            source="character_index",
        )

    def _to_config(self, preference: VoicePreference, source: str, profile: UserProfile) -> VoiceConfig:
        # A per-character preference without a provider inherits the user's default provider.
        provider = preference.provider
        if not provider and profile.default_voice is not None:
            provider = profile.default_voice.provider
        return VoiceConfig(
            voice_id=preference.voice_id,
            provider=provider or self.default_provider,
            settings=dict(preference.settings),
            source=source,
        )


voice_resolver = VoiceResolver.from_settings(settings)
