from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from panelvoice.core.errors import EventChannel, EventKind
from panelvoice.models.entities import (
    UNKNOWN_SPEAKER,
    AssociatedText,
    BoundingBox,
    DialogueUnit,
)
from panelvoice.models.schemas import CharacterRecord

logger = logging.getLogger(__name__)

# "Name: text" or "NAME: text"
LEADING_NAME_RE = re.compile(r"^([A-Z][a-z]*|[A-Z]+):")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CharacterRegistry:
    """Per-user character memory used for speaker guessing.

    Built from a loaded profile and handed to attribution explicitly; saving it
    back is the caller's job, once per pass.
    """

    def __init__(self, records: Mapping[str, CharacterRecord] | None = None) -> None:
        self._records: dict[str, CharacterRecord] = {
            name: record.model_copy() for name, record in (records or {}).items()
        }

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, name: str) -> CharacterRecord | None:
        return self._records.get(name)

    def names(self) -> list[str]:
        return list(self._records)

    @property
    def records(self) -> dict[str, CharacterRecord]:
        return {name: record.model_copy() for name, record in self._records.items()}

    def record_appearance(self, name: str, seen_at: datetime | None = None) -> CharacterRecord:
        seen_at = seen_at or _utcnow()
        record = self._records.get(name)
        if record is None:
            record = CharacterRecord(appearance_count=1, last_seen=seen_at)
            self._records[name] = record
        else:
            record.appearance_count += 1
            record.last_seen = seen_at
        return record

    def most_frequent_other(self, exclude: str) -> str | None:
        candidates = [name for name in self._records if name != exclude]
        if not candidates:
            return None
        # stable sort: ties keep registry insertion order
        candidates.sort(key=lambda name: -self._records[name].appearance_count)
        return candidates[0]

    def add_character(self, name: str, voice_index: int | None = None, seen_at: datetime | None = None) -> bool:
        if name in self._records:
            return False
        self._records[name] = CharacterRecord(
            appearance_count=1,
            last_seen=seen_at or _utcnow(),
            voice_index=voice_index,
        )
        return True

    def update_voice_index(self, name: str, voice_index: int) -> bool:
        record = self._records.get(name)
        if record is None:
            return False
        record.voice_index = voice_index
        return True

    def remove_character(self, name: str) -> bool:
        return self._records.pop(name, None) is not None

    def character_voices(self) -> dict[str, int | None]:
        return {name: record.voice_index for name, record in self._records.items()}


def split_leading_name(text: str) -> tuple[str | None, str]:
    """Return ``(speaker, remaining_text)`` for ``"Name: text"``; ``(None, text)`` otherwise."""
    stripped = text.strip()
    match = LEADING_NAME_RE.match(stripped)
    if not match:
        return None, stripped
    return match.group(1), stripped[match.end():].strip()


class SpeakerAttributor:
    def __init__(self, events: EventChannel | None = None) -> None:
        self.events = events or EventChannel()

    def attribute(
        self,
        entries: Sequence[AssociatedText] | Iterable[tuple[BoundingBox | None, str]],
        registry: CharacterRegistry,
        seen_at: datetime | None = None,
    ) -> list[DialogueUnit]:
        """Label each entry with a speaker, in order.

        ``registry`` is updated in memory as speakers are found, so a name
        introduced early in the batch is available to the context heuristic
        for later entries.
        """
        seen_at = seen_at or _utcnow()
        units: list[DialogueUnit] = []

        for index, entry in enumerate(entries):
            if isinstance(entry, AssociatedText):
                box, raw_text = entry.box, entry.text
            else:
                box, raw_text = entry

            speaker, text = split_leading_name(raw_text)
            if speaker is None:
                speaker = self._guess_from_context(units, registry)

            if speaker == UNKNOWN_SPEAKER:
                self.events.emit(
                    EventKind.ATTRIBUTION_AMBIGUOUS,
                    sequence_index=index,
                    text=text[:60],
                )
            else:
                registry.record_appearance(speaker, seen_at)

            units.append(
                DialogueUnit(
                    sequence_index=index,
                    speaker=speaker,
                    text=text,
                    source_box=box,
                )
            )

        logger.info(
            "🗣️ Attributed %d unit(s); %d unknown",
            len(units),
            sum(1 for unit in units if unit.is_unknown),
        )
        return units

    @staticmethod
    def _guess_from_context(previous_units: Sequence[DialogueUnit], registry: CharacterRegistry) -> str:
        if not previous_units:
            return UNKNOWN_SPEAKER
        previous = previous_units[-1]
        if previous.is_unknown:
            return UNKNOWN_SPEAKER
        responder = registry.most_frequent_other(previous.speaker)
        return responder or UNKNOWN_SPEAKER
