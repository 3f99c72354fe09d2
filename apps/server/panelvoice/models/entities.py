from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Iterator, Sequence

from panelvoice.core.errors import UnitStatusError
from panelvoice.models.schemas import BoxPayload, TimelineItem, TimelinePayload

UNKNOWN_SPEAKER = "Unknown"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, other: BoundingBox) -> bool:
        """Full containment, edges inclusive."""
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def to_payload(self) -> BoxPayload:
        return BoxPayload(x=self.x, y=self.y, width=self.width, height=self.height)


@dataclass(frozen=True)
class Region:
    region_id: str
    box: BoundingBox
    confidence: float


@dataclass(frozen=True)
class TextFragment:
    text: str
    box: BoundingBox
    confidence: float


@dataclass(frozen=True)
class RecognizedText:
    text: str
    confidence: float


@dataclass(frozen=True)
class AssociatedText:
    region: Region
    text: str
    fragments: tuple[TextFragment, ...] = ()

    @property
    def box(self) -> BoundingBox:
        return self.region.box


@dataclass(frozen=True)
class VoiceConfig:
    voice_id: str
    provider: str
    settings: dict[str, Any] = field(default_factory=dict)
    source: str = "process_default"

    @property
    def rate(self) -> float:
        try:
            rate = float(self.settings.get("rate", 1.0))
        except (TypeError, ValueError):
            return 1.0
        return rate if rate > 0 else 1.0


class UnitStatus(str, Enum):
    PENDING = "pending"
    SPEAKING = "speaking"
    DONE = "done"
    FAILED = "failed"


_ALLOWED_STATUS_MOVES = {
    UnitStatus.PENDING: {UnitStatus.SPEAKING},
    UnitStatus.SPEAKING: {UnitStatus.DONE, UnitStatus.FAILED},
    UnitStatus.DONE: set(),
    UnitStatus.FAILED: set(),
}


@dataclass
class DialogueUnit:
    sequence_index: int
    speaker: str
    text: str
    source_box: BoundingBox | None = None
    voice_config: VoiceConfig | None = None
    status: UnitStatus = UnitStatus.PENDING

    def advance(self, status: UnitStatus) -> None:
        if status not in _ALLOWED_STATUS_MOVES[self.status]:
            raise UnitStatusError(
                f"unit {self.sequence_index}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    @property
    def is_unknown(self) -> bool:
        return self.speaker == UNKNOWN_SPEAKER


class Timeline(Sequence[DialogueUnit]):
    """Dialogue units in narrative order.

    Order is the reading order of the source regions and is never re-sorted.
    Construction renumbers ``sequence_index`` so that ``timeline[i].sequence_index == i``.
    """

    def __init__(self, units: Iterable[DialogueUnit] = ()) -> None:
        self._units: list[DialogueUnit] = list(units)
        for index, unit in enumerate(self._units):
            unit.sequence_index = index

    def __getitem__(self, index):  # type: ignore[override]
        return self._units[index]

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[DialogueUnit]:
        return iter(self._units)

    def __repr__(self) -> str:
        return f"Timeline({len(self._units)} units)"

    def fresh_copy(self) -> Timeline:
        return Timeline(replace(unit, status=UnitStatus.PENDING) for unit in self._units)

    def to_payload(self) -> TimelinePayload:
        return TimelinePayload(
            items=[
                TimelineItem(
                    speaker=unit.speaker,
                    dialogue=unit.text,
                    bounding_box=unit.source_box.to_payload() if unit.source_box else None,
                    voice_id=unit.voice_config.voice_id if unit.voice_config else None,
                    provider=unit.voice_config.provider if unit.voice_config else None,
                )
                for unit in self._units
            ]
        )
