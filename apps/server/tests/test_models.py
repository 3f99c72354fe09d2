"""Tests for pipeline entities."""

import pytest

from panelvoice.core.errors import UnitStatusError
from panelvoice.models.entities import BoundingBox, DialogueUnit, Timeline, UnitStatus, VoiceConfig


def test_box_containment_is_inclusive():
    outer = BoundingBox(0, 0, 100, 100)
    assert outer.contains(BoundingBox(0, 0, 100, 100))
    assert outer.contains(BoundingBox(10, 10, 5, 5))
    assert not outer.contains(BoundingBox(95, 10, 10, 5))
    assert not outer.contains(BoundingBox(-1, 0, 5, 5))


def test_unit_status_moves():
    unit = DialogueUnit(0, "Alice", "Hi")
    unit.advance(UnitStatus.SPEAKING)
    unit.advance(UnitStatus.FAILED)
    with pytest.raises(UnitStatusError):
        unit.advance(UnitStatus.SPEAKING)

    fresh = DialogueUnit(1, "Bob", "Yo")
    with pytest.raises(UnitStatusError):
        fresh.advance(UnitStatus.DONE)


def test_timeline_renumbers_and_copies():
    units = [DialogueUnit(7, "Alice", "Hi"), DialogueUnit(3, "Bob", "Yo", source_box=BoundingBox(1, 2, 3, 4))]
    timeline = Timeline(units)
    assert [u.sequence_index for u in timeline] == [0, 1]
    assert [u.speaker for u in timeline] == ["Alice", "Bob"]

    timeline[0].advance(UnitStatus.SPEAKING)
    copy = timeline.fresh_copy()
    assert copy[0].status == UnitStatus.PENDING
    assert copy[0] is not timeline[0]
    assert timeline[0].status == UnitStatus.SPEAKING


def test_timeline_payload():
    voice = VoiceConfig("voice_young_f", "openai")
    timeline = Timeline(
        [
            DialogueUnit(0, "Alice", "Hi", source_box=BoundingBox(1, 2, 3, 4), voice_config=voice),
            DialogueUnit(1, "Unknown", "..."),
        ]
    )
    payload = timeline.to_payload().model_dump()
    assert payload["items"][0] == {
        "speaker": "Alice",
        "dialogue": "Hi",
        "bounding_box": {"x": 1, "y": 2, "width": 3, "height": 4},
        "voice_id": "voice_young_f",
        "provider": "openai",
    }
    assert payload["items"][1]["bounding_box"] is None


@pytest.mark.parametrize("settings, rate", [({}, 1.0), ({"rate": 1.5}, 1.5), ({"rate": -1}, 1.0), ({"rate": "x"}, 1.0)])
def test_voice_rate(settings, rate):
    assert VoiceConfig("v", "openai", settings).rate == rate
