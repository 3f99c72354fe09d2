"""Shared fixtures for panelvoice tests."""

from contextlib import contextmanager

import numpy as np
import pytest

from panelvoice.models.entities import BoundingBox, DialogueUnit, Region, TextFragment, Timeline, VoiceConfig


class FakeRedis:
    """In-memory stand-in for the handful of redis calls the stores make."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.locks: list[str] = []

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

    @contextmanager
    def _held(self, name):
        self.locks.append(name)
        yield

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self._held(name)


@pytest.fixture
def fake_redis():
    return FakeRedis()


def draw_outline(pixels, left, top, right, bottom, thickness=2):
    pixels[top:top + thickness, left:right + 1, :3] = 0
    pixels[bottom - thickness + 1:bottom + 1, left:right + 1, :3] = 0
    pixels[top:bottom + 1, left:left + thickness, :3] = 0
    pixels[top:bottom + 1, right - thickness + 1:right + 1, :3] = 0
    return pixels


@pytest.fixture
def blank_page():
    """200x200 opaque white RGBA page."""
    return np.full((200, 200, 4), 255, dtype=np.uint8)


@pytest.fixture
def bubble_page(blank_page):
    """White page with one rectangular balloon outline."""
    return draw_outline(blank_page, 40, 40, 120, 100)


@pytest.fixture
def region_factory():
    def make(region_id, x, y, width, height):
        return Region(region_id=region_id, box=BoundingBox(x, y, width, height), confidence=0.9)

    return make


@pytest.fixture
def fragment_factory():
    def make(text, x, y, width=20, height=10, confidence=0.9):
        return TextFragment(text=text, box=BoundingBox(x, y, width, height), confidence=confidence)

    return make


@pytest.fixture
def two_unit_timeline():
    voice = VoiceConfig(voice_id="voice_narrator_f", provider="browser")
    return Timeline(
        [
            DialogueUnit(sequence_index=0, speaker="A", text="hi", voice_config=voice),
            DialogueUnit(sequence_index=1, speaker="B", text="yo", voice_config=voice),
        ]
    )
