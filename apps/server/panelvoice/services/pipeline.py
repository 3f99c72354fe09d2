from __future__ import annotations

import logging
from datetime import datetime

import numpy as np

from panelvoice.core.errors import EventChannel, EventKind, RecognitionError
from panelvoice.models.entities import AssociatedText, Region, Timeline
from panelvoice.services.association import TextAssociator
from panelvoice.services.detection import RegionDetector
from panelvoice.services.ocr import TextRecognizer
from panelvoice.services.speaker import CharacterRegistry, SpeakerAttributor
from panelvoice.services.store import ProfileStore
from panelvoice.services.voices import VoiceResolver

logger = logging.getLogger(__name__)


def crop_region(pixels: np.ndarray, region: Region) -> np.ndarray:
    height, width = pixels.shape[:2]
    box = region.box
    left, top = max(0, int(box.x)), max(0, int(box.y))
    right, bottom = min(width, int(box.right)), min(height, int(box.bottom))
    return pixels[top:bottom, left:right]


class DialoguePipeline:
    """One detection + attribution pass over a page image, producing a Timeline."""

    def __init__(
        self,
        detector: RegionDetector,
        recognizer: TextRecognizer,
        associator: TextAssociator,
        attributor: SpeakerAttributor,
        resolver: VoiceResolver,
        store: ProfileStore,
        events: EventChannel | None = None,
        skip_empty: bool = True,
    ) -> None:
        self.detector = detector
        self.recognizer = recognizer
        self.associator = associator
        self.attributor = attributor
        self.resolver = resolver
        self.store = store
        self.events = events or EventChannel()
        self.skip_empty = skip_empty

    def run(self, pixels: np.ndarray, user_id: str, seen_at: datetime | None = None) -> Timeline:
        regions = self.detector.detect(pixels)
        if not regions:
            height, width = pixels.shape[:2]
            self.events.emit(EventKind.DETECTION_EMPTY, user_id=user_id, width=width, height=height)
            return Timeline()

        associated = self.read_regions(pixels, regions)
        if self.skip_empty:
            associated = [entry for entry in associated if entry.text.strip()]

        with self.store.lock(user_id):
            profile = self.store.get(user_id)
            registry = CharacterRegistry(profile.characters)
            units = self.attributor.attribute(associated, registry, seen_at=seen_at)
            profile.characters = registry.records
            self.resolver.apply(units, profile)
            self.store.set(user_id, profile)

        timeline = Timeline(units)
        logger.info("📖 Timeline ready for %s: %d unit(s) from %d region(s)", user_id, len(timeline), len(regions))
        return timeline

    def read_regions(self, pixels: np.ndarray, regions: list[Region]) -> list[AssociatedText]:
        try:
            fragments = self.recognizer.recognize(pixels)
        except RecognitionError as exc:
            self.events.emit(
                EventKind.RECOGNITION_FAILURE,
                scope="page",
                backend=self.recognizer.name,
                error=str(exc),
            )
            return self._read_each_region(pixels, regions)
        return self.associator.associate(regions, fragments)

    def _read_each_region(self, pixels: np.ndarray, regions: list[Region]) -> list[AssociatedText]:
        associated: list[AssociatedText] = []
        for region in regions:
            text = ""
            try:
                text = self.recognizer.recognize_region(crop_region(pixels, region)).text
            except RecognitionError as exc:
                self.events.emit(
                    EventKind.RECOGNITION_FAILURE,
                    scope="region",
                    region_id=region.region_id,
                    backend=self.recognizer.name,
                    error=str(exc),
                )
            associated.append(AssociatedText(region=region, text=text))
        return associated
