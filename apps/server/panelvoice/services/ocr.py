from __future__ import annotations

import base64
import io
import logging
import re
from collections import defaultdict
from typing import Protocol

import numpy as np
import pytesseract
import requests
from PIL import Image
from pytesseract import Output

from panelvoice.core.config import settings
from panelvoice.core.errors import RecognitionError
from panelvoice.models.entities import BoundingBox, RecognizedText, TextFragment

logger = logging.getLogger(__name__)

DEFAULT_FRAGMENT_CONFIDENCE = 0.9


def clean_ocr_text(text: str) -> str:
    cleaned = text.replace("|", "I")
    cleaned = re.sub(r"[\r\n]+", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip()


def to_pil(pixels: np.ndarray) -> Image.Image:
    image = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
    return image if image.mode == "L" else image.convert("RGB")


class TextRecognizer(Protocol):
    name: str

    def probe(self) -> None:
        """Raise if the backend is not usable."""

    def recognize(self, pixels: np.ndarray) -> list[TextFragment]:
        ...

    def recognize_region(self, pixels: np.ndarray) -> RecognizedText:
        ...


class GoogleVisionRecognizer:
    """Hosted recognizer backed by the Cloud Vision ``images:annotate`` REST endpoint."""

    name = "google"
    ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"

    def __init__(self, api_key: str | None = None, timeout: float = 30.0) -> None:
        self.api_key = api_key if api_key is not None else settings.google_api_key
        self.timeout = timeout
        self._session = requests.Session()

    def probe(self) -> None:
        if not (self.api_key or "").strip():
            raise RecognitionError("Google Vision API key missing")

    def recognize(self, pixels: np.ndarray) -> list[TextFragment]:
        annotations = self._annotate(pixels)
        # The first annotation is the whole text block; the rest are words.
        fragments: list[TextFragment] = []
        for annotation in annotations[1:]:
            text = (annotation.get("description") or "").strip()
            if not text:
                continue
            box = self._box_from_vertices(annotation.get("boundingPoly", {}).get("vertices", []))
            if box is None:
                continue
            fragments.append(
                TextFragment(
                    text=text,
                    box=box,
                    confidence=float(annotation.get("confidence") or DEFAULT_FRAGMENT_CONFIDENCE),
                )
            )
        return fragments

    def recognize_region(self, pixels: np.ndarray) -> RecognizedText:
        annotations = self._annotate(pixels)
        if not annotations:
            return RecognizedText(text="", confidence=0.0)
        first = annotations[0]
        return RecognizedText(
            text=clean_ocr_text(first.get("description") or ""),
            confidence=float(first.get("confidence") or DEFAULT_FRAGMENT_CONFIDENCE),
        )

    def _annotate(self, pixels: np.ndarray) -> list[dict]:
        self.probe()
        buffer = io.BytesIO()
        to_pil(pixels).save(buffer, format="PNG")
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(buffer.getvalue()).decode()},
                    "features": [{"type": "TEXT_DETECTION"}],
                }
            ]
        }
        try:
            response = self._session.post(
                self.ANNOTATE_URL,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            responses = response.json().get("responses") or []
        except (requests.RequestException, ValueError) as exc:
            # requests' JSONDecodeError is both; a non-JSON 200 body lands here
            raise RecognitionError(f"Google Vision request failed: {exc}") from exc

        if not responses:
            return []
        first = responses[0]
        if "error" in first:
            raise RecognitionError(f"Google Vision error: {first['error'].get('message', first['error'])}")
        return first.get("textAnnotations") or []

    @staticmethod
    def _box_from_vertices(vertices: list[dict]) -> BoundingBox | None:
        if len(vertices) < 3:
            return None
        # Vision omits zero-valued coordinates.
        xs = [float(vertex.get("x", 0)) for vertex in vertices]
        ys = [float(vertex.get("y", 0)) for vertex in vertices]
        left, top = min(xs), min(ys)
        return BoundingBox(x=left, y=top, width=max(xs) - left, height=max(ys) - top)


class TesseractRecognizer:
    """Local, offline recognizer. Used directly or as the fallback for hosted OCR."""

    name = "tesseract"

    def __init__(self, min_word_confidence: int = 45, lang: str = "eng") -> None:
        self.min_word_confidence = min_word_confidence
        self.lang = lang

    def probe(self) -> None:
        try:
            pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as exc:
            raise RecognitionError(f"Tesseract unavailable: {exc}") from exc

    def recognize(self, pixels: np.ndarray) -> list[TextFragment]:
        try:
            data = pytesseract.image_to_data(to_pil(pixels), lang=self.lang, output_type=Output.DICT)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise RecognitionError(f"Tesseract failed: {exc}") from exc

        lines: dict[tuple[int, int, int], list[dict[str, int | float | str]]] = defaultdict(list)
        for idx in range(len(data["text"])):
            text = (data["text"][idx] or "").strip()
            if not text:
                continue
            try:
                confidence = float(data["conf"][idx])
            except (TypeError, ValueError):
                confidence = 0.0
            if confidence < self.min_word_confidence:
                continue
            key = (data["block_num"][idx], data["par_num"][idx], data["line_num"][idx])
            lines[key].append(
                {
                    "text": text,
                    "left": int(data["left"][idx]),
                    "top": int(data["top"][idx]),
                    "width": int(data["width"][idx]),
                    "height": int(data["height"][idx]),
                    "word_num": int(data["word_num"][idx]),
                    "conf": confidence,
                }
            )

        fragments: list[TextFragment] = []
        for words in lines.values():
            words_sorted = sorted(words, key=lambda w: (w["word_num"], w["left"]))
            left = min(w["left"] for w in words_sorted)
            top = min(w["top"] for w in words_sorted)
            right = max(w["left"] + w["width"] for w in words_sorted)
            bottom = max(w["top"] + w["height"] for w in words_sorted)
            fragments.append(
                TextFragment(
                    text=clean_ocr_text(" ".join(str(w["text"]) for w in words_sorted)),
                    box=BoundingBox(x=left, y=top, width=right - left, height=bottom - top),
                    confidence=sum(float(w["conf"]) for w in words_sorted) / len(words_sorted) / 100.0,
                )
            )
        return fragments

    def recognize_region(self, pixels: np.ndarray) -> RecognizedText:
        image = to_pil(pixels)
        try:
            text = pytesseract.image_to_string(image, lang=self.lang, config="--psm 6").strip()
            if len(text) < 5:
                # single text line mode picks up short exclamations
                text = pytesseract.image_to_string(image, lang=self.lang, config="--psm 7").strip() or text
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise RecognitionError(f"Tesseract failed: {exc}") from exc
        cleaned = clean_ocr_text(text)
        return RecognizedText(text=cleaned, confidence=DEFAULT_FRAGMENT_CONFIDENCE if cleaned else 0.0)


def build_recognizer(name: str) -> TextRecognizer:
    if name == "google":
        return GoogleVisionRecognizer()
    if name == "tesseract":
        return TesseractRecognizer()
    raise ValueError(f"Unsupported OCR provider: {name}")
