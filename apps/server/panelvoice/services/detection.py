from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import numpy as np
from PIL import Image

from panelvoice.core.config import Settings, settings
from panelvoice.models.entities import BoundingBox, Region

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def decode_image(source: bytes | str | Path) -> np.ndarray:
    """Decode an encoded image (bytes or path) into an ``H×W×4`` uint8 RGBA buffer."""
    if isinstance(source, (bytes, bytearray)):
        handle = Image.open(io.BytesIO(source))
    else:
        handle = Image.open(source)
    with handle as image:
        return np.asarray(image.convert("RGBA"), dtype=np.uint8).copy()


@dataclass
class Component:
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    pixels: List[int] = field(default_factory=list)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def pixel_count(self) -> int:
        return len(self.pixels)


class RegionDetector:
    """
    Edge-based speech bubble candidate detector.

    Luminance -> Sobel gradient magnitude -> binary edge map -> 4-connected
    components -> size / aspect / pixel-count filter.
    """

    def __init__(
        self,
        edge_threshold: float = 30.0,
        min_region_fraction: float = 0.05,
        max_region_fraction: float = 0.5,
        min_aspect_ratio: float = 0.3,
        max_aspect_ratio: float = 3.0,
        min_component_pixels: int = 20,
        region_confidence: float = 0.9,
    ) -> None:
        self.edge_threshold = edge_threshold
        self.min_region_fraction = min_region_fraction
        self.max_region_fraction = max_region_fraction
        self.min_aspect_ratio = min_aspect_ratio
        self.max_aspect_ratio = max_aspect_ratio
        self.min_component_pixels = min_component_pixels
        self.region_confidence = min(1.0, max(0.0, region_confidence))

    @classmethod
    def from_settings(cls, config: Settings) -> RegionDetector:
        return cls(
            edge_threshold=config.edge_threshold,
            min_region_fraction=config.min_region_fraction,
            max_region_fraction=config.max_region_fraction,
            min_aspect_ratio=config.min_aspect_ratio,
            max_aspect_ratio=config.max_aspect_ratio,
            min_component_pixels=config.min_component_pixels,
            region_confidence=config.region_confidence,
        )

    def detect(self, pixels: np.ndarray) -> list[Region]:
        if pixels.ndim not in (2, 3):
            raise ValueError(f"expected a 2-D or 3-D pixel buffer, got shape {pixels.shape}")
        height, width = pixels.shape[:2]
        if width < 3 or height < 3:
            return []

        gray = self.luminance(pixels)
        edges = self.edge_map(gray)
        components = self.connected_components(edges)
        survivors = [c for c in components if self._is_bubble(c, width, height)]

        regions = [
            Region(
                region_id=f"region_{index}",
                box=BoundingBox(
                    x=component.min_x,
                    y=component.min_y,
                    width=component.width,
                    height=component.height,
                ),
                confidence=self.region_confidence,
            )
            for index, component in enumerate(survivors)
        ]
        logger.info(
            "🔎 Detected %d region(s) from %d component(s) in %dx%d image",
            len(regions),
            len(components),
            width,
            height,
        )
        return regions

    @staticmethod
    def luminance(pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim == 2:
            return pixels.astype(np.float64)
        rgb = pixels[..., :3].astype(np.float64)
        return rgb @ LUMA_WEIGHTS

    def edge_map(self, gray: np.ndarray) -> np.ndarray:
        # 3x3 Sobel over interior pixels only; the one-pixel border is never an edge.
        g = gray
        gx = (g[:-2, 2:] + 2 * g[1:-1, 2:] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[1:-1, :-2] + g[2:, :-2])
        gy = (g[2:, :-2] + 2 * g[2:, 1:-1] + g[2:, 2:]) - (g[:-2, :-2] + 2 * g[:-2, 1:-1] + g[:-2, 2:])
        edges = np.zeros(gray.shape, dtype=bool)
        edges[1:-1, 1:-1] = np.hypot(gx, gy) > self.edge_threshold
        return edges

    @staticmethod
    def connected_components(edges: np.ndarray) -> list[Component]:
        """4-connected components of a boolean edge map, in raster discovery order.

        Uses an explicit worklist over flat indices so call depth stays constant
        regardless of component size.
        """
        height, width = edges.shape
        flat = edges.ravel().tolist()
        visited = bytearray(len(flat))
        components: list[Component] = []

        for seed in np.flatnonzero(edges.ravel()):
            seed = int(seed)
            if visited[seed]:
                continue
            visited[seed] = True
            seed_y, seed_x = divmod(seed, width)
            component = Component(min_x=seed_x, min_y=seed_y, max_x=seed_x, max_y=seed_y)
            stack = [seed]
            while stack:
                idx = stack.pop()
                y, x = divmod(idx, width)
                component.pixels.append(idx)
                if x < component.min_x:
                    component.min_x = x
                elif x > component.max_x:
                    component.max_x = x
                if y < component.min_y:
                    component.min_y = y
                elif y > component.max_y:
                    component.max_y = y

                if x + 1 < width:
                    right = idx + 1
                    if flat[right] and not visited[right]:
                        visited[right] = True
                        stack.append(right)
                if x > 0:
                    left = idx - 1
                    if flat[left] and not visited[left]:
                        visited[left] = True
                        stack.append(left)
                if y + 1 < height:
                    down = idx + width
                    if flat[down] and not visited[down]:
                        visited[down] = True
                        stack.append(down)
                if y > 0:
                    up = idx - width
                    if flat[up] and not visited[up]:
                        visited[up] = True
                        stack.append(up)
            components.append(component)

        return components

    def _is_bubble(self, component: Component, image_width: int, image_height: int) -> bool:
        short_side = min(image_width, image_height)
        min_size = short_side * self.min_region_fraction
        max_size = short_side * self.max_region_fraction

        if component.width < min_size or component.height < min_size:
            return False
        if component.width > max_size or component.height > max_size:
            return False

        aspect_ratio = component.width / component.height
        if aspect_ratio < self.min_aspect_ratio or aspect_ratio > self.max_aspect_ratio:
            return False

        return component.pixel_count >= self.min_component_pixels


region_detector = RegionDetector.from_settings(settings)
