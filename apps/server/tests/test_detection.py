"""Tests for the edge-based region detector."""

import io

import numpy as np
import pytest
from PIL import Image

from panelvoice.services.detection import RegionDetector, decode_image

from conftest import draw_outline


@pytest.fixture
def detector():
    return RegionDetector()


def test_blank_page_has_no_regions(detector, blank_page):
    assert detector.detect(blank_page) == []


def test_tiny_image_has_no_regions(detector):
    assert detector.detect(np.zeros((2, 2, 4), dtype=np.uint8)) == []


def test_rejects_bad_shape(detector):
    with pytest.raises(ValueError):
        detector.detect(np.zeros((4, 4, 4, 1), dtype=np.uint8))


def test_detects_single_outline(detector, bubble_page):
    regions = detector.detect(bubble_page)
    assert len(regions) == 1
    region = regions[0]
    assert region.region_id == "region_0"
    assert region.confidence == pytest.approx(0.9)
    box = region.box
    assert 36 <= box.x <= 40 and 36 <= box.y <= 40
    assert 120 <= box.right <= 124 and 100 <= box.bottom <= 104


def test_regions_stay_inside_image_and_pass_filters(detector, blank_page):
    page = draw_outline(blank_page, 10, 10, 60, 50)
    page = draw_outline(page, 100, 120, 180, 190)
    height, width = page.shape[:2]
    regions = detector.detect(page)
    assert len(regions) == 2
    for region in regions:
        box = region.box
        assert 0 <= box.x and box.right <= width
        assert 0 <= box.y and box.bottom <= height
        assert 0.3 <= box.width / box.height <= 3.0
        assert min(box.width, box.height) >= 0.05 * min(width, height)


def test_filters_out_speck_and_full_frame_border(detector, blank_page):
    page = blank_page
    page[100:103, 100:103, :3] = 0
    page = draw_outline(page, 2, 2, 197, 197)
    assert detector.detect(page) == []


def test_filters_out_thin_strip(detector, blank_page):
    page = blank_page
    page[50:54, 20:120, :3] = 0
    assert detector.detect(page) == []


def test_grayscale_input(detector, bubble_page):
    gray = bubble_page[..., 0].copy()
    assert len(detector.detect(gray)) == 1


def test_connected_components_large_blob_without_recursion():
    edges = np.ones((600, 600), dtype=bool)
    components = RegionDetector.connected_components(edges)
    assert len(components) == 1
    assert components[0].pixel_count == 600 * 600
    assert (components[0].width, components[0].height) == (600, 600)


def test_connected_components_are_four_connected():
    edges = np.zeros((5, 5), dtype=bool)
    edges[1, 1] = True
    edges[2, 2] = True
    edges[4, 0:5] = True
    components = RegionDetector.connected_components(edges)
    # diagonal neighbours are separate components; raster discovery order
    assert [(c.min_x, c.min_y) for c in components] == [(1, 1), (2, 2), (0, 4)]
    assert [c.pixel_count for c in components] == [1, 1, 5]


def test_decode_image_returns_rgba(tmp_path):
    buffer = io.BytesIO()
    Image.new("RGB", (7, 5), (10, 20, 30)).save(buffer, format="PNG")
    pixels = decode_image(buffer.getvalue())
    assert pixels.shape == (5, 7, 4)
    assert pixels.dtype == np.uint8
    assert tuple(pixels[0, 0]) == (10, 20, 30, 255)

    path = tmp_path / "page.png"
    path.write_bytes(buffer.getvalue())
    assert decode_image(path).shape == (5, 7, 4)


def test_detect_leaves_input_untouched_and_repeats(detector, bubble_page):
    snapshot = bubble_page.copy()
    first = detector.detect(bubble_page)
    second = detector.detect(bubble_page)
    assert np.array_equal(bubble_page, snapshot)
    assert first == second
