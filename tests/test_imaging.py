"""Tests for opponent screenshot processing."""
from __future__ import annotations

import io

import pytest
from PIL import Image

from eos_defenses.config import CropBox, NumberStyle
from eos_defenses.errors import ImageProcessingError
from eos_defenses.imaging import process_opponent_image

from conftest import make_png

BACKGROUND = (0, 0, 255)


def _open(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def test_output_is_cropped_png():
    """Default crop trims 2%/50%/5%/25% from top/bottom/left/right."""
    result = process_opponent_image(make_png(200, 400), 7)

    image = _open(result)
    assert image.format == "PNG"
    assert image.size == (140, 192)


def test_number_is_drawn_in_top_left_corner():
    result = _open(process_opponent_image(make_png(400, 800, BACKGROUND), 12)).convert("RGB")

    corner = result.crop((0, 0, 150, 150))
    colours = {colour for _, colour in corner.getcolors(maxcolors=150 * 150)}
    assert colours != {BACKGROUND}

    far_corner = result.crop((result.width - 20, result.height - 20, result.width, result.height))
    assert {colour for _, colour in far_corner.getcolors()} == {BACKGROUND}


def test_input_buffer_is_not_modified():
    source = bytearray(make_png())
    snapshot = bytes(source)

    process_opponent_image(source, 1)

    assert bytes(source) == snapshot


def test_custom_crop_and_style():
    crop = CropBox(top=0.0, bottom=0.0, left=0.0, right=0.0)
    style = NumberStyle(margin=0, stroke_width=0, fill="#00FF00")

    image = _open(process_opponent_image(make_png(100, 100), 3, crop=crop, style=style))

    assert image.size == (100, 100)


@pytest.mark.parametrize("payload", [b"", b"not an image at all"])
def test_unreadable_input_raises(payload):
    with pytest.raises(ImageProcessingError):
        process_opponent_image(payload, 1)


def test_crop_leaving_no_area_raises():
    with pytest.raises(ImageProcessingError):
        process_opponent_image(make_png(), 1, crop=CropBox(top=0.6, bottom=0.5))
