"""Opponent screenshot cropping and number annotation."""
from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .config import CropBox, NumberStyle
from .errors import ImageProcessingError

logger = logging.getLogger(__name__)

_FONT_CANDIDATES: Sequence[Path] = (
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
    Path("/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf"),
    Path("/Library/Fonts/Arial Black.ttf"),
    Path("C:/Windows/Fonts/ariblk.ttf"),
)


def _load_number_font(size: int):
    override = os.environ.get("EOS_NUMBER_FONT")
    candidates = [Path(override)] if override else []
    candidates.extend(_FONT_CANDIDATES)
    for candidate in candidates:
        if not candidate.exists():
            continue
        try:
            return ImageFont.truetype(str(candidate), size=size)
        except OSError as exc:
            logger.warning("Failed to load number font %s: %s", candidate, exc)
    logger.debug("Number overlay: falling back to default font (size=%s)", size)
    try:
        return ImageFont.load_default(size=size)
    except TypeError:  # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def _crop_bounds(width: int, height: int, crop: CropBox) -> tuple[int, int, int, int]:
    left = round(width * crop.left)
    top = round(height * crop.top)
    right = width - round(width * crop.right)
    bottom = height - round(height * crop.bottom)
    if right <= left or bottom <= top:
        raise ImageProcessingError(
            f"Crop leaves no image area for a {width}x{height} screenshot"
        )
    return left, top, right, bottom


def process_opponent_image(
    image_data: bytes,
    number: int,
    *,
    crop: Optional[CropBox] = None,
    style: Optional[NumberStyle] = None,
) -> bytes:
    """Crop an opponent screenshot to the enemy grid and stamp ``number`` on it.

    Returns PNG bytes. The input buffer is never modified; anything Pillow
    cannot decode raises :class:`ImageProcessingError`.
    """

    crop = crop or CropBox()
    style = style or NumberStyle()
    if not image_data:
        raise ImageProcessingError("No image data to process")
    try:
        with Image.open(io.BytesIO(bytes(image_data))) as source:
            source.load()
            image = source.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageProcessingError(f"Unreadable opponent screenshot: {exc}") from exc

    cropped = image.crop(_crop_bounds(image.width, image.height, crop))
    font_size = max(8, int(min(cropped.width, cropped.height) * style.size_ratio))
    font = _load_number_font(font_size)

    draw = ImageDraw.Draw(cropped)
    draw.text(
        (style.margin, style.margin),
        str(number),
        font=font,
        fill=style.fill,
        stroke_width=style.stroke_width,
        stroke_fill=style.stroke,
    )

    output = io.BytesIO()
    try:
        cropped.save(output, format="PNG")
    except (OSError, ValueError) as exc:
        raise ImageProcessingError(f"Failed to encode processed screenshot: {exc}") from exc
    return output.getvalue()


__all__ = ["process_opponent_image"]
