"""
Region Cropper - thousandths boxes -> pixel crops -> JPEG bytes.
"""

import math
from typing import List, Optional, Tuple

from loguru import logger

from core.errors import NoRegionsError
from core.image_normalizer import encode_jpeg
from core.models import CropRegion, Detection, NormalizedImage


NORMALIZED_SCALE = 1000


def clamp_thousandths(value: int) -> int:
    return max(0, min(NORMALIZED_SCALE, int(value)))


def round_half_up(value: float) -> int:
    """Ties go up (400.5 -> 401), same as the web client's Math.round."""
    return math.floor(value + 0.5)


def to_pixel_box(
    bbox: Tuple[int, int, int, int],
    width: int,
    height: int,
) -> Optional[Tuple[int, int, int, int]]:
    """
    Convert a thousandths box to (left, top, crop_width, crop_height).

    Returns None when the box is inverted or empty after clamping.
    """
    x1, y1, x2, y2 = (clamp_thousandths(v) for v in bbox)
    if x1 >= x2 or y1 >= y2:
        return None

    left = max(0, round_half_up(x1 / NORMALIZED_SCALE * width))
    top = max(0, round_half_up(y1 / NORMALIZED_SCALE * height))
    right = round_half_up(x2 / NORMALIZED_SCALE * width)
    bottom = round_half_up(y2 / NORMALIZED_SCALE * height)

    crop_width = min(right - left, width - left)
    crop_height = min(bottom - top, height - top)
    return left, top, crop_width, crop_height


def crop_regions(
    image: NormalizedImage,
    detections: List[Detection],
    max_regions: int = 3,
    min_pixels: int = 5,
    quality: int = 80,
) -> List[CropRegion]:
    """
    Crop the first ``max_regions`` detections out of the normalized image.

    Regions whose width or height is ``<= min_pixels`` are dropped silently.

    Raises:
        NoRegionsError: nothing survived filtering
    """
    crops = []

    for det in detections[:max_regions]:
        if det.bbox is None:
            logger.debug(f"Dropping '{det.label}': no usable box")
            continue

        box = to_pixel_box(det.bbox, image.width, image.height)
        if box is None:
            logger.debug(f"Dropping inverted box for '{det.label}': {det.bbox}")
            continue

        left, top, crop_width, crop_height = box
        if crop_width <= min_pixels or crop_height <= min_pixels:
            logger.debug(f"Dropping tiny region '{det.label}': {crop_width}x{crop_height}px")
            continue

        region = image.image.crop((left, top, left + crop_width, top + crop_height))
        crops.append(CropRegion(
            label=det.label,
            bbox=det.bbox,
            image_bytes=encode_jpeg(region, quality=quality),
        ))

    if not crops:
        raise NoRegionsError("No products detected in frame.")

    return crops
