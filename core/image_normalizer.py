"""
Image Normalizer - decodes the incoming buffer and bounds its size.
"""

import base64
import binascii
import io
import re

from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError

from core.errors import DecodeError
from core.models import NormalizedImage


DATA_URI_PATTERN = re.compile(r"^data:[^,]*?;base64,", re.IGNORECASE)


def strip_data_uri(value: str) -> str:
    """Drop a leading ``data:<mime>;base64,`` prefix if present."""
    return DATA_URI_PATTERN.sub("", value.strip(), count=1)


def decode_base64_image(value: str) -> bytes:
    """Base64 string (optionally data-URI prefixed) -> raw bytes."""
    payload = strip_data_uri(value or "")
    if not payload:
        raise DecodeError("Empty image payload")

    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Image is not valid base64: {e}")

    if not raw:
        raise DecodeError("Empty image payload")
    return raw


def normalize_image(raw: bytes, max_dimension: int) -> NormalizedImage:
    """
    Decode raw bytes and bound the longer side to ``max_dimension``.

    Aspect ratio is preserved and images already within the cap are not
    resampled. The returned object holds no reference to ``raw``.

    Raises:
        DecodeError: bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(raw)) as source:
            source.load()
            image = ImageOps.exif_transpose(source).convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"Unsupported or corrupt image: {e}")

    width, height = image.size
    longest = max(width, height)

    if longest > max_dimension:
        scale = max_dimension / longest
        new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
        image = image.resize(new_size, Image.LANCZOS)
        logger.debug(f"Resized {width}x{height} -> {new_size[0]}x{new_size[1]}")

    return NormalizedImage(image=image)


def encode_jpeg(image: Image.Image, quality: int = 80) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def to_data_uri(image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('utf-8')}"
