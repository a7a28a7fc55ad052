"""
Detection parser - recovers a strict detection list from "probably JSON" model text.

Phases:
    1. strip_code_fences  - remove markdown fences the model may add
    2. extract_json_array - greedy [ ... ] match, tolerates prose around it
    3. parse_json_array   - json.loads, with an optional repair pass

Each phase is usable on its own so the failure modes can be tested
without a network call.
"""

import json
import re
from typing import Any, List, Optional

from loguru import logger

from core.errors import DetectionFormatError
from core.models import Detection


FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)

BBOX_KEYS = ("bbox_2d", "bbox")
DEFAULT_LABEL = "object"


def strip_code_fences(text: str) -> str:
    return FENCE_PATTERN.sub("", text or "").strip()


def extract_json_array(text: str) -> str:
    """From the first '[' to the last ']'. Raises DetectionFormatError if absent."""
    match = ARRAY_PATTERN.search(text or "")
    if not match:
        raise DetectionFormatError("Invalid response format from detector: no JSON array found")
    return match.group(0)


def repair_json(text: str) -> str:
    """Best-effort fixes for the relaxed JSON vision models tend to emit."""
    fixed = re.sub(r'"bbox_2d"\s*:\s*(\d+)', r'"bbox_2d": [\1', text)
    fixed = re.sub(r"([{,]\s*)([a-zA-Z0-9_]+)\s*:", r'\1"\2":', fixed)
    fixed = fixed.replace("'", '"')
    fixed = re.sub(r",\s*([\]}])", r"\1", fixed)
    return fixed


def parse_json_array(text: str, repair: bool = True) -> List[Any]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as first_error:
        if not repair:
            raise DetectionFormatError(f"Detector output is not valid JSON: {first_error}")

        logger.debug("Detector JSON invalid, attempting repair")
        try:
            parsed = json.loads(repair_json(text))
        except json.JSONDecodeError as e:
            logger.warning(f"Detector JSON repair failed. Raw: {text[:500]}")
            raise DetectionFormatError(f"Detector output is not valid JSON: {e}")

    if not isinstance(parsed, list):
        raise DetectionFormatError("Detector output is not a JSON array")
    return parsed


def _coerce_bbox(item: dict) -> Optional[tuple]:
    for key in BBOX_KEYS:
        box = item.get(key)
        if box is None:
            continue
        if not isinstance(box, (list, tuple)) or len(box) != 4:
            return None
        try:
            return tuple(int(round(float(v))) for v in box)
        except (TypeError, ValueError):
            return None
    return None


def to_detections(items: List[Any]) -> List[Detection]:
    """
    One Detection per array entry, in model order.

    Entries without a four-number box are kept with ``bbox=None`` so they
    still count towards the region limit; the cropper drops them.
    """
    detections = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug(f"Detection entry is not an object: {item!r}")
            detections.append(Detection(label=DEFAULT_LABEL, bbox=None))
            continue

        bbox = _coerce_bbox(item)
        if bbox is None:
            logger.debug(f"Detection without usable bbox: {item!r}")

        label = str(item.get("label") or DEFAULT_LABEL).strip() or DEFAULT_LABEL
        detections.append(Detection(label=label, bbox=bbox))
    return detections


def parse_detections(text: str, repair: bool = True) -> List[Detection]:
    """Full recovery: fences -> array extraction -> JSON -> Detection records."""
    cleaned = strip_code_fences(text)
    array_text = extract_json_array(cleaned)
    return to_detections(parse_json_array(array_text, repair=repair))
