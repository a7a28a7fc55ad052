"""Core modules - image handling, detection parsing and pipeline records."""

from .cropper import crop_regions
from .detection_parser import parse_detections
from .image_normalizer import normalize_image

__all__ = ['crop_regions', 'parse_detections', 'normalize_image']
