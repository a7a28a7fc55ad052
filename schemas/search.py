"""
Visual Search Schemas - HTTP request/response models.
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class VisualSearchRequest(BaseModel):
    """Either a base64 image (data-URI prefix allowed) or a direct image URL."""
    image_base64: Optional[str] = Field(None, description="Base64 image, optionally data:image/...;base64, prefixed")
    image_url: Optional[str] = Field(None, description="Direct link to a JPG/PNG image")


class MatchResponse(BaseModel):
    id: str
    name: str
    price: Optional[float] = None
    similarity: float = Field(..., description="Similarity score, higher is closer")


class DetectedObjectResponse(BaseModel):
    object_label: str
    bbox: List[int] = Field(..., description="[x1, y1, x2, y2] in thousandths of width/height")
    matches: List[MatchResponse]


class VisualSearchResponse(BaseModel):
    detected_objects: List[DetectedObjectResponse]


class ErrorResponse(BaseModel):
    error: str
