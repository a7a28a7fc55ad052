"""
Pipeline records - everything lives for one invocation only.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from PIL import Image


BBox = Tuple[int, int, int, int]


@dataclass
class NormalizedImage:
    """Decoded RGB bitmap with the longer side already bounded."""
    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass(frozen=True)
class Detection:
    """
    Labeled box in thousandths of width (x) / height (y). Not clamped.

    bbox is None for an entry the model emitted without a usable box; it
    still takes its place in the region order.
    """
    label: str
    bbox: Optional[BBox]


@dataclass(frozen=True)
class CropRegion:
    """One detected product candidate, JPEG encoded."""
    label: str
    bbox: BBox
    image_bytes: bytes


@dataclass(frozen=True)
class SearchMatch:
    """Catalog row returned by the similarity operator."""
    product_id: str
    name: str
    price: Optional[float]
    similarity: float

    def to_dict(self) -> dict:
        return {
            "id": self.product_id,
            "name": self.name,
            "price": self.price,
            "similarity": self.similarity,
        }


@dataclass
class RegionResult:
    label: str
    bbox: BBox
    matches: List[SearchMatch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "object_label": self.label,
            "bbox": list(self.bbox),
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass
class PipelineOutcome:
    """Terminal state of one invocation: success with results, or failure."""
    success: bool
    results: List[RegionResult] = field(default_factory=list)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    status_code: int = 200
    processing_time_ms: float = 0.0

    @classmethod
    def ok(cls, results: List[RegionResult], processing_time_ms: float) -> "PipelineOutcome":
        return cls(success=True, results=results, processing_time_ms=processing_time_ms)

    @classmethod
    def failed(
        cls,
        kind: str,
        message: str,
        status_code: int,
        processing_time_ms: float = 0.0,
    ) -> "PipelineOutcome":
        return cls(
            success=False,
            error_kind=kind,
            error_message=message,
            status_code=status_code,
            processing_time_ms=processing_time_ms,
        )

    def to_dict(self) -> dict:
        if self.success:
            return {"detected_objects": [r.to_dict() for r in self.results]}
        return {"error": self.error_message}
