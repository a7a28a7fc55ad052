"""
Visual Search Service - photo in, ranked catalog products per detected region out.

Received -> Normalized -> Detected -> Cropped -> Embedded -> Searched -> Done

Stages run strictly one after another; only the per-region similarity
queries run concurrently. Every stage raises typed errors from
core.errors and this module is the one place that turns them into a
PipelineOutcome.
"""

import asyncio
import time
from typing import List, Optional

import aiohttp
from loguru import logger

from core.cropper import crop_regions
from core.errors import InternalError, VisualSearchError
from core.image_normalizer import encode_jpeg, normalize_image, to_data_uri
from core.models import CropRegion, NormalizedImage, PipelineOutcome
from services.aggregator import SearchAggregator
from services.detector import RegionDetector
from services.embedding import EmbeddingClient
from services.image_source import resolve_image_bytes


DETECTOR_JPEG_QUALITY = 90


class VisualSearchService:
    """Pipeline orchestrator. Holds no per-request state."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        detector: RegionDetector,
        embedder: EmbeddingClient,
        aggregator: SearchAggregator,
        max_image_dimension: int = 800,
        max_regions: int = 3,
        min_crop_pixels: int = 5,
        crop_quality: int = 80,
        download_timeout: float = 10.0,
        strict_error_status: bool = True,
    ):
        self.session = session
        self.detector = detector
        self.embedder = embedder
        self.aggregator = aggregator
        self.max_image_dimension = max_image_dimension
        self.max_regions = max_regions
        self.min_crop_pixels = min_crop_pixels
        self.crop_quality = crop_quality
        self.download_timeout = download_timeout
        self.strict_error_status = strict_error_status

        logger.info("VisualSearchService ready")

    async def run(
        self,
        image_base64: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> PipelineOutcome:
        """
        Run one pipeline invocation.

        Never raises: fatal errors become a failed outcome and any partial
        results are dropped.
        """
        start_time = time.time()

        try:
            results = await self._execute(image_base64, image_url)
        except VisualSearchError as e:
            elapsed = _elapsed_ms(start_time)
            logger.error(f"Visual search failed [{e.kind}] after {elapsed}ms: {e.message}")
            return PipelineOutcome.failed(e.kind, e.message, self._status_for(e), elapsed)
        except Exception as e:
            elapsed = _elapsed_ms(start_time)
            logger.exception(f"Unexpected visual search error: {e}")
            error = InternalError(f"Internal server error: {e}")
            return PipelineOutcome.failed(error.kind, error.message, self._status_for(error), elapsed)

        elapsed = _elapsed_ms(start_time)
        logger.info(f"Visual search done: {len(results)} region(s), {elapsed}ms")
        return PipelineOutcome.ok(results, elapsed)

    async def _execute(self, image_base64: Optional[str], image_url: Optional[str]):
        crops = await self._regions_from(await self._load_image(image_base64, image_url))
        logger.info(f"Cropped: {len(crops)} region(s) {[c.label for c in crops]}")

        embeddings = await self.embedder.embed_regions(crops)
        logger.debug(f"Embedded: {len(embeddings)} vector(s)")

        results = await self.aggregator.search_regions(crops, embeddings)
        logger.debug(f"Searched: {sum(len(r.matches) for r in results)} match(es) total")
        return results

    async def _load_image(self, image_base64: Optional[str], image_url: Optional[str]) -> NormalizedImage:
        # Raw bytes go out of scope as soon as this returns.
        raw = await resolve_image_bytes(
            self.session, image_base64, image_url, timeout=self.download_timeout
        )
        image = await asyncio.to_thread(normalize_image, raw, self.max_image_dimension)
        logger.info(f"Normalized: {image.width}x{image.height}")
        return image

    async def _regions_from(self, image: NormalizedImage) -> List[CropRegion]:
        """Detect + crop. The normalized image is released when this returns."""
        image_data_uri = await asyncio.to_thread(
            lambda: to_data_uri(encode_jpeg(image.image, quality=DETECTOR_JPEG_QUALITY))
        )
        detections = await self.detector.detect(image_data_uri)
        logger.info(f"Detected: {len(detections)} object(s)")

        return await asyncio.to_thread(
            crop_regions,
            image,
            detections,
            self.max_regions,
            self.min_crop_pixels,
            self.crop_quality,
        )

    def _status_for(self, error: VisualSearchError) -> int:
        return error.status_code if self.strict_error_status else 500


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)
