"""
Similarity Search Aggregator - one concurrent query per region.
"""

import asyncio
from typing import List

import numpy as np
from loguru import logger

from core.errors import SearchError
from core.models import CropRegion, RegionResult, SearchMatch
from services.vector_db import SearchBackend


class SearchAggregator:
    """
    Fans the region embeddings out to the search backend and collects the
    matches back in region order. A failed or timed out region gets an
    empty match list; the others are unaffected.
    """

    def __init__(self, backend: SearchBackend, timeout: float = 10.0):
        self.backend = backend
        self.timeout = timeout

    async def _search_one(self, crop: CropRegion, embedding: np.ndarray) -> List[SearchMatch]:
        try:
            return await asyncio.wait_for(
                self.backend.match(embedding, crop.label), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise SearchError(f"Similarity search timed out after {self.timeout}s")

    async def search_regions(
        self,
        crops: List[CropRegion],
        embeddings: List[np.ndarray],
    ) -> List[RegionResult]:
        if len(crops) != len(embeddings):
            raise ValueError("crops and embeddings must be the same length")

        tasks = [
            self._search_one(crop, embedding)
            for crop, embedding in zip(crops, embeddings)
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results = []
        for i, (crop, outcome) in enumerate(zip(crops, outcomes)):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, SearchError):
                    logger.opt(exception=outcome).error(f"Unexpected search failure for region {i + 1}")
                logger.warning(f"Search failed for region {i + 1} '{crop.label}': {outcome}")
                matches = []
            else:
                matches = outcome
                logger.debug(f"Region {i + 1} '{crop.label}': {len(matches)} match(es)")

            results.append(RegionResult(label=crop.label, bbox=crop.bbox, matches=matches))

        return results
