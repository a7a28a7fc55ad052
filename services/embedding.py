"""
Embedding Client - one batched Jina CLIP call for all crops of a request.
"""

import asyncio
import json
from typing import Any, List

import aiohttp
import numpy as np
from loguru import logger

from core.errors import EmbeddingCountMismatchError, EmbeddingServiceError
from core.image_normalizer import to_data_uri
from core.models import CropRegion


class EmbeddingClient:
    """
    Query-side embedding client.

    Vectors come back 1:1 and in the same order as the crops sent. The
    catalog is indexed with the passage task by the offline backfill, never
    here.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        api_key: str,
        model: str = "jina-clip-v2",
        dimension: int = 1024,
        task: str = "retrieval.query",
        timeout: float = 30.0,
    ):
        self.session = session
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.task = task
        self.timeout = timeout

        if not api_key:
            logger.warning("JINA_API_KEY not set, embedding calls will be rejected upstream")

    def build_payload(self, crops: List[CropRegion]) -> dict:
        return {
            "model": self.model,
            "input": [{"image": to_data_uri(c.image_bytes)} for c in crops],
            "task": self.task,
            "dimensions": self.dimension,
        }

    async def embed_regions(self, crops: List[CropRegion]) -> List[np.ndarray]:
        """
        Embed every crop in a single request.

        Raises:
            EmbeddingServiceError: transport failure, non-2xx, missing data,
                wrong vector length
            EmbeddingCountMismatchError: vector count != crop count
        """
        if not crops:
            return []

        logger.debug(f"Requesting embeddings for {len(crops)} region(s)")
        data = await self._post(self.build_payload(crops))
        items = data.get("data") if isinstance(data, dict) else None

        if not isinstance(items, list):
            raise EmbeddingServiceError(
                f"Embedding response missing 'data' array: {_truncate(data)}",
                upstream_status=200,
                upstream_detail=data,
            )

        if len(items) != len(crops):
            raise EmbeddingCountMismatchError(expected=len(crops), received=len(items))

        if all(isinstance(item, dict) and isinstance(item.get("index"), int) for item in items):
            items = sorted(items, key=lambda item: item["index"])

        return [self._to_vector(item, position) for position, item in enumerate(items)]

    def _to_vector(self, item: Any, position: int) -> np.ndarray:
        values = item.get("embedding") if isinstance(item, dict) else None
        if not isinstance(values, list):
            raise EmbeddingServiceError(f"Embedding #{position} has no vector")

        vector = np.asarray(values, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingServiceError(
                f"Embedding #{position} has dimension {vector.shape[-1] if vector.ndim else 0}, "
                f"expected {self.dimension}"
            )
        return vector

    async def _post(self, payload: dict) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with self.session.post(
                self.api_url, json=payload, headers=headers, timeout=timeout
            ) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError:
            raise EmbeddingServiceError(f"Embedding service timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            raise EmbeddingServiceError(f"Embedding service unreachable: {e}")

        try:
            data = json.loads(body) if body else None
        except json.JSONDecodeError:
            data = body

        if not 200 <= status < 300:
            detail = data.get("detail", data) if isinstance(data, dict) else data
            logger.error(f"Embedding API error details ({status}): {_truncate(detail)}")
            raise EmbeddingServiceError(
                f"Embedding API Error ({status}): {_truncate(detail)}",
                upstream_status=status,
                upstream_detail=detail,
            )

        return data


def _truncate(value: Any, limit: int = 300) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."
