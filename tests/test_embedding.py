"""Tests for the batched embedding client."""

import asyncio

import aiohttp
import numpy as np
import pytest

from core.errors import EmbeddingCountMismatchError, EmbeddingServiceError
from core.models import CropRegion
from services.embedding import EmbeddingClient
from tests.helpers import EMBEDDING_DIM, FakeResponse, FakeSession, tagged_vector


def make_client(session, **kwargs):
    return EmbeddingClient(
        session,
        api_url="https://embed.test/v1/embeddings",
        api_key="jina-key",
        dimension=EMBEDDING_DIM,
        **kwargs,
    )


def make_crops(sample_crop_bytes, count):
    return [
        CropRegion(label=f"item{i}", bbox=(0, 0, 100, 100), image_bytes=sample_crop_bytes)
        for i in range(count)
    ]


def embeddings_payload(vectors, with_index=True):
    data = []
    for i, vector in enumerate(vectors):
        item = {"object": "embedding", "embedding": vector}
        if with_index:
            item["index"] = i
        data.append(item)
    return {"model": "jina-clip-v2", "data": data}


class TestPayload:

    def test_batches_all_crops_with_query_task(self, sample_crop_bytes):
        payload = make_client(FakeSession()).build_payload(make_crops(sample_crop_bytes, 3))
        assert payload["model"] == "jina-clip-v2"
        assert payload["task"] == "retrieval.query"
        assert payload["dimensions"] == EMBEDDING_DIM
        assert len(payload["input"]) == 3
        assert all(item["image"].startswith("data:image/jpeg;base64,") for item in payload["input"])


class TestEmbedRegions:

    @pytest.mark.asyncio
    async def test_one_request_one_vector_per_crop(self, sample_crop_bytes):
        vectors = [tagged_vector(i) for i in range(3)]
        session = FakeSession([FakeResponse(200, embeddings_payload(vectors))])

        result = await make_client(session).embed_regions(make_crops(sample_crop_bytes, 3))

        assert len(session.calls) == 1
        assert session.calls[0]["headers"]["Authorization"] == "Bearer jina-key"
        assert [int(np.argmax(v)) for v in result] == [0, 1, 2]
        assert all(v.dtype == np.float32 and v.shape == (EMBEDDING_DIM,) for v in result)

    @pytest.mark.asyncio
    async def test_reorders_by_index(self, sample_crop_bytes):
        payload = embeddings_payload([tagged_vector(i) for i in range(3)])
        payload["data"].reverse()
        session = FakeSession([FakeResponse(200, payload)])

        result = await make_client(session).embed_regions(make_crops(sample_crop_bytes, 3))

        assert [int(np.argmax(v)) for v in result] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_response_order_kept_without_index(self, sample_crop_bytes):
        payload = embeddings_payload([tagged_vector(2), tagged_vector(0)], with_index=False)
        session = FakeSession([FakeResponse(200, payload)])

        result = await make_client(session).embed_regions(make_crops(sample_crop_bytes, 2))

        assert [int(np.argmax(v)) for v in result] == [2, 0]

    @pytest.mark.asyncio
    async def test_no_crops_skips_request(self):
        session = FakeSession()
        assert await make_client(session).embed_regions([]) == []
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_count_mismatch(self, sample_crop_bytes):
        vectors = [tagged_vector(0), tagged_vector(1)]
        session = FakeSession([FakeResponse(200, embeddings_payload(vectors))])

        with pytest.raises(EmbeddingCountMismatchError) as exc_info:
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 3))

        assert exc_info.value.expected == 3
        assert exc_info.value.received == 2

    @pytest.mark.asyncio
    async def test_upstream_error_surfaces_status_and_detail(self, sample_crop_bytes):
        session = FakeSession([FakeResponse(422, {"detail": "Input image too small"})])

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))

        error = exc_info.value
        assert error.upstream_status == 422
        assert error.upstream_detail == "Input image too small"
        assert "422" in error.message
        assert "Input image too small" in error.message

    @pytest.mark.asyncio
    async def test_non_json_error_body_kept_as_detail(self, sample_crop_bytes):
        session = FakeSession([FakeResponse(502, body="Bad Gateway")])

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))

        assert exc_info.value.upstream_detail == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_missing_data_array(self, sample_crop_bytes):
        session = FakeSession([FakeResponse(200, {"usage": {}})])
        with pytest.raises(EmbeddingServiceError, match="data"):
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))

    @pytest.mark.asyncio
    async def test_wrong_dimension(self, sample_crop_bytes):
        payload = embeddings_payload([[0.1, 0.2, 0.3]])
        session = FakeSession([FakeResponse(200, payload)])
        with pytest.raises(EmbeddingServiceError, match="dimension"):
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))

    @pytest.mark.asyncio
    async def test_timeout(self, sample_crop_bytes):
        session = FakeSession([asyncio.TimeoutError()])
        with pytest.raises(EmbeddingServiceError, match="timed out"):
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))

    @pytest.mark.asyncio
    async def test_connection_error(self, sample_crop_bytes):
        session = FakeSession([aiohttp.ClientConnectionError("refused")])
        with pytest.raises(EmbeddingServiceError, match="unreachable"):
            await make_client(session).embed_regions(make_crops(sample_crop_bytes, 1))
