"""
Pipeline errors.

Stages raise these; only the orchestrator turns them into a response.
"""

from typing import Any, Optional


class VisualSearchError(Exception):
    """Base class for every visual search failure."""

    status_code: int = 500
    fatal: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidRequestError(VisualSearchError):
    """Request carried neither a base64 image nor an image URL."""

    status_code = 400


class DecodeError(VisualSearchError):
    """Bytes could not be decoded as an image."""

    status_code = 400


class ImageDownloadError(VisualSearchError):
    """image_url could not be fetched."""

    status_code = 400


class DetectionServiceError(VisualSearchError):
    """Detector unreachable, timed out or returned an unexpected envelope."""

    status_code = 502


class DetectionFormatError(VisualSearchError):
    """Detector text could not be coerced into a JSON array of detections."""

    status_code = 502


class NoRegionsError(VisualSearchError):
    """Nothing usable left after geometric filtering."""

    status_code = 422


class EmbeddingServiceError(VisualSearchError):
    """Embedding call failed. Keeps the upstream status and payload for logs."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_detail: Any = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_detail = upstream_detail


class EmbeddingCountMismatchError(VisualSearchError):
    """Embedding service returned a different number of vectors than crops sent."""

    status_code = 502

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Embedding service returned {received} vectors for {expected} regions"
        )
        self.expected = expected
        self.received = received


class SearchError(VisualSearchError):
    """Similarity query failed for a single region. Never fails the pipeline."""

    fatal = False


class InternalError(VisualSearchError):
    """Anything unexpected, so the caller still gets the error envelope."""

    status_code = 500
