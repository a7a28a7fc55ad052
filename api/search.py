"""
Search API - visual product search endpoint
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from core.dependencies import get_visual_search_service
from schemas.search import ErrorResponse, VisualSearchRequest, VisualSearchResponse
from services.visual_search import VisualSearchService


router = APIRouter()


@router.post(
    "/visual-search",
    response_model=VisualSearchResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Visual Search",
    description="Detects products in a photo and returns similar catalog products for each one.",
)
async def visual_search(
    request: VisualSearchRequest,
    service: Optional[VisualSearchService] = Depends(get_visual_search_service),
):
    """
    - **image_base64**: photo as base64, data-URI prefix allowed
    - **image_url**: alternatively, a direct link to the photo

    Returns one entry per detected product, in detection order.
    """
    if service is None:
        return JSONResponse(status_code=503, content={"error": "Visual search service is not ready"})

    logger.info(
        f"Visual search request (base64={bool(request.image_base64)}, url={bool(request.image_url)})"
    )
    outcome = await service.run(
        image_base64=request.image_base64,
        image_url=request.image_url,
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_dict())
