"""
Visual Search Service - Main application
Photo -> product regions -> embeddings -> similar catalog products
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from loguru import logger
import aiohttp
import sys

from config import settings
from core.dependencies import get_visual_search_service, set_visual_search_service
from services.aggregator import SearchAggregator
from services.detector import RegionDetector
from services.embedding import EmbeddingClient
from services.vector_db import create_search_backend
from services.visual_search import VisualSearchService


# Logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level="DEBUG" if settings.DEBUG else "INFO",
    colorize=True
)


def build_visual_search_service(cfg, session: aiohttp.ClientSession) -> VisualSearchService:
    """Wire the pipeline stages from settings."""
    detector = RegionDetector(
        session,
        api_url=cfg.DETECTOR_API_URL,
        api_key=cfg.DETECTOR_API_KEY,
        model=cfg.DETECTOR_MODEL,
        timeout=cfg.DETECTOR_TIMEOUT,
        max_retries=cfg.DETECTOR_MAX_RETRIES,
        repair_json=cfg.DETECTOR_REPAIR_JSON,
    )
    embedder = EmbeddingClient(
        session,
        api_url=cfg.EMBEDDING_API_URL,
        api_key=cfg.EMBEDDING_API_KEY,
        model=cfg.EMBEDDING_MODEL,
        dimension=cfg.EMBEDDING_DIMENSION,
        task=cfg.EMBEDDING_QUERY_TASK,
        timeout=cfg.EMBEDDING_TIMEOUT,
    )
    aggregator = SearchAggregator(
        create_search_backend(cfg, session),
        timeout=cfg.SEARCH_TIMEOUT,
    )
    return VisualSearchService(
        session,
        detector=detector,
        embedder=embedder,
        aggregator=aggregator,
        max_image_dimension=cfg.MAX_IMAGE_DIMENSION,
        max_regions=cfg.MAX_REGIONS,
        min_crop_pixels=cfg.MIN_CROP_PIXELS,
        crop_quality=cfg.CROP_JPEG_QUALITY,
        download_timeout=cfg.IMAGE_DOWNLOAD_TIMEOUT,
        strict_error_status=cfg.STRICT_ERROR_STATUS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"🚀 {settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info("=" * 60)

    session = aiohttp.ClientSession()
    try:
        service = build_visual_search_service(settings, session)
        set_visual_search_service(service)
        logger.success(f"✅ Pipeline ready (search provider: {settings.SEARCH_PROVIDER})")
    except Exception as e:
        logger.error(f"❌ Pipeline: {e}")

    logger.info("=" * 60)
    logger.info("🎯 Service ready!")
    logger.info(f"📍 API Docs: http://localhost:{settings.PORT}/docs")
    logger.info("=" * 60)

    yield

    logger.info("👋 Shutting down...")
    set_visual_search_service(None)
    await session.close()


# FastAPI App
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Visual product search - detect products in a photo and find similar catalog items",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# CORSMiddleware only answers requests that carry an Origin header
@app.middleware("http")
async def always_allow_origin(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Access-Control-Allow-Origin", "*")
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    status_code = 400 if settings.STRICT_ERROR_STATUS else 500
    errors = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(status_code=status_code, content={"error": f"Invalid request body: {errors}"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


# API Router
from api.search import router as search_router
app.include_router(search_router, tags=["Visual Search"])
app.include_router(search_router, prefix="/api", tags=["Visual Search"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "endpoints": {
            "visual_search": "/visual-search - Detect products in a photo and find similar catalog items",
            "health": "/health - Service status"
        }
    }


@app.get("/health", tags=["Health"])
async def health():
    pipeline_ready = get_visual_search_service() is not None
    detector_configured = bool(settings.DETECTOR_API_KEY)
    embedding_configured = bool(settings.EMBEDDING_API_KEY)

    return {
        "status": "healthy" if pipeline_ready and detector_configured and embedding_configured else "degraded",
        "pipelineReady": pipeline_ready,
        "detectorConfigured": detector_configured,
        "embeddingConfigured": embedding_configured,
        "searchProvider": settings.SEARCH_PROVIDER,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
