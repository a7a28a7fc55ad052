# core/dependencies.py

from typing import Optional

from services.visual_search import VisualSearchService

# Set once by the application lifespan
_visual_search_service: Optional[VisualSearchService] = None


def get_visual_search_service() -> Optional[VisualSearchService]:
    """
    Used by the API routes (via Depends) to reach the pipeline.
    None until startup has finished.
    """
    return _visual_search_service


def set_visual_search_service(service: Optional[VisualSearchService]) -> None:
    """
    Called from main.py lifespan on startup (and with None on shutdown).
    """
    global _visual_search_service
    _visual_search_service = service
