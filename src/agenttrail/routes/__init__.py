"""FastAPI route modules."""

from .sessions import router as sessions_router
from .config import router as config_router

__all__ = ["sessions_router", "config_router"]
