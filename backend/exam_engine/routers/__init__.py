"""API routers for the exam attempt engine."""

from .attempts import router as attempts_router
from .admin import router as admin_router

__all__ = [
    "attempts_router",
    "admin_router",
]
