"""
app/api/routers package marker.
"""

from app.api.routers.measures_router import router as measures_router

__all__ = [
    "measures_router",
]
