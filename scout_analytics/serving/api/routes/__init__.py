"""
API Routes Module
"""
from .health import router as health_router
from .views import router as views_router
from .anomalies import router as anomalies_router
from .admin import router as admin_router
from .insights import router as insights_router

__all__ = [
    "health_router",
    "views_router",
    "anomalies_router",
    "admin_router",
    "insights_router",
]
