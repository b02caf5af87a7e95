# backend/roi_engine/routers/__init__.py
"""
API routers for the ROI engine.

- roi: public reads (portfolio ROI, GLOBAL dashboard, simulator)
- admin: signal/allocation/price/series/settings management, backfill, diagnostics
- cron: scheduled recompute trigger
"""

from roi_engine.routers.admin import router as admin_router
from roi_engine.routers.cron import router as cron_router
from roi_engine.routers.roi import router as roi_router

__all__ = [
    "roi_router",
    "admin_router",
    "cron_router",
]
