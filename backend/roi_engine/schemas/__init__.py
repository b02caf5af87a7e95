# backend/roi_engine/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.

- roi: public ROI view, GLOBAL dashboard, simulator
- admin: admin requests and job results
- errors: error response formats
- pagination: page metadata for admin list endpoints

Usage:
    from roi_engine.schemas import PortfolioRoiResponse, ErrorDetail
"""

from roi_engine.schemas.admin import (
    AllocationResponse,
    AllocationWriteRequest,
    BackfillRequest,
    ChangeLogCreate,
    ChangeLogResponse,
    DashboardSettingsResponse,
    DashboardSettingsUpdate,
    IngestResponse,
    JobRunResponse,
    ManualPricesRequest,
    PortfolioRunResponse,
    PriceIngestRequest,
    SeriesImportRequest,
    SeriesImportResponse,
    SeriesListResponse,
    SeriesPointRequest,
    SeriesPointResponse,
    SignalPublishRequest,
)
from roi_engine.schemas.errors import ErrorDetail, ValidationErrorDetail
from roi_engine.schemas.pagination import PaginationMeta
from roi_engine.schemas.roi import (
    DashboardResponse,
    PortfolioRoiResponse,
    SimulateRequest,
    SimulateResponse,
)

__all__ = [
    # ROI
    "PortfolioRoiResponse",
    "DashboardResponse",
    "SimulateRequest",
    "SimulateResponse",
    # Admin
    "BackfillRequest",
    "JobRunResponse",
    "PortfolioRunResponse",
    "SeriesImportRequest",
    "SeriesImportResponse",
    "SeriesPointRequest",
    "SeriesPointResponse",
    "SeriesListResponse",
    "DashboardSettingsResponse",
    "DashboardSettingsUpdate",
    "ChangeLogCreate",
    "ChangeLogResponse",
    "SignalPublishRequest",
    "AllocationWriteRequest",
    "AllocationResponse",
    "ManualPricesRequest",
    "PriceIngestRequest",
    "IngestResponse",
    # Errors / pagination
    "ErrorDetail",
    "ValidationErrorDetail",
    "PaginationMeta",
]
