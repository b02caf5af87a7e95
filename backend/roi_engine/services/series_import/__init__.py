# backend/roi_engine/services/series_import/__init__.py
"""
Reference series import package.

Usage:
    from roi_engine.services.series_import import SeriesImportService, SeriesCsvParser
"""

from roi_engine.services.series_import.parser import (
    ParsedPoint,
    ParseError,
    ParseResult,
    SeriesCsvParser,
)
from roi_engine.services.series_import.service import (
    IMPORTABLE_SERIES,
    ImportResult,
    SeriesImportService,
    parse_series_type,
)

__all__ = [
    "SeriesCsvParser",
    "ParsedPoint",
    "ParseError",
    "ParseResult",
    "SeriesImportService",
    "ImportResult",
    "IMPORTABLE_SERIES",
    "parse_series_type",
]
