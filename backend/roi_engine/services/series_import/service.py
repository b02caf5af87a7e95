# backend/roi_engine/services/series_import/service.py
"""
Reference series import service.

This service handles:
- Parsing and validating CSV text (delegated to SeriesCsvParser)
- Writing the rows into performance_series under the dashboard key
- Dirtying the GLOBAL snapshot once the rows are committed

Design Principles:
- All-or-nothing: any row error rejects the whole file, nothing is written
- replace_existing deletes the prior series first (coarse rewrite); without
  it rows are upserted point by point (fine-grained patch)
- No HTTP Knowledge: raises CsvValidationError with the row list

Usage:
    from roi_engine.services.series_import import SeriesImportService

    service = SeriesImportService()
    result = service.import_csv(db, "BTC", "2024-01-01,100\\n2024-01-02,105", replace_existing=True)
    print(result.imported)  # 2
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roi_engine.models import PerformanceSeries, SeriesType, SnapshotScope
from roi_engine.services import numeric
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY, ZERO
from roi_engine.services.exceptions import CsvValidationError, UnknownSeriesTypeError, ValidationError
from roi_engine.services.series_import.parser import SeriesCsvParser
from roi_engine.services.series_store import SeriesPoint, delete_series, upsert_series_points
from roi_engine.services.snapshot_service import Invalidator, SnapshotInvalidator

logger = logging.getLogger(__name__)

IMPORTABLE_SERIES: tuple[SeriesType, ...] = (SeriesType.MODEL, SeriesType.BTC, SeriesType.ETH)


@dataclass
class ImportResult:
    series_type: SeriesType
    imported: int
    replaced: bool
    deleted: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "series_type": self.series_type.value,
            "imported": self.imported,
            "replaced": self.replaced,
            "deleted": self.deleted,
            "errors": self.errors,
        }


def parse_series_type(value: str | SeriesType) -> SeriesType:
    """
    Raises:
        UnknownSeriesTypeError: For anything but MODEL, BTC or ETH
    """
    allowed = [series.value for series in IMPORTABLE_SERIES]
    raw = value.value if isinstance(value, SeriesType) else str(value).strip().upper()
    if raw not in allowed:
        raise UnknownSeriesTypeError(str(value), allowed)
    return SeriesType(raw)


class SeriesImportService:
    """Imports MODEL/BTC/ETH reference series from CSV text."""

    def __init__(
            self,
            invalidator: Invalidator | None = None,
            parser: SeriesCsvParser | None = None,
    ) -> None:
        self._invalidate = invalidator or SnapshotInvalidator()
        self._parser = parser or SeriesCsvParser()

    def import_csv(
            self,
            db: Session,
            series_type: str | SeriesType,
            csv_text: str,
            replace_existing: bool = False,
    ) -> ImportResult:
        """
        Validate and store a series.

        Raises:
            UnknownSeriesTypeError: Series type not importable
            CsvValidationError: Any row-level problem (nothing is written)
        """
        series = parse_series_type(series_type)
        parsed = self._parser.parse(csv_text)
        if not parsed.is_valid:
            logger.info(f"Rejected {series.value} import: {parsed.error_count} error(s)")
            raise CsvValidationError([error.to_dict() for error in parsed.errors])

        deleted = 0
        if replace_existing:
            deleted = delete_series(db, series, GLOBAL_PORTFOLIO_KEY)

        imported = upsert_series_points(
            db,
            series,
            GLOBAL_PORTFOLIO_KEY,
            [SeriesPoint(date=point.date, value=point.value) for point in parsed.points],
        )
        db.commit()
        logger.info(
            f"Imported {imported} {series.value} point(s)"
            + (f", replaced {deleted} existing" if replace_existing else "")
        )

        self._invalidate(GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)
        return ImportResult(
            series_type=series,
            imported=imported,
            replaced=replace_existing,
            deleted=deleted,
        )

    def list_points(
            self,
            db: Session,
            series_type: str | SeriesType,
            page: int = 1,
            page_size: int = 50,
    ) -> tuple[int, list[PerformanceSeries]]:
        """One page of a series, newest first. Returns (total, rows)."""
        series = parse_series_type(series_type)
        criteria = (
            PerformanceSeries.series_type == series,
            PerformanceSeries.portfolio_key == GLOBAL_PORTFOLIO_KEY,
        )
        total = db.scalar(select(func.count()).select_from(PerformanceSeries).where(*criteria)) or 0
        rows = db.scalars(
            select(PerformanceSeries)
            .where(*criteria)
            .order_by(PerformanceSeries.date.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return total, list(rows)

    def upsert_point(
            self,
            db: Session,
            series_type: str | SeriesType,
            point_date: date,
            value: Decimal,
    ) -> SeriesPoint:
        """
        Write or correct a single point.

        Raises:
            UnknownSeriesTypeError: Series type not importable
            ValidationError: Value is not positive
        """
        series = parse_series_type(series_type)
        amount = numeric.dec(value)
        if amount <= ZERO:
            raise ValidationError(f"Value must be positive, got {value}", field="value")

        point = SeriesPoint(date=point_date, value=amount)
        upsert_series_points(db, series, GLOBAL_PORTFOLIO_KEY, [point])
        db.commit()
        logger.info(f"Set {series.value} {point_date} = {amount}")

        self._invalidate(GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)
        return point
