# backend/roi_engine/services/series_import/parser.py
"""
CSV parser for (date, value) reference series.

Expected format (header optional):
    date,value
    2024-01-01,100
    2024-01-02,105

Column Mapping (when a header is present):
    CSV Column                     -> Internal Field
    ------------------------------------------------
    date, day, timestamp           -> date
    value, close, nav, price       -> value

Validation Rules:
    - Dates are ISO (YYYY-MM-DD) and strictly ascending
    - No date appears twice
    - Values are non-negative decimals

The parser never raises for row problems. Every problem is collected with
its row number so the caller can show them all at once; the import is
all-or-nothing on top of that.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from roi_engine.services import numeric
from roi_engine.services.constants import ZERO

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ParsedPoint:
    """One validated row. row_number is the 1-based line in the source text."""
    row_number: int
    date: date
    value: Decimal


@dataclass
class ParseError:
    """
    A problem with one row.

    Attributes:
        row_number: 1-based line in the source text (0 for file-level errors)
        error_type: Category ("invalid_date", "duplicate_date", ...)
        message: Human-readable description
        field: Column that caused it, if any
    """
    row_number: int
    error_type: str
    message: str
    field: str | None = None

    def to_dict(self) -> dict:
        return {
            "row": self.row_number,
            "error_type": self.error_type,
            "field": self.field,
            "message": self.message,
        }


@dataclass
class ParseResult:
    points: list[ParsedPoint] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    total_rows: int = 0

    @property
    def success_count(self) -> int:
        return len(self.points)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def is_valid(self) -> bool:
        """True if there is data and no row has an error."""
        return self.error_count == 0 and self.success_count > 0


# =============================================================================
# PARSER
# =============================================================================

class SeriesCsvParser:
    """
    Parser for two-column series CSV text.

    Example:
        result = SeriesCsvParser().parse("2024-01-01,100\\n2024-01-02,105")
        assert result.is_valid and result.success_count == 2
    """

    COLUMN_MAPPING: dict[str, list[str]] = {
        "date": ["date", "day", "timestamp"],
        "value": ["value", "close", "nav", "price"],
    }

    def parse(self, text: str) -> ParseResult:
        result = ParseResult()
        if not text or not text.strip():
            result.errors.append(ParseError(0, "empty_file", "CSV contains no data rows"))
            return result

        rows = [
            (line_number, row)
            for line_number, row in enumerate(csv.reader(io.StringIO(text.strip())), start=1)
            if any(cell.strip() for cell in row)
        ]

        date_index, value_index = 0, 1
        if rows and self._is_header(rows[0][1]):
            date_index, value_index = self._map_columns(rows[0][1], result)
            rows = rows[1:]
            if result.errors:
                return result

        if not rows:
            result.errors.append(ParseError(0, "empty_file", "CSV contains no data rows"))
            return result

        seen: dict[date, int] = {}
        previous: ParsedPoint | None = None
        for line_number, row in rows:
            result.total_rows += 1
            point = self._parse_row(line_number, row, date_index, value_index, result)
            if point is None:
                continue

            if point.date in seen:
                result.errors.append(ParseError(
                    line_number,
                    "duplicate_date",
                    f"Duplicate date {point.date.isoformat()} (first seen on row {seen[point.date]})",
                    field="date",
                ))
                continue
            seen[point.date] = line_number

            if previous is not None and point.date <= previous.date:
                result.errors.append(ParseError(
                    line_number,
                    "not_ascending",
                    f"Date {point.date.isoformat()} is not after {previous.date.isoformat()} "
                    f"(row {previous.row_number}); dates must be strictly ascending",
                    field="date",
                ))
                continue

            result.points.append(point)
            previous = point

        logger.debug(
            f"Parsed series CSV: {result.total_rows} rows, "
            f"{result.success_count} valid, {result.error_count} error(s)"
        )
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _is_header(self, row: list[str]) -> bool:
        first = row[0].strip().lower() if row else ""
        return any(first in names for names in self.COLUMN_MAPPING.values())

    def _map_columns(self, header: list[str], result: ParseResult) -> tuple[int, int]:
        normalized = [cell.strip().lower() for cell in header]
        indexes = {}
        for internal, names in self.COLUMN_MAPPING.items():
            for position, column in enumerate(normalized):
                if column in names:
                    indexes[internal] = position
                    break
            else:
                result.errors.append(ParseError(
                    1,
                    "missing_column",
                    f"Header has no {internal} column (accepted: {', '.join(names)})",
                    field=internal,
                ))
        return indexes.get("date", 0), indexes.get("value", 1)

    @staticmethod
    def _parse_row(
            line_number: int,
            row: list[str],
            date_index: int,
            value_index: int,
            result: ParseResult,
    ) -> ParsedPoint | None:
        if len(row) <= max(date_index, value_index):
            result.errors.append(ParseError(
                line_number,
                "missing_field",
                f"Expected a date and a value, got {len(row)} column(s)",
            ))
            return None

        raw_date = row[date_index].strip()
        raw_value = row[value_index].strip()
        ok = True

        try:
            parsed_date = date.fromisoformat(raw_date)
        except ValueError:
            result.errors.append(ParseError(
                line_number,
                "invalid_date",
                f"Invalid date '{raw_date}' (expected YYYY-MM-DD)",
                field="date",
            ))
            ok = False

        try:
            value = numeric.dec(raw_value)
        except ValueError:
            result.errors.append(ParseError(
                line_number,
                "invalid_value",
                f"Invalid value '{raw_value}' (expected a decimal number)",
                field="value",
            ))
            ok = False
        else:
            if value < ZERO:
                result.errors.append(ParseError(
                    line_number,
                    "negative_value",
                    f"Value must be non-negative, got {raw_value}",
                    field="value",
                ))
                ok = False

        return ParsedPoint(line_number, parsed_date, value) if ok else None
