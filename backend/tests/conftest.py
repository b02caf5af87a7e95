# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Invalidator fixtures (real, bound to the test database, and recording)
- A fake price provider
- Sample data factories (signals, allocations, prices, series)
- A TestClient with every external dependency overridden
"""

import os

# Settings are read at import time; the test environment allows SQLite
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from roi_engine.models import (
    AllocationSnapshot,
    AssetPriceDaily,
    Base,
    PortfolioDailySignal,
    RiskProfile,
    SeriesType,
    SnapshotScope,
)
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY
from roi_engine.services.exceptions import UnsupportedSymbolError
from roi_engine.services.market_data.base import DailyClose, DailyClosesResult, PriceProvider
from roi_engine.services.series_store import SeriesPoint, upsert_series_points
from roi_engine.services.snapshot_service import SnapshotInvalidator
from roi_engine.utils.date_utils import date_range


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# INVALIDATORS
# =============================================================================

@pytest.fixture
def invalidator(session_factory) -> SnapshotInvalidator:
    """Fire-and-forget invalidator writing to the test database."""
    return SnapshotInvalidator(session_factory)


class RecordingInvalidator:
    """Invalidator that only records its calls."""

    def __init__(self, succeed: bool = True):
        self.calls: list[tuple[str, date | None, SnapshotScope]] = []
        self._succeed = succeed

    def __call__(
            self,
            portfolio_key: str,
            from_date: date | None = None,
            scope: SnapshotScope = SnapshotScope.PORTFOLIO,
    ) -> bool:
        self.calls.append((portfolio_key, from_date, scope))
        return self._succeed


@pytest.fixture
def recording_invalidator() -> RecordingInvalidator:
    return RecordingInvalidator()


# =============================================================================
# FAKE PRICE PROVIDER
# =============================================================================

class FakePriceProvider(PriceProvider):
    """
    In-memory PriceProvider.

    Closes are configured per symbol; errors can be configured per symbol
    and are raised on every call for it.
    """

    SUPPORTED = frozenset({"BTC", "ETH", "SOL", "XRP", "HYPE", "XAUTUSD"})

    def __init__(self):
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, date, date]] = []

    @property
    def name(self) -> str:
        return "fake"

    def supports(self, symbol: str) -> bool:
        return symbol.upper() in self.SUPPORTED

    def set_closes(self, symbol: str, start_date: date, closes: list) -> None:
        """Closes on consecutive days from start_date."""
        series = self._closes.setdefault(symbol.upper(), {})
        for offset, close in enumerate(closes):
            series[start_date + timedelta(days=offset)] = Decimal(str(close))

    def set_error(self, symbol: str, error: Exception) -> None:
        self._errors[symbol.upper()] = error

    def get_daily_closes(self, symbol: str, start_date: date, end_date: date) -> DailyClosesResult:
        ticker = symbol.upper()
        self.calls.append((ticker, start_date, end_date))

        if ticker in self._errors:
            raise self._errors[ticker]
        if not self.supports(ticker):
            raise UnsupportedSymbolError(ticker, self.name)

        series = self._closes.get(ticker, {})
        result = DailyClosesResult(symbol=ticker, source=self.name)
        for day in date_range(start_date, end_date):
            if day in series:
                result.closes.append(DailyClose(date=day, close=series[day]))
            else:
                result.missing_dates.append(day)
        return result


@pytest.fixture
def fake_provider() -> FakePriceProvider:
    """Create a fresh fake provider for each test."""
    return FakePriceProvider()


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_signal(
        db: Session,
        tier: str = "T1",
        category: str | None = None,
        risk_profile: RiskProfile = RiskProfile.AGGRESSIVE,
        signal: str = "BTC",
        published_at: datetime | None = None,
) -> PortfolioDailySignal:
    """Factory function for creating raw signal rows (no allocation derived)."""
    record = PortfolioDailySignal(
        tier=tier,
        category=category,
        risk_profile=risk_profile,
        signal=signal,
        published_at=published_at or datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def create_allocation(
        db: Session,
        portfolio_key: str,
        as_of_date: date,
        items: list[tuple[str, str]],
) -> AllocationSnapshot:
    """Factory function for allocation snapshots; weights are decimal strings."""
    snapshot = AllocationSnapshot(
        portfolio_key=portfolio_key,
        as_of_date=as_of_date,
        items=[{"asset": asset, "weight": weight} for asset, weight in items],
    )
    db.add(snapshot)
    db.commit()
    db.refresh(snapshot)
    return snapshot


def create_prices(
        db: Session,
        symbol: str,
        start_date: date,
        closes: list,
        source: str = "test",
) -> list[AssetPriceDaily]:
    """Daily closes on consecutive days from start_date; None skips a day."""
    rows = []
    for offset, close in enumerate(closes):
        if close is None:
            continue
        row = AssetPriceDaily(
            symbol=symbol,
            date=start_date + timedelta(days=offset),
            close=Decimal(str(close)),
            source=source,
        )
        db.add(row)
        rows.append(row)
    db.commit()
    return rows


def create_series(
        db: Session,
        series_type: SeriesType,
        start_date: date,
        values: list,
        portfolio_key: str = GLOBAL_PORTFOLIO_KEY,
        step_days: int = 1,
) -> list[SeriesPoint]:
    """Series points every `step_days` from start_date."""
    points = [
        SeriesPoint(date=start_date + timedelta(days=offset * step_days), value=Decimal(str(value)))
        for offset, value in enumerate(values)
    ]
    upsert_series_points(db, series_type, portfolio_key, points)
    db.commit()
    return points


def series_points(start_date: date, values: list, step_days: int = 1) -> list[SeriesPoint]:
    """In-memory SeriesPoint list for pure calculation tests."""
    return [
        SeriesPoint(date=start_date + timedelta(days=offset * step_days), value=Decimal(str(value)))
        for offset, value in enumerate(values)
    ]


# =============================================================================
# API CLIENT
# =============================================================================

@pytest.fixture(scope="function")
def client(db: Session, session_factory, fake_provider):
    """
    TestClient with the database, invalidator and price provider overridden.

    Detached invalidation writes to the same in-memory database as `db`.
    """
    from fastapi.testclient import TestClient

    from roi_engine.database import get_db
    from roi_engine.dependencies import clear_service_caches, get_invalidator, get_price_provider
    from roi_engine.main import app

    def override_get_db():
        try:
            yield db
        finally:
            pass

    clear_service_caches()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_invalidator] = lambda: SnapshotInvalidator(session_factory)
    app.dependency_overrides[get_price_provider] = lambda: fake_provider

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
    clear_service_caches()
