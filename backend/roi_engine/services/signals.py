# backend/roi_engine/services/signals.py
"""
Signal publication and allocation snapshots.

This service handles:
- Storing a published signal
- Deriving the allocation of its canonical portfolio at the publish date
- Direct allocation writes from the admin surface
- Dirtying the affected snapshot once the write has committed

Design Principles:
- The signal is the source of truth; the allocation snapshot is derived
  from it and upserted on (portfolio_key, as_of_date)
- Invalidation is fire-and-forget: a failed dirty flag never fails the publish
- No HTTP Knowledge: raises domain exceptions, not HTTPException

Usage:
    from roi_engine.services.signals import SignalService

    service = SignalService()
    result = service.publish(db, tier="T1", category=None, risk_profile="SEMI",
                             signal="Rotate into ETH, hedge with SOL")
    print(result.portfolio_key)  # "t1_none_semi"
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from roi_engine.models import (
    AllocationSnapshot,
    PortfolioDailySignal,
    RiskProfile,
    SnapshotScope,
)
from roi_engine.services import numeric
from roi_engine.services.allocation import (
    AllocationItem,
    SignalAssets,
    derive_allocations,
    parse_signal_assets,
    validate_weights,
)
from roi_engine.services.constants import (
    CASH_SYMBOL,
    GLOBAL_PORTFOLIO_KEY,
    VALIDATION_WEIGHT_TOLERANCE,
    ZERO,
)
from roi_engine.services.exceptions import AllocationWeightError, ValidationError
from roi_engine.services.portfolio_key import PortfolioKey, build_portfolio_key, parse_portfolio_key
from roi_engine.services.snapshot_service import Invalidator, SnapshotInvalidator
from roi_engine.services.tickers import normalize_asset_symbol
from roi_engine.utils.date_utils import to_utc_date, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# QUERIES
# =============================================================================

def latest_signal(db: Session, portfolio_key: PortfolioKey | str) -> PortfolioDailySignal | None:
    """Most recent signal feeding a portfolio (legacy tiers included)."""
    key = portfolio_key if isinstance(portfolio_key, PortfolioKey) else parse_portfolio_key(portfolio_key)
    return db.scalar(
        select(PortfolioDailySignal)
        .where(key.signal_filter())
        .order_by(PortfolioDailySignal.published_at.desc(), PortfolioDailySignal.id.desc())
        .limit(1)
    )


def latest_allocation(db: Session, portfolio_key: str) -> AllocationSnapshot | None:
    return db.scalar(
        select(AllocationSnapshot)
        .where(AllocationSnapshot.portfolio_key == portfolio_key)
        .order_by(AllocationSnapshot.as_of_date.desc())
        .limit(1)
    )


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class PublishResult:
    """Result of publishing a signal."""
    signal: PortfolioDailySignal
    portfolio_key: str
    assets: SignalAssets
    allocation: AllocationSnapshot
    invalidated: bool

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal.id,
            "portfolio_key": self.portfolio_key,
            "published_at": self.signal.published_at.isoformat(),
            "assets": self.assets.to_dict(),
            "allocation": allocation_to_dict(self.allocation),
            "invalidated": self.invalidated,
        }


def allocation_to_dict(snapshot: AllocationSnapshot) -> dict:
    return {
        "portfolio_key": snapshot.portfolio_key,
        "as_of_date": snapshot.as_of_date.isoformat(),
        "items": list(snapshot.items or []),
        "source_signal_id": snapshot.source_signal_id,
    }


# =============================================================================
# SERVICE
# =============================================================================

class SignalService:
    """Publishes signals and writes allocation snapshots."""

    def __init__(self, invalidator: Invalidator | None = None) -> None:
        self._invalidate = invalidator or SnapshotInvalidator()

    def publish(
            self,
            db: Session,
            tier: str,
            category: str | None,
            risk_profile: str | RiskProfile,
            signal: str,
            published_at: datetime | None = None,
    ) -> PublishResult:
        """
        Store a signal and derive its portfolio's allocation.

        The allocation takes effect on the publish date (UTC) and the
        portfolio is dirtied from that date.

        Raises:
            InvalidPortfolioKeyError: Unknown tier or tier/category mismatch
            ValidationError: Signal names no known asset
            MissingAssetError: Risk profile needs an asset the signal lacks
        """
        key = build_portfolio_key(tier, category, risk_profile)
        text = (signal or "").strip()
        assets = parse_signal_assets(text)
        if assets is None:
            raise ValidationError("Signal does not name any known asset", field="signal")

        items = derive_allocations(key.risk_profile, assets)
        published_at = published_at or utc_now()
        as_of_date = to_utc_date(published_at)

        record = PortfolioDailySignal(
            tier=tier.strip().upper(),
            category=category.strip().lower() if category and category.strip() else None,
            risk_profile=key.risk_profile,
            signal=text,
            published_at=published_at,
        )
        db.add(record)
        db.flush()

        snapshot = self._upsert_allocation(db, key.key, as_of_date, items, source_signal_id=record.id)
        db.commit()
        db.refresh(record)
        logger.info(
            f"Published signal {record.id} for {key.key} on {as_of_date}: "
            f"{', '.join(f'{item.symbol} {item.weight}' for item in items)}"
        )

        invalidated = self._invalidate(key.key, as_of_date, SnapshotScope.PORTFOLIO)
        return PublishResult(
            signal=record,
            portfolio_key=key.key,
            assets=assets,
            allocation=snapshot,
            invalidated=invalidated,
        )

    def write_allocation(
            self,
            db: Session,
            portfolio_key: str,
            as_of_date: date,
            items: Sequence[tuple[str, Decimal]],
            cash_weight: Decimal | None = None,
    ) -> AllocationSnapshot:
        """
        Write an allocation snapshot directly.

        The dashboard key takes the looser display tolerance; portfolio keys
        must sum to one exactly as the equity curve requires. A cash weight
        is stored as a CASH item.

        Raises:
            InvalidPortfolioKeyError: Unparseable portfolio key
            AllocationWeightError: Weights outside [0, 1] or not summing to one
        """
        is_global = portfolio_key == GLOBAL_PORTFOLIO_KEY
        key = portfolio_key if is_global else parse_portfolio_key(portfolio_key).key

        allocation: list[AllocationItem] = []
        for symbol, weight in items:
            normalized = normalize_asset_symbol(symbol)
            if normalized is None:
                raise ValidationError("Allocation item without an asset", field="items")
            allocation.append(AllocationItem(normalized, numeric.dec(weight)))
        if cash_weight is not None and numeric.gt(cash_weight, ZERO):
            allocation.append(AllocationItem(CASH_SYMBOL, numeric.dec(cash_weight)))

        symbols = [item.symbol for item in allocation]
        if len(set(symbols)) != len(symbols):
            raise AllocationWeightError(f"Duplicate assets in allocation: {', '.join(symbols)}")

        if is_global:
            validate_weights(allocation, VALIDATION_WEIGHT_TOLERANCE)
        else:
            validate_weights(allocation)

        snapshot = self._upsert_allocation(db, key, as_of_date, allocation)
        db.commit()
        db.refresh(snapshot)
        logger.info(f"Wrote allocation for {key} as of {as_of_date} ({len(allocation)} item(s))")

        if is_global:
            self._invalidate(GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)
        else:
            self._invalidate(key, as_of_date, SnapshotScope.PORTFOLIO)
        return snapshot

    @staticmethod
    def _upsert_allocation(
            db: Session,
            portfolio_key: str,
            as_of_date: date,
            items: list[AllocationItem],
            source_signal_id: int | None = None,
    ) -> AllocationSnapshot:
        snapshot = db.scalar(
            select(AllocationSnapshot).where(
                AllocationSnapshot.portfolio_key == portfolio_key,
                AllocationSnapshot.as_of_date == as_of_date,
            )
        )
        stored = [item.to_dict() for item in items]
        if snapshot is None:
            snapshot = AllocationSnapshot(
                portfolio_key=portfolio_key,
                as_of_date=as_of_date,
                items=stored,
                source_signal_id=source_signal_id,
            )
            db.add(snapshot)
        else:
            snapshot.items = stored
            snapshot.source_signal_id = source_signal_id
        db.flush()
        return snapshot
