# backend/roi_engine/services/allocation.py
"""
Allocation derivation.

Turns a risk profile and the ordered assets named by a signal into portfolio
weights. The policy is fixed so every published portfolio is auditable:

    AGGRESSIVE    primary 1.0
    SEMI          primary 0.8, secondary 0.2
    CONSERVATIVE  primary 0.6, secondary 0.3, tertiary 0.1

Weights are exact decimals; the sum-to-one check is an invariant, not a
rounding step.

Usage:
    from roi_engine.services.allocation import derive_allocations, SignalAssets

    items = derive_allocations(RiskProfile.SEMI, SignalAssets("ETH", "SOL"))
    # [AllocationItem("ETH", Decimal("0.8")), AllocationItem("SOL", Decimal("0.2"))]
"""

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from roi_engine.models import RiskProfile
from roi_engine.services import numeric
from roi_engine.services.constants import (
    CONSERVATIVE_WEIGHTS,
    ONE,
    SEMI_WEIGHTS,
    WEIGHT_SUM_TOLERANCE,
    ZERO,
)
from roi_engine.services.exceptions import (
    AllocationWeightError,
    MissingAssetError,
    ValidationError,
)
from roi_engine.services.tickers import PORTFOLIO_ASSETS

logger = logging.getLogger(__name__)


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class SignalAssets:
    """Ordered assets named by a signal."""
    primary: str | None
    secondary: str | None = None
    tertiary: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "primary": self.primary,
            "secondary": self.secondary,
            "tertiary": self.tertiary,
        }


@dataclass(frozen=True)
class AllocationItem:
    symbol: str
    weight: Decimal

    def to_dict(self) -> dict[str, str]:
        """Storage form used in AllocationSnapshot.items."""
        return {"asset": self.symbol, "weight": str(self.weight)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AllocationItem":
        symbol = str(data.get("asset") or data.get("symbol") or "").strip().upper()
        if not symbol:
            raise AllocationWeightError("Allocation item without an asset")
        return cls(symbol=symbol, weight=numeric.dec(data.get("weight", 0)))


# =============================================================================
# DERIVATION
# =============================================================================

def _normalize_symbol(value: str | None) -> str:
    return (value or "").strip().upper()


def derive_allocations(
        risk_profile: RiskProfile | str,
        assets: SignalAssets | Mapping[str, str | None],
) -> list[AllocationItem]:
    """
    Derive ordered weights for a risk profile.

    Args:
        risk_profile: AGGRESSIVE, SEMI or CONSERVATIVE
        assets: SignalAssets or a mapping with primary/secondary/tertiary keys

    Raises:
        MissingAssetError: If the profile needs an asset that is absent
        ValidationError: For an unknown risk profile
    """
    if isinstance(assets, Mapping):
        assets = SignalAssets(
            primary=assets.get("primary"),
            secondary=assets.get("secondary"),
            tertiary=assets.get("tertiary"),
        )

    try:
        profile = RiskProfile(risk_profile.upper() if isinstance(risk_profile, str) else risk_profile)
    except ValueError:
        raise ValidationError(f"Unsupported risk profile: {risk_profile}", field="risk_profile") from None

    primary = _normalize_symbol(assets.primary)
    secondary = _normalize_symbol(assets.secondary)
    tertiary = _normalize_symbol(assets.tertiary)

    if not primary:
        raise MissingAssetError(profile.value, "primary")

    if profile == RiskProfile.AGGRESSIVE:
        items = [AllocationItem(primary, ONE)]
    elif profile == RiskProfile.SEMI:
        if not secondary:
            raise MissingAssetError(profile.value, "secondary")
        items = [
            AllocationItem(primary, SEMI_WEIGHTS[0]),
            AllocationItem(secondary, SEMI_WEIGHTS[1]),
        ]
    else:
        if not secondary:
            raise MissingAssetError(profile.value, "secondary")
        if not tertiary:
            raise MissingAssetError(profile.value, "tertiary")
        items = [
            AllocationItem(primary, CONSERVATIVE_WEIGHTS[0]),
            AllocationItem(secondary, CONSERVATIVE_WEIGHTS[1]),
            AllocationItem(tertiary, CONSERVATIVE_WEIGHTS[2]),
        ]

    validate_weights(items)
    return items


def validate_weights(
        items: list[AllocationItem],
        tolerance: Decimal = WEIGHT_SUM_TOLERANCE,
) -> Decimal:
    """
    Check each weight is in [0, 1] and the weights sum to one.

    Returns:
        The weight total

    Raises:
        AllocationWeightError: On any violation
    """
    if not items:
        raise AllocationWeightError("Allocation has no items", total=ZERO)

    for item in items:
        if numeric.lt(item.weight, ZERO) or numeric.gt(item.weight, ONE):
            raise AllocationWeightError(
                f"Weight for {item.symbol} outside [0, 1]: {item.weight}"
            )

    weight_sum = numeric.total(item.weight for item in items)
    if numeric.gt(abs(numeric.sub(weight_sum, ONE)), tolerance):
        raise AllocationWeightError(
            f"Allocation weights must sum to 1.0 (got {weight_sum})", total=weight_sum
        )
    return weight_sum


def items_from_snapshot(raw_items: list[Mapping[str, Any]] | None) -> list[AllocationItem]:
    """Decode AllocationSnapshot.items."""
    return [AllocationItem.from_dict(item) for item in (raw_items or [])]


# =============================================================================
# SIGNAL TEXT PARSING
# =============================================================================

_ASSET_PATTERNS: dict[str, re.Pattern] = {
    asset: re.compile(rf"(?<![A-Z0-9]){re.escape(asset)}(?![A-Z0-9])")
    for asset in PORTFOLIO_ASSETS
}


def _known_asset(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    symbol = value.strip().upper()
    return symbol if symbol in PORTFOLIO_ASSETS else None


def parse_signal_assets(signal: str | None) -> SignalAssets | None:
    """
    Extract ordered assets from signal text.

    Accepts the structured form
        {"primaryAsset": "BTC", "secondaryAsset": "ETH", "tertiaryAsset": "CASH"}
    and falls back to free text, ordering known asset names by where they
    first appear ("Rotate into SOL, hedge with BTC" -> SOL, BTC).

    Returns:
        SignalAssets, or None if no known asset is named
    """
    if not signal or not signal.strip():
        return None

    try:
        parsed = json.loads(signal)
    except (ValueError, TypeError):
        parsed = None

    if isinstance(parsed, dict):
        primary = _known_asset(parsed.get("primaryAsset"))
        if primary:
            return SignalAssets(
                primary=primary,
                secondary=_known_asset(parsed.get("secondaryAsset")),
                tertiary=_known_asset(parsed.get("tertiaryAsset")),
            )
        logger.debug("Structured signal without a known primaryAsset, scanning text")

    upper = signal.upper()
    positions: list[tuple[int, str]] = []
    for asset, pattern in _ASSET_PATTERNS.items():
        match = pattern.search(upper)
        if match:
            positions.append((match.start(), asset))

    if not positions:
        return None

    ordered = [asset for _, asset in sorted(positions)]
    ordered += [None, None]
    return SignalAssets(primary=ordered[0], secondary=ordered[1], tertiary=ordered[2])
