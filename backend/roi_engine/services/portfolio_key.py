# backend/roi_engine/services/portfolio_key.py
"""
Portfolio key value type.

A portfolio is identified by (tier, category, risk profile), rendered as the
lowercase string "tier_category_riskprofile"; an absent category renders as
"none":

    t1_none_aggressive
    t2_majors_conservative
"""

import re
from dataclasses import dataclass

from sqlalchemy import and_, or_

from roi_engine.models import PortfolioDailySignal, RiskProfile
from roi_engine.services.exceptions import InvalidPortfolioKeyError
from roi_engine.services.tier_mapping import (
    ANY_CATEGORY,
    CANONICAL_TIERS,
    MULTI_STRATEGY_TIERS,
    canonical_tier,
    normalize_category,
    signal_sources_for,
)

NO_CATEGORY = "none"

_CATEGORY_PATTERN = re.compile(r"^[a-z0-9-]+$")


@dataclass(frozen=True)
class PortfolioKey:
    tier: str
    category: str | None
    risk_profile: RiskProfile

    def __post_init__(self) -> None:
        key = self._render()
        if self.tier not in CANONICAL_TIERS:
            raise InvalidPortfolioKeyError(key, f"unknown tier '{self.tier}'")
        if self.tier in MULTI_STRATEGY_TIERS and not self.category:
            raise InvalidPortfolioKeyError(key, f"tier {self.tier} requires a category")
        if self.tier not in MULTI_STRATEGY_TIERS and self.category:
            raise InvalidPortfolioKeyError(key, f"tier {self.tier} does not take a category")
        if self.category and not _CATEGORY_PATTERN.match(self.category):
            raise InvalidPortfolioKeyError(key, f"invalid category '{self.category}'")

    def _render(self) -> str:
        return f"{self.tier}_{self.category or NO_CATEGORY}_{self.risk_profile.value}".lower()

    def __str__(self) -> str:
        return self._render()

    @property
    def key(self) -> str:
        return self._render()

    def source_filter(self):
        """SQLAlchemy criterion on (tier, category) only, any risk profile."""
        clauses = []
        for tier, category in signal_sources_for(self.tier, self.category):
            if category == ANY_CATEGORY:
                clauses.append(PortfolioDailySignal.tier == tier)
            elif category is None:
                clauses.append(and_(
                    PortfolioDailySignal.tier == tier,
                    PortfolioDailySignal.category.is_(None),
                ))
            else:
                clauses.append(and_(
                    PortfolioDailySignal.tier == tier,
                    PortfolioDailySignal.category == category,
                ))
        return or_(*clauses)

    def signal_filter(self):
        """SQLAlchemy criterion selecting signals that feed this portfolio."""
        return and_(
            PortfolioDailySignal.risk_profile == self.risk_profile,
            self.source_filter(),
        )


def _risk_profile(value: str | RiskProfile) -> RiskProfile:
    if isinstance(value, RiskProfile):
        return value
    try:
        return RiskProfile(value.strip().upper())
    except ValueError:
        raise InvalidPortfolioKeyError(str(value), f"unknown risk profile '{value}'") from None


def build_portfolio_key(
        tier: str,
        category: str | None,
        risk_profile: str | RiskProfile,
) -> PortfolioKey:
    """
    Build a key from published signal fields.

    Legacy tier names are mapped to the current vocabulary first.
    """
    canon_tier, canon_category = canonical_tier(tier, category)
    return PortfolioKey(canon_tier, canon_category, _risk_profile(risk_profile))


def parse_portfolio_key(value: str) -> PortfolioKey:
    """
    Parse "tier_category_riskprofile".

    Raises:
        InvalidPortfolioKeyError: On malformed keys or tier/category mismatch
    """
    if not value or not value.strip():
        raise InvalidPortfolioKeyError(value or "", "empty key")

    parts = value.strip().lower().split("_")
    if len(parts) != 3:
        raise InvalidPortfolioKeyError(value, "expected tier_category_riskprofile")

    tier, category, risk = parts
    category = None if category == NO_CATEGORY else normalize_category(category)
    return PortfolioKey(tier.upper(), category, _risk_profile(risk))
