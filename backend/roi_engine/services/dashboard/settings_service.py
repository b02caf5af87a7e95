# backend/roi_engine/services/dashboard/settings_service.py
"""
Dashboard settings and change-log management.

This service handles:
- The single dashboard_settings row (created with defaults on first access)
- Change-log events shown as chart annotations

Every mutation dirties the GLOBAL snapshot only; per-portfolio NAV data is
never touched. Dirtying happens after the mutation has committed and may
fail without affecting it.

Usage:
    from roi_engine.services.dashboard.settings_service import DashboardSettingsService

    service = DashboardSettingsService()
    result = service.update_settings(db, show_eth_benchmark=False)
    print(result.changed_fields)  # ["show_eth_benchmark"]
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from roi_engine.models import ChangeLogEvent, DashboardSetting, SnapshotScope
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY
from roi_engine.services.exceptions import NotFoundError, ValidationError
from roi_engine.services.snapshot_service import Invalidator, SnapshotInvalidator

logger = logging.getLogger(__name__)

UPDATABLE_SETTINGS = (
    "inception_date",
    "disclaimer_text",
    "show_btc_benchmark",
    "show_eth_benchmark",
    "show_simulator",
    "show_change_log",
    "show_allocation",
)


def _dirty_global(invalidate: Invalidator) -> None:
    invalidate(GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class SettingsUpdateResult:
    """Result of updating dashboard settings."""
    settings: DashboardSetting
    was_created: bool
    changed_fields: list[str] = field(default_factory=list)


# =============================================================================
# SETTINGS
# =============================================================================

class DashboardSettingsService:
    """Reads and writes the single dashboard_settings row."""

    def __init__(self, invalidator: Invalidator | None = None) -> None:
        self._invalidate = invalidator or SnapshotInvalidator()

    def get_settings(self, db: Session) -> DashboardSetting | None:
        """The settings row, or None if it was never created."""
        return db.scalar(select(DashboardSetting).order_by(DashboardSetting.id.asc()).limit(1))

    def get_or_create_default(self, db: Session) -> DashboardSetting:
        settings = self.get_settings(db)
        if settings is not None:
            return settings

        logger.info("Creating default dashboard settings")
        settings = DashboardSetting()
        db.add(settings)
        db.commit()
        db.refresh(settings)
        return settings

    def update_settings(self, db: Session, **changes: Any) -> SettingsUpdateResult:
        """
        Apply changes; None values mean "no change".

        Raises:
            ValidationError: On an unknown setting or an empty disclaimer
        """
        unknown = sorted(set(changes) - set(UPDATABLE_SETTINGS))
        if unknown:
            raise ValidationError(f"Unknown dashboard setting(s): {', '.join(unknown)}")

        disclaimer = changes.get("disclaimer_text")
        if disclaimer is not None and not disclaimer.strip():
            raise ValidationError("Disclaimer text cannot be empty", field="disclaimer_text")

        was_created = self.get_settings(db) is None
        settings = self.get_or_create_default(db)

        changed_fields = []
        for name, value in changes.items():
            if value is None or getattr(settings, name) == value:
                continue
            setattr(settings, name, value.strip() if isinstance(value, str) else value)
            changed_fields.append(name)

        if changed_fields:
            db.commit()
            db.refresh(settings)
            logger.info(f"Updated dashboard settings: {', '.join(changed_fields)}")

        if changed_fields or was_created:
            _dirty_global(self._invalidate)

        return SettingsUpdateResult(
            settings=settings,
            was_created=was_created,
            changed_fields=changed_fields,
        )


# =============================================================================
# CHANGE LOG
# =============================================================================

class ChangeLogService:
    """CRUD for change-log annotations."""

    def __init__(self, invalidator: Invalidator | None = None) -> None:
        self._invalidate = invalidator or SnapshotInvalidator()

    def list_events(self, db: Session, limit: int | None = None) -> list[ChangeLogEvent]:
        """Events, newest first."""
        stmt = select(ChangeLogEvent).order_by(ChangeLogEvent.date.desc(), ChangeLogEvent.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(db.scalars(stmt).all())

    def create_event(
            self,
            db: Session,
            event_date: date,
            title: str,
            summary: str,
            link_url: str | None = None,
    ) -> ChangeLogEvent:
        event = ChangeLogEvent(
            date=event_date,
            title=title.strip(),
            summary=summary.strip(),
            link_url=link_url.strip() if link_url else None,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        logger.info(f"Created change-log event {event.id} ({event.date})")

        _dirty_global(self._invalidate)
        return event

    def delete_event(self, db: Session, event_id: int) -> None:
        """
        Raises:
            NotFoundError: If the event does not exist
        """
        event = db.get(ChangeLogEvent, event_id)
        if event is None:
            raise NotFoundError(
                f"Change-log event {event_id} not found",
                resource_type="ChangeLogEvent",
                resource_id=event_id,
            )
        db.delete(event)
        db.commit()
        logger.info(f"Deleted change-log event {event_id}")

        _dirty_global(self._invalidate)
