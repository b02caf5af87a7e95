#!/usr/bin/env python3
# backend/init_db.py
"""
Database initialization script.

Creates every table defined in models and seeds the default
dashboard_settings row. Safe to run repeatedly.

    python backend/init_db.py
    cd backend && python init_db.py
"""
import sys
from pathlib import Path

# Add the backend directory to Python path so 'roi_engine' is importable
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from roi_engine.database import SessionLocal, engine
from roi_engine.models import Base
from roi_engine.services.dashboard.settings_service import DashboardSettingsService


def init_db() -> None:
    """Create all tables, then the settings row if missing."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")

    db = SessionLocal()
    try:
        settings_row = DashboardSettingsService().get_or_create_default(db)
        print(f"Dashboard settings ready (id={settings_row.id})")
    finally:
        db.close()


if __name__ == "__main__":
    init_db()
