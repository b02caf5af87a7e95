# backend/roi_engine/services/dashboard/__init__.py
"""
Dashboard package: GLOBAL payload, validation summary, simulator,
settings/change-log management and the read service.

Import from the submodules directly; snapshot_service depends on
dashboard.payload, so this package does not re-export anything.
"""
