"""Service layer for Watchpost."""

from app.services.scheduler import MaintenanceScheduler
from app.services.settings_manager import SettingsManager

__all__ = ["MaintenanceScheduler", "SettingsManager"]
