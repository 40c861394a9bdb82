"""Configuration package."""

from .settings import SchedulerSettings, Settings, ToleranceSettings, load_settings

__all__ = ["SchedulerSettings", "Settings", "ToleranceSettings", "load_settings"]
