"""
Configuration module for the Imunia alerts service.
"""

from .settings import (
    Settings,
    Environment,
    LogLevel,
    NotificationConfig,
    ScheduleConfig,
    StockScanConfig,
    AppointmentScanConfig,
    DatabaseConfig,
    LoggingConfig,
    load_settings,
    get_settings,
    reload_settings,
)

__all__ = [
    'Settings',
    'Environment',
    'LogLevel',
    'NotificationConfig',
    'ScheduleConfig',
    'StockScanConfig',
    'AppointmentScanConfig',
    'DatabaseConfig',
    'LoggingConfig',
    'load_settings',
    'get_settings',
    'reload_settings',
]
