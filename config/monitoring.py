# config/monitoring.py

import os

from .base import _coerce_bool, _coerce_int


class MonitoringConfig:
    """Log handler and Prometheus exposition settings shared by every environment."""

    MONITORING_ENABLED = _coerce_bool(os.environ.get("MONITORING_ENABLED"), default=False)
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # json | text
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "installhub.log")
    LOG_FILE_MAX_BYTES = _coerce_int(os.environ.get("LOG_FILE_MAX_BYTES"), 10 * 1024 * 1024, minimum=1024)
    LOG_FILE_BACKUP_COUNT = _coerce_int(os.environ.get("LOG_FILE_BACKUP_COUNT"), 10, minimum=0)

    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=True)
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=True)

    APP_NAME = os.environ.get("APP_NAME", "InstallHub")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    LOG_FORMAT = "text"


class ProductionMonitoringConfig(MonitoringConfig):
    # Container runtimes collect stdout; the rotating file is the durable copy.
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=False)


class TestingMonitoringConfig(MonitoringConfig):
    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False
