"""监控模块"""

from .events import EventNotifier, Severity, SyncEvent
from .logger import setup_logger
from .metrics import MetricsCollector

__all__ = ["EventNotifier", "Severity", "SyncEvent", "setup_logger", "MetricsCollector"]
