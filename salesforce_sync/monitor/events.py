"""
同步事件通知

所有组件通过注入的 EventNotifier 上报 notice / warning / error 事件，
事件写入 loguru，并可以分发给订阅的观察者。
"""
import threading
from enum import IntEnum
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from loguru import logger


# 事件日志通过该 channel 单独输出
EVENT_CHANNEL = "sync_event"

event_logger = logger.bind(channel=EVENT_CHANNEL)


class Severity(IntEnum):
    """事件级别"""
    NOTICE = 1
    WARNING = 2
    ERROR = 3

    @property
    def log_level(self) -> str:
        return {
            Severity.NOTICE: "INFO",
            Severity.WARNING: "WARNING",
            Severity.ERROR: "ERROR",
        }[self]

    @classmethod
    def from_name(cls, name: str) -> "Severity":
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown event severity: {name}")


class SyncEvent:
    """同步事件"""

    def __init__(self, severity: Severity, message: str,
                 exception: Optional[BaseException] = None,
                 context: Optional[Dict[str, Any]] = None):
        self.severity = severity
        self.message = message
        self.exception = exception
        self.context = context or {}
        self.timestamp = datetime.now()

    def render(self) -> str:
        """渲染消息模板"""
        if not self.context:
            return self.message
        try:
            return self.message.format(**self.context)
        except (KeyError, IndexError):
            return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'severity': self.severity.name.lower(),
            'message': self.render(),
            'exception': repr(self.exception) if self.exception else None,
            'timestamp': self.timestamp.isoformat()
        }


class EventNotifier:
    """事件通知器"""

    def __init__(self, min_severity: Severity = Severity.NOTICE):
        self.min_severity = min_severity
        self._observers: List[Callable[[SyncEvent], None]] = []
        self._lock = threading.Lock()

    @classmethod
    def from_level_name(cls, name: str) -> "EventNotifier":
        return cls(Severity.from_name(name))

    def subscribe(self, observer: Callable[[SyncEvent], None]) -> None:
        """订阅事件"""
        with self._lock:
            self._observers.append(observer)

    def notify(self, severity: Severity, exception: Optional[BaseException] = None,
               message: str = "", **context) -> Optional[SyncEvent]:
        """上报事件，低于最低级别的事件被忽略"""
        if severity < self.min_severity:
            return None

        event = SyncEvent(severity, message, exception, context)

        if exception is not None:
            event_logger.log(severity.log_level, "{}: {}",
                             type(exception).__name__, exception)
        if message:
            event_logger.log(severity.log_level, event.render())

        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception as e:
                logger.error(f"Event observer failed: {e}")

        return event

    def notice(self, message: str, exception: Optional[BaseException] = None,
               **context) -> Optional[SyncEvent]:
        return self.notify(Severity.NOTICE, exception, message, **context)

    def warning(self, message: str, exception: Optional[BaseException] = None,
                **context) -> Optional[SyncEvent]:
        return self.notify(Severity.WARNING, exception, message, **context)

    def error(self, message: str = "", exception: Optional[BaseException] = None,
              **context) -> Optional[SyncEvent]:
        return self.notify(Severity.ERROR, exception, message, **context)
