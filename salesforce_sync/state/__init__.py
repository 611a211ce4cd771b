"""同步状态模块"""

from .state_store import StateStore
from .lock import SyncLock

__all__ = ["StateStore", "SyncLock"]
