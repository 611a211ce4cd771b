"""同步核心模块"""

from .sync_service import SyncService

__all__ = ["SyncService"]
