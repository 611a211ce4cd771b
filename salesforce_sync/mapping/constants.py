"""映射常量"""

from enum import Enum


class SyncTrigger(Enum):
    """同步触发器，每个映射可以独立启用"""
    LOCAL_CREATE = "push_create"
    LOCAL_UPDATE = "push_update"
    LOCAL_DELETE = "push_delete"
    REMOTE_CREATE = "pull_create"
    REMOTE_UPDATE = "pull_update"
    REMOTE_DELETE = "pull_delete"

    @classmethod
    def parse(cls, value) -> "SyncTrigger":
        """接受枚举值（push_create）或名称（local_create）"""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        try:
            return cls(text.lower())
        except ValueError:
            pass
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown sync trigger: {value}")


PUSH_TRIGGERS = frozenset({
    SyncTrigger.LOCAL_CREATE,
    SyncTrigger.LOCAL_UPDATE,
    SyncTrigger.LOCAL_DELETE,
})

PULL_TRIGGERS = frozenset({
    SyncTrigger.REMOTE_CREATE,
    SyncTrigger.REMOTE_UPDATE,
    SyncTrigger.REMOTE_DELETE,
})

ALL_TRIGGERS = PUSH_TRIGGERS | PULL_TRIGGERS

# 映射对象 last_sync_action 取值
SYNC_ACTION_PUSH = "push"
SYNC_ACTION_PULL = "pull"

DEFAULT_PULL_TRIGGER_DATE = "LastModifiedDate"
