"""本地实体定义"""

from enum import Enum
from typing import Dict, Any, Optional


class Origin(Enum):
    """变更来源，由变更捕获路径显式传递，用于避免推送/拉取循环"""
    LOCAL = "local"
    REMOTE_SYNC = "remote_sync"


class EntityOp(Enum):
    """实体变更动作"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Entity:
    """本地实体"""

    def __init__(self, entity_type: str, values: Optional[Dict[str, Any]] = None,
                 entity_id: Any = None, bundle: Optional[str] = None,
                 changed: Optional[int] = None):
        self.entity_type = entity_type
        self.id = entity_id
        self.bundle = bundle or entity_type
        self.values: Dict[str, Any] = dict(values or {})
        self.changed = changed

    def is_new(self) -> bool:
        return self.id is None

    def get(self, name: str, default: Any = None) -> Any:
        """获取字段值"""
        if name == 'id':
            return self.id
        if name == 'bundle':
            return self.bundle
        if name == 'changed':
            return self.changed
        return self.values.get(name, default)

    def set(self, name: str, value: Any) -> "Entity":
        """设置字段值"""
        if name == 'id':
            raise ValueError("Entity id cannot be set through set()")
        if name == 'changed':
            self.changed = value
        else:
            self.values[name] = value
        return self

    def label(self) -> str:
        for key in ('label', 'name', 'title', 'mail'):
            if self.values.get(key):
                return str(self.values[key])
        return f"{self.entity_type} {self.id}"

    def __repr__(self) -> str:
        return f"Entity({self.entity_type}, {self.id})"
