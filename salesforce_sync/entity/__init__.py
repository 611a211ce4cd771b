"""本地实体模块"""

from .entity import Entity, EntityOp, Origin
from .store import EntityStore, DatabaseEntityStore

__all__ = ["Entity", "EntityOp", "Origin", "EntityStore", "DatabaseEntityStore"]
