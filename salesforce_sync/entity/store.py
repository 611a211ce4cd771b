"""本地实体存储"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from loguru import logger

from ..db.database import Database, check_identifier
from .entity import Entity, EntityOp, Origin


EntityListener = Callable[[Entity, EntityOp, Origin], None]


class EntityStore(ABC):
    """本地实体存储接口"""

    def __init__(self):
        self._listeners: List[EntityListener] = []

    def add_listener(self, listener: EntityListener) -> None:
        """注册实体变更监听器（变更捕获入口）"""
        self._listeners.append(listener)

    def _notify(self, entity: Entity, op: EntityOp, origin: Origin) -> None:
        for listener in self._listeners:
            listener(entity, op, origin)

    @abstractmethod
    def load(self, entity_type: str, entity_id: Any) -> Optional[Entity]:
        """加载实体，不存在时返回 None"""
        pass

    def create(self, entity_type: str, values: Optional[Dict[str, Any]] = None,
               bundle: Optional[str] = None) -> Entity:
        """实例化一个未保存的实体"""
        return Entity(entity_type, values, bundle=bundle)

    @abstractmethod
    def save(self, entity: Entity, origin: Origin = Origin.LOCAL) -> Any:
        """保存实体，返回实体 ID"""
        pass

    @abstractmethod
    def delete(self, entity: Entity, origin: Origin = Origin.LOCAL) -> None:
        """删除实体"""
        pass


class DatabaseEntityStore(EntityStore):
    """
    基于 MySQL 的实体存储

    每种实体类型对应一张表，至少包含 id、bundle、changed 三列，
    其余列作为实体字段。
    """

    SYSTEM_COLUMNS = ('id', 'bundle', 'changed')

    def __init__(self, database: Database):
        super().__init__()
        self.db = database

    @staticmethod
    def _table(entity_type: str) -> str:
        return check_identifier(entity_type)

    def load(self, entity_type: str, entity_id: Any) -> Optional[Entity]:
        if entity_id is None:
            return None
        row = self.db.query_one(
            f"SELECT * FROM {self._table(entity_type)} WHERE id = %s",
            (entity_id,)
        )
        if not row:
            return None

        values = {k: v for k, v in row.items() if k not in self.SYSTEM_COLUMNS}
        return Entity(
            entity_type,
            values,
            entity_id=row['id'],
            bundle=row.get('bundle'),
            changed=row.get('changed')
        )

    def save(self, entity: Entity, origin: Origin = Origin.LOCAL) -> Any:
        # 远程拉取保存时保留拉取设置的时间戳
        if origin == Origin.LOCAL or entity.changed is None:
            entity.changed = int(time.time())

        table = self._table(entity.entity_type)
        data = dict(entity.values)
        data['bundle'] = entity.bundle
        data['changed'] = entity.changed

        if entity.is_new():
            entity.id = self.db.insert(table, data)
            op = EntityOp.CREATE
        else:
            self.db.update(table, data, {'id': entity.id})
            op = EntityOp.UPDATE

        logger.debug(f"Saved {entity!r} ({origin.value})")
        self._notify(entity, op, origin)
        return entity.id

    def delete(self, entity: Entity, origin: Origin = Origin.LOCAL) -> None:
        if entity.is_new():
            return
        self.db.delete(self._table(entity.entity_type), {'id': entity.id})
        logger.debug(f"Deleted {entity!r} ({origin.value})")
        self._notify(entity, EntityOp.DELETE, origin)
