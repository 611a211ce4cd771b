"""
远程删除处理

按对象类型轮询远程已删除记录，把删除传播到本地。
"""
import time
from typing import Any, Dict, Iterable, Optional, Tuple
from loguru import logger

from ..db.mapped_objects import MappedObjectStorage
from ..db.models import MappedObject
from ..entity.entity import Origin
from ..entity.store import EntityStore
from ..errors import ConsistencyWarning
from ..mapping.constants import SyncTrigger
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier
from ..remote.client import RestClient
from ..remote.sobject import format_datetime
from ..state.lock import SyncLock
from ..state.state_store import StateStore


# 远程删除查询要求时间窗口至少 60 秒
MIN_WINDOW = 60


class DeleteHandler:
    """远程删除处理器"""

    def __init__(self, client: RestClient,
                 mapping_storage: MappingStorage,
                 mapped_objects: MappedObjectStorage,
                 entity_store: EntityStore,
                 state: StateStore,
                 notifier: EventNotifier,
                 lock: Optional[SyncLock] = None,
                 initial_days: int = 29):
        self.client = client
        self.mappings = mapping_storage
        self.mapped_objects = mapped_objects
        self.entities = entity_store
        self.state = state
        self.notifier = notifier
        self.lock = lock
        self.initial_days = initial_days

    def get_window(self, object_type: str, now: Optional[float] = None) -> Tuple[int, int]:
        """计算删除查询窗口 [start, end]，保证 end - start >= 60"""
        now = int(now if now is not None else time.time())
        start = self.state.get(StateStore.delete_timestamp_key(object_type))
        if start is None:
            start = now - self.initial_days * 86400
        start = int(start)
        end = max(now, start + MIN_WINDOW)
        return start, end

    def process_deleted_records(self) -> int:
        """
        处理所有映射对象类型的远程删除

        对象类型按声明顺序的逆序处理。

        Returns:
            删除的映射对象数量
        """
        total = 0
        for object_type in reversed(self.mappings.get_mapped_sobject_types()):
            lock_key = f"delete:{object_type}"
            if self.lock is not None and not self.lock.acquire(lock_key):
                logger.info(f"Delete scan for {object_type} already running, skipping")
                continue
            try:
                total += self._process_type(object_type)
            finally:
                if self.lock is not None:
                    self.lock.release(lock_key)
        return total

    def _process_type(self, object_type: str) -> int:
        start, end = self.get_window(object_type)
        try:
            result = self.client.get_deleted(object_type, format_datetime(start), format_datetime(end))
        except Exception as e:
            self.notifier.error(
                "Unable to fetch deleted {type} records", exception=e, type=object_type
            )
            return 0

        handled = self.handle_deleted_records(result.get('deletedRecords') or [], object_type)

        # 无论单条记录处理结果如何，检查点都前移
        self.state.set(StateStore.delete_timestamp_key(object_type), end)
        logger.debug(f"Delete checkpoint for {object_type} advanced to {format_datetime(end)}")
        return handled

    def handle_deleted_records(self, deleted_records: Iterable[Dict[str, Any]],
                               object_type: str) -> int:
        handled = 0
        for record in deleted_records:
            sfid = record.get('id')
            try:
                mapped_objects = self.mapped_objects.load_by_sfid(sfid)
            except ValueError as e:
                self.notifier.warning(
                    "Ignoring deleted {type} record with invalid id {sfid}",
                    exception=e, type=object_type, sfid=sfid
                )
                continue

            for mapped_object in mapped_objects:
                if self.handle_deleted_record(mapped_object, object_type):
                    handled += 1
        return handled

    def handle_deleted_record(self, mapped_object: MappedObject, object_type: str) -> bool:
        """
        处理一条远程删除对应的映射对象

        Returns:
            映射对象被删除时返回 True
        """
        sfid = mapped_object.sfid()
        entity = self.entities.load(mapped_object.entity_type_id, mapped_object.entity_id)
        if entity is None:
            self.notifier.notice(
                "No local entity for deleted {type} {sfid}, removing mapped object {id}",
                type=object_type, sfid=sfid, id=mapped_object.id
            )
            self.mapped_objects.delete(mapped_object)
            return True

        mapping = self.mappings.load(mapped_object.salesforce_mapping)
        if mapping is None:
            self.notifier.warning(
                "Mapping {mapping} for deleted {type} {sfid} no longer exists, "
                "leaving {entity} untouched",
                exception=ConsistencyWarning(f"Orphaned mapped object {mapped_object.id}"),
                mapping=mapped_object.salesforce_mapping, type=object_type,
                sfid=sfid, entity=repr(entity)
            )
            return False

        if not mapping.does_crud([SyncTrigger.REMOTE_DELETE]):
            logger.debug(f"Mapping {mapping.id} does not pull deletes, keeping {entity!r}")
            return False

        try:
            self.entities.delete(entity, Origin.REMOTE_SYNC)
        except Exception as e:
            self.notifier.error(
                "Failed to delete {entity} for deleted {type} {sfid}",
                exception=e, entity=repr(entity), type=object_type, sfid=sfid
            )
            return False

        self.mapped_objects.delete(mapped_object)
        self.notifier.notice(
            "Deleted {entity} after {type} {sfid} was deleted remotely",
            entity=repr(entity), type=object_type, sfid=sfid
        )
        return True
