"""
本地变更捕获

作为实体存储的监听器接收变更，按映射决定立即推送还是入队。
"""
from loguru import logger

from ..db.mapped_objects import MappedObjectStorage
from ..db.models import MappedObject
from ..entity.entity import Entity, EntityOp, Origin
from ..mapping.constants import SyncTrigger
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier
from .push_queue import PushQueue
from .push_worker import PushWorker


OP_TRIGGERS = {
    EntityOp.CREATE: SyncTrigger.LOCAL_CREATE,
    EntityOp.UPDATE: SyncTrigger.LOCAL_UPDATE,
    EntityOp.DELETE: SyncTrigger.LOCAL_DELETE,
}


class ChangeCapture:
    """本地变更捕获"""

    def __init__(self, mapping_storage: MappingStorage,
                 mapped_objects: MappedObjectStorage,
                 queue: PushQueue,
                 worker: PushWorker,
                 notifier: EventNotifier,
                 standalone: bool = False):
        self.mappings = mapping_storage
        self.mapped_objects = mapped_objects
        self.queue = queue
        self.worker = worker
        self.notifier = notifier
        self.standalone = standalone  # 全局禁止实时推送

    def __call__(self, entity: Entity, op: EntityOp, origin: Origin) -> None:
        self.on_entity_change(entity, op, origin)

    def on_entity_change(self, entity: Entity, op: EntityOp, origin: Origin) -> None:
        """处理一次本地实体变更"""
        if origin != Origin.LOCAL:
            # 拉取写入的变更不回推
            logger.debug(f"Ignoring {op.value} of {entity!r} from {origin.value}")
            return

        trigger = OP_TRIGGERS[op]

        for mapping in self.mappings.load_by_entity(entity):
            existing = self.mapped_objects.load_by_entity(entity.entity_type, entity.id, mapping.id)
            mapped_object = existing[0] if existing else None

            if not mapping.does_crud([trigger]):
                if op == EntityOp.DELETE and mapped_object is not None:
                    # 实体已删除且不推送删除，只移除关联
                    self.mapped_objects.delete(mapped_object)
                continue

            if op == EntityOp.DELETE and mapped_object is None:
                continue

            if mapping.async_push or mapping.push_standalone or self.standalone:
                self.queue.create_item(
                    mapping.id, entity.id, trigger.value,
                    mapped_object.id if mapped_object else None
                )
                continue

            if mapped_object is None:
                mapped_object = MappedObject(
                    entity_id=str(entity.id),
                    entity_type_id=entity.entity_type,
                    salesforce_mapping=mapping.id
                )

            try:
                self.worker.sync(mapping, mapped_object, trigger, entity)
            except Exception as e:
                self.notifier.error(
                    "Push of {entity} via {mapping} failed, queued for retry",
                    exception=e, entity=repr(entity), mapping=mapping.id
                )
                self.queue.create_item(
                    mapping.id, entity.id, trigger.value,
                    None if mapped_object.is_new() else mapped_object.id
                )
