"""
推送工作器，把本地实体变更写入远程
"""
from typing import Optional
from loguru import logger

from ..db.mapped_objects import MappedObjectStorage
from ..db.models import MappedObject, PushQueueItem
from ..entity.store import EntityStore
from ..errors import EntityNotFoundError, NotFoundError
from ..mapping.constants import SyncTrigger, SYNC_ACTION_PUSH
from ..mapping.mapping import Mapping
from ..mapping.storage import MappingStorage
from ..remote.client import RestClient
from ..remote.sobject import SFID


class PushWorker:
    """推送工作器，处理具体的远程写入"""

    def __init__(self, client: RestClient,
                 mapping_storage: MappingStorage,
                 mapped_objects: MappedObjectStorage,
                 entity_store: EntityStore):
        self.client = client
        self.mappings = mapping_storage
        self.mapped_objects = mapped_objects
        self.entities = entity_store

    def push(self, mapping: Mapping, mapped_object: MappedObject, entity) -> Optional[SFID]:
        """
        推送实体

        有键字段时总是按键 upsert；否则已关联远程记录时 update，
        未关联时 create 并保存返回的 ID。
        """
        params = mapping.get_push_params(entity)
        if mapping.salesforce_record_type and not params.has_param('RecordTypeId'):
            params.set_param('RecordTypeId', mapping.salesforce_record_type)

        object_type = mapping.salesforce_object_type
        result = None

        if mapping.has_key():
            key_value = mapping.get_key_value(entity)
            if key_value is None:
                raise NotFoundError(
                    f"Key {mapping.key} is empty for {entity.entity_type} {entity.id}"
                )
            result = self.client.object_upsert(
                object_type, mapping.key, key_value, params.get_params()
            )
        elif mapped_object.sfid():
            self.client.object_update(object_type, mapped_object.sfid(), params.get_params())
        else:
            result = self.client.object_create(object_type, params.get_params())

        if result:
            mapped_object.set_salesforce_id(result)

        mapped_object.set_entity(entity)
        mapped_object.salesforce_mapping = mapping.id
        mapped_object.entity_updated = entity.changed
        mapped_object.record_sync(SYNC_ACTION_PUSH, True)
        self.mapped_objects.save(mapped_object)

        logger.info(f"Pushed {entity.entity_type} {entity.id} to {object_type} {mapped_object.sfid()}")
        return result

    def push_delete(self, mapping: Mapping, mapped_object: MappedObject) -> None:
        """删除远程记录并移除关联"""
        if mapped_object.sfid():
            self.client.object_delete(mapping.salesforce_object_type, mapped_object.sfid())
            logger.info(f"Deleted {mapping.salesforce_object_type} {mapped_object.sfid()}")
        self.mapped_objects.delete(mapped_object)

    def sync(self, mapping: Mapping, mapped_object: MappedObject,
             trigger: SyncTrigger, entity=None) -> None:
        """
        执行一次推送

        失败时在已存在的映射对象上记录失败状态和错误信息，然后重新抛出异常。
        """
        try:
            if trigger == SyncTrigger.LOCAL_DELETE:
                self.push_delete(mapping, mapped_object)
            else:
                if entity is None:
                    raise EntityNotFoundError(mapped_object.entity_id, mapping.drupal_entity_type)
                self.push(mapping, mapped_object, entity)
        except Exception as e:
            if not mapped_object.is_new():
                mapped_object.record_sync(trigger.value, False, str(e))
                self.mapped_objects.save(mapped_object)
            raise

    def process_item(self, item: PushQueueItem) -> None:
        """处理一个推送队列项，异常交给队列处理"""
        mapping = self.mappings.load(item.name)
        if mapping is None:
            raise NotFoundError(f"Mapping {item.name} no longer exists")

        trigger = item.trigger
        if not mapping.does_crud([trigger]):
            logger.debug(f"Mapping {mapping.id} no longer handles {trigger.value}, skipping {item!r}")
            return

        mapped_object = self.mapped_objects.load(item.mapped_object_id)
        if mapped_object is None:
            existing = self.mapped_objects.load_by_entity(
                mapping.drupal_entity_type, item.entity_id, mapping.id
            )
            mapped_object = existing[0] if existing else None

        if mapped_object is None:
            if trigger == SyncTrigger.LOCAL_DELETE:
                # 没有关联的删除视为处理成功
                return
            mapped_object = MappedObject(
                entity_id=str(item.entity_id),
                entity_type_id=mapping.drupal_entity_type,
                salesforce_mapping=mapping.id
            )

        entity = None
        if trigger != SyncTrigger.LOCAL_DELETE:
            entity = self.entities.load(mapping.drupal_entity_type, item.entity_id)

        self.sync(mapping, mapped_object, trigger, entity)
