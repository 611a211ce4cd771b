"""
拉取处理器

把一条远程记录写入本地：已有关联时更新，否则创建本地实体和映射对象。
"""
from typing import Iterable, Optional
from loguru import logger

from ..db.mapped_objects import MappedObjectStorage
from ..db.models import MappedObject
from ..entity.entity import Entity, Origin
from ..entity.store import EntityStore
from ..errors import EntityNotFoundError, PullError
from ..mapping.constants import SyncTrigger, SYNC_ACTION_PULL
from ..mapping.mapping import Mapping
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier
from ..remote.client import RestClient
from ..remote.sobject import SObject, to_timestamp
from .queue_handler import PullQueueItem


class PullProcessor:
    """拉取处理器"""

    def __init__(self, client: RestClient,
                 mapping_storage: MappingStorage,
                 mapped_objects: MappedObjectStorage,
                 entity_store: EntityStore,
                 notifier: EventNotifier):
        self.client = client
        self.mappings = mapping_storage
        self.mapped_objects = mapped_objects
        self.entities = entity_store
        self.notifier = notifier

    def process_item(self, item: PullQueueItem) -> Optional[SyncTrigger]:
        """
        处理一条拉取项

        Returns:
            实际执行的触发器，未做任何修改时返回 None

        Raises:
            PullError: 键字段写回失败，调用方应保留该项稍后重试
        """
        mapping = self.mappings.load(item.mapping_id)
        sf_object = item.sobject
        if mapping is None:
            self.notifier.notice(
                "Mapping {mapping} no longer exists, skipping pull of {sfid}",
                mapping=item.mapping_id, sfid=str(sf_object.id())
            )
            return None

        mapped_object = self.mapped_objects.load_by_sfid_and_mapping(sf_object.id(), mapping.id)

        try:
            if mapped_object is not None:
                return self.update_entity(mapping, mapped_object, sf_object, item.force_pull)
            return self.create_entity(mapping, sf_object)
        except PullError:
            raise
        except Exception as e:
            self.notifier.error(
                "Failed to pull {type} {sfid} via {mapping}",
                exception=e, type=sf_object.type(), sfid=str(sf_object.id()), mapping=mapping.id
            )
            return None

    def update_entity(self, mapping: Mapping, mapped_object: MappedObject,
                      sf_object: SObject, force: bool = False) -> Optional[SyncTrigger]:
        """用远程记录更新已关联的本地实体"""
        if not mapping.does_crud([SyncTrigger.REMOTE_UPDATE]):
            self.notifier.notice(
                "Mapping {mapping} does not pull updates, skipping {sfid}",
                mapping=mapping.id, sfid=str(sf_object.id())
            )
            return None

        entity = self.entities.load(mapped_object.entity_type_id, mapped_object.entity_id)
        if entity is None:
            # 悬空关联只报告，不修复
            self.notifier.error(
                "Linked {entity_type} {entity_id} for {sfid} does not exist",
                exception=EntityNotFoundError(mapped_object.entity_id, mapped_object.entity_type_id),
                entity_type=mapped_object.entity_type_id,
                entity_id=mapped_object.entity_id,
                sfid=str(sf_object.id())
            )
            return None

        # 键字段写回与时间戳比较无关，远程键为空时总是执行
        written = self.send_entity_id(mapping, entity, sf_object)

        force = force or mapped_object.force_pull
        local_updated = entity.changed or mapped_object.entity_updated
        remote_updated = to_timestamp(sf_object.get(mapping.pull_trigger_date))

        newer = remote_updated is not None and (
            local_updated is None or remote_updated > int(local_updated)
        )
        if not (force or newer):
            logger.debug(f"{sf_object!r} is not newer than {entity!r}, skipping")
            return None

        # 刚写回的键字段以本地值为准
        skip = {mapping.key} if written else set()
        self._apply_values(mapping, entity, sf_object, skip)
        if remote_updated is not None:
            entity.set('changed', remote_updated)
        self.entities.save(entity, Origin.REMOTE_SYNC)

        mapped_object.entity_updated = entity.changed
        mapped_object.force_pull = False
        mapped_object.record_sync(SYNC_ACTION_PULL, True)
        self.mapped_objects.save(mapped_object)

        logger.info(f"Updated {entity!r} from {sf_object!r}")
        return SyncTrigger.REMOTE_UPDATE

    def create_entity(self, mapping: Mapping, sf_object: SObject) -> Optional[SyncTrigger]:
        """
        为远程记录创建本地实体

        先以 (远程 ID, 映射) 创建映射对象占位，并发创建时后到者在此失败。
        """
        if not mapping.does_crud([SyncTrigger.REMOTE_CREATE]):
            self.notifier.notice(
                "Mapping {mapping} does not pull creates, skipping {sfid}",
                mapping=mapping.id, sfid=str(sf_object.id())
            )
            return None

        entity = self.entities.create(mapping.drupal_entity_type, bundle=mapping.drupal_bundle)
        self._apply_values(mapping, entity, sf_object)
        remote_updated = to_timestamp(sf_object.get(mapping.pull_trigger_date))
        if remote_updated is not None:
            entity.set('changed', remote_updated)

        mapped_object = MappedObject(
            entity_type_id=mapping.drupal_entity_type,
            salesforce_id=str(sf_object.id()),
            salesforce_mapping=mapping.id
        )
        self.mapped_objects.create(mapped_object)

        try:
            self.entities.save(entity, Origin.REMOTE_SYNC)
        except Exception:
            self.mapped_objects.delete(mapped_object)
            raise

        mapped_object.set_entity(entity)
        mapped_object.entity_updated = entity.changed
        mapped_object.record_sync(SYNC_ACTION_PULL, True)
        self.mapped_objects.save(mapped_object)

        logger.info(f"Created {entity!r} from {sf_object!r}")

        try:
            self.send_entity_id(mapping, entity, sf_object)
        except PullError:
            # 重试时走更新路径，需要绕过时间戳比较
            mapped_object.force_pull = True
            self.mapped_objects.save(mapped_object)
            raise
        return SyncTrigger.REMOTE_CREATE

    def send_entity_id(self, mapping: Mapping, entity: Entity, sf_object: SObject) -> bool:
        """
        远程记录键字段为空时，把本地键值写回远程

        Returns:
            是否执行了写回
        """
        if not mapping.has_key():
            return False
        if not mapping.does_crud([SyncTrigger.LOCAL_CREATE, SyncTrigger.LOCAL_UPDATE]):
            return False
        if sf_object.get(mapping.key):
            return False

        key_value = mapping.get_key_value(entity)
        if key_value is None:
            return False

        try:
            self.client.object_update(
                mapping.salesforce_object_type, sf_object.id(), {mapping.key: key_value}
            )
        except Exception as e:
            raise PullError(
                f"Unable to write {mapping.key} back to {sf_object.type()} {sf_object.id()}: {e}"
            ) from e
        return True

    @staticmethod
    def _apply_values(mapping: Mapping, entity: Entity, sf_object: SObject,
                      skip: Iterable[str] = ()) -> None:
        fields = sf_object.fields()
        for field_mapping in mapping.get_pull_fields():
            if field_mapping.salesforce_field not in fields or field_mapping.salesforce_field in skip:
                continue
            field_mapping.set_value(entity, field_mapping.pull_value(sf_object))
