"""
数据库模型定义
"""
import json
import time
from typing import Dict, Any, Optional

from ..mapping.constants import SyncTrigger
from ..remote.sobject import SFID


class PushQueueItem:
    """推送队列项"""

    def __init__(self, **kwargs):
        self.item_id = kwargs.get('item_id')
        self.name = kwargs.get('name')  # 映射 ID
        self.entity_id = kwargs.get('entity_id')
        self.op = kwargs.get('op')
        self.mapped_object_id = kwargs.get('mapped_object_id')
        self.data = kwargs.get('data')
        self.failures = kwargs.get('failures', 0) or 0
        self.expire = kwargs.get('expire', 0) or 0
        self.claim_token = kwargs.get('claim_token')
        self.revision = kwargs.get('revision', 0) or 0  # 每次合并加 1
        self.created = kwargs.get('created')
        self.updated = kwargs.get('updated')

    @property
    def mapping_id(self) -> str:
        return self.name

    @property
    def trigger(self) -> SyncTrigger:
        return SyncTrigger.parse(self.op)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'item_id': self.item_id,
            'name': self.name,
            'entity_id': self.entity_id,
            'op': self.op,
            'mapped_object_id': self.mapped_object_id,
            'data': self.data,
            'failures': self.failures,
            'expire': self.expire,
            'revision': self.revision,
            'created': self.created,
            'updated': self.updated
        }

    @staticmethod
    def from_db_record(record: Dict[str, Any]) -> 'PushQueueItem':
        """从数据库记录创建对象"""
        record = dict(record)
        if isinstance(record.get('data'), str):
            record['data'] = json.loads(record['data']) if record['data'] else None
        return PushQueueItem(**record)

    def __repr__(self) -> str:
        return f"PushQueueItem({self.item_id}, {self.name}, {self.entity_id}, {self.op})"


class MappedObject:
    """映射对象：一个本地实体与一条远程记录之间的持久关联"""

    def __init__(self, **kwargs):
        self.id = kwargs.get('id')
        self.entity_id = kwargs.get('entity_id')
        self.entity_type_id = kwargs.get('entity_type_id')
        self.salesforce_id = None
        self.set_salesforce_id(kwargs.get('salesforce_id'))
        self.salesforce_mapping = kwargs.get('salesforce_mapping')
        self.entity_updated = kwargs.get('entity_updated')
        self.last_sync = kwargs.get('last_sync')
        self.last_sync_action = kwargs.get('last_sync_action')
        status = kwargs.get('last_sync_status')
        self.last_sync_status = None if status is None else bool(status)
        self.revision_log_message = kwargs.get('revision_log_message')
        self.force_pull = bool(kwargs.get('force_pull', False))
        now = int(time.time())
        self.created = kwargs.get('created') or now
        self.changed = kwargs.get('changed') or now

    def is_new(self) -> bool:
        return self.id is None

    def sfid(self) -> Optional[str]:
        return self.salesforce_id

    def set_salesforce_id(self, value) -> "MappedObject":
        """保存 18 位形式的远程 ID"""
        self.salesforce_id = str(SFID(value)) if value else None
        return self

    def set_entity(self, entity) -> "MappedObject":
        self.entity_id = None if entity.id is None else str(entity.id)
        self.entity_type_id = entity.entity_type
        return self

    def record_sync(self, action: str, status: bool,
                    message: Optional[str] = None) -> "MappedObject":
        """记录最近一次同步结果"""
        self.last_sync_action = action
        self.last_sync_status = status
        self.revision_log_message = message
        if status:
            self.last_sync = int(time.time())
        return self

    def to_dict(self) -> Dict[str, Any]:
        """转换为数据库字段"""
        return {
            'entity_id': self.entity_id,
            'entity_type_id': self.entity_type_id,
            'salesforce_id': self.salesforce_id,
            'salesforce_mapping': self.salesforce_mapping,
            'entity_updated': self.entity_updated,
            'last_sync': self.last_sync,
            'last_sync_action': self.last_sync_action,
            'last_sync_status': None if self.last_sync_status is None else int(self.last_sync_status),
            'revision_log_message': self.revision_log_message,
            'force_pull': int(self.force_pull),
            'created': self.created,
            'changed': self.changed
        }

    @staticmethod
    def from_db_record(record: Dict[str, Any]) -> 'MappedObject':
        """从数据库记录创建对象"""
        return MappedObject(**record)

    def __repr__(self) -> str:
        return (f"MappedObject({self.id}, {self.entity_type_id}:{self.entity_id}"
                f" <-> {self.salesforce_id})")
