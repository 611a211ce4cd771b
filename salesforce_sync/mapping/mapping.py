"""
同步映射

Mapping 是不可变配置：修改通过 dataclasses.replace 得到新版本，
再交给 MappingStorage.save 保存。
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..errors import ConfigurationError, NotFoundError
from .constants import (
    SyncTrigger, PUSH_TRIGGERS, PULL_TRIGGERS, ALL_TRIGGERS,
    DEFAULT_PULL_TRIGGER_DATE,
)
from .field_mapping import FieldMapping, create_field_mapping


class PushParams:
    """推送参数：远程字段名 -> 值，以及需要在远程置空的字段列表"""

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self._params: Dict[str, Any] = dict(params or {})
        self.fields_to_null: List[str] = []

    def get_params(self) -> Dict[str, Any]:
        """返回远程写入调用使用的参数包"""
        params = dict(self._params)
        params['fieldsToNull'] = list(self.fields_to_null)
        return params

    def get_param(self, key: str) -> Any:
        if key not in self._params:
            raise KeyError(f"Param {key} is not set")
        return self._params[key]

    def has_param(self, key: str) -> bool:
        return key in self._params

    def set_param(self, key: str, value: Any) -> "PushParams":
        self._params[key] = value
        return self

    def unset_param(self, key: str) -> "PushParams":
        self._params.pop(key, None)
        return self

    def values(self) -> Dict[str, Any]:
        """只包含非空值的参数"""
        return dict(self._params)


@dataclass(frozen=True)
class Mapping:
    """本地实体类型/bundle 与远程对象类型之间的同步映射"""

    id: str
    salesforce_object_type: str
    drupal_entity_type: str
    drupal_bundle: str = ""
    label: str = ""
    weight: int = 0
    status: bool = True
    salesforce_record_type: str = ""
    key: str = ""
    sync_triggers: FrozenSet[SyncTrigger] = field(default_factory=frozenset)
    field_mappings: Tuple[FieldMapping, ...] = ()
    push_limit: int = 0
    push_retries: int = 3
    push_frequency: int = 0
    pull_frequency: int = 0
    pull_trigger_date: str = DEFAULT_PULL_TRIGGER_DATE
    pull_where_clause: str = ""
    async_push: bool = False
    push_standalone: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mapping":
        """
        从配置字典创建映射

        sync_triggers 可以是触发器列表，也可以是 {trigger: bool} 字典。

        Raises:
            ConfigurationError: 缺少必要字段、未知触发器、多个键字段
        """
        for required in ('id', 'salesforce_object_type', 'drupal_entity_type'):
            if not data.get(required):
                raise ConfigurationError(f"Mapping is missing {required}")

        raw_triggers = data.get('sync_triggers') or []
        if isinstance(raw_triggers, dict):
            raw_triggers = [name for name, enabled in raw_triggers.items() if enabled]
        try:
            triggers = frozenset(SyncTrigger.parse(t) for t in raw_triggers)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        key = data.get('key') or ""
        if isinstance(key, (list, tuple)):
            if len(key) > 1:
                raise ConfigurationError(
                    f"Mapping {data['id']} defines more than one key field"
                )
            key = key[0] if key else ""

        field_mappings = tuple(
            create_field_mapping(config) for config in data.get('field_mappings', [])
        )

        return cls(
            id=str(data['id']),
            label=data.get('label') or str(data['id']),
            weight=int(data.get('weight', 0)),
            status=bool(data.get('status', True)),
            drupal_entity_type=data['drupal_entity_type'],
            drupal_bundle=data.get('drupal_bundle') or data['drupal_entity_type'],
            salesforce_object_type=data['salesforce_object_type'],
            salesforce_record_type=data.get('salesforce_record_type') or "",
            key=key,
            sync_triggers=triggers,
            field_mappings=field_mappings,
            push_limit=int(data.get('push_limit', 0)),
            push_retries=int(data.get('push_retries', 3)),
            push_frequency=int(data.get('push_frequency', 0)),
            pull_frequency=int(data.get('pull_frequency', 0)),
            pull_trigger_date=data.get('pull_trigger_date') or DEFAULT_PULL_TRIGGER_DATE,
            pull_where_clause=data.get('pull_where_clause') or "",
            async_push=bool(data.get('async', data.get('async_push', False))),
            push_standalone=bool(data.get('push_standalone', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'weight': self.weight,
            'status': self.status,
            'drupal_entity_type': self.drupal_entity_type,
            'drupal_bundle': self.drupal_bundle,
            'salesforce_object_type': self.salesforce_object_type,
            'salesforce_record_type': self.salesforce_record_type,
            'key': self.key,
            'sync_triggers': sorted(t.value for t in self.sync_triggers),
            'field_mappings': [f.to_dict() for f in self.field_mappings],
            'push_limit': self.push_limit,
            'push_retries': self.push_retries,
            'push_frequency': self.push_frequency,
            'pull_frequency': self.pull_frequency,
            'pull_trigger_date': self.pull_trigger_date,
            'pull_where_clause': self.pull_where_clause,
            'async': self.async_push,
            'push_standalone': self.push_standalone,
        }

    def with_changes(self, **changes) -> "Mapping":
        """返回修改后的新版本"""
        return replace(self, **changes)

    # 触发器判断：所有组件在执行操作前都必须经过这里

    def does_crud(self, ops: Iterable[SyncTrigger] = ()) -> bool:
        """映射是否响应给定的任一操作，ops 为空时视为全部六种操作"""
        ops = frozenset(ops) or ALL_TRIGGERS
        return bool(ops & self.sync_triggers)

    def does_push(self) -> bool:
        return self.does_crud(PUSH_TRIGGERS)

    def does_pull(self) -> bool:
        return self.does_crud(PULL_TRIGGERS)

    def has_key(self) -> bool:
        return bool(self.key)

    def get_key_field(self) -> Optional[str]:
        return self.key or None

    def get_field_mappings(self) -> List[FieldMapping]:
        return list(self.field_mappings)

    def get_push_params(self, entity) -> PushParams:
        """
        计算推送参数

        值为 None 的字段记入 fields_to_null（通知远程清空该字段），
        不作为值发送。
        """
        params = PushParams()
        for field_mapping in self.field_mappings:
            if not field_mapping.push:
                continue
            value = field_mapping.value(entity)
            if value is None:
                params.fields_to_null.append(field_mapping.salesforce_field)
            else:
                params.set_param(field_mapping.salesforce_field, value)
        return params

    def get_pull_fields(self) -> List[FieldMapping]:
        return [f for f in self.field_mappings if f.pull]

    def get_key_value(self, entity) -> Any:
        if not self.has_key():
            raise ConfigurationError(f"No key defined for mapping {self.id}")

        for field_mapping in self.field_mappings:
            if field_mapping.salesforce_field == self.key:
                return field_mapping.value(entity)
        raise NotFoundError(f"Key {self.key} not found for mapping {self.id}")

    def get_next_push_time(self, last_attempt: Optional[float]) -> float:
        return (last_attempt or 0) + self.push_frequency

    def get_next_pull_time(self, last_pull: Optional[float]) -> float:
        return (last_pull or 0) + self.pull_frequency

    def get_pull_query_fields(self) -> List[str]:
        """拉取查询需要的远程字段"""
        fields = ['Id', self.pull_trigger_date]
        for field_mapping in self.get_pull_fields():
            fields.append(field_mapping.salesforce_field)
        if self.has_key():
            fields.append(self.key)
        if self.salesforce_record_type:
            fields.append('RecordTypeId')
        return list(dict.fromkeys(fields))

    def applies_to(self, entity) -> bool:
        """映射是否适用于该实体的类型和 bundle"""
        return (entity.entity_type == self.drupal_entity_type
                and entity.bundle == self.drupal_bundle)
