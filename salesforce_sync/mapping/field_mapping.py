"""
字段映射

每个字段映射描述一个本地字段与一个远程字段之间的对应关系，
按 drupal_field_type 在加载配置时选择具体变体。
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Type

from ..errors import ConfigurationError
from ..remote.sobject import format_datetime, to_timestamp


DIRECTION_SYNC = "sync"
DIRECTION_PUSH = "drupal_sf"
DIRECTION_PULL = "sf_drupal"


@dataclass(frozen=True)
class FieldMapping:
    """字段映射基类"""

    drupal_field_type: ClassVar[str] = ""

    salesforce_field: str
    drupal_field_value: str = ""
    push: bool = True
    pull: bool = True

    def value(self, entity) -> Any:
        """从本地实体取推送值"""
        return entity.get(self.drupal_field_value)

    def pull_value(self, record) -> Any:
        """从远程记录取拉取值"""
        return record.get(self.salesforce_field)

    def set_value(self, entity, value: Any) -> None:
        """写入本地实体"""
        entity.set(self.drupal_field_value, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'drupal_field_type': self.drupal_field_type,
            'salesforce_field': self.salesforce_field,
            'drupal_field_value': self.drupal_field_value,
            'push': self.push,
            'pull': self.pull,
        }


@dataclass(frozen=True)
class PropertiesField(FieldMapping):
    """普通属性字段"""

    drupal_field_type: ClassVar[str] = "properties"

    def value(self, entity) -> Any:
        value = entity.get(self.drupal_field_value)
        if isinstance(value, (list, tuple)):
            # 多选字段在远程以分号分隔
            if all(isinstance(item, str) for item in value):
                return ';'.join(value)
            return json.dumps(list(value), ensure_ascii=False)
        if isinstance(value, dict):
            return json.dumps(value, ensure_ascii=False)
        return value


@dataclass(frozen=True)
class ConstantField(FieldMapping):
    """常量字段，只推送不拉取"""

    drupal_field_type: ClassVar[str] = "constant"

    pull: bool = False

    def value(self, entity) -> Any:
        return self.drupal_field_value

    def set_value(self, entity, value: Any) -> None:
        pass


@dataclass(frozen=True)
class DateTimeField(FieldMapping):
    """日期时间字段：本地为 Unix 时间戳，远程为 ISO-8601"""

    drupal_field_type: ClassVar[str] = "datetime"

    def value(self, entity) -> Any:
        value = entity.get(self.drupal_field_value)
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            value = value.timestamp()
        return format_datetime(float(value))

    def pull_value(self, record) -> Any:
        return to_timestamp(record.get(self.salesforce_field))


@dataclass(frozen=True)
class BooleanField(FieldMapping):
    """布尔字段"""

    drupal_field_type: ClassVar[str] = "boolean"

    def value(self, entity) -> Any:
        value = entity.get(self.drupal_field_value)
        return None if value is None else bool(value)

    def pull_value(self, record) -> Any:
        value = record.get(self.salesforce_field)
        return None if value is None else bool(value)


FIELD_TYPES: Dict[str, Type[FieldMapping]] = {
    cls.drupal_field_type: cls
    for cls in (PropertiesField, ConstantField, DateTimeField, BooleanField)
}


def create_field_mapping(config: Dict[str, Any]) -> FieldMapping:
    """
    根据配置创建字段映射

    Args:
        config: 包含 drupal_field_type、salesforce_field、drupal_field_value，
            以及 direction（sync / drupal_sf / sf_drupal）或显式的 push / pull

    Raises:
        ConfigurationError: 未知的字段类型或缺少远程字段
    """
    field_type = config.get('drupal_field_type', PropertiesField.drupal_field_type)
    cls = FIELD_TYPES.get(field_type)
    if cls is None:
        raise ConfigurationError(f"Unknown field mapping type: {field_type}")

    salesforce_field = config.get('salesforce_field')
    if not salesforce_field:
        raise ConfigurationError("Field mapping requires salesforce_field")

    kwargs = {
        'salesforce_field': salesforce_field,
        'drupal_field_value': config.get('drupal_field_value', ''),
    }

    direction = config.get('direction')
    if direction is not None:
        if direction not in (DIRECTION_SYNC, DIRECTION_PUSH, DIRECTION_PULL):
            raise ConfigurationError(f"Unknown field mapping direction: {direction}")
        kwargs['push'] = direction in (DIRECTION_SYNC, DIRECTION_PUSH)
        kwargs['pull'] = direction in (DIRECTION_SYNC, DIRECTION_PULL)
    for flag in ('push', 'pull'):
        if flag in config:
            kwargs[flag] = bool(config[flag])

    if cls is ConstantField:
        kwargs['pull'] = False

    return cls(**kwargs)
