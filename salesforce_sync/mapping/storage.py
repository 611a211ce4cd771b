"""映射存储"""

import threading
from typing import Any, Dict, Iterable, List, Optional
from loguru import logger

from .constants import PUSH_TRIGGERS, PULL_TRIGGERS
from .mapping import Mapping


class MappingStorage:
    """
    映射仓库

    保存不可变的 Mapping 实例，保留声明顺序；
    save 以新版本替换旧版本，不在原对象上修改。
    """

    def __init__(self, mappings: Iterable[Mapping] = ()):
        self._mappings: Dict[str, Mapping] = {}
        self._lock = threading.Lock()
        for mapping in mappings:
            self._mappings[mapping.id] = mapping

    @classmethod
    def from_config(cls, configs: Iterable[Dict[str, Any]]) -> "MappingStorage":
        storage = cls(Mapping.from_dict(config) for config in configs)
        logger.info(f"Loaded {len(storage)} mappings")
        return storage

    def __len__(self) -> int:
        return len(self._mappings)

    def load(self, mapping_id: Any) -> Optional[Mapping]:
        if mapping_id is None:
            return None
        return self._mappings.get(str(mapping_id))

    def load_multiple(self, ids: Optional[Iterable[Any]] = None) -> List[Mapping]:
        if ids is None:
            return list(self._mappings.values())
        return [m for m in (self.load(i) for i in ids) if m is not None]

    def load_by_properties(self, **properties) -> List[Mapping]:
        return [
            mapping for mapping in self._mappings.values()
            if all(getattr(mapping, k) == v for k, v in properties.items())
        ]

    def load_by_entity(self, entity) -> List[Mapping]:
        """加载适用于该实体的启用映射"""
        return [
            mapping for mapping in self._mappings.values()
            if mapping.status and mapping.applies_to(entity)
        ]

    def load_push_mappings(self) -> List[Mapping]:
        """启用推送的映射，按 weight 升序"""
        mappings = [
            m for m in self._mappings.values()
            if m.status and m.does_crud(PUSH_TRIGGERS)
        ]
        return sorted(mappings, key=lambda m: m.weight)

    def load_pull_mappings(self) -> List[Mapping]:
        """启用拉取的映射，按 weight 升序"""
        mappings = [
            m for m in self._mappings.values()
            if m.status and m.does_crud(PULL_TRIGGERS)
        ]
        return sorted(mappings, key=lambda m: m.weight)

    def get_mapped_sobject_types(self) -> List[str]:
        """所有映射涉及的远程对象类型，按声明顺序去重"""
        return list(dict.fromkeys(
            m.salesforce_object_type for m in self._mappings.values()
        ))

    def save(self, mapping: Mapping) -> Mapping:
        """保存新版本"""
        with self._lock:
            self._mappings[mapping.id] = mapping
        logger.info(f"Saved mapping {mapping.id}")
        return mapping

    def delete(self, mapping_id: Any) -> None:
        with self._lock:
            self._mappings.pop(str(mapping_id), None)
        logger.info(f"Deleted mapping {mapping_id}")
