"""映射模块"""

from .constants import SyncTrigger, PUSH_TRIGGERS, PULL_TRIGGERS, ALL_TRIGGERS
from .field_mapping import FieldMapping, create_field_mapping
from .mapping import Mapping, PushParams
from .storage import MappingStorage

__all__ = [
    "SyncTrigger", "PUSH_TRIGGERS", "PULL_TRIGGERS", "ALL_TRIGGERS",
    "FieldMapping", "create_field_mapping",
    "Mapping", "PushParams", "MappingStorage"
]
