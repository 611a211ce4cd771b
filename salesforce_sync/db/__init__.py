"""数据库模块"""

from .database import Database
from .models import PushQueueItem, MappedObject
from .mapped_objects import MappedObjectStorage

__all__ = ["Database", "PushQueueItem", "MappedObject", "MappedObjectStorage"]
