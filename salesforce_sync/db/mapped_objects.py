"""
映射对象存储
"""
import time
from typing import List, Optional, Any

from pymysql.err import IntegrityError
from loguru import logger

from ..errors import MappedObjectExistsError
from ..remote.sobject import SFID
from .database import Database
from .models import MappedObject


TABLE = 'salesforce_mapped_object'


class MappedObjectStorage:
    """
    映射对象存储

    (salesforce_id, salesforce_mapping) 的唯一性由表上的唯一索引保证，
    并发的两个创建路径中后到的一方会得到 MappedObjectExistsError。
    """

    def __init__(self, database: Database):
        self.db = database

    def create(self, mapped_object: MappedObject) -> MappedObject:
        """插入新的映射对象"""
        if not mapped_object.is_new():
            raise ValueError(f"{mapped_object!r} is already saved")

        try:
            mapped_object.id = self.db.insert(TABLE, mapped_object.to_dict())
        except IntegrityError as e:
            logger.warning(f"Duplicate mapped object rejected: {e}")
            raise MappedObjectExistsError(
                mapped_object.salesforce_id,
                mapped_object.salesforce_mapping
            ) from e
        return mapped_object

    def save(self, mapped_object: MappedObject) -> MappedObject:
        """保存映射对象（新建或更新）"""
        mapped_object.changed = int(time.time())
        if mapped_object.is_new():
            return self.create(mapped_object)

        try:
            self.db.update(TABLE, mapped_object.to_dict(), {'id': mapped_object.id})
        except IntegrityError as e:
            raise MappedObjectExistsError(
                mapped_object.salesforce_id,
                mapped_object.salesforce_mapping
            ) from e
        return mapped_object

    def load(self, mapped_object_id: Any) -> Optional[MappedObject]:
        if mapped_object_id is None:
            return None
        row = self.db.query_one(f"SELECT * FROM {TABLE} WHERE id = %s", (mapped_object_id,))
        return MappedObject.from_db_record(row) if row else None

    def load_by_properties(self, **properties) -> List[MappedObject]:
        """按字段精确匹配加载"""
        if not properties:
            raise ValueError("At least one property is required")
        if properties.get('salesforce_id'):
            properties['salesforce_id'] = str(SFID(properties['salesforce_id']))

        where = ' AND '.join(f"{column} = %s" for column in properties)
        rows = self.db.query(
            f"SELECT * FROM {TABLE} WHERE {where} ORDER BY id ASC",
            tuple(properties.values())
        )
        return [MappedObject.from_db_record(row) for row in rows]

    def load_by_sfid(self, sfid) -> List[MappedObject]:
        """加载引用某条远程记录的所有映射对象（可能跨多个映射）"""
        return self.load_by_properties(salesforce_id=str(SFID(sfid)))

    def load_by_sfid_and_mapping(self, sfid, mapping_id: str) -> Optional[MappedObject]:
        """按 (远程 ID, 映射) 加载，唯一约束保证最多一条"""
        results = self.load_by_properties(
            salesforce_id=str(SFID(sfid)),
            salesforce_mapping=mapping_id
        )
        return results[0] if results else None

    def load_by_entity(self, entity_type_id: str, entity_id: Any,
                       mapping_id: Optional[str] = None) -> List[MappedObject]:
        properties = {'entity_type_id': entity_type_id, 'entity_id': str(entity_id)}
        if mapping_id is not None:
            properties['salesforce_mapping'] = mapping_id
        return self.load_by_properties(**properties)

    def delete(self, mapped_object: MappedObject) -> None:
        if mapped_object.is_new():
            return
        self.db.delete(TABLE, {'id': mapped_object.id})
        logger.debug(f"Deleted {mapped_object!r}")
