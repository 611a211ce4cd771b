"""
推送队列

队列项按 (映射, 实体) 去重，认领通过一条带 claim_token 的
UPDATE ... LIMIT 原子完成，再按 token 读回本次认领的记录。
"""
import json
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional
from loguru import logger

from ..config.config import SyncConfig
from ..db.database import Database
from ..db.models import PushQueueItem
from ..errors import AuthorizationError
from ..mapping.mapping import Mapping
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier
from ..state.state_store import StateStore
from .processor import PushQueueProcessor, PushQueueProcessorManager


TABLE = 'salesforce_push_queue'


class PushQueue:
    """推送队列"""

    def __init__(self, database: Database,
                 mapping_storage: MappingStorage,
                 state: StateStore,
                 notifier: EventNotifier,
                 processor_manager: PushQueueProcessorManager,
                 config: SyncConfig):
        self.db = database
        self.mappings = mapping_storage
        self.state = state
        self.notifier = notifier
        self.processor_manager = processor_manager
        self.config = config
        self.name: Optional[str] = None

    def set_name(self, name: Optional[str]) -> "PushQueue":
        """限定后续认领操作所属的映射"""
        self.name = name
        return self

    def create_item(self, mapping_id: str, entity_id: Any, op: str,
                    mapped_object_id: Optional[int] = None,
                    data: Optional[Dict[str, Any]] = None) -> int:
        """
        添加或合并队列项

        同一映射下同一实体已有记录时覆盖操作类型并重置失败次数。
        已被认领的记录保持认领状态，只增加 revision，由持有者处理完后放回队列。
        """
        now = int(time.time())
        sql = f"""
            INSERT INTO {TABLE}
                (name, entity_id, op, mapped_object_id, data, failures, expire, created, updated)
            VALUES (%s, %s, %s, %s, %s, 0, 0, %s, %s)
            ON DUPLICATE KEY UPDATE
                op = VALUES(op),
                mapped_object_id = VALUES(mapped_object_id),
                data = VALUES(data),
                failures = 0,
                revision = revision + 1,
                updated = VALUES(updated)
        """
        params = (
            mapping_id, str(entity_id), op, mapped_object_id,
            json.dumps(data) if data is not None else None, now, now
        )
        result = self.db.execute(sql, params)
        logger.debug(f"Queued {op} for {mapping_id}:{entity_id}")
        return result

    def claim_item(self, lease_time: Optional[int] = None) -> PushQueueItem:
        """单项认领不受支持"""
        raise NotImplementedError(
            "This queue is designed to process multiple items at once. "
            "Please use claim_items() instead."
        )

    def claim_items(self, n: int = 0, fail_limit: int = 0,
                    lease_time: Optional[int] = None) -> List[PushQueueItem]:
        """
        原子认领至多 n 项

        Args:
            n: 认领数量上限，0 表示使用全局上限
            fail_limit: 大于 0 时只认领失败次数小于该值的项
            lease_time: 租约时长（秒）

        Returns:
            按创建时间排序的已认领队列项
        """
        limit = n or self.config.global_push_limit
        lease_time = lease_time or self.config.push_lease_time
        token = uuid.uuid4().hex

        conditions = ["expire = 0"]
        params: List[Any] = [int(time.time()) + lease_time, token]
        if self.name:
            conditions.append("name = %s")
            params.append(self.name)
        if fail_limit:
            conditions.append("failures < %s")
            params.append(fail_limit)
        params.append(limit)

        claimed = self.db.execute(f"""
            UPDATE {TABLE} SET expire = %s, claim_token = %s
            WHERE {' AND '.join(conditions)}
            ORDER BY created ASC, item_id ASC
            LIMIT %s
        """, params)

        if not claimed:
            return []

        records = self.db.query(
            f"SELECT * FROM {TABLE} WHERE claim_token = %s ORDER BY created ASC, item_id ASC",
            (token,)
        )
        return [PushQueueItem.from_db_record(record) for record in records]

    def delete_item(self, item: PushQueueItem) -> None:
        """删除已处理的队列项，认领后被合并更新的项放回待处理状态"""
        deleted = self.db.execute(
            f"DELETE FROM {TABLE} WHERE item_id = %s AND claim_token <=> %s AND revision = %s",
            (item.item_id, item.claim_token, item.revision)
        )
        if not deleted and self.release_item(item):
            logger.debug(f"Push queue item {item.item_id} changed while claimed, requeued")

    def release_item(self, item: PushQueueItem) -> bool:
        """释放认领，失败次数不变"""
        return bool(self.db.execute(
            f"UPDATE {TABLE} SET expire = 0, claim_token = NULL "
            f"WHERE item_id = %s AND claim_token <=> %s",
            (item.item_id, item.claim_token)
        ))

    def release_items(self, items: Iterable[PushQueueItem]) -> int:
        return sum(1 for item in items if self.release_item(item))

    def fail_item(self, item: PushQueueItem, error: BaseException) -> None:
        """
        记录失败

        失败次数超过映射的 push_retries（非 0）时丢弃该项，否则放回队列等待重试。
        """
        mapping = self.mappings.load(item.name)
        failures = item.failures + 1
        item.failures = failures

        if mapping is None:
            self.notifier.error(
                "Dropping push queue item {item_id}: mapping {mapping} no longer exists",
                exception=error, item_id=item.item_id, mapping=item.name
            )
            self.delete_item(item)
            return

        if mapping.push_retries and failures > mapping.push_retries:
            self.notifier.error(
                "Dropping push queue item {item_id} ({op} {entity_id}) after {failures} failures",
                exception=error, item_id=item.item_id, op=item.op,
                entity_id=item.entity_id, failures=failures
            )
            self.delete_item(item)
            return

        updated = self.db.execute(
            f"UPDATE {TABLE} SET failures = %s, expire = 0, claim_token = NULL, updated = %s "
            f"WHERE item_id = %s AND claim_token <=> %s AND revision = %s",
            (failures, int(time.time()), item.item_id, item.claim_token, item.revision)
        )
        if not updated:
            # 认领期间已合并新操作，失败次数已重置
            self.release_item(item)
            return
        self.notifier.notice(
            "Push queue item {item_id} failed ({failures} so far)",
            exception=error, item_id=item.item_id, failures=failures
        )

    def garbage_collection(self) -> int:
        """回收租约过期的认领"""
        released = self.db.execute(
            f"UPDATE {TABLE} SET expire = 0, claim_token = NULL WHERE expire > 0 AND expire < %s",
            (int(time.time()),)
        )
        if released:
            logger.info(f"Released {released} expired push queue claims")
        return released

    def number_of_items(self) -> int:
        if self.name:
            row = self.db.query_one(
                f"SELECT COUNT(*) as count FROM {TABLE} WHERE name = %s", (self.name,)
            )
        else:
            row = self.db.query_one(f"SELECT COUNT(*) as count FROM {TABLE}")
        return row['count'] if row else 0

    def get_queue_stats(self) -> Dict[str, Any]:
        """获取队列统计信息"""
        results = self.db.query(f"""
            SELECT
                name,
                SUM(CASE WHEN expire = 0 THEN 1 ELSE 0 END) as pending,
                SUM(CASE WHEN expire > 0 THEN 1 ELSE 0 END) as claimed,
                SUM(CASE WHEN failures > 0 THEN 1 ELSE 0 END) as failing,
                MIN(created) as oldest
            FROM {TABLE}
            GROUP BY name
        """)

        stats = {
            'total': 0,
            'by_status': {'pending': 0, 'claimed': 0, 'failing': 0},
            'by_mapping': {},
            'oldest_pending': None
        }

        for row in results:
            pending = int(row['pending'] or 0)
            claimed = int(row['claimed'] or 0)
            failing = int(row['failing'] or 0)
            stats['total'] += pending + claimed
            stats['by_status']['pending'] += pending
            stats['by_status']['claimed'] += claimed
            stats['by_status']['failing'] += failing
            stats['by_mapping'][row['name']] = pending + claimed

            oldest = row.get('oldest')
            if oldest and (stats['oldest_pending'] is None or oldest < stats['oldest_pending']):
                stats['oldest_pending'] = oldest

        return stats

    def process_queues(self, mappings: Optional[List[Mapping]] = None) -> int:
        """
        处理所有推送映射的队列

        映射按 weight 升序处理；推送频率未到的映射跳过；
        全局上限耗尽后停止。遇到授权错误时释放本批次并结束本轮。

        Returns:
            本轮处理的队列项数量
        """
        if mappings is None:
            if self.config.standalone:
                logger.debug("Global standalone push enabled, skipping scheduled queue processing")
                return 0
            mappings = [m for m in self.mappings.load_push_mappings() if not m.push_standalone]
        else:
            mappings = sorted(mappings, key=lambda m: m.weight)

        self.garbage_collection()
        processor = self.processor_manager.create_instance(self.config.push_queue_processor)

        remaining = self.config.global_push_limit
        total = 0

        for mapping in mappings:
            if remaining <= 0:
                logger.info("Global push limit reached")
                break

            now = time.time()
            last_attempt = self.state.get(StateStore.push_attempt_key(mapping.id))
            if now < mapping.get_next_push_time(last_attempt):
                logger.debug(f"Push for {mapping.id} not due yet")
                continue

            self.state.set(StateStore.push_attempt_key(mapping.id), now)
            try:
                count = self._process_mapping(mapping, processor, remaining)
            except AuthorizationError:
                break
            total += count
            remaining -= count

        return total

    def process_queue(self, mapping: Mapping) -> int:
        """处理单个映射的队列，不检查推送频率"""
        processor = self.processor_manager.create_instance(self.config.push_queue_processor)
        try:
            return self._process_mapping(mapping, processor, self.config.global_push_limit)
        except AuthorizationError:
            return 0

    def _process_mapping(self, mapping: Mapping, processor: PushQueueProcessor,
                         remaining: int) -> int:
        limit = min(mapping.push_limit or remaining, remaining)
        self.set_name(mapping.id)
        try:
            items = self.claim_items(limit)
            if not items:
                return 0

            logger.info(f"Processing {len(items)} push queue items for {mapping.id}")
            try:
                processor.process(items)
            except AuthorizationError as e:
                self.release_items(items)
                self.notifier.error(
                    "Push queue processing suspended for {mapping}: not authorized",
                    exception=e, mapping=mapping.id
                )
                raise
            except Exception as e:
                self.release_items(items)
                self.notifier.error(
                    "Push queue processing failed for {mapping}",
                    exception=e, mapping=mapping.id
                )
            return len(items)
        finally:
            self.set_name(None)
