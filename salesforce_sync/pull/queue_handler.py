"""
拉取队列

按映射查询远程近期变更的记录，生成待拉取项；
写回失败的项保存在状态存储中，下一轮优先重试。
"""
import time
from typing import Any, Dict, List, Optional
from loguru import logger

from ..mapping.mapping import Mapping
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier
from ..remote.client import RestClient
from ..remote.sobject import SObject, format_datetime, to_timestamp
from ..state.state_store import StateStore


class PullQueueItem:
    """一条待拉取的远程记录"""

    def __init__(self, sobject: SObject, mapping_id: str,
                 force_pull: bool = False, failures: int = 0):
        self.sobject = sobject
        self.mapping_id = mapping_id
        self.force_pull = force_pull
        self.failures = failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sobject': self.sobject.to_dict(),
            'mapping_id': self.mapping_id,
            'force_pull': self.force_pull,
            'failures': self.failures
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'PullQueueItem':
        return PullQueueItem(
            SObject(data['sobject']),
            data['mapping_id'],
            bool(data.get('force_pull', False)),
            int(data.get('failures', 0))
        )

    def __repr__(self) -> str:
        return f"PullQueueItem({self.mapping_id}, {self.sobject.id()})"


class PullQueueHandler:
    """拉取队列处理器"""

    MAX_RETRIES = 3

    def __init__(self, client: RestClient,
                 mapping_storage: MappingStorage,
                 state: StateStore,
                 notifier: EventNotifier,
                 max_records: int = 2000):
        self.client = client
        self.mappings = mapping_storage
        self.state = state
        self.notifier = notifier
        self.max_records = max_records

    def build_query(self, mapping: Mapping, last_pull: Optional[int]) -> str:
        """构造拉取 SOQL"""
        fields = ', '.join(mapping.get_pull_query_fields())
        soql = f"SELECT {fields} FROM {mapping.salesforce_object_type}"

        conditions = []
        if mapping.salesforce_record_type:
            conditions.append(f"RecordTypeId = '{mapping.salesforce_record_type}'")
        if mapping.pull_where_clause:
            conditions.append(f"({mapping.pull_where_clause})")
        if last_pull:
            conditions.append(f"{mapping.pull_trigger_date} > {format_datetime(last_pull)}")

        if conditions:
            soql += " WHERE " + " AND ".join(conditions)
        soql += f" ORDER BY {mapping.pull_trigger_date} ASC LIMIT {self.max_records}"
        return soql

    def get_updated_records(self, force: bool = False) -> List[PullQueueItem]:
        """所有拉取映射的待拉取项，先返回待重试的项"""
        items = self.take_retry_items()
        for mapping in self.mappings.load_pull_mappings():
            items.extend(self.get_updated_records_for_mapping(mapping, force))
        return items

    def get_updated_records_for_mapping(self, mapping: Mapping,
                                        force: bool = False) -> List[PullQueueItem]:
        now = time.time()
        attempt_key = StateStore.pull_attempt_key(mapping.id)
        if not force and now < mapping.get_next_pull_time(self.state.get(attempt_key)):
            logger.debug(f"Pull for {mapping.id} not due yet")
            return []

        checkpoint_key = StateStore.pull_timestamp_key(mapping.id)
        last_pull = self.state.get(checkpoint_key)
        soql = self.build_query(mapping, last_pull)

        try:
            records = self.client.query(soql)
        except Exception as e:
            self.notifier.error(
                "Pull query failed for {mapping}", exception=e, mapping=mapping.id
            )
            return []

        self.state.set(attempt_key, now)

        latest = last_pull
        items = []
        for record in records:
            items.append(PullQueueItem(record, mapping.id))
            updated = to_timestamp(record.get(mapping.pull_trigger_date))
            if updated and (latest is None or updated > latest):
                latest = updated

        # 批次满时同一秒内可能还有未返回的记录，下次从该秒重新查询
        if latest is not None and len(records) >= self.max_records:
            latest = max(latest - 1, last_pull or 0)
            if latest == (last_pull or 0):
                logger.warning(f"Pull batch for {mapping.id} is full within one second; "
                               f"raise max_records ({self.max_records})")

        if latest != last_pull:
            self.state.set(checkpoint_key, latest)

        logger.info(f"Fetched {len(items)} updated {mapping.salesforce_object_type} records for {mapping.id}")
        return items

    def requeue(self, item: PullQueueItem) -> bool:
        """保存失败的拉取项以便下一轮重试，超过重试上限时丢弃"""
        item.failures += 1
        if item.failures > self.MAX_RETRIES:
            self.notifier.error(
                "Dropping pull of {sfid} via {mapping} after {failures} failures",
                sfid=str(item.sobject.id()), mapping=item.mapping_id, failures=item.failures
            )
            return False

        pending = self.state.get(StateStore.pull_retry_key(), [])
        pending.append(item.to_dict())
        self.state.set(StateStore.pull_retry_key(), pending)
        return True

    def take_retry_items(self) -> List[PullQueueItem]:
        pending = self.state.get(StateStore.pull_retry_key(), [])
        if not pending:
            return []
        self.state.delete(StateStore.pull_retry_key())
        return [PullQueueItem.from_dict(data) for data in pending]
