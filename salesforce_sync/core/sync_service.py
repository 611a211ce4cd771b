"""
同步服务主类
"""
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from loguru import logger
import redis

from ..config.config import Config
from ..db.database import Database
from ..db.mapped_objects import MappedObjectStorage
from ..entity.store import DatabaseEntityStore, EntityStore
from ..errors import NotFoundError, PullError
from ..mapping.storage import MappingStorage
from ..monitor.events import EventNotifier, Severity, SyncEvent
from ..monitor.metrics import MetricsCollector
from ..pull.delete_handler import DeleteHandler
from ..pull.pull_worker import PullProcessor
from ..pull.queue_handler import PullQueueHandler
from ..push.change_capture import ChangeCapture
from ..push.processor import PushQueueProcessorManager, RestPushProcessor
from ..push.push_queue import PushQueue
from ..push.push_worker import PushWorker
from ..remote.client import RestClient
from ..state.lock import SyncLock
from ..state.state_store import StateStore


class SyncService:
    """双向同步服务"""

    def __init__(self, config: Config,
                 database: Optional[Database] = None,
                 client: Optional[RestClient] = None,
                 entity_store: Optional[EntityStore] = None,
                 redis_client: Optional[redis.Redis] = None,
                 notifier: Optional[EventNotifier] = None):
        self.config = config
        self.running = False
        self._threads = []
        self._stop_event = threading.Event()

        # 初始化组件
        self._init_components(database, client, entity_store, redis_client, notifier)

        # 同步统计
        self.stats = {
            'push_processed': 0,
            'pull_success': 0,
            'pull_failed': 0,
            'deleted': 0,
            'start_time': None
        }

    def _init_components(self, database, client, entity_store, redis_client, notifier) -> None:
        """初始化组件"""
        sync_config = self.config.sync

        self.database = database or Database(self.config.database)
        if database is None:
            self.database.create_sync_tables()

        self.client = client or RestClient(self.config.salesforce)

        # 初始化Redis（可选）
        self.redis_client = redis_client
        if self.redis_client is None and sync_config.enable_cache:
            try:
                self.redis_client = redis.Redis(
                    host=self.config.redis.host,
                    port=self.config.redis.port,
                    db=self.config.redis.db,
                    password=self.config.redis.password,
                    decode_responses=True
                )
                self.redis_client.ping()
                logger.info("Redis connected successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}, using memory state")
                self.redis_client = None

        self.notifier = notifier or EventNotifier.from_level_name(self.config.monitor.event_log_level)
        self.state = StateStore(self.redis_client)
        self.lock = SyncLock(self.redis_client, sync_config.lock_ttl)

        self.mapping_storage = MappingStorage.from_config(self.config.mappings)
        self.mapped_objects = MappedObjectStorage(self.database)
        self.entity_store = entity_store or DatabaseEntityStore(self.database)

        # 推送
        self.push_worker = PushWorker(
            self.client, self.mapping_storage, self.mapped_objects, self.entity_store
        )
        self.processor_manager = PushQueueProcessorManager()
        self.push_queue = PushQueue(
            self.database, self.mapping_storage, self.state,
            self.notifier, self.processor_manager, sync_config
        )
        self.processor_manager.register(
            'rest', lambda: RestPushProcessor(self.push_queue, self.push_worker, self.client)
        )
        self.change_capture = ChangeCapture(
            self.mapping_storage, self.mapped_objects, self.push_queue,
            self.push_worker, self.notifier, sync_config.standalone
        )
        self.entity_store.add_listener(self.change_capture)

        # 拉取
        self.pull_handler = PullQueueHandler(
            self.client, self.mapping_storage, self.state,
            self.notifier, sync_config.pull_max_records
        )
        self.pull_processor = PullProcessor(
            self.client, self.mapping_storage, self.mapped_objects,
            self.entity_store, self.notifier
        )
        self.delete_handler = DeleteHandler(
            self.client, self.mapping_storage, self.mapped_objects,
            self.entity_store, self.state, self.notifier,
            self.lock, sync_config.delete_initial_days
        )

        # 初始化监控
        if self.config.monitor.enable_metrics:
            self.metrics = MetricsCollector(self.config.monitor)
            self.notifier.subscribe(self._record_event)
        else:
            self.metrics = None

        logger.info("All components initialized successfully")

    def run_push(self) -> int:
        """处理一轮推送队列"""
        started = time.time()
        count = self.push_queue.process_queues()
        self.stats['push_processed'] += count
        if self.metrics:
            self.metrics.record_sync('push', 'success', count)
            self.metrics.record_sync_duration('push', time.time() - started)
        return count

    def run_pull(self) -> Dict[str, int]:
        """拉取一轮远程更新"""
        started = time.time()
        result = {'success': 0, 'skipped': 0, 'failed': 0}

        for item in self.pull_handler.get_updated_records():
            try:
                trigger = self.pull_processor.process_item(item)
            except PullError as e:
                self.notifier.warning(
                    "Pull of {item} will be retried", exception=e, item=repr(item)
                )
                self.pull_handler.requeue(item)
                result['failed'] += 1
                continue
            result['success' if trigger else 'skipped'] += 1

        self.stats['pull_success'] += result['success']
        self.stats['pull_failed'] += result['failed']
        if self.metrics:
            self.metrics.record_sync('pull', 'success', result['success'])
            self.metrics.record_sync('pull', 'failed', result['failed'])
            self.metrics.record_sync_duration('pull', time.time() - started)
        return result

    def run_deletes(self) -> int:
        """处理一轮远程删除"""
        count = self.delete_handler.process_deleted_records()
        self.stats['deleted'] += count
        if self.metrics:
            self.metrics.record_sync('delete', 'success', count)
        return count

    def process_standalone(self, mapping_id: str) -> int:
        """手动处理单个映射的推送队列"""
        mapping = self.mapping_storage.load(mapping_id)
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} does not exist")
        if not mapping.does_push():
            logger.warning(f"Mapping {mapping_id} does not push")
            return 0
        count = self.push_queue.process_queue(mapping)
        self.stats['push_processed'] += count
        return count

    def run_once(self) -> Dict[str, Any]:
        """依次执行推送、拉取、删除各一轮"""
        return {
            'push': self.run_push(),
            'pull': self.run_pull(),
            'deleted': self.run_deletes()
        }

    def start(self) -> None:
        """启动同步服务"""
        if self.running:
            logger.warning("Sync service is already running")
            return

        logger.info("Starting sync service...")

        if not self.test_connections():
            raise ConnectionError("Connection test failed")

        self.running = True
        self._stop_event.clear()
        self.stats['start_time'] = datetime.now()

        sync_config = self.config.sync
        self._start_thread("PushThread", self.run_push, sync_config.push_poll_interval)
        self._start_thread("PullThread", self.run_pull, sync_config.pull_poll_interval)
        self._start_thread("DeleteThread", self.run_deletes, sync_config.delete_poll_interval)
        self._start_thread("GarbageCollectionThread", self.push_queue.garbage_collection,
                           sync_config.gc_interval)

        if self.metrics:
            self._start_thread("MetricsThread", self._update_metrics, 30)

        logger.info("Sync service started successfully")

    def stop(self) -> None:
        """停止同步服务"""
        logger.info("Stopping sync service...")
        self.running = False
        self._stop_event.set()

        # 等待线程结束
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []

        logger.info("Sync service stopped")

    def _start_thread(self, name: str, task: Callable[[], Any], interval: float) -> None:
        thread = threading.Thread(target=self._loop, args=(name, task, interval), name=name)
        thread.daemon = True
        thread.start()
        self._threads.append(thread)

    def _loop(self, name: str, task: Callable[[], Any], interval: float) -> None:
        logger.info(f"{name} loop started")

        while self.running:
            try:
                task()
            except Exception as e:
                logger.error(f"Error in {name} loop: {e}")
                if self.metrics:
                    self.metrics.record_error(name, str(e))

            # 等待下次轮询
            if self._stop_event.wait(interval):
                break

    def _record_event(self, event: SyncEvent) -> None:
        """错误事件计入监控"""
        if event.severity < Severity.ERROR:
            return
        error_type = type(event.exception).__name__ if event.exception else 'event'
        self.metrics.record_error(error_type, event.render())

    def _update_metrics(self) -> None:
        self.metrics.update_queue_stats(self.push_queue.get_queue_stats())
        self.metrics.check_and_alert()

    def test_connections(self) -> bool:
        """测试连接"""
        if not self.database.test_connection():
            logger.error("Database connection test failed")
            return False

        if not self.client.is_authorized():
            logger.error("Salesforce client is not authorized")
            return False

        logger.info("All connections tested successfully")
        return True

    def get_status(self) -> Dict[str, Any]:
        """获取服务状态"""
        uptime = None
        if self.stats['start_time']:
            uptime = (datetime.now() - self.stats['start_time']).total_seconds()

        return {
            'running': self.running,
            'uptime_seconds': uptime,
            'sync_stats': self.stats,
            'queue_stats': self.push_queue.get_queue_stats(),
            'mappings': len(self.mapping_storage),
            'threads': [
                {
                    'name': t.name,
                    'alive': t.is_alive()
                }
                for t in self._threads
            ]
        }
