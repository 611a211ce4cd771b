"""
推送队列测试
"""
import time
import unittest
from unittest.mock import Mock, patch

from salesforce_sync.config.config import SyncConfig
from salesforce_sync.db.database import Database
from salesforce_sync.db.models import PushQueueItem
from salesforce_sync.errors import AuthorizationError, RemoteAPIError
from salesforce_sync.mapping.mapping import Mapping
from salesforce_sync.mapping.storage import MappingStorage
from salesforce_sync.monitor.events import EventNotifier
from salesforce_sync.push.processor import (
    PushQueueProcessor, PushQueueProcessorManager, RestPushProcessor
)
from salesforce_sync.push.push_queue import PushQueue
from salesforce_sync.push.push_worker import PushWorker
from salesforce_sync.remote.client import RestClient
from salesforce_sync.state.state_store import StateStore


def make_mapping(mapping_id, weight=0, **overrides):
    data = {
        "id": mapping_id,
        "weight": weight,
        "drupal_entity_type": "user",
        "salesforce_object_type": "Contact",
        "sync_triggers": ["push_create", "push_update", "push_delete"],
        "push_retries": 3,
    }
    data.update(overrides)
    return Mapping.from_dict(data)


def make_item(item_id=1, name="contact", failures=0, op="push_update"):
    return PushQueueItem(item_id=item_id, name=name, entity_id=str(item_id), op=op,
                         failures=failures, expire=int(time.time()) + 300,
                         claim_token="token-1", created=1, updated=1)


def executed_sql(db):
    return [c.args[0] for c in db.execute.call_args_list]


class TestPushQueueClaims(unittest.TestCase):
    """认领测试"""

    def setUp(self):
        self.db = Mock(spec=Database)
        self.config = SyncConfig(global_push_limit=50, push_lease_time=120)
        self.queue = PushQueue(
            self.db, MappingStorage([make_mapping("contact")]), StateStore(),
            EventNotifier(), PushQueueProcessorManager(), self.config
        )

    def test_claim_item_unsupported(self):
        """单项认领总是失败"""
        with self.assertRaises(NotImplementedError):
            self.queue.claim_item()

    def test_claim_items_by_token(self):
        """一条 UPDATE 标记租约和 token，再按同一 token 读取"""
        self.db.execute.return_value = 2
        self.db.query.return_value = [
            {"item_id": 1, "name": "contact", "entity_id": "1", "op": "push_update",
             "data": None, "failures": 0, "expire": 1, "claim_token": "x", "created": 1, "updated": 1},
            {"item_id": 2, "name": "contact", "entity_id": "2", "op": "push_create",
             "data": '{"a": 1}', "failures": 1, "expire": 1, "claim_token": "x", "created": 2, "updated": 2},
        ]

        items = self.queue.claim_items(10)

        sql, params = self.db.execute.call_args.args
        self.assertIn("UPDATE salesforce_push_queue SET expire = %s, claim_token = %s", sql)
        self.assertIn("LIMIT %s", sql)
        self.assertEqual(params[-1], 10)
        token = params[1]
        self.assertEqual(self.db.query.call_args.args[1], (token,))
        self.assertEqual([i.item_id for i in items], [1, 2])
        self.assertEqual(items[1].data, {"a": 1})

    def test_claim_nothing(self):
        self.db.execute.return_value = 0
        self.assertEqual(self.queue.claim_items(5), [])
        self.db.query.assert_not_called()

    def test_claim_zero_uses_global_limit(self):
        self.db.execute.return_value = 0
        self.queue.claim_items(0)
        params = self.db.execute.call_args.args[1]
        self.assertEqual(params[-1], 50)

    def test_claim_scoped_to_name(self):
        self.db.execute.return_value = 0
        self.queue.set_name("contact").claim_items(5, fail_limit=3)
        sql, params = self.db.execute.call_args.args
        self.assertIn("name = %s", sql)
        self.assertIn("failures < %s", sql)
        self.assertEqual(params[2:], ["contact", 3, 5])

    def test_lease_time(self):
        self.db.execute.return_value = 0
        before = int(time.time())
        self.queue.claim_items(1)
        expire = self.db.execute.call_args.args[1][0]
        self.assertGreaterEqual(expire, before + 120)

    def test_create_item_merges(self):
        """同一实体的新操作覆盖旧操作并重置失败次数"""
        self.queue.create_item("contact", 7, "push_delete", 3)
        sql, params = self.db.execute.call_args.args
        self.assertIn("ON DUPLICATE KEY UPDATE", sql)
        self.assertIn("failures = 0", sql)
        self.assertIn("revision = revision + 1", sql)
        self.assertNotIn("claim_token = NULL", sql)
        self.assertNotIn("expire = 0,", sql)
        self.assertEqual(params[:4], ("contact", "7", "push_delete", 3))


class TestPushQueueFailures(unittest.TestCase):
    """失败处理测试"""

    def setUp(self):
        self.db = Mock(spec=Database)
        self.notifier = Mock(spec=EventNotifier)
        self.storage = MappingStorage([make_mapping("contact", push_retries=3),
                                       make_mapping("forever", push_retries=0)])
        self.queue = PushQueue(self.db, self.storage, StateStore(), self.notifier,
                               PushQueueProcessorManager(), SyncConfig())

    def _deletes(self):
        return [sql for sql in executed_sql(self.db) if sql.startswith("DELETE")]

    def test_retry_bound(self):
        """push_retries 次失败后保留，下一次失败丢弃"""
        item = make_item()
        for _ in range(3):
            self.queue.fail_item(item, RemoteAPIError("boom"))
        self.assertEqual(item.failures, 3)
        self.assertEqual(self._deletes(), [])

        self.queue.fail_item(item, RemoteAPIError("boom"))
        self.assertEqual(len(self._deletes()), 1)
        self.notifier.error.assert_called_once()

    def test_zero_retries_never_drops(self):
        item = make_item(name="forever")
        for _ in range(20):
            self.queue.fail_item(item, RemoteAPIError("boom"))
        self.assertEqual(self._deletes(), [])

    def test_missing_mapping_drops(self):
        self.queue.fail_item(make_item(name="gone"), RemoteAPIError("boom"))
        self.assertEqual(len(self._deletes()), 1)

    def test_release_keeps_failures(self):
        item = make_item(failures=2)
        self.db.execute.return_value = 1
        self.assertEqual(self.queue.release_items([item]), 1)
        sql, params = self.db.execute.call_args.args
        self.assertIn("SET expire = 0, claim_token = NULL", sql)
        self.assertNotIn("failures", sql)
        self.assertEqual(params, (1, "token-1"))

    def test_delete_processed_item(self):
        item = make_item()
        item.revision = 2
        self.db.execute.return_value = 1
        self.queue.delete_item(item)
        self.db.execute.assert_called_once()
        sql, params = self.db.execute.call_args.args
        self.assertIn("revision = %s", sql)
        self.assertEqual(params, (1, "token-1", 2))

    def test_item_merged_while_claimed_is_requeued(self):
        """处理期间被合并的项不删除，而是放回待处理状态"""
        self.db.execute.side_effect = [0, 1]
        self.queue.delete_item(make_item())

        release_sql, params = self.db.execute.call_args.args
        self.assertTrue(release_sql.startswith("UPDATE"))
        self.assertIn("SET expire = 0, claim_token = NULL", release_sql)
        self.assertEqual(params, (1, "token-1"))
        self.assertEqual(len(self._deletes()), 1)

    def test_failure_of_merged_item_requeued(self):
        """处理期间被合并的项失败时不累计失败次数"""
        self.db.execute.side_effect = [0, 1]
        self.queue.fail_item(make_item(failures=1), RemoteAPIError("boom"))

        fail_sql, fail_params = self.db.execute.call_args_list[0].args
        self.assertIn("revision = %s", fail_sql)
        self.assertEqual(fail_params[0], 2)
        release_sql = self.db.execute.call_args.args[0]
        self.assertNotIn("failures", release_sql)
        self.notifier.notice.assert_not_called()

    def test_garbage_collection(self):
        self.db.execute.return_value = 4
        self.assertEqual(self.queue.garbage_collection(), 4)
        self.assertIn("expire < %s", self.db.execute.call_args.args[0])


class TestProcessQueues(unittest.TestCase):
    """队列处理测试"""

    def setUp(self):
        self.db = Mock(spec=Database)
        self.db.execute.return_value = 0
        self.processor = Mock(spec=PushQueueProcessor)
        self.manager = PushQueueProcessorManager()
        self.manager.register("rest", lambda: self.processor)
        self.state = StateStore()
        self.storage = MappingStorage([
            make_mapping("heavy", weight=10),
            make_mapping("light", weight=-5),
            make_mapping("manual", weight=0, push_standalone=True),
        ])
        self.config = SyncConfig()
        self.queue = PushQueue(self.db, self.storage, self.state, Mock(spec=EventNotifier),
                               self.manager, self.config)

    def test_weight_order_and_standalone_skipped(self):
        claimed_names = []

        def claim(limit):
            claimed_names.append(self.queue.name)
            return [make_item(name=self.queue.name)]

        with patch.object(self.queue, "claim_items", side_effect=claim):
            total = self.queue.process_queues()

        self.assertEqual(claimed_names, ["light", "heavy"])
        self.assertEqual(total, 2)
        self.assertEqual(self.processor.process.call_count, 2)
        self.assertIsNone(self.queue.name)

    def test_authorization_error_releases_and_stops(self):
        """授权错误释放本批次并结束本轮"""
        items = [make_item(1, "light"), make_item(2, "light")]
        self.processor.process.side_effect = AuthorizationError("expired")

        with patch.object(self.queue, "claim_items", return_value=items) as claim, \
                patch.object(self.queue, "release_items") as release, \
                patch.object(self.queue, "delete_item") as delete:
            total = self.queue.process_queues()

        release.assert_called_once_with(items)
        delete.assert_not_called()
        self.assertEqual(claim.call_count, 1)
        self.assertEqual(total, 0)

    def test_push_frequency(self):
        self.storage.save(self.storage.load("light").with_changes(push_frequency=3600))
        self.state.set(StateStore.push_attempt_key("light"), time.time())

        with patch.object(self.queue, "claim_items", return_value=[]) as claim:
            self.queue.process_queues()

        self.assertEqual(claim.call_count, 1)

    def test_global_limit(self):
        self.config.global_push_limit = 1

        with patch.object(self.queue, "claim_items", return_value=[make_item()]) as claim:
            self.queue.process_queues()

        claim.assert_called_once_with(1)

    def test_global_standalone(self):
        self.config.standalone = True
        self.assertEqual(self.queue.process_queues(), 0)
        self.processor.process.assert_not_called()

    def test_process_queue_standalone_mapping(self):
        with patch.object(self.queue, "claim_items", return_value=[make_item(name="manual")]):
            self.assertEqual(self.queue.process_queue(self.storage.load("manual")), 1)


class TestRestPushProcessor(unittest.TestCase):
    """REST 处理器测试"""

    def setUp(self):
        self.queue = Mock(spec=PushQueue)
        self.worker = Mock(spec=PushWorker)
        self.client = Mock(spec=RestClient)
        self.client.is_authorized.return_value = True
        self.processor = RestPushProcessor(self.queue, self.worker, self.client)

    def test_not_authorized(self):
        self.client.is_authorized.return_value = False
        with self.assertRaises(AuthorizationError):
            self.processor.process([make_item()])
        self.worker.process_item.assert_not_called()

    def test_success_and_failure(self):
        items = [make_item(1), make_item(2)]
        error = RemoteAPIError("bad request", 400)
        self.worker.process_item.side_effect = [None, error]

        self.processor.process(items)

        self.queue.delete_item.assert_called_once_with(items[0])
        self.queue.fail_item.assert_called_once_with(items[1], error)

    def test_authorization_error_mid_batch(self):
        items = [make_item(1), make_item(2), make_item(3)]
        self.worker.process_item.side_effect = [None, AuthorizationError("revoked")]

        with self.assertRaises(AuthorizationError):
            self.processor.process(items)

        self.assertEqual(self.worker.process_item.call_count, 2)
        self.queue.delete_item.assert_called_once_with(items[0])
        self.queue.fail_item.assert_not_called()


if __name__ == '__main__':
    unittest.main()
