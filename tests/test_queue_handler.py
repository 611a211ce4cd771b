"""
拉取队列测试
"""
import unittest
from unittest.mock import Mock

from salesforce_sync.errors import RemoteAPIError
from salesforce_sync.mapping.mapping import Mapping
from salesforce_sync.mapping.storage import MappingStorage
from salesforce_sync.monitor.events import EventNotifier
from salesforce_sync.pull.queue_handler import PullQueueHandler, PullQueueItem
from salesforce_sync.remote.client import RestClient
from salesforce_sync.remote.sobject import SObject
from salesforce_sync.state.state_store import StateStore


def make_mapping(**overrides):
    data = {
        "id": "contact",
        "drupal_entity_type": "user",
        "salesforce_object_type": "Contact",
        "key": "Email",
        "sync_triggers": ["pull_create", "pull_update"],
        "field_mappings": [
            {"drupal_field_value": "name", "salesforce_field": "LastName"},
            {"drupal_field_value": "mail", "salesforce_field": "Email"},
        ],
    }
    data.update(overrides)
    return Mapping.from_dict(data)


def make_record(sfid, modified):
    return SObject({"Id": sfid, "attributes": {"type": "Contact"}, "LastModifiedDate": modified})


class TestPullQueueHandler(unittest.TestCase):
    """拉取队列测试"""

    def setUp(self):
        self.client = Mock(spec=RestClient)
        self.client.query.return_value = []
        self.state = StateStore()
        self.notifier = Mock(spec=EventNotifier)
        self.mapping = make_mapping()
        self.handler = PullQueueHandler(self.client, MappingStorage([self.mapping]),
                                        self.state, self.notifier, max_records=500)

    def test_build_query(self):
        mapping = make_mapping(salesforce_record_type="012000000000000AAA",
                               pull_where_clause="IsDeleted = false")
        soql = self.handler.build_query(mapping, 1704067200)
        self.assertEqual(
            soql,
            "SELECT Id, LastModifiedDate, LastName, Email, RecordTypeId FROM Contact"
            " WHERE RecordTypeId = '012000000000000AAA' AND (IsDeleted = false)"
            " AND LastModifiedDate > 2024-01-01T00:00:00Z"
            " ORDER BY LastModifiedDate ASC LIMIT 500"
        )

    def test_first_pull_has_no_time_filter(self):
        soql = self.handler.build_query(self.mapping, None)
        self.assertNotIn("WHERE", soql)

    def test_checkpoint_advances_to_latest_record(self):
        self.client.query.return_value = [
            make_record("0031U00001ABCDEAAA", "2024-01-01T00:00:00.000+0000"),
            make_record("0031U00001ZZZZZAAA", "2024-01-02T00:00:00.000+0000"),
        ]

        items = self.handler.get_updated_records()

        self.assertEqual(len(items), 2)
        self.assertEqual(self.state.get(StateStore.pull_timestamp_key("contact")), 1704153600)

    def test_full_batch_holds_checkpoint_back(self):
        """批次达到上限时检查点退回一秒，同一秒的剩余记录下次仍能查到"""
        handler = PullQueueHandler(self.client, MappingStorage([self.mapping]),
                                   self.state, self.notifier, max_records=2)
        self.client.query.return_value = [
            make_record("0031U00001ABCDEAAA", "2024-01-02T00:00:00.000+0000"),
            make_record("0031U00001ZZZZZAAA", "2024-01-02T00:00:00.000+0000"),
        ]

        handler.get_updated_records()

        self.assertEqual(self.state.get(StateStore.pull_timestamp_key("contact")), 1704153599)
        self.assertIn("LastModifiedDate > 2024-01-01T23:59:59Z",
                      handler.build_query(self.mapping, 1704153599))

    def test_query_failure_keeps_checkpoint(self):
        self.state.set(StateStore.pull_timestamp_key("contact"), 1000)
        self.client.query.side_effect = RemoteAPIError("down", 503)

        self.assertEqual(self.handler.get_updated_records(), [])

        self.assertEqual(self.state.get(StateStore.pull_timestamp_key("contact")), 1000)
        self.notifier.error.assert_called_once()

    def test_pull_frequency(self):
        handler = PullQueueHandler(self.client, MappingStorage([make_mapping(pull_frequency=3600)]),
                                   self.state, self.notifier)
        handler.get_updated_records()
        handler.get_updated_records()
        self.assertEqual(self.client.query.call_count, 1)

        handler.get_updated_records(force=True)
        self.assertEqual(self.client.query.call_count, 2)

    def test_requeue_and_retry_first(self):
        """写回失败的项在下一轮最先返回"""
        item = PullQueueItem(make_record("0031U00001ABCDEAAA", "2024-01-01T00:00:00Z"), "contact")
        self.assertTrue(self.handler.requeue(item))
        self.client.query.return_value = [make_record("0031U00001ZZZZZAAA", "2024-01-02T00:00:00Z")]

        items = self.handler.get_updated_records()

        self.assertEqual([str(i.sobject.id()) for i in items],
                         ["0031U00001ABCDEAAA", "0031U00001ZZZZZAAA"])
        self.assertEqual(items[0].failures, 1)
        self.assertEqual(self.handler.take_retry_items(), [])

    def test_requeue_limit(self):
        item = PullQueueItem(make_record("0031U00001ABCDEAAA", "2024-01-01T00:00:00Z"), "contact",
                             failures=PullQueueHandler.MAX_RETRIES)
        self.assertFalse(self.handler.requeue(item))
        self.assertEqual(self.handler.take_retry_items(), [])
        self.notifier.error.assert_called_once()


if __name__ == '__main__':
    unittest.main()
