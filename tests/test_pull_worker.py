"""
拉取处理器测试
"""
import unittest
from unittest.mock import Mock

from salesforce_sync.db.mapped_objects import MappedObjectStorage
from salesforce_sync.db.models import MappedObject
from salesforce_sync.entity.entity import Origin
from salesforce_sync.errors import MappedObjectExistsError, PullError, RemoteAPIError
from salesforce_sync.mapping.constants import SyncTrigger
from salesforce_sync.mapping.mapping import Mapping
from salesforce_sync.mapping.storage import MappingStorage
from salesforce_sync.monitor.events import EventNotifier
from salesforce_sync.pull.pull_worker import PullProcessor
from salesforce_sync.pull.queue_handler import PullQueueItem
from salesforce_sync.remote.client import RestClient
from salesforce_sync.remote.sobject import SObject

from tests.fakes import MemoryEntityStore


SFID_A = "0031U00001ABCDEAAA"

# 2024-01-01T00:00:00Z
T_2024 = 1704067200


def make_mapping(**overrides):
    data = {
        "id": "contact",
        "drupal_entity_type": "user",
        "salesforce_object_type": "Contact",
        "sync_triggers": ["pull_create", "pull_update"],
        "field_mappings": [
            {"drupal_field_value": "name", "salesforce_field": "LastName"},
            {"drupal_field_value": "mail", "salesforce_field": "Email"},
        ],
    }
    data.update(overrides)
    return Mapping.from_dict(data)


def make_record(modified="2024-01-01T00:00:00.000+0000", **fields):
    data = {"Id": SFID_A, "attributes": {"type": "Contact"}, "LastModifiedDate": modified,
            "LastName": "Remote", "Email": "remote@example.com"}
    data.update(fields)
    return SObject(data)


class PullTestCase(unittest.TestCase):

    def setUp(self):
        self.client = Mock(spec=RestClient)
        self.mapped_objects = Mock(spec=MappedObjectStorage)
        self.mapped_objects.load_by_sfid_and_mapping.return_value = None
        self.entities = MemoryEntityStore()
        self.notifier = Mock(spec=EventNotifier)

    def processor(self, mapping):
        return PullProcessor(self.client, MappingStorage([mapping]), self.mapped_objects,
                             self.entities, self.notifier)

    def link(self, entity, **kwargs):
        mapped_object = MappedObject(id=1, entity_id=str(entity.id), entity_type_id="user",
                                     salesforce_id=SFID_A, salesforce_mapping="contact", **kwargs)
        self.mapped_objects.load_by_sfid_and_mapping.return_value = mapped_object
        return mapped_object


class TestUpdateEntity(PullTestCase):
    """更新已关联实体测试"""

    def test_older_remote_not_applied(self):
        """远程时间戳早于本地记录时不修改任何字段"""
        entity = self.entities.add("user", {"name": "Local", "mail": "local@example.com"},
                                   changed=T_2024 + 3600)
        self.link(entity)

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertIsNone(result)
        stored = self.entities.load("user", entity.id)
        self.assertEqual(stored.values, {"name": "Local", "mail": "local@example.com"})
        self.assertEqual(self.entities.saves, [])

    def test_equal_timestamp_not_applied(self):
        entity = self.entities.add("user", {"name": "Local"}, changed=T_2024)
        self.link(entity)
        self.assertIsNone(
            self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))
        )

    def test_newer_remote_applied(self):
        entity = self.entities.add("user", {"name": "Local"}, changed=T_2024 - 60)
        mapped_object = self.link(entity)

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertEqual(result, SyncTrigger.REMOTE_UPDATE)
        stored = self.entities.load("user", entity.id)
        self.assertEqual(stored.get("name"), "Remote")
        self.assertEqual(stored.changed, T_2024)
        self.assertEqual(self.entities.saves, [(entity.id, Origin.REMOTE_SYNC)])
        self.assertEqual(mapped_object.entity_updated, T_2024)
        self.assertEqual(mapped_object.last_sync_action, "pull")
        self.assertTrue(mapped_object.last_sync_status)

    def test_repeated_pull_is_idempotent(self):
        """同一远程记录时间戳不变时第二次拉取不修改本地"""
        entity = self.entities.add("user", {"name": "Local"}, changed=T_2024 - 60)
        self.link(entity)
        processor = self.processor(make_mapping())

        self.assertEqual(processor.process_item(PullQueueItem(make_record(), "contact")),
                         SyncTrigger.REMOTE_UPDATE)
        after_first = self.entities.load("user", entity.id).values

        self.assertIsNone(processor.process_item(PullQueueItem(make_record(), "contact")))
        self.assertEqual(self.entities.load("user", entity.id).values, after_first)
        self.assertEqual(len(self.entities.saves), 1)

    def test_force_pull(self):
        entity = self.entities.add("user", {"name": "Local"}, changed=T_2024 + 3600)
        mapped_object = self.link(entity, force_pull=True)

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertEqual(result, SyncTrigger.REMOTE_UPDATE)
        self.assertEqual(self.entities.load("user", entity.id).get("name"), "Remote")
        self.assertFalse(mapped_object.force_pull)

    def test_update_trigger_disabled(self):
        entity = self.entities.add("user", {"name": "Local"}, changed=1)
        self.link(entity)

        result = self.processor(make_mapping(sync_triggers=["pull_create"])).process_item(
            PullQueueItem(make_record(), "contact")
        )

        self.assertIsNone(result)
        self.notifier.notice.assert_called_once()
        self.assertEqual(self.entities.saves, [])

    def test_dangling_link_reported(self):
        """关联的本地实体不存在时报告错误，不删除关联"""
        mapped_object = MappedObject(id=1, entity_id="404", entity_type_id="user",
                                     salesforce_id=SFID_A, salesforce_mapping="contact")
        self.mapped_objects.load_by_sfid_and_mapping.return_value = mapped_object

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertIsNone(result)
        self.notifier.error.assert_called_once()
        self.mapped_objects.delete.assert_not_called()

    def test_missing_mapping(self):
        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "gone"))
        self.assertIsNone(result)
        self.notifier.notice.assert_called_once()


class TestKeyWriteBack(PullTestCase):
    """键字段写回测试"""

    def key_mapping(self):
        return make_mapping(key="Email", sync_triggers=["push_update", "pull_create", "pull_update"])

    def test_empty_remote_key_written_back(self):
        entity = self.entities.add("user", {"name": "Local", "mail": "local@example.com"}, changed=1)
        self.link(entity)

        self.processor(self.key_mapping()).process_item(
            PullQueueItem(make_record(Email=None), "contact")
        )

        self.client.object_update.assert_called_once_with(
            "Contact", SFID_A, {"Email": "local@example.com"}
        )
        stored = self.entities.load("user", entity.id)
        self.assertEqual(stored.get("mail"), "local@example.com")
        self.assertEqual(stored.get("name"), "Remote")

    def test_write_back_when_local_is_newer(self):
        """本地较新时仍补写远程空键字段，但不覆盖本地字段"""
        entity = self.entities.add("user", {"name": "Local", "mail": "local@example.com"},
                                   changed=4102444800)
        self.link(entity)

        result = self.processor(self.key_mapping()).process_item(
            PullQueueItem(make_record(Email=None), "contact")
        )

        self.assertIsNone(result)
        self.client.object_update.assert_called_once_with(
            "Contact", SFID_A, {"Email": "local@example.com"}
        )
        stored = self.entities.load("user", entity.id)
        self.assertEqual(stored.values, {"name": "Local", "mail": "local@example.com"})
        self.assertEqual(self.entities.saves, [])

    def test_present_remote_key_not_written(self):
        entity = self.entities.add("user", {"mail": "local@example.com"}, changed=1)
        self.link(entity)
        self.processor(self.key_mapping()).process_item(PullQueueItem(make_record(), "contact"))
        self.client.object_update.assert_not_called()

    def test_write_back_failure_is_retryable(self):
        """写回失败抛出 PullError，本地不做修改"""
        entity = self.entities.add("user", {"name": "Local", "mail": "local@example.com"}, changed=1)
        self.link(entity)
        self.client.object_update.side_effect = RemoteAPIError("UNABLE_TO_LOCK_ROW", 400)

        with self.assertRaises(PullError):
            self.processor(self.key_mapping()).process_item(
                PullQueueItem(make_record(Email=None), "contact")
            )

        self.assertEqual(self.entities.saves, [])

    def test_create_write_back_failure_forces_next_pull(self):
        mapping = make_mapping(key="External_Id__c",
                               sync_triggers=["push_create", "pull_create"],
                               field_mappings=[
                                   {"drupal_field_value": "id", "salesforce_field": "External_Id__c",
                                    "direction": "drupal_sf"},
                                   {"drupal_field_value": "name", "salesforce_field": "LastName"},
                               ])
        self.client.object_update.side_effect = RemoteAPIError("down", 503)
        self.mapped_objects.create.side_effect = lambda mo: mo

        with self.assertRaises(PullError):
            self.processor(mapping).process_item(PullQueueItem(make_record(), "contact"))

        saved = self.mapped_objects.save.call_args.args[0]
        self.assertTrue(saved.force_pull)


class TestCreateEntity(PullTestCase):
    """创建本地实体测试"""

    def test_create(self):
        self.mapped_objects.create.side_effect = lambda mo: mo

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertEqual(result, SyncTrigger.REMOTE_CREATE)
        self.mapped_objects.create.assert_called_once()
        mapped_object = self.mapped_objects.save.call_args.args[0]
        entity = self.entities.load("user", mapped_object.entity_id)
        self.assertEqual(entity.values, {"name": "Remote", "mail": "remote@example.com"})
        self.assertEqual(entity.changed, T_2024)
        self.assertEqual(mapped_object.salesforce_id, SFID_A)
        self.assertEqual(self.entities.saves, [(entity.id, Origin.REMOTE_SYNC)])

    def test_create_trigger_disabled(self):
        result = self.processor(make_mapping(sync_triggers=["pull_update"])).process_item(
            PullQueueItem(make_record(), "contact")
        )
        self.assertIsNone(result)
        self.mapped_objects.create.assert_not_called()

    def test_concurrent_create_rejected(self):
        """同一远程记录的第二个映射对象被拒绝，不创建本地实体"""
        self.mapped_objects.create.side_effect = MappedObjectExistsError(SFID_A, "contact")

        result = self.processor(make_mapping()).process_item(PullQueueItem(make_record(), "contact"))

        self.assertIsNone(result)
        self.assertEqual(self.entities.saves, [])
        self.notifier.error.assert_called_once()


if __name__ == '__main__':
    unittest.main()
