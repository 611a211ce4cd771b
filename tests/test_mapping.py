"""
映射测试
"""
import itertools
import unittest

import pytest

from salesforce_sync.entity.entity import Entity
from salesforce_sync.errors import ConfigurationError, NotFoundError
from salesforce_sync.mapping.constants import SyncTrigger, ALL_TRIGGERS
from salesforce_sync.mapping.mapping import Mapping, PushParams
from salesforce_sync.mapping.storage import MappingStorage


def contact_mapping(**overrides):
    data = {
        "id": "contact",
        "drupal_entity_type": "user",
        "drupal_bundle": "user",
        "salesforce_object_type": "Contact",
        "key": "Email",
        "sync_triggers": ["push_create", "push_update", "pull_update"],
        "field_mappings": [
            {"drupal_field_type": "properties", "drupal_field_value": "mail",
             "salesforce_field": "Email", "direction": "sync"},
        ],
    }
    data.update(overrides)
    return Mapping.from_dict(data)


class TestDoesCrud(unittest.TestCase):
    """触发器判断测试"""

    def test_every_subset(self):
        """所有触发器组合下 does_crud 等价于交集非空"""
        triggers = sorted(ALL_TRIGGERS, key=lambda t: t.value)
        enabled_sets = [frozenset(), frozenset(triggers[:2]), frozenset(triggers[3:]), frozenset(triggers)]

        for enabled in enabled_sets:
            mapping = contact_mapping(sync_triggers=[t.value for t in enabled])
            for size in range(0, len(triggers) + 1):
                for ops in itertools.combinations(triggers, size):
                    expected = bool((set(ops) or set(ALL_TRIGGERS)) & enabled)
                    self.assertEqual(mapping.does_crud(ops), expected, (enabled, ops))

    def test_empty_ops_means_all(self):
        mapping = contact_mapping(sync_triggers=["pull_delete"])
        self.assertTrue(mapping.does_crud())
        self.assertFalse(contact_mapping(sync_triggers=[]).does_crud())

    def test_push_and_pull(self):
        mapping = contact_mapping(sync_triggers=["push_update"])
        self.assertTrue(mapping.does_push())
        self.assertFalse(mapping.does_pull())

    def test_trigger_dict_and_names(self):
        """触发器可以用字典和名称形式配置"""
        mapping = contact_mapping(sync_triggers={"local_create": True, "remote_delete": True,
                                                 "push_update": False})
        self.assertEqual(
            mapping.sync_triggers,
            frozenset({SyncTrigger.LOCAL_CREATE, SyncTrigger.REMOTE_DELETE})
        )


class TestMappingConfig(unittest.TestCase):
    """映射配置校验测试"""

    def test_unknown_trigger(self):
        with self.assertRaises(ConfigurationError):
            contact_mapping(sync_triggers=["push_everything"])

    def test_multiple_keys(self):
        with self.assertRaises(ConfigurationError):
            contact_mapping(key=["Email", "External_Id__c"])

    def test_missing_object_type(self):
        with self.assertRaises(ConfigurationError):
            contact_mapping(salesforce_object_type="")

    def test_with_changes_returns_new_version(self):
        mapping = contact_mapping()
        changed = mapping.with_changes(weight=5)
        self.assertEqual(mapping.weight, 0)
        self.assertEqual(changed.weight, 5)

    def test_to_dict_round_trip(self):
        mapping = contact_mapping(push_retries=7, pull_where_clause="IsDeleted = false")
        self.assertEqual(Mapping.from_dict(mapping.to_dict()), mapping)


class TestPushParams(unittest.TestCase):
    """推送参数测试"""

    def test_scenario_key_value_present(self):
        """键字段有值时只出现在参数中"""
        mapping = contact_mapping()
        entity = Entity("user", {"mail": "a@b.com"})

        params = mapping.get_push_params(entity)

        self.assertEqual(params.values(), {"Email": "a@b.com"})
        self.assertEqual(params.fields_to_null, [])

    def test_scenario_null_value(self):
        """空值字段进入 fieldsToNull 而不是参数"""
        mapping = contact_mapping(field_mappings=[
            {"drupal_field_value": "mail", "salesforce_field": "Email"},
            {"drupal_field_value": "phone", "salesforce_field": "Phone"},
        ])
        entity = Entity("user", {"mail": "a@b.com", "phone": None})

        params = mapping.get_push_params(entity)

        self.assertEqual(params.fields_to_null, ["Phone"])
        self.assertNotIn("Phone", params.values())
        self.assertEqual(params.get_params()["fieldsToNull"], ["Phone"])

    def test_pull_only_field_not_pushed(self):
        mapping = contact_mapping(field_mappings=[
            {"drupal_field_value": "mail", "salesforce_field": "Email"},
            {"drupal_field_value": "score", "salesforce_field": "Score__c", "direction": "sf_drupal"},
        ])
        params = mapping.get_push_params(Entity("user", {"mail": "x@y.z", "score": 3}))
        self.assertFalse(params.has_param("Score__c"))

    def test_get_param_missing(self):
        with self.assertRaises(KeyError):
            PushParams().get_param("Name")


class TestKeyValue(unittest.TestCase):
    """键字段值测试"""

    def test_no_key(self):
        with self.assertRaises(ConfigurationError):
            contact_mapping(key="").get_key_value(Entity("user"))

    def test_unmapped_key(self):
        mapping = contact_mapping(key="External_Id__c")
        with self.assertRaises(NotFoundError):
            mapping.get_key_value(Entity("user", {"mail": "a@b.com"}))

    def test_key_value(self):
        self.assertEqual(contact_mapping().get_key_value(Entity("user", {"mail": "a@b.com"})), "a@b.com")


class TestMappingQueries:
    """映射查询与调度测试"""

    def test_pull_query_fields(self):
        mapping = contact_mapping(salesforce_record_type="012000000000000AAA")
        assert mapping.get_pull_query_fields() == ["Id", "LastModifiedDate", "Email", "RecordTypeId"]

    def test_frequency(self):
        mapping = contact_mapping(push_frequency=300, pull_frequency=60)
        assert mapping.get_next_push_time(None) == 300
        assert mapping.get_next_push_time(1000) == 1300
        assert mapping.get_next_pull_time(1000) == 1060

    def test_applies_to(self):
        mapping = contact_mapping()
        assert mapping.applies_to(Entity("user", bundle="user"))
        assert not mapping.applies_to(Entity("node", bundle="article"))


class TestMappingStorage:
    """映射存储测试"""

    @pytest.fixture
    def storage(self) -> MappingStorage:
        return MappingStorage([
            contact_mapping(id="b", weight=5, salesforce_object_type="Account"),
            contact_mapping(id="a", weight=-1),
            contact_mapping(id="c", weight=1, sync_triggers=["pull_create"]),
            contact_mapping(id="d", weight=0, status=False),
        ])

    def test_push_mappings_by_weight(self, storage):
        assert [m.id for m in storage.load_push_mappings()] == ["a", "b"]

    def test_pull_mappings(self, storage):
        assert [m.id for m in storage.load_pull_mappings()] == ["a", "c", "b"]

    def test_mapped_types_in_declaration_order(self, storage):
        assert storage.get_mapped_sobject_types() == ["Account", "Contact"]

    def test_save_replaces_version(self, storage):
        storage.save(storage.load("a").with_changes(label="Renamed"))
        assert storage.load("a").label == "Renamed"
        assert len(storage) == 4

    def test_load_by_properties(self, storage):
        assert [m.id for m in storage.load_by_properties(salesforce_object_type="Account")] == ["b"]

    def test_delete(self, storage):
        storage.delete("a")
        assert storage.load("a") is None
