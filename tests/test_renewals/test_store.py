"""Tests for the JSON-file store and entity/notification records."""

import json
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timezone

from renewals.clock import FixedClock
from renewals.entity import Entity, EntityKind
from renewals.notification import (
    ArchiveReason,
    Notification,
    NotificationAction,
    NotificationDraft,
    NotificationType,
)
from renewals.store import JsonFileStore, build_store

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestJsonFileStore(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "data", "renewals.json")
        self.clock = FixedClock(NOW)
        self.store = JsonFileStore(self.path, clock=self.clock)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _draft(self, entity_id="1", type=NotificationType.ACTION_NEEDED):
        return NotificationDraft(type=type, message="renew", entity_id=entity_id)

    def test_empty_store(self):
        self.assertEqual(self.store.fetch_entities().data, [])
        self.assertEqual(self.store.fetch_notifications().data, [])

    def test_add_and_remove_entity(self):
        entity = self.store.add_entity(
            Entity(name="example.com", expiry_date="2024-02-01", amount=12.5)
        )
        fetched = self.store.fetch_entities().data
        self.assertEqual(len(fetched), 1)
        self.assertEqual(fetched[0].id, entity.id)
        self.assertEqual(fetched[0].amount, 12.5)

        self.assertTrue(self.store.remove_entity(entity.id))
        self.assertFalse(self.store.remove_entity(entity.id))
        self.assertEqual(self.store.fetch_entities().data, [])

    def test_add_entity_replaces_same_id(self):
        self.store.add_entity(Entity(id="e1", name="old.com", expiry_date="2024-02-01"))
        self.store.add_entity(Entity(id="e1", name="new.com", expiry_date="2024-03-01"))
        fetched = self.store.fetch_entities().data
        self.assertEqual([e.name for e in fetched], ["new.com"])

    def test_create_returns_id(self):
        response = self.store.create_notification(self._draft())
        self.assertTrue(response.success)
        stored = self.store.fetch_notifications().data
        self.assertEqual([n.id for n in stored], [response.data])
        self.assertEqual(stored[0].created_at, NOW)

    def test_unresolved_duplicate_returns_existing_id(self):
        first = self.store.create_notification(self._draft()).data
        second = self.store.create_notification(self._draft()).data
        self.assertEqual(first, second)
        self.assertEqual(len(self.store.fetch_notifications().data), 1)

    def test_duplicates_allowed_when_uniqueness_off(self):
        store = JsonFileStore(self.path, clock=self.clock, unique_unresolved=False)
        store.create_notification(self._draft())
        store.create_notification(self._draft())
        self.assertEqual(len(store.fetch_notifications().data), 2)

    def test_resolved_allows_new(self):
        first = self.store.create_notification(self._draft()).data
        self.store.update_notification_state(first, NotificationAction.ACTED_UPON)
        second = self.store.create_notification(self._draft()).data
        self.assertNotEqual(first, second)

    def test_history_split(self):
        a = self.store.create_notification(self._draft("1")).data
        b = self.store.create_notification(self._draft("2")).data
        self.store.update_notification_state(a, NotificationAction.DISMISS)

        active = self.store.fetch_notifications().data
        history = self.store.fetch_notifications(include_history=True).data
        self.assertEqual([n.id for n in active], [b])
        self.assertEqual([n.id for n in history], [a])
        self.assertEqual(history[0].archive_reason, ArchiveReason.DISMISSED)

    def test_read_does_not_archive(self):
        nid = self.store.create_notification(self._draft()).data
        response = self.store.update_notification_state(nid, NotificationAction.READ)
        self.assertTrue(response.success)
        active = self.store.fetch_notifications().data
        self.assertTrue(active[0].read)
        self.assertEqual(self.store.fetch_notifications(include_history=True).data, [])

    def test_update_archived_refused(self):
        nid = self.store.create_notification(self._draft()).data
        self.store.update_notification_state(nid, NotificationAction.DISMISS)
        response = self.store.update_notification_state(nid, NotificationAction.READ)
        self.assertFalse(response.success)

    def test_update_unknown_refused(self):
        response = self.store.update_notification_state("nope", NotificationAction.READ)
        self.assertFalse(response.success)

    def test_delete_history_only_touches_archived(self):
        nid = self.store.create_notification(self._draft()).data
        self.assertFalse(self.store.delete_history_item(nid).success)

        self.store.update_notification_state(nid, NotificationAction.DISMISS)
        self.assertTrue(self.store.delete_history_item(nid).success)
        self.assertEqual(self.store.fetch_notifications(include_history=True).data, [])

    def test_clear_history(self):
        a = self.store.create_notification(self._draft("1")).data
        self.store.create_notification(self._draft("2"))
        self.store.update_notification_state(a, NotificationAction.ACTED_UPON)

        response = self.store.clear_history()
        self.assertEqual(response.data, 1)
        self.assertEqual(len(self.store.fetch_notifications().data), 1)

    def test_corrupt_file_reads_as_empty(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        with self.assertLogs("renewals.store", level="ERROR"):
            self.assertEqual(self.store.fetch_entities().data, [])

    def test_corrupt_file_kept_aside_on_next_save(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        with self.assertLogs("renewals.store", level="ERROR"):
            self.store.add_entity(Entity(id="e1", name="a.com", expiry_date="2024-02-01"))

        backup = self.path + ".corrupt-20240101000000"
        with open(backup) as f:
            self.assertEqual(f.read(), "{not json")
        self.assertEqual([e.id for e in self.store.fetch_entities().data], ["e1"])

    def test_non_object_file_kept_aside(self):
        with open(self.path, "w") as f:
            f.write("[1, 2]")
        with self.assertLogs("renewals.store", level="ERROR"):
            self.store.fetch_notifications()
        self.assertTrue(os.path.exists(self.path + ".corrupt-20240101000000"))
        self.assertFalse(os.path.exists(self.path))

    def test_save_leaves_no_temp_file(self):
        self.store.add_entity(Entity(id="e1", name="a.com", expiry_date="2024-02-01"))
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["renewals.json"])

    def test_file_layout(self):
        self.store.add_entity(Entity(id="e1", name="a.com", expiry_date="2024-02-01"))
        with open(self.path) as f:
            data = json.load(f)
        self.assertEqual(set(data), {"entities", "notifications"})
        self.assertEqual(data["entities"][0]["expiry_date"], "2024-02-01")


class TestBuildStore(unittest.TestCase):

    def test_file_backend(self):
        tmpdir = tempfile.mkdtemp()
        try:
            store = build_store("file", path=os.path.join(tmpdir, "r.json"))
            self.assertIsInstance(store, JsonFileStore)
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            build_store("carrier-pigeon")


class TestRecords(unittest.TestCase):

    def test_entity_from_backend_shape(self):
        entity = Entity.from_dict(
            {"id": 7, "domainName": "shop.io", "dates": {"expiryDate": "2024-05-01"}, "amount": "9.99"}
        )
        self.assertEqual(entity.id, "7")
        self.assertEqual(entity.name, "shop.io")
        self.assertEqual(entity.expiry_date, "2024-05-01")
        self.assertEqual(entity.amount, 9.99)
        self.assertEqual(entity.kind, EntityKind.DOMAIN)

    def test_entity_bad_amount(self):
        entity = Entity.from_dict({"name": "a.com", "amount": "free"})
        self.assertEqual(entity.amount, 0.0)

    def test_notification_from_wire_names(self):
        n = Notification.from_dict({
            "id": 42,
            "type": "action_needed",
            "message": "renew",
            "domain_id": 3,
            "is_read": "1",
            "acted_upon": 0,
            "repeat": 1,
            "days_until_repeat": "2",
            "created_at": "2024-01-01 10:00:00",
        })
        self.assertEqual(n.id, "42")
        self.assertEqual(n.entity_id, "3")
        self.assertTrue(n.read)
        self.assertFalse(n.acted_upon)
        self.assertTrue(n.repeat)
        self.assertEqual(n.repeat_interval_days, 2)
        self.assertEqual(n.dedup_key, ("3", "action_needed"))

    def test_unknown_type_falls_back_to_info(self):
        n = Notification.from_dict({"id": "x", "type": "shouting"})
        self.assertEqual(n.type, NotificationType.INFO)
        self.assertIsNone(n.dedup_key)

    def test_transitions_are_copies(self):
        n = Notification(id="x", type=NotificationType.INFO, message="hi")
        read = n.mark_read()
        self.assertFalse(n.read)
        self.assertTrue(read.read)
        self.assertFalse(read.is_archived)


if __name__ == "__main__":
    unittest.main()
