"""Tests for the HTTP store client."""

import io
import json
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from renewals.clock import FixedClock
from renewals.engine import NotificationEngine
from renewals.errors import TransportError
from renewals.http_store import HttpStore
from renewals.notification import (
    ArchiveReason,
    NotificationAction,
    NotificationDraft,
    NotificationType,
)
from renewals.sync import SyncDriver


def _response(payload, status=200):
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


class TestHttpStore(unittest.TestCase):

    def setUp(self):
        self.store = HttpStore("https://backend.example/api")
        patcher = patch("renewals.http_store.urllib.request.urlopen")
        self.urlopen = patcher.start()
        self.addCleanup(patcher.stop)

    def _last_request(self):
        return self.urlopen.call_args[0][0]

    def test_requires_base_url(self):
        with self.assertRaises(ValueError):
            HttpStore("")

    def test_fetch_entities(self):
        self.urlopen.return_value = _response({
            "status": "success",
            "data": [{"id": 1, "domainName": "a.com", "dates": {"expiryDate": "2024-02-01"}}],
        })
        response = self.store.fetch_entities()

        self.assertTrue(response.success)
        self.assertEqual(response.data[0].name, "a.com")
        self.assertEqual(self._last_request().full_url, "https://backend.example/api/getdomains.php")

    def test_fetch_history_marks_archived(self):
        self.urlopen.return_value = _response({
            "status": "success",
            "data": [
                {"id": 5, "type": "action_needed", "message": "m", "acted_upon": 1,
                 "created_at": "2024-01-01 00:00:00"},
                {"id": 6, "type": "info", "message": "m", "created_at": "2024-01-01 00:00:00"},
            ],
        })
        response = self.store.fetch_notifications(include_history=True)

        self.assertTrue(self._last_request().full_url.endswith("getNotifications.php?history=1"))
        reasons = [n.archive_reason for n in response.data]
        self.assertEqual(reasons, [ArchiveReason.ACTED_UPON, ArchiveReason.DISMISSED])
        self.assertTrue(all(n.is_archived for n in response.data))

    def test_create_sends_wire_fields(self):
        self.urlopen.return_value = _response({"status": "success", "notification_id": 99})
        draft = NotificationDraft(
            type=NotificationType.ACTION_NEEDED, message="renew", entity_id="3",
            needs_action=True, repeat=True, repeat_interval_days=2,
        )
        response = self.store.create_notification(draft)

        self.assertEqual(response.data, "99")
        req = self._last_request()
        self.assertEqual(req.get_method(), "POST")
        body = json.loads(req.data.decode())
        self.assertEqual(body["domain_id"], "3")
        self.assertEqual(body["needs_action"], 1)
        self.assertEqual(body["days_until_repeat"], 2)

    def test_create_without_id_is_transport_error(self):
        self.urlopen.return_value = _response({"status": "success"})
        with self.assertRaises(TransportError):
            self.store.create_notification(
                NotificationDraft(type=NotificationType.INFO, message="x")
            )

    def test_mark_action(self):
        self.urlopen.return_value = _response({"status": "success", "message": "ok"})
        response = self.store.update_notification_state("5", NotificationAction.ACTED_UPON)

        self.assertTrue(response.success)
        body = json.loads(self._last_request().data.decode())
        self.assertEqual(body, {"notification_id": "5", "action": "acted_upon"})

    def test_error_envelope_is_soft_failure(self):
        self.urlopen.return_value = _response({"status": "error", "message": "Not found"})
        response = self.store.delete_history_item("5")
        self.assertFalse(response.success)
        self.assertEqual(response.message, "Not found")

    def test_http_error_raises(self):
        self.urlopen.side_effect = urllib.error.HTTPError(
            "https://backend.example/api/clearHistory.php", 500, "boom", {}, io.BytesIO(b"")
        )
        with self.assertRaises(TransportError) as ctx:
            self.store.clear_history()
        self.assertEqual(ctx.exception.status, 500)

    def test_unreachable_raises(self):
        self.urlopen.side_effect = urllib.error.URLError("connection refused")
        with self.assertRaises(TransportError):
            self.store.fetch_notifications()

    def test_malformed_json_raises(self):
        self.urlopen.return_value = _response(b"<html>oops</html>")
        with self.assertRaises(TransportError):
            self.store.fetch_entities()

    def test_non_object_payload_raises(self):
        self.urlopen.return_value = _response([1, 2, 3])
        with self.assertRaises(TransportError):
            self.store.fetch_entities()

    def test_notification_without_id_raises(self):
        self.urlopen.return_value = _response({"status": "success", "data": [{"message": "x"}]})
        with self.assertRaises(TransportError) as ctx:
            self.store.fetch_notifications()
        self.assertIn("malformed", str(ctx.exception))

    def test_non_numeric_repeat_interval_raises(self):
        self.urlopen.return_value = _response({
            "status": "success",
            "data": [{"id": 1, "type": "info", "days_until_repeat": "weekly"}],
        })
        with self.assertRaises(TransportError):
            self.store.fetch_notifications()

    def test_non_object_entity_record_raises(self):
        self.urlopen.return_value = _response({"status": "success", "data": ["a.com"]})
        with self.assertRaises(TransportError):
            self.store.fetch_entities()

    def test_data_not_a_list_raises(self):
        self.urlopen.return_value = _response({"status": "success", "data": {"id": 1}})
        with self.assertRaises(TransportError):
            self.store.fetch_notifications()

    def test_unknown_archive_reason_tolerated(self):
        self.urlopen.return_value = _response({
            "status": "success",
            "data": [{"id": 1, "type": "info", "archive_reason": "expired",
                      "created_at": "2024-01-01 00:00:00"}],
        })
        response = self.store.fetch_notifications(include_history=True)
        self.assertEqual(response.data[0].archive_reason, ArchiveReason.DISMISSED)


class TestEngineOverHttpStore(unittest.TestCase):
    """Malformed backend data becomes a failed result, never an exception."""

    def setUp(self):
        patcher = patch("renewals.http_store.urllib.request.urlopen")
        self.urlopen = patcher.start()
        self.addCleanup(patcher.stop)
        self.store = HttpStore("https://backend.example/api")
        self.engine = NotificationEngine(self.store)

    def test_refresh_with_record_missing_id(self):
        self.urlopen.return_value = _response({"status": "success", "data": [{"message": "x"}]})
        result = self.engine.refresh()
        self.assertFalse(result.success)
        self.assertEqual(self.engine.notifications, [])
        self.assertIsNotNone(self.engine.last_error)

    def test_refresh_with_unknown_archive_reason(self):
        self.urlopen.return_value = _response({
            "status": "success", "data": [{"id": 1, "archive_reason": "expired"}],
        })
        result = self.engine.refresh()
        self.assertTrue(result.success)
        self.assertEqual([n.id for n in self.engine.notifications], ["1"])

    def test_sync_pass_reports_malformed_entities(self):
        self.urlopen.return_value = _response({"status": "success", "data": [42]})
        driver = SyncDriver(
            self.store, self.engine, clock=FixedClock(), scheduler=MagicMock(running=False),
        )
        report = driver.run_once()
        self.assertFalse(report.success)
        self.assertTrue(any("malformed" in e for e in report.errors))


if __name__ == "__main__":
    unittest.main()
