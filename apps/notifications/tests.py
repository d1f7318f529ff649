from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework.test import APITestCase

from apps.notifications.dispatchers import LoggingDispatcher, NotificationDispatcher, get_dispatcher
from apps.notifications.models import Notification, NotificationStatus
from apps.notifications.services import dispatch_pending, enqueue

User = get_user_model()


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self, results=None):
        self.results = list(results or [])
        self.sent = []

    def send(self, event_type, recipient, channel, payload):
        self.sent.append((event_type, recipient, channel, payload))
        return self.results.pop(0) if self.results else True


class ExplodingDispatcher(NotificationDispatcher):
    def send(self, event_type, recipient, channel, payload):
        raise ConnectionError("sms gateway timeout")


def queue(key="plan:1:created:customer", **overrides):
    fields = {
        "event_type": "INSTALLMENT_PLAN_CREATED",
        "recipient_type": "CUSTOMER",
        "recipient": "0771234567",
        "channel": "SMS",
        "payload": {"plan_number": "INS0001"},
        "reference_type": "installment_plan",
        "reference_id": "1",
        "dedupe_key": key,
    }
    fields.update(overrides)
    return enqueue(**fields)


class OutboxTests(TestCase):
    def test_enqueue_is_deduplicated(self):
        first, created = queue()
        second, created_again = queue(recipient="0779999999")
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Notification.objects.count(), 1)
        self.assertEqual(second.recipient, "0771234567")

    def test_dispatch_marks_rows_sent(self):
        queue("a")
        queue("b")
        dispatcher = RecordingDispatcher()
        result = dispatch_pending(dispatcher=dispatcher)
        self.assertEqual(result, {"sent": 2, "retried": 0, "failed": 0})
        self.assertEqual(len(dispatcher.sent), 2)
        self.assertFalse(Notification.objects.exclude(status=NotificationStatus.SENT).exists())
        self.assertFalse(Notification.objects.filter(sent_at__isnull=True).exists())

    def test_dispatch_respects_limit(self):
        for key in ("a", "b", "c"):
            queue(key)
        result = dispatch_pending(dispatcher=RecordingDispatcher(), limit=2)
        self.assertEqual(result["sent"], 2)
        self.assertEqual(Notification.objects.filter(status=NotificationStatus.PENDING).count(), 1)

    @override_settings(NOTIFICATION_MAX_ATTEMPTS=2)
    def test_failures_are_retried_then_marked_failed(self):
        notification, _ = queue()
        first = dispatch_pending(dispatcher=RecordingDispatcher([False]))
        notification.refresh_from_db()
        self.assertEqual(first["retried"], 1)
        self.assertEqual(notification.status, NotificationStatus.PENDING)
        self.assertEqual(notification.attempts, 1)

        second = dispatch_pending(dispatcher=ExplodingDispatcher())
        notification.refresh_from_db()
        self.assertEqual(second["failed"], 1)
        self.assertEqual(notification.status, NotificationStatus.FAILED)
        self.assertEqual(notification.attempts, 2)
        self.assertEqual(notification.last_error, "sms gateway timeout")

        self.assertEqual(dispatch_pending(dispatcher=RecordingDispatcher()), {"sent": 0, "retried": 0, "failed": 0})

    def test_default_dispatcher_comes_from_settings(self):
        self.assertIsInstance(get_dispatcher(), LoggingDispatcher)

    def test_management_command_drains_outbox(self):
        queue()
        call_command("dispatch_notifications", "--limit", "5")
        self.assertEqual(Notification.objects.get().status, NotificationStatus.SENT)


class NotificationApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_notif", password="admin123", role="ADMIN")
        self.cashier = User.objects.create_user(username="cashier_notif", password="cashier123", role="CASHIER")

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_admin_lists_and_dispatches(self):
        queue("a")
        queue("b", event_type="INSTALLMENT_PAYMENT_RECEIVED")
        self.auth_as("admin_notif", "admin123")

        listing = self.client.get("/api/v1/notifications/", {"event_type": "INSTALLMENT_PAYMENT_RECEIVED"})
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.data["count"], 1)

        dispatched = self.client.post("/api/v1/notifications/dispatch/", {}, format="json")
        self.assertEqual(dispatched.status_code, 200)
        self.assertEqual(dispatched.data["sent"], 2)

    def test_cashier_cannot_read_outbox(self):
        self.auth_as("cashier_notif", "cashier123")
        self.assertEqual(self.client.get("/api/v1/notifications/").status_code, 403)
        self.assertEqual(self.client.post("/api/v1/notifications/dispatch/", {}, format="json").status_code, 403)
