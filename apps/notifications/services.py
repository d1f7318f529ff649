import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.notifications.dispatchers import get_dispatcher
from apps.notifications.models import Notification, NotificationStatus

logger = logging.getLogger(__name__)


def enqueue(*, event_type, recipient_type, recipient, channel, payload, reference_type, reference_id, dedupe_key):
    """Record an outbox row once per ``dedupe_key``. Returns (notification, created)."""
    notification, created = Notification.objects.get_or_create(
        dedupe_key=dedupe_key,
        defaults={
            "event_type": event_type,
            "recipient_type": recipient_type,
            "recipient": recipient,
            "channel": channel,
            "payload": payload,
            "reference_type": reference_type,
            "reference_id": str(reference_id),
        },
    )
    if created:
        logger.debug("queued %s for %s %s", event_type, recipient_type, recipient)
    return notification, created


def dispatch_pending(dispatcher=None, limit=None):
    dispatcher = dispatcher or get_dispatcher()
    max_attempts = settings.NOTIFICATION_MAX_ATTEMPTS
    result = {"sent": 0, "retried": 0, "failed": 0}

    pending_ids = Notification.objects.filter(status=NotificationStatus.PENDING).order_by("created_at").values_list("id", flat=True)
    if limit:
        pending_ids = pending_ids[:limit]

    for notification_id in list(pending_ids):
        with transaction.atomic():
            notification = (
                Notification.objects.select_for_update(skip_locked=True)
                .filter(pk=notification_id, status=NotificationStatus.PENDING)
                .first()
            )
            if notification is None:
                continue

            error = ""
            try:
                delivered = dispatcher.send(
                    notification.event_type,
                    notification.recipient,
                    notification.channel,
                    notification.payload,
                )
            except Exception as exc:
                logger.exception("Dispatcher raised for notification %s", notification.id)
                delivered = False
                error = str(exc) or exc.__class__.__name__

            if delivered:
                notification.status = NotificationStatus.SENT
                notification.sent_at = timezone.now()
                notification.last_error = ""
                result["sent"] += 1
            else:
                notification.attempts += 1
                notification.last_error = error or "Dispatcher reported failure"
                if notification.attempts >= max_attempts:
                    notification.status = NotificationStatus.FAILED
                    result["failed"] += 1
                    logger.warning("Notification %s failed after %s attempts", notification.id, notification.attempts)
                else:
                    result["retried"] += 1
            notification.save(update_fields=["status", "sent_at", "last_error", "attempts"])

    return result
