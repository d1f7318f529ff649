import logging

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivers one outbox row. Return True when the provider accepted it."""

    def send(self, event_type, recipient, channel, payload):
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    def send(self, event_type, recipient, channel, payload):
        logger.info("notification %s via %s to %s: %s", event_type, channel, recipient, payload)
        return True


def get_dispatcher():
    return import_string(settings.NOTIFICATION_DISPATCHER)()
