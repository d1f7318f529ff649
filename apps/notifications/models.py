import uuid

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class NotificationEvent(models.TextChoices):
    INSTALLMENT_PLAN_CREATED = "INSTALLMENT_PLAN_CREATED", "Installment plan created"
    INSTALLMENT_PAYMENT_DUE = "INSTALLMENT_PAYMENT_DUE", "Installment payment due"
    INSTALLMENT_PAYMENT_LATE = "INSTALLMENT_PAYMENT_LATE", "Installment payment late"
    INSTALLMENT_PAYMENT_RECEIVED = "INSTALLMENT_PAYMENT_RECEIVED", "Installment payment received"
    INSTALLMENT_DEFAULTED = "INSTALLMENT_DEFAULTED", "Installment plan defaulted"
    INSTALLMENT_PLAN_COMPLETED = "INSTALLMENT_PLAN_COMPLETED", "Installment plan completed"


class RecipientType(models.TextChoices):
    CUSTOMER = "CUSTOMER", "Customer"
    OWNER = "OWNER", "Owner"
    BANK = "BANK", "Bank"
    EMPLOYER = "EMPLOYER", "Employer"


class NotificationChannel(models.TextChoices):
    SMS = "SMS", "SMS"
    EMAIL = "EMAIL", "Email"


class NotificationStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SENT = "SENT", "Sent"
    FAILED = "FAILED", "Failed"


class Notification(models.Model):
    """Outbox row written in the same transaction as the business change."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=40, choices=NotificationEvent.choices)
    recipient_type = models.CharField(max_length=16, choices=RecipientType.choices)
    recipient = models.CharField(max_length=255)
    channel = models.CharField(max_length=8, choices=NotificationChannel.choices)
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    status = models.CharField(max_length=16, choices=NotificationStatus.choices, default=NotificationStatus.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    reference_type = models.CharField(max_length=64, blank=True)
    reference_id = models.CharField(max_length=64, blank=True)
    dedupe_key = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="notification_status_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="notification_reference_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} -> {self.recipient_type}:{self.recipient} ({self.status})"
