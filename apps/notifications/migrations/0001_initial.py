import django.core.serializers.json
import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("INSTALLMENT_PLAN_CREATED", "Installment plan created"),
                            ("INSTALLMENT_PAYMENT_DUE", "Installment payment due"),
                            ("INSTALLMENT_PAYMENT_LATE", "Installment payment late"),
                            ("INSTALLMENT_PAYMENT_RECEIVED", "Installment payment received"),
                            ("INSTALLMENT_DEFAULTED", "Installment plan defaulted"),
                            ("INSTALLMENT_PLAN_COMPLETED", "Installment plan completed"),
                        ],
                        max_length=40,
                    ),
                ),
                (
                    "recipient_type",
                    models.CharField(
                        choices=[("CUSTOMER", "Customer"), ("OWNER", "Owner"), ("BANK", "Bank"), ("EMPLOYER", "Employer")],
                        max_length=16,
                    ),
                ),
                ("recipient", models.CharField(max_length=255)),
                ("channel", models.CharField(choices=[("SMS", "SMS"), ("EMAIL", "Email")], max_length=8)),
                (
                    "payload",
                    models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("SENT", "Sent"), ("FAILED", "Failed")],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("reference_type", models.CharField(blank=True, max_length=64)),
                ("reference_id", models.CharField(blank=True, max_length=64)),
                ("dedupe_key", models.CharField(max_length=255, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="notification_status_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="notification_reference_idx"),
                ],
            },
        ),
    ]
