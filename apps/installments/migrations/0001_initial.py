# Generated manually for installment financing.

import django.db.models.deletion
import uuid

from django.conf import settings
from django.db import migrations, models

PAYMENT_METHOD_CHOICES = [
    ("CASH", "Cash"),
    ("CARD", "Card"),
    ("BANK_TRANSFER", "Bank transfer"),
    ("MOBILE_PAYMENT", "Mobile payment"),
    ("CHECK", "Check"),
    ("OTHER", "Other"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("customers", "0001_initial"),
        ("sales", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="InstallmentPlan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("plan_number", models.CharField(max_length=32, unique=True)),
                ("product_description", models.CharField(blank=True, max_length=255)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("down_payment", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("financed_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("number_of_installments", models.PositiveIntegerField()),
                ("installment_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "frequency",
                    models.CharField(
                        choices=[("WEEKLY", "Weekly"), ("BIWEEKLY", "Biweekly"), ("MONTHLY", "Monthly")],
                        default="MONTHLY",
                        max_length=16,
                    ),
                ),
                ("interest_rate", models.DecimalField(decimal_places=2, default=0, max_digits=6)),
                ("late_fee_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=6)),
                ("late_fee_fixed", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("start_date", models.DateField()),
                ("first_payment_date", models.DateField()),
                ("end_date", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("ACTIVE", "Active"),
                            ("COMPLETED", "Completed"),
                            ("DEFAULTED", "Defaulted"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        default="ACTIVE",
                        max_length=16,
                    ),
                ),
                ("total_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_outstanding", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payments_completed", models.PositiveIntegerField(default=0)),
                ("payments_missed", models.PositiveIntegerField(default=0)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("defaulted_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, max_length=255)),
                ("notes", models.TextField(blank=True)),
                ("terms_and_conditions", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="installment_plans",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="installment_plans",
                        to="customers.customer",
                    ),
                ),
                (
                    "sale",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="installment_plans",
                        to="sales.sale",
                    ),
                ),
            ],
            options={
                "db_table": "installment_plans",
                "indexes": [
                    models.Index(fields=["status", "start_date"], name="instplan_status_start_idx"),
                    models.Index(fields=["customer", "status"], name="instplan_customer_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(total_amount__gt=0), name="instplan_total_gt_zero"),
                    models.CheckConstraint(condition=models.Q(down_payment__gte=0), name="instplan_down_gte_zero"),
                    models.CheckConstraint(condition=models.Q(financed_amount__gt=0), name="instplan_financed_gt_zero"),
                    models.CheckConstraint(condition=models.Q(number_of_installments__gte=1), name="instplan_count_gte_one"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InstallmentPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("payment_number", models.CharField(max_length=40, unique=True)),
                ("installment_number", models.PositiveIntegerField()),
                ("due_date", models.DateField()),
                ("amount_due", models.DecimalField(decimal_places=2, max_digits=12)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("late_fee", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("late_fee_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("payment_method", models.CharField(blank=True, choices=PAYMENT_METHOD_CHOICES, max_length=20)),
                ("payment_reference", models.CharField(blank=True, max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PAID", "Paid"),
                            ("LATE", "Late"),
                            ("DEFAULTED", "Defaulted"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("days_overdue", models.PositiveIntegerField(default=0)),
                ("overdue_since", models.DateField(blank=True, null=True)),
                ("reminder_sent", models.BooleanField(default=False)),
                ("reminder_sent_at", models.DateTimeField(blank=True, null=True)),
                ("late_notification_sent", models.BooleanField(default=False)),
                ("late_notification_sent_at", models.DateTimeField(blank=True, null=True)),
                ("owner_notified", models.BooleanField(default=False)),
                ("owner_notified_at", models.DateTimeField(blank=True, null=True)),
                ("bank_notified", models.BooleanField(default=False)),
                ("bank_notified_at", models.DateTimeField(blank=True, null=True)),
                ("employer_notified", models.BooleanField(default=False)),
                ("employer_notified_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="installments.installmentplan",
                    ),
                ),
                (
                    "received_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="received_installment_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "installment_payments",
                "ordering": ["installment_number"],
                "indexes": [
                    models.Index(fields=["status", "due_date"], name="instpay_status_due_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("plan", "installment_number"), name="instpay_plan_number_uniq"),
                    models.CheckConstraint(condition=models.Q(amount_due__gt=0), name="instpay_amount_due_gt_zero"),
                    models.CheckConstraint(condition=models.Q(amount_paid__gte=0), name="instpay_amount_paid_gte_zero"),
                    models.CheckConstraint(condition=models.Q(late_fee__gte=0), name="instpay_late_fee_gte_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InstallmentReceipt",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("principal_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("late_fee_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payment_method", models.CharField(choices=PAYMENT_METHOD_CHOICES, max_length=20)),
                ("reference", models.CharField(blank=True, max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="receipts",
                        to="installments.installmentpayment",
                    ),
                ),
                (
                    "received_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="installment_receipts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "installment_receipts",
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount__gt=0), name="instreceipt_amount_gt_zero"),
                    models.UniqueConstraint(
                        condition=models.Q(("reference", ""), _negated=True),
                        fields=("reference",),
                        name="instreceipt_reference_uniq",
                    ),
                ],
            },
        ),
    ]
