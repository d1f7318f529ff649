import uuid

from django.db import models

from apps.common.exceptions import InvalidStateError


class InstallmentFrequency(models.TextChoices):
    WEEKLY = "WEEKLY", "Weekly"
    BIWEEKLY = "BIWEEKLY", "Biweekly"
    MONTHLY = "MONTHLY", "Monthly"


class InstallmentPlanStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    COMPLETED = "COMPLETED", "Completed"
    DEFAULTED = "DEFAULTED", "Defaulted"
    CANCELLED = "CANCELLED", "Cancelled"


class InstallmentPaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    LATE = "LATE", "Late"
    DEFAULTED = "DEFAULTED", "Defaulted"


class InstallmentPaymentMethod(models.TextChoices):
    CASH = "CASH", "Cash"
    CARD = "CARD", "Card"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
    MOBILE_PAYMENT = "MOBILE_PAYMENT", "Mobile payment"
    CHECK = "CHECK", "Check"
    OTHER = "OTHER", "Other"


# Terminal states have no outgoing edges.
PLAN_TRANSITIONS = {
    InstallmentPlanStatus.ACTIVE: {
        InstallmentPlanStatus.COMPLETED,
        InstallmentPlanStatus.DEFAULTED,
        InstallmentPlanStatus.CANCELLED,
    },
    InstallmentPlanStatus.COMPLETED: set(),
    InstallmentPlanStatus.DEFAULTED: set(),
    InstallmentPlanStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    InstallmentPaymentStatus.PENDING: {
        InstallmentPaymentStatus.PAID,
        InstallmentPaymentStatus.LATE,
    },
    InstallmentPaymentStatus.LATE: {
        InstallmentPaymentStatus.PAID,
        InstallmentPaymentStatus.DEFAULTED,
    },
    InstallmentPaymentStatus.PAID: set(),
    InstallmentPaymentStatus.DEFAULTED: set(),
}

UNPAID_STATUSES = (InstallmentPaymentStatus.PENDING, InstallmentPaymentStatus.LATE)


class InstallmentPlan(models.Model):
    """A financed purchase split into a fixed schedule of installments.

    ``total_paid``, ``total_outstanding``, ``payments_completed`` and
    ``payments_missed`` are derived from the payment rows and only ever
    written by ``services.refresh_plan_totals`` while the plan row is locked.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan_number = models.CharField(max_length=32, unique=True)
    customer = models.ForeignKey("customers.Customer", on_delete=models.PROTECT, related_name="installment_plans")
    sale = models.ForeignKey("sales.Sale", on_delete=models.PROTECT, null=True, blank=True, related_name="installment_plans")
    created_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="installment_plans")
    product_description = models.CharField(max_length=255, blank=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    down_payment = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    financed_amount = models.DecimalField(max_digits=12, decimal_places=2)
    number_of_installments = models.PositiveIntegerField()
    installment_amount = models.DecimalField(max_digits=12, decimal_places=2)
    frequency = models.CharField(max_length=16, choices=InstallmentFrequency.choices, default=InstallmentFrequency.MONTHLY)

    interest_rate = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    late_fee_percentage = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    late_fee_fixed = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    start_date = models.DateField()
    first_payment_date = models.DateField()
    end_date = models.DateField()

    status = models.CharField(max_length=16, choices=InstallmentPlanStatus.choices, default=InstallmentPlanStatus.ACTIVE)
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_outstanding = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payments_completed = models.PositiveIntegerField(default=0)
    payments_missed = models.PositiveIntegerField(default=0)

    completed_at = models.DateTimeField(null=True, blank=True)
    defaulted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    terms_and_conditions = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "installment_plans"
        indexes = [
            models.Index(fields=["status", "start_date"], name="instplan_status_start_idx"),
            models.Index(fields=["customer", "status"], name="instplan_customer_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(total_amount__gt=0), name="instplan_total_gt_zero"),
            models.CheckConstraint(condition=models.Q(down_payment__gte=0), name="instplan_down_gte_zero"),
            models.CheckConstraint(condition=models.Q(financed_amount__gt=0), name="instplan_financed_gt_zero"),
            models.CheckConstraint(condition=models.Q(number_of_installments__gte=1), name="instplan_count_gte_one"),
        ]

    def __str__(self):
        return f"{self.plan_number} ({self.status})"

    def transition_to(self, new_status):
        if new_status not in PLAN_TRANSITIONS[self.status]:
            raise InvalidStateError(f"Plan {self.plan_number} cannot move from {self.status} to {new_status}.")
        self.status = new_status


class InstallmentPayment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment_number = models.CharField(max_length=40, unique=True)
    plan = models.ForeignKey(InstallmentPlan, on_delete=models.CASCADE, related_name="payments")
    installment_number = models.PositiveIntegerField()
    due_date = models.DateField()
    amount_due = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    late_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    late_fee_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_date = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, choices=InstallmentPaymentMethod.choices, blank=True)
    payment_reference = models.CharField(max_length=64, blank=True)
    status = models.CharField(max_length=16, choices=InstallmentPaymentStatus.choices, default=InstallmentPaymentStatus.PENDING)
    days_overdue = models.PositiveIntegerField(default=0)
    overdue_since = models.DateField(null=True, blank=True)

    reminder_sent = models.BooleanField(default=False)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    late_notification_sent = models.BooleanField(default=False)
    late_notification_sent_at = models.DateTimeField(null=True, blank=True)
    owner_notified = models.BooleanField(default=False)
    owner_notified_at = models.DateTimeField(null=True, blank=True)
    bank_notified = models.BooleanField(default=False)
    bank_notified_at = models.DateTimeField(null=True, blank=True)
    employer_notified = models.BooleanField(default=False)
    employer_notified_at = models.DateTimeField(null=True, blank=True)

    received_by = models.ForeignKey(
        "accounts.User",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="received_installment_payments",
    )
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "installment_payments"
        ordering = ["installment_number"]
        indexes = [
            models.Index(fields=["status", "due_date"], name="instpay_status_due_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["plan", "installment_number"], name="instpay_plan_number_uniq"),
            models.CheckConstraint(condition=models.Q(amount_due__gt=0), name="instpay_amount_due_gt_zero"),
            models.CheckConstraint(condition=models.Q(amount_paid__gte=0), name="instpay_amount_paid_gte_zero"),
            models.CheckConstraint(condition=models.Q(late_fee__gte=0), name="instpay_late_fee_gte_zero"),
        ]

    def __str__(self):
        return f"{self.payment_number} ({self.status})"

    @property
    def is_unpaid(self):
        return self.status in UNPAID_STATUSES

    def transition_to(self, new_status):
        if new_status not in PAYMENT_TRANSITIONS[self.status]:
            raise InvalidStateError(f"Installment {self.payment_number} cannot move from {self.status} to {new_status}.")
        self.status = new_status


class InstallmentReceipt(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment = models.ForeignKey(InstallmentPayment, on_delete=models.CASCADE, related_name="receipts")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    principal_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    late_fee_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_method = models.CharField(max_length=20, choices=InstallmentPaymentMethod.choices)
    reference = models.CharField(max_length=64, blank=True)
    received_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="installment_receipts")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "installment_receipts"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="instreceipt_amount_gt_zero"),
            models.UniqueConstraint(
                fields=["reference"],
                condition=~models.Q(reference=""),
                name="instreceipt_reference_uniq",
            ),
        ]
