import re
import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models


def normalize_phone(value):
    raw = str(value or "").strip()
    normalized = re.sub(r"\D+", "", raw)
    return normalized or raw


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50)
    phone_normalized = models.CharField(max_length=50, unique=True)
    email = models.EmailField(blank=True)
    address = models.CharField(max_length=255, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["phone_normalized"], name="customer_phone_norm_idx"),
            models.Index(fields=["name"], name="customer_name_idx"),
        ]

    def clean(self):
        if not self.phone:
            raise ValidationError("phone is required")
        normalized = normalize_phone(self.phone)
        if not normalized:
            raise ValidationError("phone must contain at least one digit")
        self.phone_normalized = normalized

    def save(self, *args, **kwargs):
        self.phone = str(self.phone or "").strip()
        self.name = str(self.name or "").strip()
        self.phone_normalized = normalize_phone(self.phone)
        self.full_clean()
        super().save(*args, **kwargs)

    @classmethod
    def get_or_create_by_phone(cls, phone, name="", **extra):
        normalized = normalize_phone(phone)
        customer = cls.objects.filter(phone_normalized=normalized).first()
        if not customer:
            return cls.objects.create(phone=str(phone).strip(), name=str(name).strip(), **extra)

        updated_fields = []
        changes = {"name": name, **extra}
        for field, value in changes.items():
            value = str(value or "").strip()
            if value and getattr(customer, field) != value:
                setattr(customer, field, value)
                updated_fields.append(field)
        if updated_fields:
            updated_fields.append("updated_at")
            customer.save(update_fields=updated_fields)
        return customer

    def __str__(self):
        return f"{self.name} ({self.phone})"


class CustomerFinancialProfile(models.Model):
    """KYC and financial standing collected before a customer can be financed.

    Profiles are an audit record: they are never deleted, and any change to a
    verified profile drops it back to unverified until staff verify it again.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.OneToOneField(Customer, on_delete=models.PROTECT, related_name="financial_profile")

    national_id = models.CharField(max_length=64, unique=True)
    national_id_issued_date = models.DateField(null=True, blank=True)
    national_id_expiry_date = models.DateField(null=True, blank=True)

    bank_name = models.CharField(max_length=255)
    bank_branch = models.CharField(max_length=255, blank=True)
    account_number = models.CharField(max_length=64)
    account_holder_name = models.CharField(max_length=255, blank=True)
    swift_code = models.CharField(max_length=32, blank=True)

    company_name = models.CharField(max_length=255)
    company_address = models.CharField(max_length=255, blank=True)
    company_phone = models.CharField(max_length=50, blank=True)
    company_email = models.EmailField(blank=True)
    job_position = models.CharField(max_length=255, blank=True)
    monthly_income = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    employment_start_date = models.DateField(null=True, blank=True)
    supervisor_name = models.CharField(max_length=255, blank=True)
    supervisor_phone = models.CharField(max_length=50, blank=True)

    has_existing_loans = models.BooleanField(default=False)
    existing_loans = models.JSONField(default=list, blank=True)
    total_monthly_obligations = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    credit_score = models.PositiveIntegerField(null=True, blank=True)
    credit_rating = models.CharField(max_length=32, blank=True)

    notes = models.TextField(blank=True)
    is_verified = models.BooleanField(default=False)
    verified_at = models.DateTimeField(null=True, blank=True)
    verified_by = models.ForeignKey(
        "accounts.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="verified_financial_profiles",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "customer_financial_details"
        indexes = [
            models.Index(fields=["national_id"], name="finprofile_national_id_idx"),
            models.Index(fields=["is_verified"], name="finprofile_verified_idx"),
        ]

    def __str__(self):
        return f"{self.customer.name} / {self.national_id}"

    def existing_loans_monthly_total(self):
        total = Decimal("0.00")
        for loan in self.existing_loans or []:
            total += Decimal(str(loan.get("monthly_payment") or "0"))
        return total.quantize(Decimal("0.01"))

    def clear_verification(self):
        self.is_verified = False
        self.verified_at = None
        self.verified_by = None
