import django.db.models.deletion
import uuid

from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("phone", models.CharField(max_length=50)),
                ("phone_normalized", models.CharField(max_length=50, unique=True)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("address", models.CharField(blank=True, max_length=255)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["phone_normalized"], name="customer_phone_norm_idx"),
                    models.Index(fields=["name"], name="customer_name_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CustomerFinancialProfile",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("national_id", models.CharField(max_length=64, unique=True)),
                ("national_id_issued_date", models.DateField(blank=True, null=True)),
                ("national_id_expiry_date", models.DateField(blank=True, null=True)),
                ("bank_name", models.CharField(max_length=255)),
                ("bank_branch", models.CharField(blank=True, max_length=255)),
                ("account_number", models.CharField(max_length=64)),
                ("account_holder_name", models.CharField(blank=True, max_length=255)),
                ("swift_code", models.CharField(blank=True, max_length=32)),
                ("company_name", models.CharField(max_length=255)),
                ("company_address", models.CharField(blank=True, max_length=255)),
                ("company_phone", models.CharField(blank=True, max_length=50)),
                ("company_email", models.EmailField(blank=True, max_length=254)),
                ("job_position", models.CharField(blank=True, max_length=255)),
                ("monthly_income", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("employment_start_date", models.DateField(blank=True, null=True)),
                ("supervisor_name", models.CharField(blank=True, max_length=255)),
                ("supervisor_phone", models.CharField(blank=True, max_length=50)),
                ("has_existing_loans", models.BooleanField(default=False)),
                ("existing_loans", models.JSONField(blank=True, default=list)),
                ("total_monthly_obligations", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("credit_score", models.PositiveIntegerField(blank=True, null=True)),
                ("credit_rating", models.CharField(blank=True, max_length=32)),
                ("notes", models.TextField(blank=True)),
                ("is_verified", models.BooleanField(default=False)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="financial_profile",
                        to="customers.customer",
                    ),
                ),
                (
                    "verified_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="verified_financial_profiles",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "customer_financial_details",
                "indexes": [
                    models.Index(fields=["national_id"], name="finprofile_national_id_idx"),
                    models.Index(fields=["is_verified"], name="finprofile_verified_idx"),
                ],
            },
        ),
    ]
