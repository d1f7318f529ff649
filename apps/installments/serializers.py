from decimal import Decimal

from rest_framework import serializers

from apps.customers.models import Customer
from apps.installments.models import (
    InstallmentFrequency,
    InstallmentPayment,
    InstallmentPaymentMethod,
    InstallmentPlan,
    InstallmentReceipt,
)
from apps.sales.models import Sale


class InstallmentReceiptSerializer(serializers.ModelSerializer):
    received_by_username = serializers.CharField(source="received_by.username", read_only=True)

    class Meta:
        model = InstallmentReceipt
        fields = [
            "id",
            "amount",
            "principal_amount",
            "late_fee_amount",
            "payment_method",
            "reference",
            "received_by",
            "received_by_username",
            "created_at",
        ]
        read_only_fields = fields


class InstallmentPaymentSerializer(serializers.ModelSerializer):
    plan_number = serializers.CharField(source="plan.plan_number", read_only=True)
    receipts = InstallmentReceiptSerializer(many=True, read_only=True)

    class Meta:
        model = InstallmentPayment
        fields = [
            "id",
            "payment_number",
            "plan",
            "plan_number",
            "installment_number",
            "due_date",
            "amount_due",
            "amount_paid",
            "late_fee",
            "late_fee_paid",
            "total_amount_paid",
            "payment_date",
            "payment_method",
            "payment_reference",
            "status",
            "days_overdue",
            "overdue_since",
            "reminder_sent",
            "reminder_sent_at",
            "late_notification_sent",
            "late_notification_sent_at",
            "owner_notified",
            "owner_notified_at",
            "bank_notified",
            "bank_notified_at",
            "employer_notified",
            "employer_notified_at",
            "received_by",
            "notes",
            "receipts",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InstallmentPlanSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    customer_phone = serializers.CharField(source="customer.phone", read_only=True)
    payments = InstallmentPaymentSerializer(many=True, read_only=True)

    class Meta:
        model = InstallmentPlan
        fields = [
            "id",
            "plan_number",
            "customer",
            "customer_name",
            "customer_phone",
            "sale",
            "created_by",
            "product_description",
            "total_amount",
            "down_payment",
            "financed_amount",
            "number_of_installments",
            "installment_amount",
            "frequency",
            "interest_rate",
            "late_fee_percentage",
            "late_fee_fixed",
            "start_date",
            "first_payment_date",
            "end_date",
            "status",
            "total_paid",
            "total_outstanding",
            "payments_completed",
            "payments_missed",
            "completed_at",
            "defaulted_at",
            "cancelled_at",
            "cancellation_reason",
            "notes",
            "terms_and_conditions",
            "payments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InstallmentPlanListSerializer(InstallmentPlanSerializer):
    class Meta(InstallmentPlanSerializer.Meta):
        fields = [field for field in InstallmentPlanSerializer.Meta.fields if field != "payments"]
        read_only_fields = fields


class InstallmentPlanCreateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.select_related("financial_profile"))
    sale = serializers.PrimaryKeyRelatedField(queryset=Sale.objects.all(), required=False, allow_null=True)
    product_description = serializers.CharField(required=False, allow_blank=True, max_length=255)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    down_payment = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=Decimal("0.00"))
    financed_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    number_of_installments = serializers.IntegerField()
    frequency = serializers.ChoiceField(choices=InstallmentFrequency.choices, default=InstallmentFrequency.MONTHLY)
    interest_rate = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, default=Decimal("0.00"))
    late_fee_percentage = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, default=Decimal("0.00"))
    late_fee_fixed = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=Decimal("0.00"))
    start_date = serializers.DateField(required=False)
    first_payment_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    terms_and_conditions = serializers.JSONField(required=False)

    def validate(self, attrs):
        if attrs.get("total_amount") is None and attrs.get("sale") is None:
            raise serializers.ValidationError({"total_amount": "total_amount is required when no sale is referenced."})
        return attrs


class ApplyPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=InstallmentPaymentMethod.choices)
    reference = serializers.CharField(required=False, allow_blank=True, max_length=64)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255)


class CancelPlanSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255)


class SweepSerializer(serializers.Serializer):
    date = serializers.DateField(required=False)


class InstallmentPlanQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False)
    customer = serializers.UUIDField(required=False)
    start_date_from = serializers.DateField(required=False)
    start_date_to = serializers.DateField(required=False)
    q = serializers.CharField(required=False)


class InstallmentPaymentQuerySerializer(serializers.Serializer):
    plan = serializers.UUIDField(required=False)
    status = serializers.CharField(required=False)
    overdue = serializers.CharField(required=False)
    due_from = serializers.DateField(required=False)
    due_to = serializers.DateField(required=False)
