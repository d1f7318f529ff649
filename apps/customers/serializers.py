from decimal import Decimal

from rest_framework import serializers

from apps.customers.models import Customer, CustomerFinancialProfile, normalize_phone


class CustomerSerializer(serializers.ModelSerializer):
    has_financial_profile = serializers.SerializerMethodField()

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "phone",
            "phone_normalized",
            "email",
            "address",
            "notes",
            "has_financial_profile",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "phone_normalized", "has_financial_profile", "created_at", "updated_at"]

    def get_has_financial_profile(self, obj):
        return hasattr(obj, "financial_profile")


class CustomerUpsertSerializer(serializers.Serializer):
    phone = serializers.CharField()
    name = serializers.CharField()
    email = serializers.EmailField(required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_phone(self, value):
        if not normalize_phone(value):
            raise serializers.ValidationError("phone is required")
        return value

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("name is required")
        return value


class ExistingLoanSerializer(serializers.Serializer):
    creditor = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    monthly_payment = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    loan_type = serializers.CharField(required=False, allow_blank=True)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        value["amount"] = str(value["amount"])
        value["monthly_payment"] = str(value["monthly_payment"])
        return value


class CustomerFinancialProfileSerializer(serializers.ModelSerializer):
    existing_loans = ExistingLoanSerializer(many=True, required=False)
    verified_by_username = serializers.CharField(source="verified_by.username", read_only=True, default=None)

    class Meta:
        model = CustomerFinancialProfile
        fields = [
            "id",
            "customer",
            "national_id",
            "national_id_issued_date",
            "national_id_expiry_date",
            "bank_name",
            "bank_branch",
            "account_number",
            "account_holder_name",
            "swift_code",
            "company_name",
            "company_address",
            "company_phone",
            "company_email",
            "job_position",
            "monthly_income",
            "employment_start_date",
            "supervisor_name",
            "supervisor_phone",
            "has_existing_loans",
            "existing_loans",
            "total_monthly_obligations",
            "credit_score",
            "credit_rating",
            "notes",
            "is_verified",
            "verified_at",
            "verified_by",
            "verified_by_username",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "customer",
            "has_existing_loans",
            "is_verified",
            "verified_at",
            "verified_by",
            "verified_by_username",
            "created_at",
            "updated_at",
        ]

    def validate_monthly_income(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("monthly_income cannot be negative")
        return value

    def validate(self, attrs):
        issued = attrs.get("national_id_issued_date", getattr(self.instance, "national_id_issued_date", None))
        expiry = attrs.get("national_id_expiry_date", getattr(self.instance, "national_id_expiry_date", None))
        if issued and expiry and expiry <= issued:
            raise serializers.ValidationError({"national_id_expiry_date": "Expiry date must be after the issue date."})
        return attrs

    def _apply_loan_totals(self, profile, validated_data):
        if "existing_loans" in validated_data:
            profile.has_existing_loans = bool(profile.existing_loans)
            if validated_data.get("total_monthly_obligations") is None and profile.existing_loans:
                profile.total_monthly_obligations = profile.existing_loans_monthly_total()

    def create(self, validated_data):
        profile = CustomerFinancialProfile(**validated_data)
        self._apply_loan_totals(profile, validated_data)
        profile.save()
        return profile

    def update(self, instance, validated_data):
        for field, value in validated_data.items():
            setattr(instance, field, value)
        self._apply_loan_totals(instance, validated_data)
        if validated_data and instance.is_verified:
            instance.clear_verification()
        instance.save()
        return instance
