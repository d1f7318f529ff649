from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.common.exceptions import InvalidStateError, NotFoundError
from apps.common.permissions import RolePermission
from apps.customers.models import Customer, CustomerFinancialProfile, normalize_phone
from apps.customers.serializers import (
    CustomerFinancialProfileSerializer,
    CustomerSerializer,
    CustomerUpsertSerializer,
)


class CustomerViewSet(viewsets.ModelViewSet):
    queryset = Customer.objects.select_related("financial_profile").order_by("-updated_at")
    serializer_class = CustomerSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    capability_map = {
        "list": ["customers.view"],
        "retrieve": ["customers.view"],
        "create": ["customers.manage"],
        "partial_update": ["customers.manage"],
        "financial_profile": ["financial.view"],
        "create_financial_profile": ["financial.manage"],
        "update_financial_profile": ["financial.manage"],
        "verify_financial_profile": ["financial.verify"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        phone = self.request.query_params.get("phone")
        query = self.request.query_params.get("q")
        if phone:
            queryset = queryset.filter(phone_normalized=normalize_phone(phone))
        if query:
            normalized = normalize_phone(query)
            queryset = queryset.filter(
                Q(name__icontains=query) | Q(phone__icontains=query) | Q(phone_normalized__icontains=normalized)
            )
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = CustomerUpsertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        customer = Customer.get_or_create_by_phone(phone=data.pop("phone"), name=data.pop("name"), **data)
        record_audit(
            actor=request.user,
            action="customer.upsert",
            entity_type="customer",
            entity_id=customer.id,
            payload={"phone": customer.phone_normalized},
        )
        return Response(self.get_serializer(customer).data, status=status.HTTP_201_CREATED)

    def _get_profile(self, customer):
        try:
            return customer.financial_profile
        except CustomerFinancialProfile.DoesNotExist:
            raise NotFoundError("The customer has no financial profile.")

    @action(detail=True, methods=["get"], url_path="financial-profile")
    def financial_profile(self, request, pk=None):
        profile = self._get_profile(self.get_object())
        return Response(CustomerFinancialProfileSerializer(profile).data)

    @financial_profile.mapping.post
    def create_financial_profile(self, request, pk=None):
        customer = self.get_object()
        if hasattr(customer, "financial_profile"):
            raise InvalidStateError("Financial details already exist for this customer. Use PATCH to update them.")

        serializer = CustomerFinancialProfileSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            profile = serializer.save(customer=customer)
            record_audit(
                actor=request.user,
                action="financial_profile.create",
                entity_type="customer_financial_profile",
                entity_id=profile.id,
                payload={"customer_id": str(customer.id)},
            )
        return Response(CustomerFinancialProfileSerializer(profile).data, status=status.HTTP_201_CREATED)

    @financial_profile.mapping.patch
    def update_financial_profile(self, request, pk=None):
        customer = self.get_object()
        with transaction.atomic():
            profile = CustomerFinancialProfile.objects.select_for_update().filter(customer=customer).first()
            if profile is None:
                raise NotFoundError("The customer has no financial profile.")
            was_verified = profile.is_verified
            serializer = CustomerFinancialProfileSerializer(profile, data=request.data, partial=True)
            serializer.is_valid(raise_exception=True)
            profile = serializer.save()
            record_audit(
                actor=request.user,
                action="financial_profile.update",
                entity_type="customer_financial_profile",
                entity_id=profile.id,
                payload={"fields": sorted(serializer.validated_data), "verification_cleared": was_verified and not profile.is_verified},
            )
        return Response(CustomerFinancialProfileSerializer(profile).data)

    @action(detail=True, methods=["post"], url_path="financial-profile/verify")
    def verify_financial_profile(self, request, pk=None):
        customer = self.get_object()
        with transaction.atomic():
            profile = CustomerFinancialProfile.objects.select_for_update().filter(customer=customer).first()
            if profile is None:
                raise NotFoundError("The customer has no financial profile.")
            if not profile.is_verified:
                profile.is_verified = True
                profile.verified_at = timezone.now()
                profile.verified_by = request.user
                profile.save(update_fields=["is_verified", "verified_at", "verified_by", "updated_at"])
                record_audit(
                    actor=request.user,
                    action="financial_profile.verify",
                    entity_type="customer_financial_profile",
                    entity_id=profile.id,
                    payload={"customer_id": str(customer.id)},
                )
        return Response(CustomerFinancialProfileSerializer(profile).data)
