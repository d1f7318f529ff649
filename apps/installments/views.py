from django.db.models import Prefetch, Q
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.common.permissions import RolePermission
from apps.customers.models import normalize_phone
from apps.installments import services
from apps.installments.models import InstallmentPayment, InstallmentPlan, UNPAID_STATUSES
from apps.installments.serializers import (
    ApplyPaymentSerializer,
    CancelPlanSerializer,
    InstallmentPaymentQuerySerializer,
    InstallmentPaymentSerializer,
    InstallmentPlanCreateSerializer,
    InstallmentPlanListSerializer,
    InstallmentPlanQuerySerializer,
    InstallmentPlanSerializer,
    SweepSerializer,
)

TRUTHY = {"1", "true", "yes"}


def validated_query_params(serializer_class, query_params):
    serializer = serializer_class(data={key: value for key, value in query_params.items() if value})
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class InstallmentPlanViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = (
        InstallmentPlan.objects.select_related("customer", "sale", "created_by")
        .prefetch_related(
            Prefetch("payments", queryset=InstallmentPayment.objects.prefetch_related("receipts__received_by")),
        )
        .order_by("-created_at")
    )
    serializer_class = InstallmentPlanSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["installments.view"],
        "retrieve": ["installments.view"],
        "create": ["installments.create"],
        "cancel": ["installments.cancel"],
        "sweep": ["installments.sweep"],
        "stats": ["installments.stats"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        params = validated_query_params(InstallmentPlanQuerySerializer, self.request.query_params)
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("customer"):
            queryset = queryset.filter(customer_id=params["customer"])
        if params.get("start_date_from"):
            queryset = queryset.filter(start_date__gte=params["start_date_from"])
        if params.get("start_date_to"):
            queryset = queryset.filter(start_date__lte=params["start_date_to"])
        query = params.get("q")
        if query:
            normalized = normalize_phone(query)
            queryset = queryset.filter(
                Q(plan_number__icontains=query)
                | Q(customer__name__icontains=query)
                | Q(customer__phone_normalized__icontains=normalized)
            )
        return queryset

    def get_serializer_class(self):
        if self.action == "list":
            return InstallmentPlanListSerializer
        return InstallmentPlanSerializer

    def create(self, request, *args, **kwargs):
        serializer = InstallmentPlanCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        plan = services.create_plan(actor=request.user, **serializer.validated_data)
        plan = self.get_queryset().get(pk=plan.pk)
        return Response(InstallmentPlanSerializer(plan).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelPlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        plan = self.get_object()
        services.cancel_plan(plan_id=plan.pk, reason=serializer.validated_data["reason"], actor=request.user)
        return Response(InstallmentPlanSerializer(self.get_queryset().get(pk=plan.pk)).data)

    @action(detail=False, methods=["post"])
    def sweep(self, request):
        serializer = SweepSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        today = serializer.validated_data.get("date") or timezone.localdate()
        result = services.run_overdue_sweep(today=today)
        record_audit(
            actor=request.user,
            action="installment.sweep",
            entity_type="installment_sweep",
            entity_id=today.isoformat(),
            payload=result,
        )
        return Response({"date": today, **result})

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(services.plan_stats())


class InstallmentPaymentViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = (
        InstallmentPayment.objects.select_related("plan")
        .prefetch_related("receipts__received_by")
        .order_by("due_date", "installment_number")
    )
    serializer_class = InstallmentPaymentSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["installments.view"],
        "retrieve": ["installments.view"],
        "pay": ["installments.collect"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        params = validated_query_params(InstallmentPaymentQuerySerializer, self.request.query_params)
        if params.get("plan"):
            queryset = queryset.filter(plan_id=params["plan"])
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if str(params.get("overdue", "")).lower() in TRUTHY:
            queryset = queryset.filter(status__in=UNPAID_STATUSES, due_date__lt=timezone.localdate())
        if params.get("due_from"):
            queryset = queryset.filter(due_date__gte=params["due_from"])
        if params.get("due_to"):
            queryset = queryset.filter(due_date__lte=params["due_to"])
        return queryset

    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        serializer = ApplyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment = self.get_object()
        services.apply_payment(
            payment_id=payment.pk,
            amount=data["amount"],
            payment_method=data["payment_method"],
            reference=data.get("reference", ""),
            notes=data.get("notes", ""),
            actor=request.user,
        )
        return Response(InstallmentPaymentSerializer(self.get_queryset().get(pk=payment.pk)).data)
