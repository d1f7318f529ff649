from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.permissions import RolePermission
from apps.notifications.models import Notification
from apps.notifications.serializers import DispatchSerializer, NotificationSerializer
from apps.notifications import services


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    queryset = Notification.objects.order_by("-created_at")
    serializer_class = NotificationSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["notifications.view"],
        "dispatch_pending": ["notifications.dispatch"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        for field in ("status", "event_type", "recipient_type", "reference_type", "reference_id"):
            if params.get(field):
                queryset = queryset.filter(**{field: params[field]})
        return queryset

    @action(detail=False, methods=["post"], url_path="dispatch")
    def dispatch_pending(self, request):
        serializer = DispatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.dispatch_pending(limit=serializer.validated_data.get("limit")))
