from rest_framework import serializers

from apps.notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            "id",
            "event_type",
            "recipient_type",
            "recipient",
            "channel",
            "payload",
            "status",
            "attempts",
            "last_error",
            "sent_at",
            "reference_type",
            "reference_id",
            "created_at",
        ]
        read_only_fields = fields


class DispatchSerializer(serializers.Serializer):
    limit = serializers.IntegerField(required=False, min_value=1)
