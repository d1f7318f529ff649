from django.contrib import admin

from apps.notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("event_type", "recipient_type", "recipient", "channel", "status", "attempts", "created_at")
    list_filter = ("status", "event_type", "recipient_type", "channel")
    search_fields = ("recipient", "reference_id", "dedupe_key")
    readonly_fields = ("dedupe_key", "payload", "created_at", "sent_at")
