from django.contrib import admin

from apps.sales.models import Sale


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "cashier", "status", "total", "confirmed_at")
    list_filter = ("status",)
    search_fields = ("id", "customer__name", "customer__phone")
    autocomplete_fields = ("customer", "cashier")
