from django.contrib import admin

from apps.customers.models import Customer, CustomerFinancialProfile


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "email", "updated_at")
    search_fields = ("name", "phone", "phone_normalized", "email")


@admin.register(CustomerFinancialProfile)
class CustomerFinancialProfileAdmin(admin.ModelAdmin):
    list_display = ("customer", "national_id", "bank_name", "company_name", "is_verified", "verified_at")
    list_filter = ("is_verified", "has_existing_loans")
    search_fields = ("national_id", "customer__name", "customer__phone", "company_name")
    autocomplete_fields = ("customer", "verified_by")

    def has_delete_permission(self, request, obj=None):
        return False
