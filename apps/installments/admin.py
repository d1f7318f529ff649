from django.contrib import admin

from apps.installments.models import InstallmentPayment, InstallmentPlan, InstallmentReceipt


class InstallmentPaymentInline(admin.TabularInline):
    model = InstallmentPayment
    extra = 0
    can_delete = False
    fields = ("installment_number", "due_date", "amount_due", "amount_paid", "late_fee", "status", "days_overdue")
    readonly_fields = fields


@admin.register(InstallmentPlan)
class InstallmentPlanAdmin(admin.ModelAdmin):
    list_display = ("plan_number", "customer", "status", "financed_amount", "total_paid", "total_outstanding", "start_date")
    list_filter = ("status", "frequency")
    search_fields = ("plan_number", "customer__name", "customer__phone")
    readonly_fields = ("total_paid", "total_outstanding", "payments_completed", "payments_missed")
    inlines = [InstallmentPaymentInline]


@admin.register(InstallmentPayment)
class InstallmentPaymentAdmin(admin.ModelAdmin):
    list_display = ("payment_number", "due_date", "amount_due", "amount_paid", "status", "days_overdue")
    list_filter = ("status",)
    search_fields = ("payment_number", "plan__plan_number")


@admin.register(InstallmentReceipt)
class InstallmentReceiptAdmin(admin.ModelAdmin):
    list_display = ("payment", "amount", "payment_method", "reference", "received_by", "created_at")
    list_filter = ("payment_method",)
    search_fields = ("reference", "payment__payment_number")
