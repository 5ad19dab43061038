from django.contrib import admin

from laudo_core.finance.models import Payment, PriceConfiguration


@admin.register(PriceConfiguration)
class PriceConfigurationAdmin(admin.ModelAdmin):
    list_display = ("tenant_id", "doctor", "specialty", "exam_type", "amount")
    list_filter = ("specialty", "exam_type")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "doctor", "final_amount", "status", "method", "paid_at")
    list_filter = ("status", "method")
    readonly_fields = ("reports",)
