from django.contrib import admin

from laudo_core.reports.models import DigitalCertificate, HistoryEntry, Report


class HistoryEntryInline(admin.TabularInline):
    model = HistoryEntry
    extra = 0
    can_delete = False
    fields = ("sequence", "occurred_at", "action", "user_name", "details", "email_status", "error_message")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Report)
class ReportAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "version", "status", "is_current_version", "is_valid", "payment_registered")
    list_filter = ("status", "is_current_version", "is_valid", "payment_registered", "signed_with")
    readonly_fields = ("chain_id", "previous_version", "superseded_by", "created_at", "updated_at")
    inlines = [HistoryEntryInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(DigitalCertificate)
class DigitalCertificateAdmin(admin.ModelAdmin):
    list_display = ("name", "doctor", "valid_until", "is_active", "signature_count", "last_used_at")
    list_filter = ("is_active",)
    exclude = ("password_encrypted", "password_hash")
