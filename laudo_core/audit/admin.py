from django.contrib import admin

from laudo_core.audit.models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ("occurred_at", "action", "collection", "document_id", "actor_user", "tenant_id")
    list_filter = ("action", "collection")
    search_fields = ("document_id", "description")
    readonly_fields = [f.name for f in AuditEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
