# laudo_core/tenants/admin.py
from django.contrib import admin

from laudo_core.tenants.models import Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "legal_id", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("name", "code", "legal_id")
    ordering = ("name",)
    readonly_fields = ("id", "created_at", "updated_at")
