# laudo_core/iam/admin.py
from __future__ import annotations

from django.contrib import admin

from laudo_core.iam.models import TenantMembership, UserProfile


class TenantMembershipInline(admin.TabularInline):
    model = TenantMembership
    extra = 0
    autocomplete_fields = ("tenant",)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "crm", "is_admin_master", "has_financial_access", "is_active")
    list_filter = ("is_admin_master", "has_financial_access", "is_active")
    search_fields = ("user__username", "user__email", "crm")
    filter_horizontal = ("specialties",)
    inlines = [TenantMembershipInline]
