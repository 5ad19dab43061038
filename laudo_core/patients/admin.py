# laudo_core/patients/admin.py
from django.contrib import admin

from laudo_core.patients.models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("id", "full_name", "tenant_id", "date_of_birth", "created_at")
    list_filter = ("tenant_id",)
    readonly_fields = ("id", "created_at", "updated_at")
