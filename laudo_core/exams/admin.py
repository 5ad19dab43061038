# laudo_core/exams/admin.py
from django.contrib import admin

from laudo_core.exams.models import Exam, ExamType, Specialty


@admin.register(Specialty)
class SpecialtyAdmin(admin.ModelAdmin):
    list_display = ("name", "is_active")
    search_fields = ("name",)


@admin.register(ExamType)
class ExamTypeAdmin(admin.ModelAdmin):
    list_display = ("name", "specialty", "is_active")
    list_filter = ("is_active", "specialty")
    search_fields = ("name",)


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "exam_type", "status", "exam_date", "created_at")
    list_filter = ("status", "exam_type")
    readonly_fields = ("id", "created_at", "updated_at")
