# laudo_core/exams/models.py
from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models

from laudo_core.common.fields import EncryptedTextField
from laudo_core.common.models import TenantScopedModel, TimeStampedModel


class Specialty(TimeStampedModel):
    """
    Medical specialty (global catalogue).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128, unique=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "exams_specialty"
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class ExamType(TimeStampedModel):
    """
    Exam type (ECG, Holter, ...). Global catalogue shared by all tenants.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128, unique=True)
    description = models.CharField(max_length=255, blank=True)
    specialty = models.ForeignKey(
        Specialty,
        on_delete=models.PROTECT,
        related_name="exam_types",
        null=True,
        blank=True,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "exams_exam_type"
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class ExamStatus(models.TextChoices):
    PENDING = "Pendente", "Pendente"
    READY_FOR_SIGNATURE = "Laudo pronto para assinatura", "Laudo pronto para assinatura"
    REPORTED = "Laudo realizado", "Laudo realizado"
    COMPLETED = "Concluído", "Concluído"
    CANCELLED = "Cancelado", "Cancelado"


class Exam(TenantScopedModel):
    patient = models.ForeignKey("patients.Patient", on_delete=models.PROTECT, related_name="exams")
    exam_type = models.ForeignKey(ExamType, on_delete=models.PROTECT, related_name="exams")

    exam_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=64, choices=ExamStatus.choices, default=ExamStatus.PENDING, db_index=True)

    notes = EncryptedTextField()
    file_key = EncryptedTextField()  # raw exam file in object storage

    # current report version, relinked on redo
    report = models.ForeignKey(
        "reports.Report",
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "exams_exam"
        indexes = [
            models.Index(fields=["tenant_id", "status", "created_at"]),
            models.Index(fields=["tenant_id", "patient"]),
        ]

    def __str__(self) -> str:
        return f"{self.exam_type} #{self.id}"
