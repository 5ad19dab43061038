# laudo_core/finance/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from laudo_core.common.models import TenantScopedModel


class PriceConfiguration(TenantScopedModel):
    """
    Price paid to a doctor for one report of (specialty, exam type) in a tenant.
    Read-only for the report core: snapshots are copied onto reports.
    """
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="price_configurations")
    specialty = models.ForeignKey("exams.Specialty", on_delete=models.PROTECT, related_name="price_configurations")
    exam_type = models.ForeignKey("exams.ExamType", on_delete=models.PROTECT, related_name="price_configurations")

    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0.00"))])
    notes = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "finance_price_configuration"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "doctor", "specialty", "exam_type"],
                name="uq_price_tenant_doctor_specialty_exam_type",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.exam_type} / {self.specialty}: {self.amount}"

    def audit_snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "doctor_id": self.doctor_id,
            "specialty_id": str(self.specialty_id),
            "exam_type_id": str(self.exam_type_id),
            "amount": str(self.amount),
            "notes": self.notes,
        }


class PaymentStatus(models.TextChoices):
    PENDING = "pendente", "Pendente"
    PAID = "pago", "Pago"
    CANCELLED = "cancelado", "Cancelado"


class PaymentMethod(models.TextChoices):
    PIX = "pix", "PIX"
    TRANSFER = "transferencia", "Transferência"
    CASH = "dinheiro", "Dinheiro"
    CHEQUE = "cheque", "Cheque"
    OTHER = "outros", "Outros"


class Payment(TenantScopedModel):
    """
    One batch payment to a doctor covering one or more reports.

    ``reports`` keeps the covered set for the record, also after cancellation; the
    live "is paid" link is ``Report.payment`` / ``Report.payment_registered``.
    """
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="received_payments")
    reports = models.ManyToManyField("reports.Report", related_name="payments", blank=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    final_amount = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PAID, db_index=True)
    method = models.CharField(max_length=16, choices=PaymentMethod.choices)

    notes = models.TextField(blank=True)
    receipt_reference = models.CharField(max_length=128, blank=True)

    paid_at = models.DateTimeField(default=timezone.now, db_index=True)

    registered_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")

    class Meta:
        db_table = "finance_payment"
        indexes = [
            models.Index(fields=["tenant_id", "doctor", "paid_at"]),
            models.Index(fields=["tenant_id", "status", "paid_at"]),
        ]

    def __str__(self) -> str:
        return f"Payment {self.id} ({self.status}) {self.final_amount}"

    def audit_snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "doctor_id": self.doctor_id,
            "report_ids": sorted(str(r) for r in self.reports.values_list("id", flat=True)),
            "total_amount": str(self.total_amount),
            "discount_amount": str(self.discount_amount),
            "discount_percent": str(self.discount_percent),
            "final_amount": str(self.final_amount),
            "status": self.status,
            "method": self.method,
            "notes": self.notes,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
