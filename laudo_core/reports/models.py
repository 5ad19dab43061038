# laudo_core/reports/models.py
from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import models
from django.db.models import Q
from django.utils import timezone

from laudo_core.common.fields import NAME_FALLBACK, EncryptedTextField
from laudo_core.common.models import TenantScopedModel, TimeStampedModel


class ReportStatus(models.TextChoices):
    DRAFT = "Rascunho", "Rascunho"
    PROCESSING = "Laudo em processamento", "Laudo em processamento"
    REPORTED = "Laudo realizado", "Laudo realizado"
    READY_FOR_SIGNATURE = "Laudo pronto para assinatura", "Laudo pronto para assinatura"
    SIGNED = "Laudo assinado", "Laudo assinado"
    REDONE = "Laudo refeito", "Laudo refeito"
    CANCELLED = "Cancelado", "Cancelado"
    PDF_ERROR = "Erro ao gerar PDF", "Erro ao gerar PDF"
    DELIVERY_ERROR = "Erro no envio", "Erro no envio"


class SignatureKind(models.TextChoices):
    DOCTOR_CERTIFICATE = "certificado_medico", "Certificado do médico"
    SYSTEM_CERTIFICATE = "certificado_sistema", "Certificado do sistema"
    UNSIGNED = "sem_assinatura", "Sem assinatura"
    MANUAL_UPLOAD = "upload_manual", "Upload manual"


class HistoryAction(models.TextChoices):
    CREATED = "Criação", "Criação"
    UPDATED = "Atualização", "Atualização"
    SIGNED = "Assinatura", "Assinatura"
    EMAIL_SENT = "EnvioEmail", "Envio de e-mail"
    REDONE = "Refação", "Refação"
    CANCELLED = "Cancelamento", "Cancelamento"
    DELIVERY_ERROR = "ErroEnvio", "Erro no envio"
    FINANCIAL = "TransacaoFinanceira", "Transação financeira"
    STATUS_CHANGED = "Status alterado", "Status alterado"


class EmailStatus(models.TextChoices):
    PENDING = "Pendente", "Pendente"
    SENT = "Enviado", "Enviado"
    FAILED = "Falha", "Falha"


class DigitalCertificate(TimeStampedModel):
    """
    A doctor's PKCS#12 signing certificate.

    The bundle lives in object storage; its password is kept encrypted (needed to open
    the bundle) next to a one-way hash used to validate the credential typed at
    signing time.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="digital_certificates")
    # tenant the certificate was uploaded in; the certificate itself is usable in any of the doctor's tenants
    tenant_id = models.UUIDField(null=True, blank=True, db_index=True)

    name = models.CharField(max_length=255)
    serial_number = EncryptedTextField()
    issuer = EncryptedTextField()

    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField(db_index=True)

    file_key = EncryptedTextField()
    password_encrypted = EncryptedTextField()
    password_hash = models.CharField(max_length=255)

    is_active = models.BooleanField(default=True, db_index=True)
    last_used_at = models.DateTimeField(null=True, blank=True)
    signature_count = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "reports_digital_certificate"
        indexes = [
            models.Index(fields=["doctor", "is_active", "valid_until"]),
        ]

    def __str__(self) -> str:
        return f"{self.name} (until {self.valid_until:%Y-%m-%d})"

    def set_password(self, raw_password: str) -> None:
        self.password_encrypted = raw_password
        self.password_hash = make_password(raw_password)

    def check_password(self, raw_password: str | None) -> bool:
        if not raw_password:
            return False
        return check_password(raw_password, self.password_hash)

    def is_expired(self, now=None) -> bool:
        return self.valid_until <= (now or timezone.now())


class Report(TenantScopedModel):
    """
    One version of a medical report (laudo) for an exam.

    Versions of the same report share ``chain_id``; exactly one of them is the
    current version. Rows are never deleted: they are invalidated or superseded.
    """
    exam = models.ForeignKey("exams.Exam", on_delete=models.PROTECT, related_name="reports")
    exam_type = models.ForeignKey("exams.ExamType", on_delete=models.PROTECT, related_name="reports")
    specialty = models.ForeignKey(
        "exams.Specialty",
        on_delete=models.PROTECT,
        related_name="reports",
        null=True,
        blank=True,
    )

    # version chain
    chain_id = models.UUIDField(db_index=True)
    version = models.PositiveIntegerField(default=1)
    is_current_version = models.BooleanField(default=True)
    previous_version = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )
    superseded_by = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    status = models.CharField(max_length=64, choices=ReportStatus.choices, default=ReportStatus.DRAFT, db_index=True)

    conclusion = EncryptedTextField()
    responsible_doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="responsible_reports",
    )
    responsible_doctor_name = EncryptedTextField(decode_fallback=NAME_FALLBACK)

    # opaque object-storage keys
    original_file_key = models.CharField(max_length=512, blank=True)
    signed_file_key = models.CharField(max_length=512, blank=True)
    signature_file_key = models.CharField(max_length=512, blank=True)

    # payment
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    payment_registered = models.BooleanField(default=False, db_index=True)
    payment = models.ForeignKey(
        "finance.Payment",
        on_delete=models.SET_NULL,
        related_name="current_reports",
        null=True,
        blank=True,
    )
    paid_at = models.DateTimeField(null=True, blank=True)

    # price snapshot taken when the value was calculated
    price_configuration = models.ForeignKey(
        "finance.PriceConfiguration",
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    price_snapshot = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    price_calculated_at = models.DateTimeField(null=True, blank=True)

    # signature
    signed_with = models.CharField(max_length=32, choices=SignatureKind.choices, default=SignatureKind.UNSIGNED)
    signed_at = models.DateTimeField(null=True, blank=True, db_index=True)
    certificate = models.ForeignKey(
        DigitalCertificate,
        on_delete=models.SET_NULL,
        related_name="signed_reports",
        null=True,
        blank=True,
    )

    # delivery
    email_sent_at = models.DateTimeField(null=True, blank=True)
    email_recipient = EncryptedTextField()

    is_valid = models.BooleanField(default=True, db_index=True)
    redo_reason = EncryptedTextField()
    access_code = EncryptedTextField()

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "reports_report"
        constraints = [
            models.UniqueConstraint(
                fields=["chain_id"],
                condition=Q(is_current_version=True),
                name="uq_report_chain_current_version",
            ),
            models.UniqueConstraint(fields=["chain_id", "version"], name="uq_report_chain_version"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "status", "created_at"]),
            models.Index(fields=["tenant_id", "responsible_doctor", "payment_registered"]),
            models.Index(fields=["tenant_id", "exam"]),
        ]

    def __str__(self) -> str:
        return f"Report {self.id} v{self.version} ({self.status})"

    def audit_snapshot(self) -> dict:
        """
        Plaintext view of the fields the audit log tracks.
        """
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "exam_id": str(self.exam_id),
            "version": self.version,
            "chain_id": str(self.chain_id),
            "status": self.status,
            "is_current_version": self.is_current_version,
            "is_valid": self.is_valid,
            "conclusion": self.conclusion,
            "responsible_doctor_id": self.responsible_doctor_id,
            "responsible_doctor_name": self.responsible_doctor_name,
            "signed_with": self.signed_with,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "amount_paid": str(self.amount_paid),
            "payment_registered": self.payment_registered,
            "payment_id": str(self.payment_id) if self.payment_id else None,
            "previous_version_id": str(self.previous_version_id) if self.previous_version_id else None,
            "superseded_by_id": str(self.superseded_by_id) if self.superseded_by_id else None,
        }


class HistoryImmutableError(Exception):
    """History entries are append-only."""


class HistoryEntryQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise HistoryImmutableError("History entries cannot be updated.")

    def delete(self):
        raise HistoryImmutableError("History entries cannot be deleted.")


class HistoryEntry(models.Model):
    """
    Append-only log of everything that happened to a report version.
    Ordered by ``sequence``, allocated under the report row lock.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    report = models.ForeignKey(Report, on_delete=models.PROTECT, related_name="history_entries")
    sequence = models.PositiveIntegerField()

    occurred_at = models.DateTimeField(default=timezone.now, db_index=True)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    # kept even if the user is later renamed or removed
    user_name = EncryptedTextField(decode_fallback=NAME_FALLBACK)

    action = models.CharField(max_length=32, choices=HistoryAction.choices)
    details = EncryptedTextField()
    version = models.PositiveIntegerField()

    email_status = models.CharField(max_length=16, choices=EmailStatus.choices, null=True, blank=True)
    error_message = models.TextField(blank=True)

    objects = HistoryEntryQuerySet.as_manager()

    class Meta:
        db_table = "reports_history_entry"
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["report", "sequence"], name="uq_history_report_sequence"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise HistoryImmutableError("History entries cannot be updated.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise HistoryImmutableError("History entries cannot be deleted.")
