# laudo_core/reports/services/signing.py
"""
One entry point for the three ways a report gets signed.

The caller names the method explicitly; eligibility (status, validity, who may sign)
is checked once here, whatever route the request came from, and all methods end in
the same transition, history entry and exam update.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import ConflictError, ExpiredCertificate, ExternalServiceError, InvalidCredential
from laudo_core.exams.models import Exam, ExamStatus
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.reports.certificates import get_certificate_signer
from laudo_core.reports.models import DigitalCertificate, HistoryAction, Report, ReportStatus, SignatureKind
from laudo_core.reports.rendering import SignatureBlock, get_pdf_renderer
from laudo_core.reports.services.certificates import CertificateService
from laudo_core.reports.services.documents import build_document, doctor_profile, record_failure
from laudo_core.reports.services.history import append_history
from laudo_core.reports.state import ensure_transition, transition
from laudo_core.reports.storage import get_object_storage, report_key

log = structlog.get_logger(__name__)

PDF_MAGIC = b"%PDF"


@dataclass(frozen=True)
class CertificateSign:
    credential: str


@dataclass(frozen=True)
class PhysicalImageSign:
    pass


@dataclass(frozen=True)
class ManualUpload:
    file_bytes: bytes
    filename: str = "laudo_assinado.pdf"


SignMethod = Union[CertificateSign, PhysicalImageSign, ManualUpload]


@dataclass(frozen=True)
class _SignOutcome:
    signed_file_key: str
    signature_file_key: str
    signed_with: str
    signed_at: datetime
    details: str
    certificate: DigitalCertificate | None = None


class SigningService:
    @staticmethod
    def sign(
        *,
        ctx: AuthContext,
        report_id: UUID,
        method: SignMethod,
        meta: RequestMeta | None = None,
    ) -> Report:
        report = (
            Report.objects.select_related("exam__patient", "exam_type")
            .get(id=report_id, tenant_id=ctx.tenant_id)
        )
        SigningService._ensure_eligible(ctx, report, method)

        before = report.audit_snapshot()

        try:
            if isinstance(method, CertificateSign):
                outcome = SigningService._with_certificate(report, method)
            elif isinstance(method, PhysicalImageSign):
                outcome = SigningService._with_physical_image(report)
            elif isinstance(method, ManualUpload):
                outcome = SigningService._with_upload(report, method)
            else:
                raise ValidationError({"method": f"Unsupported signing method '{type(method).__name__}'."})
        except ExternalServiceError as exc:
            record_failure(report, exc, ctx=ctx, stage="assinatura")
            raise

        with transaction.atomic():
            locked = Report.objects.select_for_update().get(id=report.id)
            # checked again under the lock: a concurrent request may have signed first
            transition(locked, ReportStatus.SIGNED)

            locked.signed_file_key = outcome.signed_file_key
            locked.signature_file_key = outcome.signature_file_key
            locked.signed_with = outcome.signed_with
            locked.signed_at = outcome.signed_at
            locked.certificate = outcome.certificate
            locked.updated_by_id = ctx.user_id
            locked.save(
                update_fields=[
                    "status",
                    "signed_file_key",
                    "signature_file_key",
                    "signed_with",
                    "signed_at",
                    "certificate",
                    "updated_by",
                    "updated_at",
                ]
            )

            append_history(
                locked,
                action=HistoryAction.SIGNED,
                details=outcome.details,
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )

            Exam.objects.filter(id=locked.exam_id, tenant_id=locked.tenant_id).update(status=ExamStatus.COMPLETED)

            if outcome.certificate is not None:
                CertificateService.mark_used(outcome.certificate)

        log.info("report.signed", report_id=str(locked.id), signed_with=locked.signed_with)

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="reports",
            document_id=locked.id,
            description=outcome.details,
            before=before,
            after=locked.audit_snapshot(),
            meta=meta,
            tenant_id=locked.tenant_id,
        )
        return locked

    @staticmethod
    def sign_with_certificate(*, ctx: AuthContext, report_id: UUID, credential: str, meta: RequestMeta | None = None) -> Report:
        return SigningService.sign(ctx=ctx, report_id=report_id, method=CertificateSign(credential=credential), meta=meta)

    @staticmethod
    def sign_with_physical_image(*, ctx: AuthContext, report_id: UUID, meta: RequestMeta | None = None) -> Report:
        return SigningService.sign(ctx=ctx, report_id=report_id, method=PhysicalImageSign(), meta=meta)

    @staticmethod
    def upload_signed_file(
        *,
        ctx: AuthContext,
        report_id: UUID,
        file_bytes: bytes,
        filename: str = "laudo_assinado.pdf",
        meta: RequestMeta | None = None,
    ) -> Report:
        return SigningService.sign(
            ctx=ctx,
            report_id=report_id,
            method=ManualUpload(file_bytes=file_bytes, filename=filename),
            meta=meta,
        )

    # -------------------------------------------------------------------
    # eligibility
    # -------------------------------------------------------------------

    @staticmethod
    def _ensure_eligible(ctx: AuthContext, report: Report, method: SignMethod) -> None:
        # status first: signing a signed report is always an invalid transition
        ensure_transition(report, ReportStatus.SIGNED)

        if not report.is_valid:
            raise ConflictError("Invalidated reports cannot be signed.")
        if not report.is_current_version:
            raise ConflictError("Only the current version of a report can be signed.")

        is_responsible = report.responsible_doctor_id == ctx.user_id
        if isinstance(method, ManualUpload):
            if not (is_responsible or ctx.is_admin):
                raise PermissionDenied("Only the responsible doctor or an administrator can upload the signed file.")
            return

        ctx.require(caps.REPORT_SIGN)
        if not is_responsible:
            raise PermissionDenied("Only the responsible doctor can sign this report.")

    # -------------------------------------------------------------------
    # methods
    # -------------------------------------------------------------------

    @staticmethod
    def _with_certificate(report: Report, method: CertificateSign) -> _SignOutcome:
        cert = CertificateService.active_for(report.responsible_doctor_id)
        if cert is None:
            raise ValidationError({"certificate": "The doctor has no active digital certificate."})
        if not cert.check_password(method.credential):
            raise InvalidCredential()
        if cert.is_expired():
            raise ExpiredCertificate()

        storage = get_object_storage()
        bundle = storage.get_object(cert.file_key)

        signed_at = timezone.now()
        profile = doctor_profile(report.responsible_doctor_id)
        block = SignatureBlock(
            kind="digital",
            signer_name=report.responsible_doctor_name,
            signed_at=signed_at,
            crm=profile.crm if profile else "",
            certificate_name=cert.name,
            certificate_issuer=cert.issuer,
            certificate_serial=cert.serial_number,
        )
        pdf = get_pdf_renderer().render_report(build_document(report, signature=block))
        signed = get_certificate_signer().sign(pdf, bundle, cert.password_encrypted)

        signed_key = storage.put_object(signed.document, report_key(report, "signed"))
        signature_key = storage.put_object(signed.signature, report_key(report, "signature", "p7s"))

        return _SignOutcome(
            signed_file_key=signed_key,
            signature_file_key=signature_key,
            signed_with=SignatureKind.DOCTOR_CERTIFICATE,
            signed_at=signed_at,
            details=f"Laudo assinado digitalmente com o certificado {cert.name}",
            certificate=cert,
        )

    @staticmethod
    def _with_physical_image(report: Report) -> _SignOutcome:
        profile = doctor_profile(report.responsible_doctor_id)
        if profile is None or not profile.physical_signature_key:
            raise ValidationError({"signature": "The doctor has no physical signature image."})

        storage = get_object_storage()
        image = storage.get_object(profile.physical_signature_key)

        signed_at = timezone.now()
        block = SignatureBlock(
            kind="physical",
            signer_name=report.responsible_doctor_name,
            signed_at=signed_at,
            crm=profile.crm,
            image=image,
        )
        pdf = get_pdf_renderer().render_report(build_document(report, signature=block))
        signed_key = storage.put_object(pdf, report_key(report, "signed"))

        return _SignOutcome(
            signed_file_key=signed_key,
            signature_file_key="",
            signed_with=SignatureKind.MANUAL_UPLOAD,
            signed_at=signed_at,
            details="Laudo assinado com a imagem de assinatura física do médico",
        )

    @staticmethod
    def _with_upload(report: Report, method: ManualUpload) -> _SignOutcome:
        data = method.file_bytes or b""
        if not data:
            raise ValidationError({"file": "The signed file is empty."})
        if not data.startswith(PDF_MAGIC):
            raise ValidationError({"file": "The signed file must be a PDF."})

        signed_key = get_object_storage().put_object(data, report_key(report, "signed"))

        return _SignOutcome(
            signed_file_key=signed_key,
            signature_file_key="",
            signed_with=SignatureKind.MANUAL_UPLOAD,
            signed_at=timezone.now(),
            details=f"Laudo assinado enviado manualmente ({method.filename})",
        )
