# laudo_core/reports/services/documents.py
"""
Rendering and storing report PDFs, and recording what happens when that fails.
"""
from __future__ import annotations

import structlog
from django.conf import settings
from django.db import transaction

from laudo_core.common.api.exceptions import ExternalServiceError
from laudo_core.iam.context import AuthContext
from laudo_core.iam.models import UserProfile
from laudo_core.reports.models import HistoryAction, Report, ReportStatus
from laudo_core.reports.rendering import ReportDocument, SignatureBlock, get_pdf_renderer
from laudo_core.reports.services.history import append_history
from laudo_core.reports.state import can_transition, transition
from laudo_core.reports.storage import get_object_storage, report_key
from laudo_core.tenants.models import Tenant

log = structlog.get_logger(__name__)


def public_url(report: Report) -> str:
    base = (getattr(settings, "FRONTEND_URL", "") or "").rstrip("/")
    return f"{base}/publico/{report.id}" if base else ""


def doctor_profile(user_id: int) -> UserProfile | None:
    return UserProfile.objects.filter(user_id=user_id).first()


def build_document(report: Report, *, signature: SignatureBlock | None = None) -> ReportDocument:
    exam = report.exam
    tenant = Tenant.objects.filter(id=report.tenant_id).only("name").first()
    profile = doctor_profile(report.responsible_doctor_id)

    return ReportDocument(
        report_id=str(report.id),
        version=report.version,
        tenant_name=tenant.name if tenant else "",
        patient_name=exam.patient.full_name,
        exam_type=report.exam_type.name,
        exam_date=exam.exam_date,
        doctor_name=report.responsible_doctor_name,
        doctor_crm=profile.crm if profile else "",
        conclusion=report.conclusion,
        access_code=report.access_code,
        public_url=public_url(report),
        signature=signature,
    )


def failure_status(exc: ExternalServiceError) -> str:
    if exc.service == "storage":
        return ReportStatus.DELIVERY_ERROR.value
    return ReportStatus.PDF_ERROR.value


def record_failure(report: Report, exc: ExternalServiceError, *, ctx: AuthContext, stage: str) -> Report:
    """
    Leave ``report`` in an explicit error status with an ErroEnvio history entry.
    Committed on its own so the failure survives the caller re-raising ``exc``.
    """
    target = failure_status(exc)
    message = str(exc.detail)

    with transaction.atomic():
        locked = Report.objects.select_for_update().get(id=report.id)
        previous = locked.status
        if can_transition(locked.status, target):
            transition(locked, target)
            locked.updated_by_id = ctx.user_id
            locked.save(update_fields=["status", "updated_by", "updated_at"])

        append_history(
            locked,
            action=HistoryAction.DELIVERY_ERROR,
            details=f"Falha em {stage}: {exc.service}",
            user_id=ctx.user_id,
            user_name=ctx.user_name,
            error_message=message,
        )

    log.error(
        "report.external_failure",
        report_id=str(report.id),
        stage=stage,
        service=exc.service,
        previous_status=previous,
        status=locked.status,
        error=message,
    )
    report.status = locked.status
    return locked


def render_and_store_original(report: Report, *, ctx: AuthContext, ready: bool) -> Report:
    """
    Render the unsigned PDF of ``report`` and store it as the original file.

    A report in processing moves to "pronto para assinatura" when ``ready`` is set
    (a signature method is available), otherwise to "realizado". Failures leave the
    report in an error status and re-raise ExternalServiceError.
    """
    try:
        pdf = get_pdf_renderer().render_report(build_document(report))
        key = get_object_storage().put_object(pdf, report_key(report, "original"))
    except ExternalServiceError as exc:
        record_failure(report, exc, ctx=ctx, stage="geração do PDF")
        raise

    with transaction.atomic():
        locked = Report.objects.select_for_update().get(id=report.id)
        locked.original_file_key = key
        fields = ["original_file_key", "updated_at"]
        if locked.status == ReportStatus.PROCESSING:
            transition(locked, ReportStatus.READY_FOR_SIGNATURE if ready else ReportStatus.REPORTED)
            fields.append("status")
        locked.save(update_fields=fields)

    return locked
