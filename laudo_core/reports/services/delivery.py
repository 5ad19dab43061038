# laudo_core/reports/services/delivery.py
from __future__ import annotations

from uuid import UUID

import structlog
from django.conf import settings
from django.core.mail import EmailMessage
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import ExternalServiceError, InvalidStateTransition
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.reports.models import EmailStatus, HistoryAction, Report, ReportStatus
from laudo_core.reports.services.documents import public_url
from laudo_core.reports.services.history import append_history
from laudo_core.reports.storage import get_object_storage

log = structlog.get_logger(__name__)


def _message(report: Report, recipient: str, pdf: bytes) -> EmailMessage:
    patient = report.exam.patient.full_name
    lines = [
        f"Olá, {patient}.",
        "",
        f"Segue em anexo o laudo do seu exame de {report.exam_type.name}.",
    ]
    url = public_url(report)
    if url:
        lines += ["", f"Você também pode consultá-lo em {url} com o código de acesso {report.access_code}."]

    msg = EmailMessage(
        subject=f"Laudo de {report.exam_type.name}",
        body="\n".join(lines),
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[recipient],
    )
    msg.attach(f"laudo_{report.id}.pdf", pdf, "application/pdf")
    return msg


class ReportDeliveryService:
    @staticmethod
    def send_email(
        *,
        ctx: AuthContext,
        report_id: UUID,
        recipient: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Report:
        """
        E-mail the signed PDF and record the attempt in the report history.

        The report status never changes. A failed delivery is recorded (EnvioEmail /
        Falha) and then reported to the caller as ExternalServiceError.
        """
        ctx.require(caps.REPORT_SEND_EMAIL)

        report = (
            Report.objects.select_related("exam__patient", "exam_type")
            .get(id=report_id, tenant_id=ctx.tenant_id)
        )
        if report.status != ReportStatus.SIGNED or not report.signed_file_key:
            raise InvalidStateTransition(
                current=str(report.status),
                attempted=HistoryAction.EMAIL_SENT.value,
                detail="Only signed reports can be sent by e-mail.",
            )

        to = (recipient or report.exam.patient.email or "").strip()
        if not to:
            raise ValidationError({"recipient": "No e-mail address for this patient."})

        error = ""
        try:
            pdf = get_object_storage().get_object(report.signed_file_key)
            _message(report, to, pdf).send(fail_silently=False)
        except ExternalServiceError as exc:
            error = str(exc.detail)
        except Exception as exc:
            # SMTP and backend errors are all delivery failures for the caller
            error = str(exc) or type(exc).__name__
            log.error("report.email_failed", report_id=str(report.id), error=error)

        with transaction.atomic():
            if error:
                append_history(
                    report,
                    action=HistoryAction.EMAIL_SENT,
                    details=f"Falha no envio do laudo para {to}",
                    user_id=ctx.user_id,
                    user_name=ctx.user_name,
                    email_status=EmailStatus.FAILED,
                    error_message=error,
                )
            else:
                report.email_sent_at = timezone.now()
                report.email_recipient = to
                report.save(update_fields=["email_sent_at", "email_recipient", "updated_at"])
                append_history(
                    report,
                    action=HistoryAction.EMAIL_SENT,
                    details=f"Laudo enviado para {to}",
                    user_id=ctx.user_id,
                    user_name=ctx.user_name,
                    email_status=EmailStatus.SENT,
                )

        if error:
            raise ExternalServiceError("email", "Could not send the report by e-mail.")

        log.info("report.email_sent", report_id=str(report.id))

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="reports",
            document_id=report.id,
            description=f"Laudo enviado por e-mail para {to}",
            meta=meta,
            tenant_id=report.tenant_id,
        )
        return report
