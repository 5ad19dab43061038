# laudo_core/reports/services/lifecycle.py
from __future__ import annotations

import secrets
import uuid
from uuid import UUID

import structlog
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import ConflictError
from laudo_core.common.unit_of_work import unit_of_work
from laudo_core.exams.models import Exam, ExamStatus
from laudo_core.finance.services import PriceService, brl
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.reports.models import HistoryAction, Report, ReportStatus
from laudo_core.reports.services.certificates import CertificateService
from laudo_core.reports.services.documents import doctor_profile, render_and_store_original
from laudo_core.reports.services.history import append_history
from laudo_core.reports.state import transition

log = structlog.get_logger(__name__)

MIN_CONCLUSION_LENGTH = 10


def _clean_conclusion(conclusion: str | None) -> str:
    text = (conclusion or "").strip()
    if len(text) < MIN_CONCLUSION_LENGTH:
        raise ValidationError(
            {"conclusion": f"Conclusion must have at least {MIN_CONCLUSION_LENGTH} characters."}
        )
    return text


def _access_code() -> str:
    return f"{secrets.randbelow(10_000):04d}"


def signature_available(doctor_id: int) -> bool:
    if CertificateService.has_usable_certificate(doctor_id):
        return True
    profile = doctor_profile(doctor_id)
    return bool(profile and profile.physical_signature_key)


class ReportLifecycleService:
    @staticmethod
    def create(
        *,
        ctx: AuthContext,
        exam_id: UUID,
        conclusion: str,
        meta: RequestMeta | None = None,
    ) -> Report:
        """
        Create version 1 of a report for ``exam_id`` and render its original PDF.

        The row, its opening history and the exam link commit first; rendering runs
        afterwards and on failure leaves the report in an error status.
        """
        ctx.require(caps.REPORT_CREATE)
        text = _clean_conclusion(conclusion)

        with unit_of_work("report.create", exam_id=str(exam_id)):
            exam = (
                Exam.objects.select_for_update()
                .select_related("exam_type", "patient")
                .get(id=exam_id, tenant_id=ctx.tenant_id)
            )

            has_valid_report = (
                Report.objects.filter(tenant_id=ctx.tenant_id, exam_id=exam.id, is_valid=True, is_current_version=True)
                .exclude(status=ReportStatus.CANCELLED)
                .exists()
            )
            if has_valid_report:
                raise ConflictError("This exam already has a valid report.")

            profile = doctor_profile(ctx.user_id)
            specialty_id = exam.exam_type.specialty_id
            if specialty_id is None and profile is not None:
                primary = profile.primary_specialty
                specialty_id = primary.id if primary else None

            report_id = uuid.uuid4()
            report = Report(
                id=report_id,
                chain_id=report_id,
                tenant_id=ctx.tenant_id,
                exam=exam,
                exam_type=exam.exam_type,
                specialty_id=specialty_id,
                version=1,
                is_current_version=True,
                status=ReportStatus.DRAFT,
                conclusion=text,
                responsible_doctor_id=ctx.user_id,
                responsible_doctor_name=ctx.user_name,
                access_code=_access_code(),
                created_by_id=ctx.user_id,
                updated_by_id=ctx.user_id,
            )
            quote = PriceService.apply_snapshot(report)
            report.save()

            append_history(
                report,
                action=HistoryAction.CREATED,
                details="Laudo criado",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )
            append_history(
                report,
                action=HistoryAction.FINANCIAL,
                details=f"Valor calculado: {brl(quote.amount)}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )

            exam.report = report
            exam.status = ExamStatus.READY_FOR_SIGNATURE
            exam.save(update_fields=["report", "status", "updated_at"])

            transition(report, ReportStatus.PROCESSING)
            report.save(update_fields=["status", "updated_at"])

        log.info("report.created", report_id=str(report.id), exam_id=str(exam.id))

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.CREATE,
            collection="reports",
            document_id=report.id,
            description=f"Laudo criado para o exame {exam.id}",
            after=report.audit_snapshot(),
            meta=meta,
            tenant_id=report.tenant_id,
        )

        return render_and_store_original(report, ctx=ctx, ready=signature_available(report.responsible_doctor_id))

    @staticmethod
    def redo(
        *,
        ctx: AuthContext,
        report_id: UUID,
        conclusion: str,
        reason: str = "",
        meta: RequestMeta | None = None,
    ) -> Report:
        """
        Supersede the current version of a report with a new one.

        Old and new rows change in one unit of work: the old row becomes "refeito"
        and stops being current, the new row (version + 1) becomes current.
        """
        ctx.require(caps.REPORT_REDO)
        text = _clean_conclusion(conclusion)

        with unit_of_work("report.redo", report_id=str(report_id)):
            old = Report.objects.select_for_update().get(id=report_id, tenant_id=ctx.tenant_id)

            if not old.is_current_version:
                raise ConflictError("Only the current version of a report can be redone.")
            if not old.is_valid:
                raise ConflictError("Invalidated reports cannot be redone.")
            if old.responsible_doctor_id != ctx.user_id and not ctx.is_admin_master:
                raise PermissionDenied("Only the responsible doctor can redo this report.")

            before = old.audit_snapshot()

            transition(old, ReportStatus.REDONE)
            old.is_current_version = False
            old.updated_by_id = ctx.user_id
            # the current-version flag must be released before the new row claims it
            old.save(update_fields=["status", "is_current_version", "updated_by", "updated_at"])

            is_doctor = caps.Role.MEDICO.value in ctx.roles and not ctx.is_admin_master
            doctor_id = ctx.user_id if is_doctor else old.responsible_doctor_id
            doctor_name = ctx.user_name if doctor_id == ctx.user_id else old.responsible_doctor_name

            new = Report(
                id=uuid.uuid4(),
                chain_id=old.chain_id,
                tenant_id=old.tenant_id,
                exam_id=old.exam_id,
                exam_type_id=old.exam_type_id,
                specialty_id=old.specialty_id,
                version=old.version + 1,
                is_current_version=True,
                previous_version=old,
                status=ReportStatus.READY_FOR_SIGNATURE,
                conclusion=text,
                responsible_doctor_id=doctor_id,
                responsible_doctor_name=doctor_name,
                redo_reason=reason or "",
                access_code=old.access_code or _access_code(),
                created_by_id=ctx.user_id,
                updated_by_id=ctx.user_id,
            )
            quote = PriceService.apply_snapshot(new)
            new.save()

            old.superseded_by = new
            old.save(update_fields=["superseded_by", "updated_at"])

            append_history(
                old,
                action=HistoryAction.REDONE,
                details=f"Laudo refeito na versão {new.version}. Motivo: {reason or 'Não informado'}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )
            append_history(
                new,
                action=HistoryAction.CREATED,
                details=f"Versão {new.version} criada a partir da versão {old.version}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )
            append_history(
                new,
                action=HistoryAction.FINANCIAL,
                details=f"Valor calculado: {brl(quote.amount)}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )

            exam = Exam.objects.select_for_update().get(id=old.exam_id, tenant_id=old.tenant_id)
            exam.report = new
            exam.status = ExamStatus.READY_FOR_SIGNATURE
            exam.save(update_fields=["report", "status", "updated_at"])

        log.info("report.redone", old_report_id=str(old.id), report_id=str(new.id), version=new.version)

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.RECREATE,
            collection="reports",
            document_id=new.id,
            description=f"Laudo refeito: versão {old.version} substituída pela versão {new.version}",
            before=before,
            after=new.audit_snapshot(),
            meta=meta,
            tenant_id=new.tenant_id,
        )

        return render_and_store_original(new, ctx=ctx, ready=True)

    @staticmethod
    def invalidate(
        *,
        ctx: AuthContext,
        report_id: UUID,
        reason: str = "",
        meta: RequestMeta | None = None,
    ) -> Report:
        ctx.require(caps.REPORT_INVALIDATE)

        with unit_of_work("report.invalidate", report_id=str(report_id)):
            report = Report.objects.select_for_update().get(id=report_id, tenant_id=ctx.tenant_id)
            if not report.is_valid:
                raise ConflictError("Report is already invalidated.")

            before = report.audit_snapshot()
            report.is_valid = False
            report.updated_by_id = ctx.user_id
            report.save(update_fields=["is_valid", "updated_by", "updated_at"])

            append_history(
                report,
                action=HistoryAction.CANCELLED,
                details=f"Laudo invalidado. Motivo: {reason or 'Não informado'}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="reports",
            document_id=report.id,
            description="Laudo invalidado",
            before=before,
            after=report.audit_snapshot(),
            meta=meta,
            tenant_id=report.tenant_id,
        )
        return report

    @staticmethod
    def cancel(
        *,
        ctx: AuthContext,
        report_id: UUID,
        reason: str = "",
        meta: RequestMeta | None = None,
    ) -> Report:
        ctx.require(caps.REPORT_INVALIDATE)

        with unit_of_work("report.cancel", report_id=str(report_id)):
            report = Report.objects.select_for_update().get(id=report_id, tenant_id=ctx.tenant_id)
            before = report.audit_snapshot()

            previous = transition(report, ReportStatus.CANCELLED)
            report.is_valid = False
            report.updated_by_id = ctx.user_id
            report.save(update_fields=["status", "is_valid", "updated_by", "updated_at"])

            append_history(
                report,
                action=HistoryAction.STATUS_CHANGED,
                details=f"Status alterado de '{previous}' para '{report.status}'. Motivo: {reason or 'Não informado'}",
                user_id=ctx.user_id,
                user_name=ctx.user_name,
            )

            Exam.objects.filter(id=report.exam_id, tenant_id=report.tenant_id, report_id=report.id).update(
                status=ExamStatus.CANCELLED
            )

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="reports",
            document_id=report.id,
            description="Laudo cancelado",
            before=before,
            after=report.audit_snapshot(),
            meta=meta,
            tenant_id=report.tenant_id,
        )
        return report
