# laudo_core/reports/services/public_access.py
"""
Anonymous access to a report through the link and access code sent to the patient.
"""
from __future__ import annotations

import hmac
from uuid import UUID

import structlog
from rest_framework.exceptions import NotFound, PermissionDenied

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.reports.models import Report, ReportStatus
from laudo_core.reports.storage import get_object_storage

log = structlog.get_logger(__name__)


def validation_code(report: Report) -> str:
    return report.id.hex[-8:].upper()


def is_active(report: Report) -> bool:
    return report.is_valid and report.is_current_version and report.status == ReportStatus.SIGNED


def get_public_report(report_id: UUID) -> Report:
    """
    Lookup without a tenant scope; the report id is the only handle an anonymous caller has.
    """
    report = (
        Report.objects.select_related("exam__patient", "exam_type")
        .filter(id=report_id)
        .first()
    )
    if report is None:
        raise NotFound("Report not found.")
    return report


class PublicReportService:
    @staticmethod
    def authenticate(*, report_id: UUID, access_code: str, meta: RequestMeta | None = None) -> Report:
        """
        Return the report when ``access_code`` matches; the comparison is constant time.
        """
        report = get_public_report(report_id)
        expected = report.access_code or ""
        given = (access_code or "").strip()

        if not expected or not hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8")):
            log.info("public_report.access_denied", report_id=str(report.id))
            raise PermissionDenied("Invalid access code.")

        log.info("public_report.accessed", report_id=str(report.id))

        AuditService.record(
            actor_user_id=None,
            action=AuditAction.VIEW,
            collection="reports",
            document_id=report.id,
            description="Laudo acessado pelo link público",
            meta=meta,
            tenant_id=report.tenant_id,
        )
        return report

    @staticmethod
    def signed_pdf(*, report_id: UUID, access_code: str, meta: RequestMeta | None = None) -> tuple[Report, bytes]:
        report = PublicReportService.authenticate(report_id=report_id, access_code=access_code, meta=meta)
        if not report.signed_file_key:
            raise NotFound("This report has no signed file yet.")
        return report, get_object_storage().get_object(report.signed_file_key)
