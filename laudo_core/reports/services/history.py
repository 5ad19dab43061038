# laudo_core/reports/services/history.py
from __future__ import annotations

from uuid import UUID

from django.db import transaction
from django.db.models import Max, QuerySet

from laudo_core.reports.models import EmailStatus, HistoryEntry, Report


def _next_sequence(*, report_id: UUID) -> int:
    mx = HistoryEntry.objects.filter(report_id=report_id).aggregate(m=Max("sequence"))["m"] or 0
    return int(mx) + 1


@transaction.atomic
def append_history(
    report: Report,
    *,
    action: str,
    details: str = "",
    user_id: int | None = None,
    user_name: str = "",
    email_status: EmailStatus | str | None = None,
    error_message: str = "",
) -> HistoryEntry:
    """
    Appends one entry to the report's history.

    The report row is locked while the sequence number is allocated, so entries of
    one report are strictly ordered even under concurrent writers.
    """
    list(Report.objects.select_for_update().filter(pk=report.pk).values_list("pk", flat=True))

    return HistoryEntry.objects.create(
        tenant_id=report.tenant_id,
        report_id=report.pk,
        sequence=_next_sequence(report_id=report.pk),
        user_id=user_id,
        user_name=user_name or "",
        action=str(action),
        details=details or "",
        version=report.version,
        email_status=str(email_status) if email_status else None,
        error_message=error_message or "",
    )


def history_for_report(*, tenant_id: UUID, report_id: UUID) -> QuerySet[HistoryEntry]:
    """
    Ordered history of one report version (raises Report.DoesNotExist outside the tenant).
    """
    report = Report.objects.only("id").get(id=report_id, tenant_id=tenant_id)
    return HistoryEntry.objects.filter(report_id=report.id).select_related("user").order_by("sequence")


def history_for_chain(*, tenant_id: UUID, chain_id: UUID) -> QuerySet[HistoryEntry]:
    return (
        HistoryEntry.objects.filter(tenant_id=tenant_id, report__chain_id=chain_id)
        .order_by("report__version", "sequence")
    )
