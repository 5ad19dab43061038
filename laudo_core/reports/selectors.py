# laudo_core/reports/selectors.py
from __future__ import annotations

from datetime import date
from uuid import UUID

from django.db.models import QuerySet

from laudo_core.reports.models import Report


def reports_qs(*, tenant_id: UUID) -> QuerySet[Report]:
    return Report.objects.filter(tenant_id=tenant_id).select_related("exam__patient", "exam_type", "specialty")


def reports_filtered(
    *,
    tenant_id: UUID,
    status: str | None = None,
    exam_id: UUID | None = None,
    patient_id: UUID | None = None,
    doctor_id: int | None = None,
    chain_id: UUID | None = None,
    current_only: bool = True,
    include_invalid: bool = False,
    created_from: date | None = None,
    created_to: date | None = None,
) -> QuerySet[Report]:
    qs = reports_qs(tenant_id=tenant_id).order_by("-created_at")

    if current_only and not chain_id:
        qs = qs.filter(is_current_version=True)

    if not include_invalid:
        qs = qs.filter(is_valid=True)

    if status:
        qs = qs.filter(status=status)

    if exam_id:
        qs = qs.filter(exam_id=exam_id)

    if patient_id:
        qs = qs.filter(exam__patient_id=patient_id)

    if doctor_id:
        qs = qs.filter(responsible_doctor_id=doctor_id)

    if chain_id:
        qs = qs.filter(chain_id=chain_id).order_by("version")

    if created_from:
        qs = qs.filter(created_at__date__gte=created_from)

    if created_to:
        qs = qs.filter(created_at__date__lte=created_to)

    return qs


def get_report(*, tenant_id: UUID, report_id: UUID) -> Report:
    return reports_qs(tenant_id=tenant_id).get(id=report_id)


def chain_versions(*, tenant_id: UUID, chain_id: UUID) -> QuerySet[Report]:
    return Report.objects.filter(tenant_id=tenant_id, chain_id=chain_id).order_by("version")
