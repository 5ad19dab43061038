# laudo_core/finance/selectors.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from django.db.models import Count, Q, QuerySet, Sum

from laudo_core.finance.models import Payment, PaymentStatus, PriceConfiguration
from laudo_core.reports.models import Report, ReportStatus
from laudo_core.reports.rendering import ReceiptDocument, ReceiptLine
from laudo_core.tenants.models import Tenant


# -------------------------------------------------------------------
# Payments
# -------------------------------------------------------------------

def payments_qs(*, tenant_id: UUID) -> QuerySet[Payment]:
    return Payment.objects.filter(tenant_id=tenant_id)


def payments_filtered(
    *,
    tenant_id: UUID,
    doctor_id: int | None = None,
    status: str | None = None,
    method: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> QuerySet[Payment]:
    qs = payments_qs(tenant_id=tenant_id).select_related("doctor").prefetch_related("reports").order_by("-paid_at")

    if doctor_id:
        qs = qs.filter(doctor_id=doctor_id)

    if status:
        qs = qs.filter(status=status)

    if method:
        qs = qs.filter(method=method)

    if date_from:
        qs = qs.filter(paid_at__date__gte=date_from)

    if date_to:
        qs = qs.filter(paid_at__date__lte=date_to)

    return qs


def payment_stats(
    *,
    tenant_id: UUID,
    doctor_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict:
    qs = payments_filtered(tenant_id=tenant_id, doctor_id=doctor_id, date_from=date_from, date_to=date_to)
    agg = qs.aggregate(
        count=Count("id"),
        paid=Count("id", filter=Q(status=PaymentStatus.PAID)),
        pending=Count("id", filter=Q(status=PaymentStatus.PENDING)),
        cancelled=Count("id", filter=Q(status=PaymentStatus.CANCELLED)),
        total_final=Sum("final_amount", filter=~Q(status=PaymentStatus.CANCELLED)),
        total_discount=Sum("discount_amount", filter=~Q(status=PaymentStatus.CANCELLED)),
    )

    live = agg["count"] - agg["cancelled"]
    total_final = Decimal(agg["total_final"] or 0).quantize(Decimal("0.01"))
    average = (total_final / live).quantize(Decimal("0.01")) if live else Decimal("0.00")

    return {
        "count": agg["count"],
        "paid": agg["paid"],
        "pending": agg["pending"],
        "cancelled": agg["cancelled"],
        "total_final_amount": total_final,
        "total_discount_amount": Decimal(agg["total_discount"] or 0).quantize(Decimal("0.01")),
        "average_ticket": average,
    }


def receipt_for_payment(payment: Payment) -> ReceiptDocument:
    tenant = Tenant.objects.filter(id=payment.tenant_id).only("name").first()
    doctor_profile = getattr(payment.doctor, "laudo_profile", None)
    doctor_name = (doctor_profile.display_name if doctor_profile else "") or payment.doctor.get_username()

    lines = []
    for report in payment.reports.select_related("exam__patient", "exam_type").order_by("created_at"):
        lines.append(
            ReceiptLine(
                report_id=str(report.id),
                patient_name=report.exam.patient.full_name,
                exam_type=report.exam_type.name,
                # cancelled payments released their reports; show the share they had
                amount=report.amount_paid if report.payment_id == payment.id else Decimal("0.00"),
            )
        )

    return ReceiptDocument(
        payment_id=str(payment.id),
        tenant_name=tenant.name if tenant else "",
        doctor_name=doctor_name,
        method=payment.get_method_display(),
        paid_at=payment.paid_at,
        total_amount=payment.total_amount,
        discount_amount=payment.discount_amount,
        final_amount=payment.final_amount,
        lines=lines,
        notes=payment.notes,
    )


# -------------------------------------------------------------------
# Reports seen from finance
# -------------------------------------------------------------------

def doctor_reports(
    *,
    tenant_id: UUID,
    doctor_id: int | None = None,
    paid: bool | None = None,
    signed_from: date | None = None,
    signed_to: date | None = None,
) -> QuerySet[Report]:
    qs = (
        Report.objects.filter(tenant_id=tenant_id, is_current_version=True, is_valid=True)
        .exclude(status=ReportStatus.CANCELLED)
        .select_related("exam__patient", "exam_type", "responsible_doctor")
        .order_by("-signed_at", "-created_at")
    )

    if doctor_id:
        qs = qs.filter(responsible_doctor_id=doctor_id)

    if paid is not None:
        qs = qs.filter(payment_registered=paid)

    if signed_from:
        qs = qs.filter(signed_at__date__gte=signed_from)

    if signed_to:
        qs = qs.filter(signed_at__date__lte=signed_to)

    return qs


# -------------------------------------------------------------------
# Price configurations
# -------------------------------------------------------------------

def price_configurations_filtered(
    *,
    tenant_id: UUID,
    doctor_id: int | None = None,
    specialty_id: UUID | None = None,
    exam_type_id: UUID | None = None,
) -> QuerySet[PriceConfiguration]:
    qs = (
        PriceConfiguration.objects.filter(tenant_id=tenant_id)
        .select_related("doctor", "specialty", "exam_type")
        .order_by("exam_type__name", "specialty__name")
    )

    if doctor_id:
        qs = qs.filter(doctor_id=doctor_id)

    if specialty_id:
        qs = qs.filter(specialty_id=specialty_id)

    if exam_type_id:
        qs = qs.filter(exam_type_id=exam_type_id)

    return qs
