# laudo_core/finance/services.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable
from uuid import UUID

import structlog
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import AlreadyPaidError, ConflictError, CrossDoctorBatchError
from laudo_core.common.unit_of_work import unit_of_work
from laudo_core.finance.models import Payment, PaymentMethod, PaymentStatus, PriceConfiguration
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.reports.models import HistoryAction, Report
from laudo_core.reports.services.history import append_history

log = structlog.get_logger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def _money(value, field_name: str) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field_name: "Invalid amount."})


def brl(value: Decimal) -> str:
    return f"R$ {Decimal(value).quantize(CENTS)}"


@dataclass(frozen=True)
class PriceQuote:
    amount: Decimal
    configuration_id: UUID | None

    @property
    def configured(self) -> bool:
        return self.configuration_id is not None


class PriceService:
    """
    Read side of the price table for the report core, plus its administrative CRUD.
    """

    @staticmethod
    def resolve(*, tenant_id: UUID, doctor_id: int, specialty_id: UUID | None, exam_type_id: UUID) -> PriceQuote:
        cfg = None
        if specialty_id is not None:
            cfg = (
                PriceConfiguration.objects.filter(
                    tenant_id=tenant_id,
                    doctor_id=doctor_id,
                    specialty_id=specialty_id,
                    exam_type_id=exam_type_id,
                )
                .only("id", "amount")
                .first()
            )

        if cfg is None:
            log.warning(
                "price.not_configured",
                tenant_id=str(tenant_id),
                doctor_id=doctor_id,
                specialty_id=str(specialty_id) if specialty_id else None,
                exam_type_id=str(exam_type_id),
            )
            return PriceQuote(amount=ZERO, configuration_id=None)

        return PriceQuote(amount=Decimal(cfg.amount).quantize(CENTS), configuration_id=cfg.id)

    @staticmethod
    def quote_for_report(report: Report) -> PriceQuote:
        return PriceService.resolve(
            tenant_id=report.tenant_id,
            doctor_id=report.responsible_doctor_id,
            specialty_id=report.specialty_id,
            exam_type_id=report.exam_type_id,
        )

    @staticmethod
    def apply_snapshot(report: Report, *, now: datetime | None = None) -> PriceQuote:
        """
        Copy the current price onto ``report`` (in memory; the caller saves).
        Snapshots are taken once and never recalculated afterwards.
        """
        quote = PriceService.quote_for_report(report)
        report.price_configuration_id = quote.configuration_id
        report.price_snapshot = quote.amount
        report.price_calculated_at = now or timezone.now()
        return quote

    @staticmethod
    def create(
        *,
        ctx: AuthContext,
        doctor_id: int,
        specialty_id: UUID,
        exam_type_id: UUID,
        amount: Decimal,
        notes: str = "",
        meta: RequestMeta | None = None,
    ) -> PriceConfiguration:
        ctx.require(caps.PRICE_MANAGE)

        amount = _money(amount, "amount")
        if amount < 0:
            raise ValidationError({"amount": "Amount must be >= 0."})

        try:
            with transaction.atomic():
                cfg = PriceConfiguration.objects.create(
                    tenant_id=ctx.tenant_id,
                    doctor_id=doctor_id,
                    specialty_id=specialty_id,
                    exam_type_id=exam_type_id,
                    amount=amount,
                    notes=notes or "",
                    created_by_id=ctx.user_id,
                )
        except IntegrityError:
            raise ConflictError("A price is already configured for this doctor, specialty and exam type.")

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.CREATE,
            collection="prices",
            document_id=cfg.id,
            description=f"Valor de laudo configurado: {brl(cfg.amount)}",
            after=cfg.audit_snapshot(),
            meta=meta,
            tenant_id=cfg.tenant_id,
        )
        return cfg

    @staticmethod
    def update(
        *,
        ctx: AuthContext,
        price_id: UUID,
        amount: Decimal | None = None,
        notes: str | None = None,
        meta: RequestMeta | None = None,
    ) -> PriceConfiguration:
        ctx.require(caps.PRICE_MANAGE)

        with transaction.atomic():
            cfg = PriceConfiguration.objects.select_for_update().get(id=price_id, tenant_id=ctx.tenant_id)
            before = cfg.audit_snapshot()

            if amount is not None:
                amount = _money(amount, "amount")
                if amount < 0:
                    raise ValidationError({"amount": "Amount must be >= 0."})
                cfg.amount = amount
            if notes is not None:
                cfg.notes = notes
            cfg.save(update_fields=["amount", "notes", "updated_at"])

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="prices",
            document_id=cfg.id,
            description=f"Valor de laudo atualizado: {brl(cfg.amount)}",
            before=before,
            after=cfg.audit_snapshot(),
            meta=meta,
            tenant_id=cfg.tenant_id,
        )
        return cfg

    @staticmethod
    def delete(*, ctx: AuthContext, price_id: UUID, meta: RequestMeta | None = None) -> None:
        ctx.require(caps.PRICE_MANAGE)

        with transaction.atomic():
            cfg = PriceConfiguration.objects.select_for_update().get(id=price_id, tenant_id=ctx.tenant_id)
            before = cfg.audit_snapshot()
            tenant_id = cfg.tenant_id
            # reports keep their snapshot amount; only the link is cleared (SET_NULL)
            cfg.delete()

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.DELETE,
            collection="prices",
            document_id=price_id,
            description="Valor de laudo removido",
            before=before,
            meta=meta,
            tenant_id=tenant_id,
        )


class PaymentService:
    @staticmethod
    def _validate_amounts(*, total, discount, final) -> tuple[Decimal, Decimal, Decimal]:
        if total is None:
            raise ValidationError({"total_amount": "This field is required."})
        total = _money(total, "total_amount")
        discount = _money(discount if discount is not None else ZERO, "discount_amount")

        if total <= 0:
            raise ValidationError({"total_amount": "Total amount must be > 0."})
        if discount < 0:
            raise ValidationError({"discount_amount": "Discount must be >= 0."})

        final = _money(final, "final_amount") if final is not None else (total - discount).quantize(CENTS)
        if final < 0:
            raise ValidationError({"final_amount": "Final amount must be >= 0."})
        return total, discount, final

    @staticmethod
    def _discount_percent(total: Decimal, discount: Decimal, given) -> Decimal:
        if given is not None:
            pct = _money(given, "discount_percent")
            if pct < 0 or pct > 100:
                raise ValidationError({"discount_percent": "Discount percent must be between 0 and 100."})
            return pct
        if total <= 0:
            return ZERO
        return (discount * Decimal("100") / total).quantize(CENTS)

    @staticmethod
    def _split_evenly(final: Decimal, n: int) -> Decimal:
        return (final / Decimal(n)).quantize(CENTS)

    @staticmethod
    def register(
        *,
        ctx: AuthContext,
        doctor_id: int,
        report_ids: Iterable[UUID],
        total_amount,
        method: str,
        discount_amount=None,
        discount_percent=None,
        final_amount=None,
        notes: str = "",
        receipt_reference: str = "",
        paid_at: datetime | None = None,
        meta: RequestMeta | None = None,
    ) -> Payment:
        """
        Register one payment covering ``report_ids`` for ``doctor_id``.

        Every precondition is checked before the first write; the payment row, the
        report updates and their history entries commit together or not at all. Each
        report receives an equal share of the final amount.
        """
        ctx.require(caps.FINANCE_MANAGE)

        try:
            ids = list(dict.fromkeys(UUID(str(r)) for r in (report_ids or [])))
        except ValueError:
            raise ValidationError({"report_ids": "Invalid report id."})
        if not doctor_id:
            raise ValidationError({"doctor_id": "Doctor is required."})
        if not ids:
            raise ValidationError({"report_ids": "At least one report is required."})
        if method not in PaymentMethod.values:
            raise ValidationError({"method": f"Invalid payment method '{method}'."})

        total, discount, final = PaymentService._validate_amounts(
            total=total_amount,
            discount=discount_amount,
            final=final_amount,
        )
        pct = PaymentService._discount_percent(total, discount, discount_percent)

        if not get_user_model().objects.filter(id=doctor_id).exists():
            raise ValidationError({"doctor_id": "Doctor not found."})

        now = timezone.now()
        paid_at = paid_at or now

        with unit_of_work("payment.register", tenant_id=str(ctx.tenant_id), reports=len(ids)):
            reports = list(
                Report.objects.select_for_update()
                .filter(tenant_id=ctx.tenant_id, id__in=ids)
                .order_by("id")
            )

            found = {r.id for r in reports}
            missing = [str(i) for i in ids if i not in found]
            if missing:
                raise ValidationError({"report_ids": f"Reports not found: {', '.join(missing)}"})

            already_paid = [r.id for r in reports if r.payment_registered]
            if already_paid:
                raise AlreadyPaidError(already_paid)

            other_doctor = [r.id for r in reports if r.responsible_doctor_id != doctor_id]
            if other_doctor:
                raise CrossDoctorBatchError(other_doctor)

            calculated_total = ZERO
            for report in reports:
                if report.price_calculated_at is None:
                    PriceService.apply_snapshot(report, now=now)
                calculated_total += report.price_snapshot
            calculated_total = calculated_total.quantize(CENTS)

            payment = Payment.objects.create(
                tenant_id=ctx.tenant_id,
                doctor_id=doctor_id,
                total_amount=total,
                discount_amount=discount,
                discount_percent=pct,
                final_amount=final,
                status=PaymentStatus.PAID,
                method=method,
                notes=notes or "",
                receipt_reference=receipt_reference or "",
                paid_at=paid_at,
                registered_by_id=ctx.user_id,
            )
            payment.reports.set(reports)

            share = PaymentService._split_evenly(final, len(reports))
            for report in reports:
                report.payment = payment
                report.payment_registered = True
                report.paid_at = paid_at
                report.amount_paid = share
                report.updated_by_id = ctx.user_id
                report.save(
                    update_fields=[
                        "payment",
                        "payment_registered",
                        "paid_at",
                        "amount_paid",
                        "price_configuration",
                        "price_snapshot",
                        "price_calculated_at",
                        "updated_by",
                        "updated_at",
                    ]
                )
                append_history(
                    report,
                    action=HistoryAction.FINANCIAL,
                    details=f"Pagamento registrado: {brl(share)} via {method}",
                    user_id=ctx.user_id,
                    user_name=ctx.user_name,
                )

        log.info(
            "payment.registered",
            payment_id=str(payment.id),
            doctor_id=doctor_id,
            reports=len(reports),
            final_amount=str(final),
            calculated_total=str(calculated_total),
        )

        after = payment.audit_snapshot()
        after["calculated_total"] = str(calculated_total)
        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.CREATE,
            collection="payments",
            document_id=payment.id,
            description=f"Pagamento em lote registrado - {len(reports)} laudos - Valor: {brl(final)}",
            after=after,
            meta=meta,
            tenant_id=payment.tenant_id,
        )
        return payment

    @staticmethod
    def cancel(
        *,
        ctx: AuthContext,
        payment_id: UUID,
        reason: str = "",
        meta: RequestMeta | None = None,
    ) -> Payment:
        """
        Cancel a payment and release every report it covered, atomically.
        """
        ctx.require(caps.FINANCE_MANAGE)

        with unit_of_work("payment.cancel", payment_id=str(payment_id)):
            payment = Payment.objects.select_for_update().get(id=payment_id, tenant_id=ctx.tenant_id)
            if payment.status == PaymentStatus.CANCELLED:
                raise ConflictError("Payment is already cancelled.")

            before = payment.audit_snapshot()

            payment.status = PaymentStatus.CANCELLED
            payment.notes = f"{payment.notes or ''}\nCancelado: {reason or 'Não informado'}"
            payment.save(update_fields=["status", "notes", "updated_at"])

            reports = list(
                Report.objects.select_for_update()
                .filter(tenant_id=payment.tenant_id, payment_id=payment.id)
                .order_by("id")
            )
            for report in reports:
                refunded = report.amount_paid
                report.payment = None
                report.payment_registered = False
                report.paid_at = None
                report.amount_paid = ZERO
                report.updated_by_id = ctx.user_id
                report.save(
                    update_fields=["payment", "payment_registered", "paid_at", "amount_paid", "updated_by", "updated_at"]
                )
                append_history(
                    report,
                    action=HistoryAction.FINANCIAL,
                    details=f"Pagamento cancelado: {brl(refunded)} estornado. Motivo: {reason or 'Não informado'}",
                    user_id=ctx.user_id,
                    user_name=ctx.user_name,
                )

        log.info("payment.cancelled", payment_id=str(payment.id), reports=len(reports))

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="payments",
            document_id=payment.id,
            description=f"Pagamento cancelado - Motivo: {reason or 'Não informado'}",
            before=before,
            after=payment.audit_snapshot(),
            meta=meta,
            tenant_id=payment.tenant_id,
        )
        return payment

    @staticmethod
    def update(
        *,
        ctx: AuthContext,
        payment_id: UUID,
        discount_amount=None,
        discount_percent=None,
        final_amount=None,
        method: str | None = None,
        notes: str | None = None,
        status: str | None = None,
        reason: str = "",
        meta: RequestMeta | None = None,
    ) -> Payment:
        """
        Edit a live payment. A status change to ``cancelado`` goes through ``cancel``.
        A new final amount is re-split evenly over the covered reports.
        """
        ctx.require(caps.FINANCE_MANAGE)

        if status is not None and status not in PaymentStatus.values:
            raise ValidationError({"status": f"Invalid status '{status}'."})
        if method is not None and method not in PaymentMethod.values:
            raise ValidationError({"method": f"Invalid payment method '{method}'."})

        if status == PaymentStatus.CANCELLED:
            return PaymentService.cancel(ctx=ctx, payment_id=payment_id, reason=reason, meta=meta)

        with unit_of_work("payment.update", payment_id=str(payment_id)):
            payment = Payment.objects.select_for_update().get(id=payment_id, tenant_id=ctx.tenant_id)
            if payment.status == PaymentStatus.CANCELLED:
                raise ConflictError("Cancelled payments cannot be changed.")

            before = payment.audit_snapshot()

            if discount_amount is not None:
                discount = _money(discount_amount, "discount_amount")
                if discount < 0:
                    raise ValidationError({"discount_amount": "Discount must be >= 0."})
                payment.discount_amount = discount
                if discount_percent is None:
                    payment.discount_percent = PaymentService._discount_percent(payment.total_amount, discount, None)
            if discount_percent is not None:
                payment.discount_percent = PaymentService._discount_percent(
                    payment.total_amount, payment.discount_amount, discount_percent
                )

            final_changed = False
            if final_amount is not None:
                final = _money(final_amount, "final_amount")
                if final < 0:
                    raise ValidationError({"final_amount": "Final amount must be >= 0."})
                final_changed = final != payment.final_amount
                payment.final_amount = final
            elif discount_amount is not None:
                new_final = (payment.total_amount - payment.discount_amount).quantize(CENTS)
                if new_final < 0:
                    raise ValidationError({"discount_amount": "Discount cannot exceed the total amount."})
                final_changed = new_final != payment.final_amount
                payment.final_amount = new_final

            if method is not None:
                payment.method = method
            if notes is not None:
                payment.notes = notes
            if status is not None:
                payment.status = status

            payment.save(
                update_fields=[
                    "discount_amount",
                    "discount_percent",
                    "final_amount",
                    "method",
                    "notes",
                    "status",
                    "updated_at",
                ]
            )

            if final_changed:
                reports = list(
                    Report.objects.select_for_update()
                    .filter(tenant_id=payment.tenant_id, payment_id=payment.id)
                    .order_by("id")
                )
                if reports:
                    share = PaymentService._split_evenly(payment.final_amount, len(reports))
                    for report in reports:
                        report.amount_paid = share
                        report.updated_by_id = ctx.user_id
                        report.save(update_fields=["amount_paid", "updated_by", "updated_at"])
                        append_history(
                            report,
                            action=HistoryAction.FINANCIAL,
                            details=f"Pagamento atualizado: {brl(share)} via {payment.method}",
                            user_id=ctx.user_id,
                            user_name=ctx.user_name,
                        )

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="payments",
            document_id=payment.id,
            description=f"Pagamento atualizado - Valor: {brl(payment.final_amount)}",
            before=before,
            after=payment.audit_snapshot(),
            meta=meta,
            tenant_id=payment.tenant_id,
        )
        return payment
