from decimal import Decimal

import pytest
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.audit.models import AuditEvent
from laudo_core.common.api.exceptions import AlreadyPaidError, ConflictError, CrossDoctorBatchError
from laudo_core.finance.models import Payment, PaymentStatus
from laudo_core.finance.selectors import payment_stats, receipt_for_payment
from laudo_core.finance.services import PaymentService
from laudo_core.reports.models import HistoryAction, HistoryEntry, Report
from laudo_core.reports.services.lifecycle import ReportLifecycleService

pytestmark = pytest.mark.django_db


@pytest.fixture
def batch(doctor_ctx, make_exam, price):
    return [
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=make_exam().id, conclusion=f"Laudo número {i} sem alterações.")
        for i in range(3)
    ]


def _register(admin_ctx, doctor, reports, **overrides):
    data = {
        "ctx": admin_ctx,
        "doctor_id": doctor.id,
        "report_ids": [r.id for r in reports],
        "total_amount": Decimal("300.00"),
        "method": "pix",
    }
    data.update(overrides)
    return PaymentService.register(**data)


def test_batch_payment_splits_final_amount_evenly(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch, final_amount=Decimal("300.00"))

    assert payment.status == PaymentStatus.PAID
    assert payment.reports.count() == 3
    assert Payment.objects.count() == 1

    for r in Report.objects.filter(id__in=[b.id for b in batch]):
        assert r.payment_id == payment.id
        assert r.payment_registered is True
        assert r.amount_paid == Decimal("100.00")
        assert r.paid_at is not None
        assert [e.details for e in HistoryEntry.objects.filter(report=r, action=HistoryAction.FINANCIAL)].count(
            "Pagamento registrado: R$ 100.00 via pix"
        ) == 1

    ev = AuditEvent.objects.get(collection="payments", document_id=str(payment.id))
    assert ev.action == "create"
    assert ev.tenant_id == payment.tenant_id
    assert ev.after["calculated_total"] == "300.00"


def test_discount_derives_final_amount_and_percent(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch, discount_amount=Decimal("30.00"))

    assert payment.final_amount == Decimal("270.00")
    assert payment.discount_percent == Decimal("10.00")
    assert set(Report.objects.filter(payment=payment).values_list("amount_paid", flat=True)) == {Decimal("90.00")}


def test_already_paid_report_rejects_whole_batch(admin_ctx, doctor, batch):
    first = _register(admin_ctx, doctor, batch[:1], total_amount=Decimal("100.00"))

    with pytest.raises(AlreadyPaidError) as exc:
        _register(admin_ctx, doctor, batch)

    assert exc.value.report_ids == [str(batch[0].id)]
    assert Payment.objects.count() == 1
    untouched = Report.objects.filter(id__in=[batch[1].id, batch[2].id])
    assert all(r.payment_id is None and not r.payment_registered for r in untouched)
    assert Report.objects.get(id=batch[0].id).payment_id == first.id


def test_reports_of_another_doctor_are_rejected(admin_ctx, doctor, other_doctor_ctx, exam, batch):
    foreign = ReportLifecycleService.create(ctx=other_doctor_ctx, exam_id=exam.id, conclusion="Laudo do outro médico.")

    with pytest.raises(CrossDoctorBatchError) as exc:
        _register(admin_ctx, doctor, [*batch, foreign])

    assert exc.value.report_ids == [str(foreign.id)]
    assert not Payment.objects.exists()


def test_missing_report_is_a_validation_error(admin_ctx, doctor, batch):
    import uuid

    with pytest.raises(ValidationError):
        _register(admin_ctx, doctor, batch, report_ids=[batch[0].id, uuid.uuid4()])

    assert not Payment.objects.exists()


@pytest.mark.parametrize(
    "overrides",
    [
        {"total_amount": Decimal("0")},
        {"method": "boleto"},
        {"report_ids": []},
        {"discount_percent": Decimal("150")},
    ],
)
def test_invalid_input_is_rejected_before_any_write(admin_ctx, doctor, batch, overrides):
    with pytest.raises(ValidationError):
        _register(admin_ctx, doctor, batch, **overrides)

    assert not Payment.objects.exists()


def test_doctor_cannot_register_payments(doctor_ctx, doctor, batch):
    with pytest.raises(PermissionDenied):
        _register(doctor_ctx, doctor, batch)


def test_cancel_releases_every_report(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch)

    cancelled = PaymentService.cancel(ctx=admin_ctx, payment_id=payment.id, reason="erro de digitação")

    assert cancelled.status == PaymentStatus.CANCELLED
    assert "erro de digitação" in cancelled.notes
    for r in Report.objects.filter(id__in=[b.id for b in batch]):
        assert r.payment_id is None
        assert r.payment_registered is False
        assert r.amount_paid == Decimal("0.00")
        assert r.paid_at is None
    # covered set is kept for the record
    assert cancelled.reports.count() == 3

    with pytest.raises(ConflictError):
        PaymentService.cancel(ctx=admin_ctx, payment_id=payment.id, reason="de novo")


def test_cancelled_reports_can_be_paid_again(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch)
    PaymentService.cancel(ctx=admin_ctx, payment_id=payment.id, reason="erro de digitação")

    again = _register(admin_ctx, doctor, batch, total_amount=Decimal("240.00"))

    assert set(Report.objects.filter(payment=again).values_list("amount_paid", flat=True)) == {Decimal("80.00")}


def test_update_final_amount_resplits(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch)

    updated = PaymentService.update(ctx=admin_ctx, payment_id=payment.id, final_amount=Decimal("150.00"), method="dinheiro")

    assert updated.final_amount == Decimal("150.00")
    assert updated.method == "dinheiro"
    assert set(Report.objects.filter(payment=payment).values_list("amount_paid", flat=True)) == {Decimal("50.00")}


def test_update_to_cancelled_delegates_to_cancel(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch)

    updated = PaymentService.update(ctx=admin_ctx, payment_id=payment.id, status="cancelado", reason="duplicado")

    assert updated.status == PaymentStatus.CANCELLED
    assert not Report.objects.filter(payment_registered=True).exists()

    with pytest.raises(ConflictError):
        PaymentService.update(ctx=admin_ctx, payment_id=payment.id, notes="tarde demais")


def test_stats_ignore_cancelled_amounts(admin_ctx, doctor, batch):
    _register(admin_ctx, doctor, batch[:2], total_amount=Decimal("200.00"))
    dropped = _register(admin_ctx, doctor, batch[2:], total_amount=Decimal("100.00"))
    PaymentService.cancel(ctx=admin_ctx, payment_id=dropped.id, reason="teste")

    stats = payment_stats(tenant_id=admin_ctx.tenant_id)

    assert stats["count"] == 2
    assert stats["paid"] == 1
    assert stats["cancelled"] == 1
    assert stats["total_final_amount"] == Decimal("200.00")
    assert stats["average_ticket"] == Decimal("200.00")


def test_receipt_lists_each_report_share(admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch, final_amount=Decimal("270.00"))

    receipt = receipt_for_payment(payment)

    assert receipt.doctor_name == "Dra. Ana Souza"
    assert receipt.tenant_name == "Clínica Centro"
    assert receipt.final_amount == Decimal("270.00")
    assert len(receipt.lines) == 3
    assert {line.amount for line in receipt.lines} == {Decimal("90.00")}
    assert {line.patient_name for line in receipt.lines} == {"Maria Oliveira"}


def _fail_on_second_call(monkeypatch):
    from laudo_core.finance import services

    real = services.append_history
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        return real(*args, **kwargs)

    monkeypatch.setattr(services, "append_history", flaky)


def test_register_failing_midway_leaves_nothing_behind(monkeypatch, admin_ctx, doctor, batch):
    _fail_on_second_call(monkeypatch)

    with pytest.raises(RuntimeError):
        _register(admin_ctx, doctor, batch)

    assert not Payment.objects.exists()
    for r in Report.objects.filter(id__in=[b.id for b in batch]):
        assert r.payment_registered is False
        assert r.payment_id is None
        assert r.amount_paid == Decimal("0.00")
    assert not AuditEvent.objects.filter(collection="payments").exists()


def test_cancel_failing_midway_keeps_the_payment(monkeypatch, admin_ctx, doctor, batch):
    payment = _register(admin_ctx, doctor, batch)
    _fail_on_second_call(monkeypatch)

    with pytest.raises(RuntimeError):
        PaymentService.cancel(ctx=admin_ctx, payment_id=payment.id, reason="erro de digitação")

    payment.refresh_from_db()
    assert payment.status == PaymentStatus.PAID
    assert "erro de digitação" not in payment.notes
    for r in Report.objects.filter(id__in=[b.id for b in batch]):
        assert r.payment_id == payment.id
        assert r.payment_registered is True
        assert r.amount_paid == Decimal("100.00")
