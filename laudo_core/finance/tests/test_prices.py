from decimal import Decimal

import pytest
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.audit.models import AuditEvent
from laudo_core.common.api.exceptions import ConflictError
from laudo_core.finance.models import PriceConfiguration
from laudo_core.finance.services import PriceService
from laudo_core.reports.models import Report
from laudo_core.reports.services.lifecycle import ReportLifecycleService

pytestmark = pytest.mark.django_db


def _create(ctx, doctor, specialty, exam_type, amount="150.00"):
    return PriceService.create(
        ctx=ctx,
        doctor_id=doctor.id,
        specialty_id=specialty.id,
        exam_type_id=exam_type.id,
        amount=Decimal(amount),
    )


def test_resolve_returns_zero_when_unconfigured(tenant, doctor, specialty, exam_type):
    quote = PriceService.resolve(
        tenant_id=tenant.id, doctor_id=doctor.id, specialty_id=specialty.id, exam_type_id=exam_type.id
    )

    assert quote.amount == Decimal("0.00")
    assert quote.configured is False


def test_create_update_delete_with_audit(admin_ctx, doctor, specialty, exam_type):
    cfg = _create(admin_ctx, doctor, specialty, exam_type)
    assert PriceService.resolve(
        tenant_id=admin_ctx.tenant_id, doctor_id=doctor.id, specialty_id=specialty.id, exam_type_id=exam_type.id
    ).amount == Decimal("150.00")

    PriceService.update(ctx=admin_ctx, price_id=cfg.id, amount=Decimal("175.50"))
    assert PriceConfiguration.objects.get(id=cfg.id).amount == Decimal("175.50")

    PriceService.delete(ctx=admin_ctx, price_id=cfg.id)
    assert not PriceConfiguration.objects.filter(id=cfg.id).exists()

    actions = AuditEvent.objects.filter(collection="prices", document_id=str(cfg.id)).values_list("action", flat=True)
    assert sorted(actions) == ["create", "delete", "update"]


def test_duplicate_price_is_a_conflict(admin_ctx, doctor, specialty, exam_type):
    _create(admin_ctx, doctor, specialty, exam_type)

    with pytest.raises(ConflictError):
        _create(admin_ctx, doctor, specialty, exam_type, amount="90.00")

    assert PriceConfiguration.objects.count() == 1


def test_negative_amount_is_rejected(admin_ctx, doctor, specialty, exam_type):
    with pytest.raises(ValidationError):
        _create(admin_ctx, doctor, specialty, exam_type, amount="-1.00")


def test_doctor_cannot_manage_prices(doctor_ctx, doctor, specialty, exam_type):
    with pytest.raises(PermissionDenied):
        _create(doctor_ctx, doctor, specialty, exam_type)


def test_price_change_does_not_touch_existing_snapshots(admin_ctx, doctor_ctx, exam, price):
    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    PriceService.update(ctx=admin_ctx, price_id=price.id, amount=Decimal("250.00"))
    PriceService.delete(ctx=admin_ctx, price_id=price.id)

    report = Report.objects.get(id=report.id)
    assert report.price_snapshot == Decimal("100.00")
    assert report.price_configuration_id is None
