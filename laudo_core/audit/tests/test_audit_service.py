import pytest

from laudo_core.audit.models import AuditAction, AuditEvent
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.reports.models import Report, ReportStatus
from laudo_core.reports.services.lifecycle import ReportLifecycleService

pytestmark = pytest.mark.django_db


def test_record_persists_event(doctor, tenant):
    ev = AuditService.record(
        actor_user_id=doctor.id,
        action=AuditAction.VIEW,
        collection="reports",
        document_id="abc",
        description="Laudo visualizado",
        meta=RequestMeta(ip="10.0.0.7", user_agent="pytest"),
        tenant_id=tenant.id,
    )

    assert ev is not None
    stored = AuditEvent.objects.get(id=ev.id)
    assert stored.action == "view"
    assert stored.ip == "10.0.0.7"
    assert stored.tenant_id == tenant.id


def test_unknown_action_is_swallowed(doctor, tenant):
    assert AuditService.record(actor_user_id=doctor.id, action="teleport", collection="reports", tenant_id=tenant.id) is None
    assert not AuditEvent.objects.exists()


def test_write_failure_never_fails_the_operation(monkeypatch, doctor_ctx, exam):
    def boom(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr(AuditEvent.objects, "create", boom)

    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    assert Report.objects.filter(id=report.id, status=ReportStatus.REPORTED).exists()
    assert not AuditEvent.objects.exists()


def test_event_tenant_comes_from_the_entity(doctor_ctx, report):
    ev = AuditEvent.objects.get(collection="reports", document_id=str(report.id), action="create")

    assert ev.tenant_id == report.tenant_id
    assert ev.actor_user_id == doctor_ctx.user_id
