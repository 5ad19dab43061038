from decimal import Decimal

import pytest
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.audit.models import AuditAction, AuditEvent
from laudo_core.common.api.exceptions import ConflictError, ExternalServiceError, InvalidStateTransition
from laudo_core.exams.models import Exam, ExamStatus
from laudo_core.iam.roles import Role
from laudo_core.reports.models import HistoryAction, HistoryEntry, Report, ReportStatus
from laudo_core.reports.services.lifecycle import ReportLifecycleService
from laudo_core.reports.storage import get_object_storage
from laudo_core.tests.helpers import ctx_for, make_user

pytestmark = pytest.mark.django_db


def _actions(report):
    return list(HistoryEntry.objects.filter(report=report).order_by("sequence").values_list("action", flat=True))


def test_create_report_without_signature_method_is_reported(doctor_ctx, exam):
    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    assert report.status == ReportStatus.REPORTED
    assert report.version == 1
    assert report.is_current_version
    assert report.chain_id == report.id
    assert report.original_file_key
    assert get_object_storage().get_object(report.original_file_key).startswith(b"%PDF")

    created = HistoryEntry.objects.filter(report=report, action=HistoryAction.CREATED)
    assert created.count() == 1
    assert created.get().version == 1

    exam.refresh_from_db()
    assert exam.report_id == report.id
    assert exam.status == ExamStatus.READY_FOR_SIGNATURE


def test_create_report_with_certificate_is_ready_for_signature(doctor_ctx, doctor_certificate, exam):
    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Ritmo sinusal regular.")

    assert report.status == ReportStatus.READY_FOR_SIGNATURE


def test_create_snapshots_configured_price(doctor_ctx, exam, price):
    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    report.refresh_from_db()
    assert report.price_snapshot == Decimal("100.00")
    assert report.price_configuration_id == price.id
    assert report.price_calculated_at is not None
    assert HistoryAction.FINANCIAL in _actions(report)


def test_create_without_price_defaults_to_zero(doctor_ctx, exam):
    report = ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    assert report.price_snapshot == Decimal("0.00")
    assert report.price_configuration_id is None


def test_create_rejects_short_conclusion(doctor_ctx, exam):
    with pytest.raises(ValidationError):
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="  curto ")

    assert not Report.objects.exists()


def test_create_requires_report_create_capability(receptionist, tenant, exam):
    from laudo_core.tests.helpers import ctx_for

    with pytest.raises(PermissionDenied):
        ReportLifecycleService.create(ctx=ctx_for(receptionist, tenant), exam_id=exam.id, conclusion="Exame normal.")


def test_second_valid_report_for_same_exam_conflicts(doctor_ctx, report, exam):
    with pytest.raises(ConflictError):
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Outro laudo qualquer.")

    assert Report.objects.filter(exam=exam).count() == 1


def test_exam_of_another_tenant_is_not_found(doctor_ctx, other_tenant, patient, exam_type):
    foreign = Exam.objects.create(tenant_id=other_tenant.id, patient=patient, exam_type=exam_type)

    with pytest.raises(Exam.DoesNotExist):
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=foreign.id, conclusion="Exame normal, sem alterações.")


def test_create_is_audited_with_the_report_tenant(doctor_ctx, report, tenant):
    event = AuditEvent.objects.get(collection="reports", action=AuditAction.CREATE, document_id=str(report.id))

    assert event.tenant_id == tenant.id
    assert event.actor_user_id == doctor_ctx.user_id
    assert event.after["conclusion"] == "Exame normal, sem alterações."


def test_pdf_failure_leaves_report_in_error_with_history(settings, doctor_ctx, exam):
    settings.LAUDO_PDF_RENDERER = "laudo_core.tests.helpers.FailingPdfRenderer"

    with pytest.raises(ExternalServiceError):
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    report = Report.objects.get(exam=exam)
    assert report.status == ReportStatus.PDF_ERROR
    assert not report.original_file_key

    failure = HistoryEntry.objects.get(report=report, action=HistoryAction.DELIVERY_ERROR)
    assert failure.error_message == "renderer down"


def test_storage_failure_leaves_report_in_delivery_error(settings, doctor_ctx, exam):
    settings.LAUDO_OBJECT_STORAGE = "laudo_core.tests.helpers.FailingObjectStorage"

    with pytest.raises(ExternalServiceError):
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")

    report = Report.objects.get(exam=exam)
    assert report.status == ReportStatus.DELIVERY_ERROR
    assert HistoryAction.DELIVERY_ERROR in _actions(report)


# ---------------------------------------------------------------------------
# redo
# ---------------------------------------------------------------------------


def test_redo_signed_report_creates_version_two(doctor_ctx, signed_report, exam):
    new = ReportLifecycleService.redo(
        ctx=doctor_ctx,
        report_id=signed_report.id,
        conclusion="Conclusão revisada após nova análise.",
        reason="correção de digitação",
    )

    old = Report.objects.get(id=signed_report.id)
    assert old.status == ReportStatus.REDONE
    assert old.is_current_version is False
    assert old.superseded_by_id == new.id

    assert new.version == 2
    assert new.is_current_version is True
    assert new.previous_version_id == old.id
    assert new.chain_id == old.chain_id
    assert new.status == ReportStatus.READY_FOR_SIGNATURE
    assert new.conclusion == "Conclusão revisada após nova análise."
    assert new.original_file_key

    assert Report.objects.filter(chain_id=old.chain_id, is_current_version=True).count() == 1

    exam.refresh_from_db()
    assert exam.report_id == new.id

    assert HistoryAction.REDONE in _actions(old)
    assert _actions(new)[0] == HistoryAction.CREATED
    assert AuditEvent.objects.filter(action=AuditAction.RECREATE, document_id=str(new.id)).exists()


def test_redo_twice_keeps_a_single_current_version(doctor_ctx, report):
    v2 = ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Segunda versão do laudo.")
    v3 = ReportLifecycleService.redo(ctx=doctor_ctx, report_id=v2.id, conclusion="Terceira versão do laudo.")

    chain = Report.objects.filter(chain_id=report.chain_id).order_by("version")
    assert [r.version for r in chain] == [1, 2, 3]
    assert [r.is_current_version for r in chain] == [False, False, True]
    assert v3.previous_version_id == v2.id


def test_redo_of_superseded_version_conflicts(doctor_ctx, report):
    ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Segunda versão do laudo.")

    with pytest.raises(ConflictError):
        ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Tentativa na versão antiga.")


def test_redo_by_another_doctor_is_denied(other_doctor_ctx, report):
    with pytest.raises(PermissionDenied):
        ReportLifecycleService.redo(ctx=other_doctor_ctx, report_id=report.id, conclusion="Não sou o responsável.")

    report.refresh_from_db()
    assert report.is_current_version


def test_admin_master_redoes_for_the_responsible_doctor(tenant, doctor, report):
    master = make_user("master", tenants=[tenant], roles=[Role.ADMIN_MASTER], is_admin_master=True)

    new = ReportLifecycleService.redo(
        ctx=ctx_for(master, tenant), report_id=report.id, conclusion="Revisão feita pela administração."
    )

    assert new.version == 2
    assert new.responsible_doctor_id == doctor.id


def test_plain_admin_cannot_redo(admin_ctx, report):
    with pytest.raises(PermissionDenied):
        ReportLifecycleService.redo(ctx=admin_ctx, report_id=report.id, conclusion="Administração tentando refazer.")

    assert Report.objects.filter(chain_id=report.chain_id).count() == 1


def test_redo_of_cancelled_report_is_invalid_transition(doctor_ctx, admin_ctx, report):
    ReportLifecycleService.cancel(ctx=admin_ctx, report_id=report.id, reason="exame repetido")

    with pytest.raises((InvalidStateTransition, ConflictError)):
        ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Tentativa após cancelamento.")

    assert Report.objects.filter(chain_id=report.chain_id).count() == 1


def test_redo_rolls_back_when_new_row_cannot_be_written(doctor_ctx, report, monkeypatch):
    from laudo_core.finance.services import PriceService

    def boom(*args, **kwargs):
        raise RuntimeError("price store down")

    monkeypatch.setattr(PriceService, "apply_snapshot", staticmethod(boom))

    with pytest.raises(RuntimeError):
        ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Nova versão qualquer.")

    report.refresh_from_db()
    assert report.status == ReportStatus.REPORTED
    assert report.is_current_version
    assert Report.objects.filter(chain_id=report.chain_id).count() == 1


# ---------------------------------------------------------------------------
# invalidate / cancel
# ---------------------------------------------------------------------------


def test_invalidate_marks_report_invalid(admin_ctx, report):
    out = ReportLifecycleService.invalidate(ctx=admin_ctx, report_id=report.id, reason="paciente trocado")

    assert out.is_valid is False
    assert HistoryAction.CANCELLED in _actions(report)

    with pytest.raises(ConflictError):
        ReportLifecycleService.invalidate(ctx=admin_ctx, report_id=report.id)


def test_doctor_cannot_invalidate(doctor_ctx, report):
    with pytest.raises(PermissionDenied):
        ReportLifecycleService.invalidate(ctx=doctor_ctx, report_id=report.id)


def test_cancel_moves_report_and_exam_to_cancelled(admin_ctx, report, exam):
    out = ReportLifecycleService.cancel(ctx=admin_ctx, report_id=report.id, reason="exame repetido")

    assert out.status == ReportStatus.CANCELLED
    assert out.is_valid is False
    exam.refresh_from_db()
    assert exam.status == ExamStatus.CANCELLED


def test_signed_report_cannot_be_cancelled(admin_ctx, signed_report):
    with pytest.raises(InvalidStateTransition):
        ReportLifecycleService.cancel(ctx=admin_ctx, report_id=signed_report.id)
