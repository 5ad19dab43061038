import pytest
from django.db.models import TextField
from django.db.models.functions import Cast

from laudo_core.reports.models import HistoryAction, HistoryEntry, HistoryImmutableError
from laudo_core.reports.services.history import append_history, history_for_chain, history_for_report
from laudo_core.reports.services.lifecycle import ReportLifecycleService

pytestmark = pytest.mark.django_db


def test_sequence_numbers_are_contiguous(doctor_ctx, report):
    append_history(report, action=HistoryAction.UPDATED, details="nota", user_id=doctor_ctx.user_id)

    seqs = list(HistoryEntry.objects.filter(report=report).values_list("sequence", flat=True))
    assert seqs == list(range(1, len(seqs) + 1))


def test_entries_cannot_be_updated_or_deleted(report):
    entry = HistoryEntry.objects.filter(report=report).first()

    entry.details = "reescrito"
    with pytest.raises(HistoryImmutableError):
        entry.save()
    with pytest.raises(HistoryImmutableError):
        entry.delete()
    with pytest.raises(HistoryImmutableError):
        HistoryEntry.objects.filter(report=report).update(details="x")
    with pytest.raises(HistoryImmutableError):
        HistoryEntry.objects.filter(report=report).delete()

    assert HistoryEntry.objects.get(id=entry.id).details == "Laudo criado"


def test_history_only_grows_across_operations(doctor_ctx, report):
    sizes = [HistoryEntry.objects.filter(report=report).count()]

    append_history(report, action=HistoryAction.UPDATED, details="a")
    sizes.append(HistoryEntry.objects.filter(report=report).count())
    ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Nova versão do laudo.")
    sizes.append(HistoryEntry.objects.filter(report=report).count())

    assert sizes == sorted(sizes)
    assert sizes[-1] > sizes[0]


def test_user_name_and_details_are_stored_encrypted(doctor_ctx, report):
    raw = (
        HistoryEntry.objects.filter(report=report)
        .annotate(
            raw_details=Cast("details", output_field=TextField()),
            raw_user=Cast("user_name", output_field=TextField()),
        )
        .values_list("raw_details", "raw_user")
        .first()
    )

    assert raw[0].startswith("enc:")
    assert raw[1].startswith("enc:")
    assert HistoryEntry.objects.filter(report=report).first().user_name == "Dra. Ana Souza"


def test_history_is_tenant_scoped(report, other_tenant, tenant):
    from laudo_core.reports.models import Report

    assert history_for_report(tenant_id=tenant.id, report_id=report.id).exists()
    with pytest.raises(Report.DoesNotExist):
        history_for_report(tenant_id=other_tenant.id, report_id=report.id)


def test_chain_history_spans_versions(doctor_ctx, report, tenant):
    new = ReportLifecycleService.redo(ctx=doctor_ctx, report_id=report.id, conclusion="Nova versão do laudo.")

    versions = {e.version for e in history_for_chain(tenant_id=tenant.id, chain_id=report.chain_id)}
    assert versions == {1, new.version}
