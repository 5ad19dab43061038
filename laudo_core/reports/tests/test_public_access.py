import uuid

import pytest
from rest_framework.exceptions import PermissionDenied

from laudo_core.audit.models import AuditAction, AuditEvent
from laudo_core.reports.services.public_access import PublicReportService, validation_code
from laudo_core.tests.helpers import MINIMAL_PDF

pytestmark = pytest.mark.django_db


def _url(report, suffix=""):
    return f"/api/v1/public/reports/{report.id}/{suffix}"


def test_summary_is_open_and_carries_no_patient_data(api_client, signed_report):
    res = api_client.get(_url(signed_report))

    assert res.status_code == 200, res.content
    body = res.json()
    assert body["status"] == "active"
    assert body["has_signed_file"] is True
    assert body["validation_code"] == validation_code(signed_report)
    assert len(body["validation_code"]) == 8
    assert "patient_name" not in body
    assert "conclusion" not in body


def test_unsigned_report_shows_as_inactive(api_client, report):
    body = api_client.get(_url(report)).json()

    assert body["status"] == "inactive"
    assert body["has_signed_file"] is False


def test_unknown_report_is_404(api_client):
    res = api_client.get(f"/api/v1/public/reports/{uuid.uuid4()}/")

    assert res.status_code == 404
    assert res.json()["error"]["code"] == "not_found"


def test_right_access_code_releases_the_report(api_client, signed_report):
    res = api_client.post(_url(signed_report, "auth/"), {"access_code": signed_report.access_code}, format="json")

    assert res.status_code == 200, res.content
    body = res.json()
    assert body["patient_name"] == "Maria Oliveira"
    assert body["conclusion"] == "Exame normal, sem alterações."
    assert body["responsible_doctor_name"] == "Dra. Ana Souza"

    event = AuditEvent.objects.get(collection="reports", action=AuditAction.VIEW, document_id=str(signed_report.id))
    assert event.actor_user_id is None
    assert event.tenant_id == signed_report.tenant_id


def test_wrong_access_code_is_403_and_leaks_nothing(api_client, signed_report):
    wrong = "0000" if signed_report.access_code != "0000" else "9999"

    res = api_client.post(_url(signed_report, "auth/"), {"access_code": wrong}, format="json")

    assert res.status_code == 403
    assert res.json()["error"]["code"] == "permission_denied"
    assert "conclusion" not in res.content.decode()
    assert not AuditEvent.objects.filter(action=AuditAction.VIEW).exists()


def test_missing_access_code_is_a_validation_error(api_client, signed_report):
    res = api_client.post(_url(signed_report, "auth/"), {}, format="json")

    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation_error"


def test_download_returns_the_signed_pdf(api_client, signed_report):
    res = api_client.post(_url(signed_report, "download/"), {"access_code": signed_report.access_code}, format="json")

    assert res.status_code == 200
    assert res["Content-Type"] == "application/pdf"
    assert res.content == MINIMAL_PDF


def test_download_of_an_unsigned_report_is_404(api_client, report):
    res = api_client.post(_url(report, "download/"), {"access_code": report.access_code}, format="json")

    assert res.status_code == 404


def test_logged_in_user_without_tenant_header_still_reaches_public_routes(doctor, other_tenant, signed_report, client):
    from laudo_core.iam.models import TenantMembership, UserProfile

    # two memberships and no X-Tenant-Id would be a 400 on scoped routes
    TenantMembership.objects.create(tenant=other_tenant, user_profile=UserProfile.objects.get(user=doctor))
    client.force_login(doctor)

    res = client.get(_url(signed_report))

    assert res.status_code == 200


def test_service_compares_the_trimmed_code(signed_report):
    found = PublicReportService.authenticate(report_id=signed_report.id, access_code=f" {signed_report.access_code} ")
    assert found.id == signed_report.id

    with pytest.raises(PermissionDenied):
        PublicReportService.authenticate(report_id=signed_report.id, access_code="")
