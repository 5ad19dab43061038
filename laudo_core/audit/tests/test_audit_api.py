import pytest

pytestmark = pytest.mark.django_db


def test_admin_lists_tenant_events_with_filters(admin_client, report):
    res = admin_client.get(f"/api/v1/audit/events/?collection=reports&document_id={report.id}")

    assert res.status_code == 200
    results = res.json()["results"]
    assert results
    assert {e["document_id"] for e in results} == {str(report.id)}

    one = admin_client.get(f"/api/v1/audit/events/{results[0]['id']}/")
    assert one.status_code == 200


def test_doctor_cannot_read_audit_trail(doctor_client):
    res = doctor_client.get("/api/v1/audit/events/")

    assert res.status_code == 403
