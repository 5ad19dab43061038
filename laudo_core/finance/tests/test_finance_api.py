import pytest

from laudo_core.reports.models import Report
from laudo_core.reports.services.lifecycle import ReportLifecycleService

pytestmark = pytest.mark.django_db


@pytest.fixture
def batch(doctor_ctx, make_exam, price):
    return [
        ReportLifecycleService.create(ctx=doctor_ctx, exam_id=make_exam().id, conclusion=f"Laudo número {i} sem alterações.")
        for i in range(3)
    ]


def _payload(doctor, reports, **overrides):
    data = {
        "doctor_id": doctor.id,
        "report_ids": [str(r.id) for r in reports],
        "total_amount": "300.00",
        "final_amount": "300.00",
        "method": "pix",
    }
    data.update(overrides)
    return data


def test_register_and_cancel_payment(admin_client, doctor, batch):
    res = admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch), format="json")

    assert res.status_code == 201, res.content
    body = res.json()
    assert body["status"] == "pago"
    assert sorted(body["report_ids"]) == sorted(str(r.id) for r in batch)

    cancel = admin_client.post(
        f"/api/v1/finance/payments/{body['id']}/cancel/", {"reason": "erro de digitação"}, format="json"
    )

    assert cancel.status_code == 200
    assert cancel.json()["status"] == "cancelado"
    assert not Report.objects.filter(payment_registered=True).exists()


def test_paying_twice_returns_409_with_report_ids(admin_client, doctor, batch):
    admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch[:1], total_amount="100.00"), format="json")

    res = admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch), format="json")

    assert res.status_code == 409
    err = res.json()["error"]
    assert err["code"] == "already_paid"
    assert err["details"]["reports"] == [str(batch[0].id)]


def test_partial_update_resplits(admin_client, doctor, batch):
    created = admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch), format="json").json()

    res = admin_client.patch(f"/api/v1/finance/payments/{created['id']}/", {"final_amount": "90.00"}, format="json")

    assert res.status_code == 200
    assert res.json()["final_amount"] == "90.00"
    assert {str(a) for a in Report.objects.filter(payment_id=created["id"]).values_list("amount_paid", flat=True)} == {
        "30.00"
    }


def test_stats_and_receipt(admin_client, doctor, batch, fake_renderer):
    created = admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch), format="json").json()

    stats = admin_client.get("/api/v1/finance/payments/stats/")
    assert stats.status_code == 200
    assert stats.json()["total_final_amount"] == "300.00"

    receipt = admin_client.get(f"/api/v1/finance/payments/{created['id']}/receipt/")
    assert receipt.status_code == 200
    assert len(receipt.json()["lines"]) == 3

    pdf = admin_client.get(f"/api/v1/finance/payments/{created['id']}/receipt/?pdf=true")
    assert pdf.status_code == 200
    assert pdf["Content-Type"] == "application/pdf"
    assert fake_renderer.receipts[-1].payment_id == created["id"]


def test_doctor_reports_filter_by_paid(admin_client, doctor, batch):
    admin_client.post("/api/v1/finance/payments/", _payload(doctor, batch[:1], total_amount="100.00"), format="json")

    unpaid = admin_client.get(f"/api/v1/finance/reports/?doctor={doctor.id}&paid=false")

    assert unpaid.status_code == 200
    assert {r["id"] for r in unpaid.json()["results"]} == {str(batch[1].id), str(batch[2].id)}


def test_price_crud_endpoints(admin_client, doctor, specialty, exam_type):
    payload = {
        "doctor_id": doctor.id,
        "specialty_id": str(specialty.id),
        "exam_type_id": str(exam_type.id),
        "amount": "120.00",
    }
    created = admin_client.post("/api/v1/finance/prices/", payload, format="json")
    assert created.status_code == 201, created.content
    price_id = created.json()["id"]

    dup = admin_client.post("/api/v1/finance/prices/", payload, format="json")
    assert dup.status_code == 409
    assert dup.json()["error"]["code"] == "conflict"

    upd = admin_client.patch(f"/api/v1/finance/prices/{price_id}/", {"amount": "130.00"}, format="json")
    assert upd.status_code == 200
    assert upd.json()["amount"] == "130.00"

    assert admin_client.delete(f"/api/v1/finance/prices/{price_id}/").status_code == 204


def test_doctor_has_no_finance_access(doctor_client, doctor, batch):
    assert doctor_client.get("/api/v1/finance/payments/").status_code == 403

    res = doctor_client.post("/api/v1/finance/payments/", _payload(doctor, batch), format="json")
    assert res.status_code == 403
