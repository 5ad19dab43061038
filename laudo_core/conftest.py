# laudo_core/conftest.py
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from laudo_core.exams.models import Exam, ExamType, Specialty
from laudo_core.iam.roles import Role
from laudo_core.patients.models import Patient
from laudo_core.tenants.models import Tenant
from laudo_core.tests.helpers import (
    CERT_PASSWORD,
    MINIMAL_PDF,
    FakePdfRenderer,
    ctx_for,
    make_p12,
    make_user,
    scope_headers,
)


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(code="clinica-centro", name="Clínica Centro")


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(code="clinica-norte", name="Clínica Norte")


@pytest.fixture
def specialty(db):
    return Specialty.objects.create(name="Cardiologia")


@pytest.fixture
def exam_type(db, specialty):
    return ExamType.objects.create(name="ECG", specialty=specialty)


@pytest.fixture
def doctor(tenant):
    return make_user("dra.ana", tenants=[tenant], roles=[Role.MEDICO], display_name="Dra. Ana Souza", crm="12345-SP")


@pytest.fixture
def other_doctor(tenant):
    return make_user("dr.bruno", tenants=[tenant], roles=[Role.MEDICO], display_name="Dr. Bruno Lima", crm="54321-SP")


@pytest.fixture
def admin_user(tenant):
    return make_user(
        "admin.clinica",
        tenants=[tenant],
        roles=[Role.ADMIN],
        display_name="Administração",
        has_financial_access=True,
    )


@pytest.fixture
def receptionist(tenant):
    return make_user("recepcao", tenants=[tenant], roles=[Role.RECEPCIONISTA], display_name="Recepção")


@pytest.fixture
def doctor_ctx(doctor, tenant):
    return ctx_for(doctor, tenant)


@pytest.fixture
def other_doctor_ctx(other_doctor, tenant):
    return ctx_for(other_doctor, tenant)


@pytest.fixture
def admin_ctx(admin_user, tenant):
    return ctx_for(admin_user, tenant)


@pytest.fixture
def patient(tenant):
    return Patient.objects.create(tenant_id=tenant.id, full_name="Maria Oliveira", email="maria@example.com")


@pytest.fixture
def make_exam(tenant, patient, exam_type):
    def _make(**overrides):
        data = {"tenant_id": tenant.id, "patient": patient, "exam_type": exam_type}
        data.update(overrides)
        return Exam.objects.create(**data)

    return _make


@pytest.fixture
def exam(make_exam):
    return make_exam()


@pytest.fixture
def price(tenant, doctor, specialty, exam_type):
    from laudo_core.finance.models import PriceConfiguration

    return PriceConfiguration.objects.create(
        tenant_id=tenant.id,
        doctor=doctor,
        specialty=specialty,
        exam_type=exam_type,
        amount=Decimal("100.00"),
    )


@pytest.fixture
def fake_renderer(settings):
    settings.LAUDO_PDF_RENDERER = "laudo_core.tests.helpers.FakePdfRenderer"
    FakePdfRenderer.calls.reports.clear()
    FakePdfRenderer.calls.receipts.clear()
    return FakePdfRenderer.calls


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def doctor_client(api_client, doctor, tenant):
    api_client.force_authenticate(user=doctor)
    api_client.credentials(**scope_headers(tenant))
    return api_client


@pytest.fixture
def admin_client(admin_user, tenant):
    c = APIClient()
    c.force_authenticate(user=admin_user)
    c.credentials(**scope_headers(tenant))
    return c


@pytest.fixture
def doctor_certificate(doctor_ctx):
    from laudo_core.reports.services.certificates import CertificateService

    return CertificateService.register(ctx=doctor_ctx, bundle=make_p12(CERT_PASSWORD), password=CERT_PASSWORD)


@pytest.fixture
def report(doctor_ctx, exam):
    from laudo_core.reports.services.lifecycle import ReportLifecycleService

    return ReportLifecycleService.create(ctx=doctor_ctx, exam_id=exam.id, conclusion="Exame normal, sem alterações.")


@pytest.fixture
def signed_report(doctor_ctx, report):
    from laudo_core.reports.services.signing import SigningService

    return SigningService.upload_signed_file(ctx=doctor_ctx, report_id=report.id, file_bytes=MINIMAL_PDF)
