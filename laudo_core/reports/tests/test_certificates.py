from datetime import timedelta

import pytest
from django.utils import timezone

from laudo_core.audit.models import AuditAction, AuditEvent
from laudo_core.common.api.exceptions import ExpiredCertificate, InvalidCredential
from laudo_core.reports.models import DigitalCertificate
from laudo_core.reports.services.certificates import CertificateService
from laudo_core.tests.helpers import CERT_PASSWORD, make_p12

pytestmark = pytest.mark.django_db


def test_register_stores_bundle_and_hashes_password(doctor_ctx, doctor_certificate):
    cert = DigitalCertificate.objects.get(id=doctor_certificate.id)

    assert cert.is_active
    assert cert.name == "Dra. Ana Souza:12345678900"
    assert cert.issuer == "Dra. Ana Souza:12345678900"
    assert cert.file_key
    assert cert.password_hash != CERT_PASSWORD
    assert cert.check_password(CERT_PASSWORD)
    assert not cert.check_password("errada")
    assert AuditEvent.objects.filter(action=AuditAction.UPLOAD, collection="certificates").exists()


def test_new_certificate_deactivates_the_previous_one(doctor_ctx, doctor_certificate):
    second = CertificateService.register(ctx=doctor_ctx, bundle=make_p12("outra-senha"), password="outra-senha")

    assert CertificateService.active_for(doctor_ctx.user_id).id == second.id
    assert not DigitalCertificate.objects.get(id=doctor_certificate.id).is_active


def test_register_with_wrong_password_is_invalid_credential(doctor_ctx):
    with pytest.raises(InvalidCredential):
        CertificateService.register(ctx=doctor_ctx, bundle=make_p12("certa"), password="errada")

    assert not DigitalCertificate.objects.exists()


def test_register_rejects_expired_bundle(doctor_ctx):
    now = timezone.now()
    bundle = make_p12("senha", not_before=now - timedelta(days=30), not_after=now - timedelta(days=1))

    with pytest.raises(ExpiredCertificate):
        CertificateService.register(ctx=doctor_ctx, bundle=bundle, password="senha")


def test_deactivate_removes_usable_certificate(doctor_ctx, doctor_certificate):
    assert CertificateService.has_usable_certificate(doctor_ctx.user_id)

    CertificateService.deactivate(ctx=doctor_ctx, certificate_id=doctor_certificate.id)

    assert not CertificateService.has_usable_certificate(doctor_ctx.user_id)
