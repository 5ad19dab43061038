# laudo_core/reports/services/certificates.py
from __future__ import annotations

import uuid
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import ExpiredCertificate
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.reports.certificates import get_certificate_signer
from laudo_core.reports.models import DigitalCertificate
from laudo_core.reports.storage import get_object_storage

log = structlog.get_logger(__name__)


def _snapshot(cert: DigitalCertificate) -> dict:
    return {
        "id": str(cert.id),
        "doctor_id": cert.doctor_id,
        "name": cert.name,
        "issuer": cert.issuer,
        "valid_from": cert.valid_from.isoformat(),
        "valid_until": cert.valid_until.isoformat(),
        "is_active": cert.is_active,
    }


class CertificateService:
    @staticmethod
    def active_for(doctor_id: int) -> DigitalCertificate | None:
        return (
            DigitalCertificate.objects.filter(doctor_id=doctor_id, is_active=True)
            .order_by("-valid_until")
            .first()
        )

    @staticmethod
    def has_usable_certificate(doctor_id: int) -> bool:
        cert = CertificateService.active_for(doctor_id)
        return cert is not None and not cert.is_expired()

    @staticmethod
    def register(
        *,
        ctx: AuthContext,
        bundle: bytes,
        password: str,
        name: str = "",
        meta: RequestMeta | None = None,
    ) -> DigitalCertificate:
        """
        Store a PKCS#12 bundle for the acting doctor and make it the active certificate.
        """
        ctx.require(caps.REPORT_SIGN)

        if not bundle:
            raise ValidationError({"file": "Certificate file is required."})
        if not password:
            raise ValidationError({"password": "Certificate password is required."})

        info = get_certificate_signer().inspect(bundle, password)
        if info.valid_until <= timezone.now():
            raise ExpiredCertificate()

        file_key = get_object_storage().put_object(bundle, f"certificados/{ctx.user_id}/{uuid.uuid4().hex}.p12")

        with transaction.atomic():
            DigitalCertificate.objects.filter(doctor_id=ctx.user_id, is_active=True).update(is_active=False)

            cert = DigitalCertificate(
                doctor_id=ctx.user_id,
                tenant_id=ctx.tenant_id,
                name=name or info.name,
                serial_number=info.serial_number,
                issuer=info.issuer,
                valid_from=info.valid_from,
                valid_until=info.valid_until,
                file_key=file_key,
                is_active=True,
            )
            cert.set_password(password)
            cert.save()

        log.info("certificate.registered", certificate_id=str(cert.id), doctor_id=ctx.user_id)

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPLOAD,
            collection="certificates",
            document_id=cert.id,
            description=f"Certificado digital enviado: {cert.name}",
            after=_snapshot(cert),
            meta=meta,
            tenant_id=ctx.tenant_id,
        )
        return cert

    @staticmethod
    def deactivate(*, ctx: AuthContext, certificate_id: UUID, meta: RequestMeta | None = None) -> DigitalCertificate:
        ctx.require(caps.REPORT_SIGN)

        with transaction.atomic():
            cert = DigitalCertificate.objects.select_for_update().get(id=certificate_id, doctor_id=ctx.user_id)
            before = _snapshot(cert)
            cert.is_active = False
            cert.save(update_fields=["is_active", "updated_at"])

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPDATE,
            collection="certificates",
            document_id=cert.id,
            description=f"Certificado digital desativado: {cert.name}",
            before=before,
            after=_snapshot(cert),
            meta=meta,
            tenant_id=ctx.tenant_id,
        )
        return cert

    @staticmethod
    def mark_used(cert: DigitalCertificate) -> None:
        """
        Bump usage counters. Call inside the signing transaction.
        """
        locked = DigitalCertificate.objects.select_for_update().get(id=cert.id)
        locked.signature_count += 1
        locked.last_used_at = timezone.now()
        locked.save(update_fields=["signature_count", "last_used_at", "updated_at"])
