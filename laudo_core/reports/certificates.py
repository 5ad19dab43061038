# laudo_core/reports/certificates.py
"""
PKCS#12 certificate handling: inspecting uploaded bundles and producing detached
CMS (PKCS#7) signatures over rendered report PDFs.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7, pkcs12
from cryptography.x509.oid import NameOID
from django.conf import settings
from django.utils.module_loading import import_string

from laudo_core.common.api.exceptions import ExpiredCertificate, ExternalServiceError, InvalidCredential

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CertificateInfo:
    name: str
    serial_number: str
    issuer: str
    valid_from: datetime
    valid_until: datetime


@dataclass(frozen=True)
class SignedDocument:
    document: bytes
    signature: bytes
    info: CertificateInfo


def _common_name(name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attrs[0].value if attrs else name.rfc4514_string()


class Pkcs12Signer:
    service_name = "certificate"

    def _load(self, bundle: bytes, password: str):
        try:
            key, cert, _extra = pkcs12.load_key_and_certificates(bundle, (password or "").encode("utf-8"))
        except ValueError as exc:
            # wrong password and corrupt bundle are indistinguishable here
            raise InvalidCredential("Could not open the certificate with the given password.") from exc
        if key is None or cert is None:
            raise ExternalServiceError(self.service_name, "Certificate bundle has no private key or certificate.")
        return key, cert

    def inspect(self, bundle: bytes, password: str) -> CertificateInfo:
        _key, cert = self._load(bundle, password)
        return CertificateInfo(
            name=_common_name(cert.subject),
            serial_number=format(cert.serial_number, "X"),
            issuer=_common_name(cert.issuer),
            valid_from=cert.not_valid_before_utc,
            valid_until=cert.not_valid_after_utc,
        )

    def sign(self, document: bytes, bundle: bytes, password: str) -> SignedDocument:
        key, cert = self._load(bundle, password)

        if cert.not_valid_after_utc <= datetime.now(timezone.utc):
            raise ExpiredCertificate()

        try:
            signature = (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(document)
                .add_signer(cert, key, hashes.SHA256())
                .sign(Encoding.DER, [pkcs7.PKCS7Options.DetachedSignature])
            )
        except (TypeError, ValueError) as exc:
            log.error("certificate.sign_failed", error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not sign the document.") from exc

        return SignedDocument(
            document=document,
            signature=signature,
            info=CertificateInfo(
                name=_common_name(cert.subject),
                serial_number=format(cert.serial_number, "X"),
                issuer=_common_name(cert.issuer),
                valid_from=cert.not_valid_before_utc,
                valid_until=cert.not_valid_after_utc,
            ),
        )


def get_certificate_signer() -> Pkcs12Signer:
    return import_string(settings.LAUDO_CERTIFICATE_SIGNER)()
