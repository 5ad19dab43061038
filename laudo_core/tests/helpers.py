# laudo_core/tests/helpers.py
from __future__ import annotations

import datetime as dt
import struct
import zlib
from dataclasses import dataclass, field
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from django.contrib.auth import get_user_model

from laudo_core.common.api.exceptions import ExternalServiceError
from laudo_core.iam.context import build_auth_context
from laudo_core.iam.models import TenantMembership, UserProfile
from laudo_core.reports.rendering import ReceiptDocument, ReportDocument
from laudo_core.reports.storage import DjangoObjectStorage

CERT_PASSWORD = "senha-cert-123"

MINIMAL_PDF = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"


def make_png(width: int = 300, height: int = 100) -> bytes:
    """
    Blank 8-bit grayscale PNG.
    """
    def chunk(tag: bytes, body: bytes) -> bytes:
        crc = zlib.crc32(tag + body) & 0xFFFFFFFF
        return struct.pack(">I", len(body)) + tag + body + struct.pack(">I", crc)

    rows = b"".join(b"\x00" + b"\xff" * width for _ in range(height))
    header = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", zlib.compress(rows)) + chunk(b"IEND", b"")


def scope_headers(tenant) -> dict:
    """
    DRF test client requires the HTTP_ prefix.
    """
    return {"HTTP_X_TENANT_ID": str(tenant.id)}


def make_user(
    username: str,
    *,
    tenants,
    roles=(),
    display_name: str = "",
    crm: str = "",
    is_admin_master: bool = False,
    has_financial_access: bool = False,
    physical_signature_key: str = "",
):
    """
    auth_user -> UserProfile -> TenantMembership (one per tenant)
    """
    user = get_user_model().objects.create_user(username=username, password="testpass", is_active=True)
    profile = UserProfile.objects.create(
        user=user,
        display_name=display_name or username,
        crm=crm,
        roles=list(roles),
        is_admin_master=is_admin_master,
        has_financial_access=has_financial_access,
        physical_signature_key=physical_signature_key,
    )
    for tenant in tenants:
        TenantMembership.objects.create(tenant=tenant, user_profile=profile, is_active=True)
    return user


def ctx_for(user, tenant):
    return build_auth_context(user, tenant.id)


def make_p12(
    password: str,
    *,
    common_name: str = "Dra. Ana Souza:12345678900",
    not_before: dt.datetime | None = None,
    not_after: dt.datetime | None = None,
) -> bytes:
    """
    Self-signed PKCS#12 bundle (RSA 2048, SHA-256) protected by ``password``.
    """
    now = dt.datetime.now(dt.timezone.utc)
    not_before = not_before or now - dt.timedelta(days=1)
    not_after = not_after or now + dt.timedelta(days=365)

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "BR"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "AC Teste"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        name=b"laudo",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


@dataclass
class RenderCalls:
    reports: List[ReportDocument] = field(default_factory=list)
    receipts: List[ReceiptDocument] = field(default_factory=list)


class FakePdfRenderer:
    """
    Records what it was asked to render and returns a tiny valid PDF header.
    """

    calls = RenderCalls()

    def render_report(self, doc: ReportDocument) -> bytes:
        FakePdfRenderer.calls.reports.append(doc)
        return MINIMAL_PDF

    def render_receipt(self, receipt: ReceiptDocument) -> bytes:
        FakePdfRenderer.calls.receipts.append(receipt)
        return MINIMAL_PDF


class FailingPdfRenderer:
    def render_report(self, doc: ReportDocument) -> bytes:
        raise ExternalServiceError("pdf", "renderer down")

    def render_receipt(self, receipt: ReceiptDocument) -> bytes:
        raise ExternalServiceError("pdf", "renderer down")


class FailingObjectStorage(DjangoObjectStorage):
    """
    Reads work, writes fail.
    """

    def put_object(self, data: bytes, key_hint: str) -> str:
        raise ExternalServiceError(self.service_name, "bucket unavailable")
