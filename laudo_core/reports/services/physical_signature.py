# laudo_core/reports/services/physical_signature.py
"""
The doctor's scanned signature image, stamped on reports signed by the physical path.
"""
from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass

import structlog
from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, RequestMeta
from laudo_core.common.api.exceptions import ExternalServiceError
from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext
from laudo_core.iam.models import UserProfile
from laudo_core.reports.storage import get_object_storage

log = structlog.get_logger(__name__)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
MAX_IMAGE_BYTES = 2 * 1024 * 1024
MIN_SIZE = (50, 25)
MAX_SIZE = (2000, 1000)


@dataclass(frozen=True)
class SignatureImageInfo:
    has_image: bool
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None


def png_dimensions(data: bytes) -> tuple[int, int]:
    """
    Width and height from the IHDR chunk, which a valid PNG always carries first.
    """
    if not data.startswith(PNG_MAGIC) or len(data) < 24 or data[12:16] != b"IHDR":
        raise ValidationError({"file": "The signature image must be a PNG file."})
    return struct.unpack(">II", data[16:24])


def _validate(data: bytes) -> tuple[int, int]:
    if not data:
        raise ValidationError({"file": "The signature image is empty."})
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError({"file": "The signature image must be at most 2MB."})

    width, height = png_dimensions(data)
    if width < MIN_SIZE[0] or height < MIN_SIZE[1]:
        raise ValidationError({"file": f"The signature image must be at least {MIN_SIZE[0]}x{MIN_SIZE[1]} pixels."})
    if width > MAX_SIZE[0] or height > MAX_SIZE[1]:
        raise ValidationError({"file": f"The signature image must be at most {MAX_SIZE[0]}x{MAX_SIZE[1]} pixels."})
    return width, height


def _profile(ctx: AuthContext) -> UserProfile:
    profile = UserProfile.objects.filter(user_id=ctx.user_id).first()
    if profile is None:
        raise NotFound("User profile not found.")
    return profile


class PhysicalSignatureService:
    @staticmethod
    def upload(*, ctx: AuthContext, image: bytes, meta: RequestMeta | None = None) -> SignatureImageInfo:
        """
        Store a PNG signature for the acting doctor, replacing any previous one.
        """
        ctx.require(caps.REPORT_SIGN)
        width, height = _validate(image)

        storage = get_object_storage()
        new_key = storage.put_object(image, f"assinaturas/{ctx.user_id}/{uuid.uuid4().hex}.png")

        with transaction.atomic():
            profile = UserProfile.objects.select_for_update().get(user_id=ctx.user_id)
            old_key = profile.physical_signature_key
            profile.physical_signature_key = new_key
            profile.save(update_fields=["physical_signature_key", "updated_at"])

        if old_key:
            # the profile already points at the new image
            try:
                storage.delete_object(old_key)
            except ExternalServiceError as exc:
                log.warning("physical_signature.old_image_not_deleted", user_id=ctx.user_id, error=str(exc))

        log.info("physical_signature.uploaded", user_id=ctx.user_id, width=width, height=height)

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.UPLOAD,
            collection="physical_signatures",
            document_id=profile.id,
            description="Assinatura física enviada",
            after={"width": width, "height": height, "size_bytes": len(image), "replaced": bool(old_key)},
            meta=meta,
            tenant_id=ctx.tenant_id,
        )
        return SignatureImageInfo(has_image=True, width=width, height=height, size_bytes=len(image))

    @staticmethod
    def info(*, ctx: AuthContext) -> SignatureImageInfo:
        ctx.require(caps.REPORT_SIGN)
        profile = _profile(ctx)
        if not profile.physical_signature_key:
            return SignatureImageInfo(has_image=False)

        data = get_object_storage().get_object(profile.physical_signature_key)
        width, height = png_dimensions(data)
        return SignatureImageInfo(has_image=True, width=width, height=height, size_bytes=len(data))

    @staticmethod
    def image(*, ctx: AuthContext) -> bytes:
        ctx.require(caps.REPORT_SIGN)
        profile = _profile(ctx)
        if not profile.physical_signature_key:
            raise NotFound("No physical signature image on file.")
        return get_object_storage().get_object(profile.physical_signature_key)

    @staticmethod
    def remove(*, ctx: AuthContext, meta: RequestMeta | None = None) -> None:
        ctx.require(caps.REPORT_SIGN)

        with transaction.atomic():
            profile = UserProfile.objects.select_for_update().get(user_id=ctx.user_id)
            key = profile.physical_signature_key
            if not key:
                raise NotFound("No physical signature image on file.")
            profile.physical_signature_key = ""
            profile.save(update_fields=["physical_signature_key", "updated_at"])

        get_object_storage().delete_object(key)

        log.info("physical_signature.removed", user_id=ctx.user_id)

        AuditService.record(
            actor_user_id=ctx.user_id,
            action=AuditAction.DELETE,
            collection="physical_signatures",
            document_id=profile.id,
            description="Assinatura física removida",
            meta=meta,
            tenant_id=ctx.tenant_id,
        )
