# laudo_core/audit/services.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from django.db import transaction

from laudo_core.audit.models import AuditAction, AuditEvent

log = structlog.get_logger(__name__)


class AuditWriteError(Exception):
    """Raised inside the audit writer; never leaves AuditService.record."""


@dataclass(frozen=True)
class RequestMeta:
    ip: str | None = None
    user_agent: str = ""


def request_meta(request) -> RequestMeta:
    if request is None:
        return RequestMeta()
    meta = getattr(request, "META", {}) or {}
    forwarded = meta.get("HTTP_X_FORWARDED_FOR", "")
    ip = forwarded.split(",")[0].strip() if forwarded else meta.get("REMOTE_ADDR")
    return RequestMeta(ip=ip or None, user_agent=(meta.get("HTTP_USER_AGENT") or "")[:512])


class AuditService:
    """
    Best-effort audit writer.

    Call it after the business transaction has committed. A failure here is logged
    and swallowed; it never fails or rolls back the operation being described.
    """

    @staticmethod
    def record(
        *,
        actor_user_id: int | None,
        action: AuditAction | str,
        collection: str,
        document_id: Any = "",
        description: str = "",
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        meta: RequestMeta | None = None,
        tenant_id: UUID | None = None,
    ) -> AuditEvent | None:
        meta = meta or RequestMeta()
        try:
            # savepoint: a failed insert must not poison an enclosing transaction
            with transaction.atomic():
                return AuditService._write(
                    actor_user_id=actor_user_id,
                    action=str(action),
                    collection=collection,
                    document_id=str(document_id or ""),
                    description=description,
                    before=before,
                    after=after,
                    meta=meta,
                    tenant_id=tenant_id,
                )
        except Exception as exc:
            log.error(
                "audit.write_failed",
                action=str(action),
                collection=collection,
                document_id=str(document_id or ""),
                error=str(exc),
            )
            return None

    @staticmethod
    def _write(*, actor_user_id, action, collection, document_id, description, before, after, meta, tenant_id):
        if action not in AuditAction.values:
            raise AuditWriteError(f"Unknown audit action '{action}'.")
        return AuditEvent.objects.create(
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            action=action,
            collection=collection,
            document_id=document_id,
            description=description or "",
            before=before,
            after=after,
            ip=meta.ip,
            user_agent=meta.user_agent,
        )
