# laudo_core/audit/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from laudo_core.audit.models import AuditEvent


def audit_events_for_tenant(
    *,
    tenant_id: UUID,
    collection: str | None = None,
    document_id: str | None = None,
    action: str | None = None,
    actor_user_id: int | None = None,
) -> QuerySet[AuditEvent]:
    qs = AuditEvent.objects.filter(tenant_id=tenant_id)
    if collection:
        qs = qs.filter(collection=collection)
    if document_id:
        qs = qs.filter(document_id=str(document_id))
    if action:
        qs = qs.filter(action=action)
    if actor_user_id:
        qs = qs.filter(actor_user_id=actor_user_id)
    return qs.order_by("-occurred_at")
