# laudo_core/iam/services/membership.py
from __future__ import annotations

from laudo_core.iam.models import TenantMembership


def list_user_tenants(user_id: int) -> list[dict]:
    """
    Tenant memberships for the /me response.

    Membership graph:
      auth_user -> UserProfile -> TenantMembership -> Tenant
    """
    qs = (
        TenantMembership.objects.select_related("tenant", "user_profile")
        .filter(user_profile__user_id=user_id, is_active=True)
        .order_by("created_at")
    )
    return [
        {
            "tenant_id": str(m.tenant_id),
            "tenant_code": m.tenant.code,
            "tenant_name": m.tenant.name,
        }
        for m in qs
    ]
