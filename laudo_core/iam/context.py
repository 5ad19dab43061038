# laudo_core/iam/context.py
"""
Per-request authorization context.

The acting user, the active tenant, the user's tenants and roles are resolved once
(from the session/JWT user and the ``X-Tenant-Id`` header) and handed to services
explicitly instead of being re-derived at every check.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

import structlog
from rest_framework.exceptions import NotAuthenticated, PermissionDenied, ValidationError

from laudo_core.iam.roles import Role, capabilities_for
from laudo_core.iam.scope import MISSING_TENANT_MSG, tenant_from_headers

log = structlog.get_logger(__name__)

NO_TENANT_ACCESS_MSG = "You do not have access to the selected tenant."


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    tenant_id: UUID
    tenant_ids: tuple[UUID, ...] = ()
    roles: frozenset[str] = frozenset()
    is_admin_master: bool = False
    has_financial_access: bool = False
    user_name: str = ""
    capabilities: frozenset[str] = field(default=frozenset(), compare=False)

    def __post_init__(self):
        caps = capabilities_for(
            self.roles,
            is_admin_master=self.is_admin_master,
            has_financial_access=self.has_financial_access,
        )
        object.__setattr__(self, "capabilities", caps)

    def has_role(self, role) -> bool:
        return self.is_admin_master or str(role) in self.roles

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    def require(self, capability: str) -> None:
        if not self.can(capability):
            raise PermissionDenied(f"Missing capability '{capability}'.")

    @property
    def is_admin(self) -> bool:
        return self.is_admin_master or Role.ADMIN.value in self.roles


def build_auth_context(user, tenant_id: UUID | None) -> AuthContext:
    """
    Resolve the AuthContext for ``user`` acting in ``tenant_id``.

    - no tenant given: accepted when the user belongs to exactly one tenant
    - tenant the user is not a member of: 403 (admin master may act in any tenant)
    """
    from laudo_core.iam.models import UserProfile

    if not user or not getattr(user, "is_authenticated", False):
        raise NotAuthenticated()

    profile = (
        UserProfile.objects.filter(user_id=user.id, is_active=True)
        .prefetch_related("memberships")
        .first()
    )

    if profile is None:
        if getattr(user, "is_superuser", False) and tenant_id is not None:
            return AuthContext(
                user_id=user.id,
                tenant_id=tenant_id,
                tenant_ids=(tenant_id,),
                roles=frozenset(Role.values),
                is_admin_master=True,
                user_name=user.get_username(),
            )
        raise PermissionDenied("User has no active profile.")

    tenant_ids = tuple(
        m.tenant_id
        for m in sorted(profile.memberships.all(), key=lambda m: m.created_at)
        if m.is_active
    )

    if tenant_id is None:
        if len(tenant_ids) != 1:
            raise ValidationError(MISSING_TENANT_MSG)
        tenant_id = tenant_ids[0]

    if tenant_id not in tenant_ids and not profile.is_admin_master:
        log.info("auth.tenant_denied", user_id=user.id, tenant_id=str(tenant_id))
        raise PermissionDenied(NO_TENANT_ACCESS_MSG)

    return AuthContext(
        user_id=user.id,
        tenant_id=tenant_id,
        tenant_ids=tenant_ids,
        roles=profile.role_set,
        is_admin_master=profile.is_admin_master,
        has_financial_access=profile.has_financial_access,
        user_name=profile.display_name or user.get_username(),
    )


def resolve_auth_context(request) -> AuthContext:
    """
    Returns the AuthContext for this request, resolving and caching it on first use.
    """
    ctx = getattr(request, "auth_context", None)
    if ctx is not None:
        return ctx

    ctx = build_auth_context(getattr(request, "user", None), tenant_from_headers(request))

    # DRF Request proxies attribute reads to the wrapped HttpRequest; cache on both
    setattr(request, "auth_context", ctx)
    inner = getattr(request, "_request", None)
    if inner is not None:
        setattr(inner, "auth_context", ctx)
    request.tenant_id = ctx.tenant_id
    return ctx
