# laudo_core/iam/roles.py
from __future__ import annotations

from django.db import models


class Role(models.TextChoices):
    MEDICO = "medico", "Médico"
    TECNICO = "tecnico", "Técnico"
    ADMIN = "admin", "Administrador"
    ADMIN_MASTER = "adminMaster", "Administrador master"
    RECEPCIONISTA = "recepcionista", "Recepcionista"


# Capability codes checked by services and API permissions
REPORT_VIEW = "report.view"
REPORT_CREATE = "report.create"
REPORT_SIGN = "report.sign"
REPORT_REDO = "report.redo"
REPORT_INVALIDATE = "report.invalidate"
REPORT_SEND_EMAIL = "report.send_email"
FINANCE_VIEW = "finance.view"
FINANCE_MANAGE = "finance.manage"
PRICE_MANAGE = "price.manage"
AUDIT_VIEW = "audit.view"

ALL_CAPABILITIES = frozenset(
    {
        REPORT_VIEW,
        REPORT_CREATE,
        REPORT_SIGN,
        REPORT_REDO,
        REPORT_INVALIDATE,
        REPORT_SEND_EMAIL,
        FINANCE_VIEW,
        FINANCE_MANAGE,
        PRICE_MANAGE,
        AUDIT_VIEW,
    }
)

FINANCE_CAPABILITIES = frozenset({FINANCE_VIEW, FINANCE_MANAGE, PRICE_MANAGE})

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    Role.MEDICO.value: frozenset(
        {REPORT_VIEW, REPORT_CREATE, REPORT_SIGN, REPORT_REDO, REPORT_SEND_EMAIL}
    ),
    Role.TECNICO.value: frozenset({REPORT_VIEW}),
    Role.RECEPCIONISTA.value: frozenset({REPORT_VIEW, REPORT_SEND_EMAIL}),
    Role.ADMIN.value: frozenset(
        {
            REPORT_VIEW,
            REPORT_INVALIDATE,
            REPORT_SEND_EMAIL,
            FINANCE_VIEW,
            FINANCE_MANAGE,
            PRICE_MANAGE,
            AUDIT_VIEW,
        }
    ),
    Role.ADMIN_MASTER.value: ALL_CAPABILITIES,
}


def normalize_roles(raw) -> frozenset[str]:
    """
    Keep only known role tags. Unknown strings stored on a profile are ignored.
    """
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        raw = [raw]
    valid = set(Role.values)
    return frozenset(str(r) for r in raw if str(r) in valid)


def capabilities_for(roles: frozenset[str], *, is_admin_master: bool = False, has_financial_access: bool = False) -> frozenset[str]:
    if is_admin_master:
        return ALL_CAPABILITIES

    caps: set[str] = set()
    for role in roles:
        caps |= ROLE_CAPABILITIES.get(role, frozenset())
    if has_financial_access:
        caps |= FINANCE_CAPABILITIES
    return frozenset(caps)
