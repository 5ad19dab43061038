# laudo_core/iam/scope.py
from __future__ import annotations

from uuid import UUID

from rest_framework.exceptions import ValidationError

# Preferred header name (what we standardize on)
HDR_TENANT = "X-Tenant-Id"

# Legacy variant sent by older dashboard builds
HDR_TENANT_LEGACY = "X-Laudo-Tenant-Id"

MISSING_TENANT_MSG = "Missing tenant header. Provide X-Tenant-Id."
INVALID_TENANT_MSG = "Invalid tenant header. Provide a valid UUID for X-Tenant-Id."


def _get_header(request, name: str) -> str | None:
    """
    request.headers is case-insensitive; fallback to META for RequestFactory requests.
    """
    headers = getattr(request, "headers", None)
    if headers is not None:
        v = headers.get(name)
        if v:
            return v
    meta_key = "HTTP_" + name.upper().replace("-", "_")
    return request.META.get(meta_key)


def tenant_from_headers(request) -> UUID | None:
    """
    Returns the tenant UUID carried by the request, or None when no header is present.
    Raises 400 when the header is present but not a UUID.
    """
    raw = _get_header(request, HDR_TENANT) or _get_header(request, HDR_TENANT_LEGACY)
    if not raw:
        return None
    try:
        return UUID(str(raw).strip())
    except ValueError:
        raise ValidationError(INVALID_TENANT_MSG)
