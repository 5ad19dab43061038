# laudo_core/common/permissions.py

from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

from laudo_core.iam import roles as caps
from laudo_core.iam.context import resolve_auth_context


class CapabilityPermission(BasePermission):
    """
    Capability-based access control over the request's AuthContext.

    - Resolves the AuthContext (tenant + roles) once; it is cached on the request.
    - Uses required_capabilities_per_action; an empty set means "authenticated member".
    - Unknown SAFE actions fall back to list/retrieve; other unknown actions are denied.
    """
    message = "You do not have permission to perform this action."

    # Override in subclasses: action -> set of capabilities (all required)
    required_capabilities_per_action: dict[str, set[str]] = {}

    def _infer_action(self, request, view) -> str | None:
        action = getattr(view, "action", None)
        if action:
            return action

        kwargs = getattr(view, "kwargs", {}) or {}
        is_detail = "pk" in kwargs or "id" in kwargs

        method = request.method.upper()
        if method in ("GET", "HEAD", "OPTIONS"):
            return "retrieve" if is_detail else "list"
        if method == "POST":
            return "create"
        if method == "PUT":
            return "update"
        if method == "PATCH":
            return "partial_update"
        if method == "DELETE":
            return "destroy"
        return None

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        ctx = resolve_auth_context(request)

        action = self._infer_action(request, view)
        required = self.required_capabilities_per_action.get(action)

        if required is None and request.method in SAFE_METHODS:
            kwargs = getattr(view, "kwargs", {}) or {}
            read_action = "retrieve" if ("pk" in kwargs or "id" in kwargs) else "list"
            required = self.required_capabilities_per_action.get(read_action)

        if required is None:
            return False

        return all(ctx.can(c) for c in required)

    def has_object_permission(self, request, view, obj) -> bool:
        obj_tenant = getattr(obj, "tenant_id", None)
        if obj_tenant is not None and obj_tenant != resolve_auth_context(request).tenant_id:
            return False
        return self.has_permission(request, view)


class ReportPermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.REPORT_VIEW},
        "retrieve": {caps.REPORT_VIEW},
        "history": {caps.REPORT_VIEW},
        "download": {caps.REPORT_VIEW},
        "create": {caps.REPORT_CREATE},
        "redo": {caps.REPORT_REDO},
        "sign_certificate": {caps.REPORT_SIGN},
        "sign_physical": {caps.REPORT_SIGN},
        "sign_upload": {caps.REPORT_VIEW},
        "invalidate": {caps.REPORT_INVALIDATE},
        "cancel": {caps.REPORT_INVALIDATE},
        "send_email": {caps.REPORT_SEND_EMAIL},
    }


class PaymentPermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.FINANCE_VIEW},
        "retrieve": {caps.FINANCE_VIEW},
        "stats": {caps.FINANCE_VIEW},
        "receipt": {caps.FINANCE_VIEW},
        "create": {caps.FINANCE_MANAGE},
        "partial_update": {caps.FINANCE_MANAGE},
        "cancel": {caps.FINANCE_MANAGE},
    }


class PricePermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.FINANCE_VIEW},
        "retrieve": {caps.FINANCE_VIEW},
        "create": {caps.PRICE_MANAGE},
        "update": {caps.PRICE_MANAGE},
        "partial_update": {caps.PRICE_MANAGE},
        "destroy": {caps.PRICE_MANAGE},
    }


class AuditPermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.AUDIT_VIEW},
        "retrieve": {caps.AUDIT_VIEW},
    }


class CertificatePermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.REPORT_SIGN},
        "create": {caps.REPORT_SIGN},
        "deactivate": {caps.REPORT_SIGN},
    }


class PhysicalSignaturePermission(CapabilityPermission):
    required_capabilities_per_action = {
        "list": {caps.REPORT_SIGN},
        "create": {caps.REPORT_SIGN},
        "destroy": {caps.REPORT_SIGN},
    }
