# laudo_core/common/middleware.py
from __future__ import annotations

import structlog
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied

from laudo_core.common.api.exceptions import build_error_envelope, ensure_request_id


class RequestContextMiddleware(MiddlewareMixin):
    """
    Assigns request_id (shared with the error envelope) and binds it into the
    structlog context for every log line emitted while serving the request.
    """

    def process_request(self, request):
        structlog.contextvars.clear_contextvars()
        rid = request.META.get("HTTP_X_REQUEST_ID") or ensure_request_id(request)
        request.request_id = rid
        structlog.contextvars.bind_contextvars(
            request_id=rid,
            method=request.method,
            path=request.path,
        )
        return None

    def process_response(self, request, response):
        rid = getattr(request, "request_id", None)
        if rid:
            response["X-Request-Id"] = rid
        structlog.contextvars.clear_contextvars()
        return response


class TenantScopeMiddleware(MiddlewareMixin):
    """
    Resolves the tenant scope for session-authenticated API requests.

    JWT requests are authenticated later by DRF; their scope is applied by
    CookieOrHeaderJWTAuthentication or lazily by resolve_auth_context.

    Behavior:
      - Only /api/ paths; docs/schema/admin and auth endpoints are public.
      - /me/ tolerates a missing tenant header.
      - Invalid UUID -> 400, missing header with several tenants -> 400
      - Not a member -> 403
      - On success -> request.auth_context, request.tenant_id
    """

    ENFORCED_PREFIXES = ("/api/v1/", "/api/")

    PUBLIC_PATH_PREFIXES = (
        "/admin/",
        "/api/docs/",
        "/api/schema/",
        "/api/v1/public/",
        "/api/public/",
    )

    AUTH_PATH_SUFFIXES = (
        "/auth/login/",
        "/auth/refresh/",
        "/auth/logout/",
    )

    ALLOW_NO_SCOPE_SUFFIXES = ("/me/",)

    def _json_error(self, request, *, status_code: int, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            build_error_envelope(request=request, code=code, message=message, details=None),
            status=status_code,
        )

    def process_request(self, request):
        request.tenant_id = None

        path = getattr(request, "path", "") or ""

        if any(path.startswith(p) for p in self.PUBLIC_PATH_PREFIXES):
            return None
        if not any(path.startswith(p) for p in self.ENFORCED_PREFIXES):
            return None
        if any(path.endswith(s) for s in self.AUTH_PATH_SUFFIXES + self.ALLOW_NO_SCOPE_SUFFIXES):
            return None

        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return None

        from laudo_core.iam.context import resolve_auth_context

        try:
            resolve_auth_context(request)
        except (NotAuthenticated, PermissionDenied) as exc:
            return self._json_error(
                request,
                status_code=exc.status_code,
                code="permission_denied",
                message=str(exc.detail),
            )
        except APIException as exc:
            return self._json_error(
                request,
                status_code=exc.status_code,
                code="validation_error",
                message=str(exc.detail[0] if isinstance(exc.detail, list) else exc.detail),
            )
        return None
