# laudo_core/iam/auth.py

from __future__ import annotations

from django.conf import settings
from rest_framework_simplejwt.authentication import JWTAuthentication

from laudo_core.iam.context import build_auth_context
from laudo_core.iam.scope import tenant_from_headers


class CookieOrHeaderJWTAuthentication(JWTAuthentication):
    """
    Authenticate using:
      1) Authorization: Bearer <access>
      2) HttpOnly cookie containing access token

    Once the user is known, the tenant header is validated against the user's
    memberships and the resulting AuthContext is attached to the request.
    """

    def authenticate(self, request):
        header = self.get_header(request)
        if header:
            auth_result = super().authenticate(request)
            if auth_result is None:
                return None
            user, token = auth_result
            self._attach_context(request, user)
            return user, token

        cookie_name = settings.SIMPLE_JWT.get("AUTH_COOKIE", "laudo_access")
        raw_token = request.COOKIES.get(cookie_name)
        if not raw_token:
            return None

        validated_token = self.get_validated_token(raw_token)
        user = self.get_user(validated_token)

        self._attach_context(request, user)
        return user, validated_token

    @staticmethod
    def _attach_context(request, user) -> None:
        tenant_id = tenant_from_headers(request)
        if tenant_id is None:
            # /me/ and single-tenant users resolve lazily in resolve_auth_context
            return
        ctx = build_auth_context(user, tenant_id)
        request.auth_context = ctx
        request.tenant_id = ctx.tenant_id
