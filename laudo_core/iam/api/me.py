# laudo_core/iam/api/me.py

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from laudo_core.iam.context import build_auth_context
from laudo_core.iam.scope import tenant_from_headers
from laudo_core.iam.services.membership import list_user_tenants


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["IAM"], responses={200: OpenApiTypes.OBJECT})
    def get(self, request):
        """
        Returns user info, tenant memberships and, when a tenant is selected (or the
        user has a single tenant), the resolved roles and capabilities.
        X-Tenant-Id is OPTIONAL here; if provided it must be valid and a membership.
        """
        tenants = list_user_tenants(request.user.id)

        active = None
        tenant_id = tenant_from_headers(request)
        if tenant_id is not None or len(tenants) == 1:
            ctx = build_auth_context(request.user, tenant_id)
            active = {
                "tenant_id": str(ctx.tenant_id),
                "roles": sorted(ctx.roles),
                "capabilities": sorted(ctx.capabilities),
                "is_admin_master": ctx.is_admin_master,
                "has_financial_access": ctx.has_financial_access,
            }

        return Response(
            {
                "user": {
                    "id": request.user.id,
                    "username": request.user.get_username(),
                    "email": getattr(request.user, "email", None),
                },
                "tenants": tenants,
                "active": active,
            },
            status=status.HTTP_200_OK,
        )
