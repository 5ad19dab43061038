# laudo_core/audit/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.response import Response

from laudo_core.audit.api.serializers import AuditEventSerializer
from laudo_core.audit.models import AuditEvent
from laudo_core.audit.selectors import audit_events_for_tenant
from laudo_core.common.api.pagination import paginate
from laudo_core.common.api.params import uuid_or_none
from laudo_core.common.permissions import AuditPermission
from laudo_core.iam.context import resolve_auth_context


class AuditEventViewSet(viewsets.GenericViewSet):
    """
    Audit trail of the active tenant (read-only).
    """
    permission_classes = [AuditPermission]
    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        tags=["Audit"],
        responses={200: AuditEventSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="collection", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="Filter by collection (reports, payments, prices, certificates)."),
            OpenApiParameter(name="document_id", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="action", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="actor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        ctx = resolve_auth_context(request)
        actor = request.query_params.get("actor")

        qs = audit_events_for_tenant(
            tenant_id=ctx.tenant_id,
            collection=request.query_params.get("collection"),
            document_id=request.query_params.get("document_id"),
            action=request.query_params.get("action"),
            actor_user_id=int(actor) if actor and actor.isdigit() else None,
        )
        return paginate(request, qs, AuditEventSerializer)

    @extend_schema(tags=["Audit"], responses={200: AuditEventSerializer})
    def retrieve(self, request, pk=None):
        ctx = resolve_auth_context(request)
        event = audit_events_for_tenant(tenant_id=ctx.tenant_id).get(id=uuid_or_none(pk, "id"))
        return Response(AuditEventSerializer(event).data, status=status.HTTP_200_OK)
