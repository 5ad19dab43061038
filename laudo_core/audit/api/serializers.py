# laudo_core/audit/api/serializers.py
from rest_framework import serializers

from laudo_core.audit.models import AuditEvent


class AuditEventSerializer(serializers.ModelSerializer):
    actor_user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = AuditEvent
        fields = [
            "id",
            "tenant_id",
            "actor_user_id",
            "action",
            "description",
            "collection",
            "document_id",
            "before",
            "after",
            "ip",
            "user_agent",
            "occurred_at",
        ]
        read_only_fields = fields
