# laudo_core/audit/models.py
import uuid

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class AuditAction(models.TextChoices):
    CREATE = "create", "Create"
    UPDATE = "update", "Update"
    DELETE = "delete", "Delete"
    LOGIN = "login", "Login"
    LOGOUT = "logout", "Logout"
    REFRESH_TOKEN = "refresh_token", "Refresh token"
    UPLOAD = "upload", "Upload"
    PASSWORD_RESET = "password_reset", "Password reset"
    VIEW = "view", "View"
    EXPORT = "export", "Export"
    IMPORT = "import", "Import"
    RECREATE = "recreate", "Recreate"


class AuditEvent(models.Model):
    """
    Compliance record of a mutating action.
    ``before``/``after`` hold plaintext snapshots; this table is the readable source of
    truth for review, so access is restricted to ``audit.view``.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(null=True, blank=True, db_index=True)

    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="audit_events",
        null=True,
        blank=True,
    )

    action = models.CharField(max_length=32, choices=AuditAction.choices, db_index=True)
    description = models.TextField(blank=True)

    collection = models.CharField(max_length=64, db_index=True)  # e.g. "reports", "payments"
    document_id = models.CharField(max_length=64, blank=True, db_index=True)

    before = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    after = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)

    ip = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=512, blank=True)

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "audit_audit_event"
        ordering = ["-occurred_at"]
        indexes = [
            models.Index(fields=["tenant_id", "occurred_at"]),
            models.Index(fields=["collection", "document_id"]),
            models.Index(fields=["tenant_id", "action"]),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.collection}/{self.document_id}"
