# laudo_core/iam/models.py
import uuid

from django.conf import settings
from django.db import models

from laudo_core.common.fields import NAME_FALLBACK, EncryptedTextField
from laudo_core.iam.roles import Role, normalize_roles
from laudo_core.tenants.models import Tenant


class UserProfile(models.Model):
    """
    Laudo user profile anchored to Django's AUTH_USER_MODEL.
    Carries the role tags and per-user flags consumed by AuthContext.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="laudo_profile")

    display_name = EncryptedTextField(decode_fallback=NAME_FALLBACK)
    crm = models.CharField(max_length=32, blank=True)

    # closed set, see laudo_core.iam.roles.Role
    roles = models.JSONField(default=list, blank=True)
    is_admin_master = models.BooleanField(default=False)
    has_financial_access = models.BooleanField(default=False)

    specialties = models.ManyToManyField("exams.Specialty", blank=True, related_name="doctors")

    # storage key of the doctor's scanned signature image
    physical_signature_key = EncryptedTextField()

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_user_profile"

    def __str__(self) -> str:
        return self.display_name or self.user.get_username()

    @property
    def role_set(self) -> frozenset[str]:
        if self.is_admin_master:
            return frozenset(Role.values)
        return normalize_roles(self.roles)

    @property
    def primary_specialty(self):
        return self.specialties.order_by("name").first()


class TenantMembership(models.Model):
    """
    Grants a user access to a tenant. A user may belong to several tenants.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="memberships")
    user_profile = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name="memberships")

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "iam_tenant_membership"
        constraints = [
            models.UniqueConstraint(fields=["tenant", "user_profile"], name="uq_tenant_user_profile_membership"),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
        ]
