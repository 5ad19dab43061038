# laudo_core/patients/models.py
from django.db import models

from laudo_core.common.fields import NAME_FALLBACK, EncryptedTextField
from laudo_core.common.models import TenantScopedModel


class Patient(TenantScopedModel):
    """
    Patient record scoped to a tenant. Identifying fields are stored encrypted.
    """
    full_name = EncryptedTextField(decode_fallback=NAME_FALLBACK)
    email = EncryptedTextField()
    phone = EncryptedTextField()
    document_number = EncryptedTextField()  # CPF
    date_of_birth = models.DateField(null=True, blank=True)

    class Meta:
        db_table = "patients_patient"
        indexes = [
            models.Index(fields=["tenant_id", "created_at"]),
        ]

    def __str__(self) -> str:
        return self.full_name
