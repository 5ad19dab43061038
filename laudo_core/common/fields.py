# laudo_core/common/fields.py
from __future__ import annotations

from django.db import models

from laudo_core.common.crypto import decrypt_or, encrypt

NAME_FALLBACK = "Nome não disponível"


class EncryptedTextField(models.TextField):
    """
    Text column stored encrypted.

    The value is decrypted once when a row is loaded and encrypted once when it is
    written, so model instances always hold plaintext. Undecryptable values are
    replaced by ``decode_fallback`` instead of failing the whole query.
    """

    def __init__(self, *args, decode_fallback: str = "", **kwargs):
        self.decode_fallback = decode_fallback
        kwargs.setdefault("blank", True)
        super().__init__(*args, **kwargs)

    def deconstruct(self):
        name, path, args, kwargs = super().deconstruct()
        if self.decode_fallback:
            kwargs["decode_fallback"] = self.decode_fallback
        return name, path, args, kwargs

    def from_db_value(self, value, expression, connection):
        if value is None:
            return value
        return decrypt_or(value, self.decode_fallback, field=self.name)

    def get_prep_value(self, value):
        value = super().get_prep_value(value)
        if value is None or value == "":
            return value
        return encrypt(value)
